"""
Survey-weighted observational study of a dietary exposure and a binary outcome.

Contains:
- data_loader: observation table loading and column validation
- imputation: random-forest chained-equation imputation
- survey_design: design handle (PSU, stratum, weight) and domain views
- survey_glm: quasi-binomial survey GLM with Taylor-linearised variance
- formulas: model formula assembly
- interaction / subgroup / nonlinearity / sensitivity: analysis stages
- reporting / visualizations: tables and figures
"""
