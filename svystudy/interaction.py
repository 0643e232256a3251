"""
Exposure x Subgroup Interaction Analysis

Fits `outcome ~ exposure * C(by) + covariates` to the survey design and
tests the product terms jointly with a design-based Wald test (F form on the
design degrees of freedom, as in regTermTest).
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from svystudy.formulas import exposure_term, interaction_formula
from svystudy.survey_design import SurveyDesign
from svystudy.survey_glm import SurveyGLMResult, fit_svyglm

logger = get_logger(__name__)


def interaction_columns(result: SurveyGLMResult, by: str, cfg: Any = None) -> list[str]:
    """Coefficient names of the exposure x C(by) product terms."""
    term = f"{exposure_term(cfg)}:C({by})"
    return result.term_columns(term)


def assess_interaction(
    design: SurveyDesign,
    by: str,
    cfg: Any = None,
) -> dict[str, Any]:
    """
    Fit the interaction model and test the product terms.

    Returns:
        dict: {'variable', 'formula', 'terms', 'F', 'df', 'ddf', 'p_value',
        'significant', 'result'}

    Raises:
        ModelFitError: If the interaction model cannot be fitted.
    """
    formula = interaction_formula(by, cfg)
    logger.info(f"Interaction model for '{by}': {formula}")

    with logger.track_time(f"interaction_{by}"):
        result = fit_svyglm(design, formula)

    columns = interaction_columns(result, by, cfg)
    test = result.wald_test(columns)
    alpha = 1 - (cfg or CONFIG).get("model.ci_level", 0.95)

    logger.info(
        f"Interaction {by}: F={test['F']:.3f} on ({test['df']}, {test['ddf']:.0f}) df, "
        f"P={test['p_value']:.4f}"
    )

    return {
        "variable": by,
        "formula": formula,
        "terms": columns,
        "F": test["F"],
        "df": test["df"],
        "ddf": test["ddf"],
        "p_value": test["p_value"],
        "significant": test["p_value"] < alpha,
        "result": result,
    }


def format_interaction_results(result: SurveyGLMResult, by: str, cfg: Any = None) -> pd.DataFrame:
    """
    Product-term coefficients on the odds-ratio scale.

    Each row is a ratio of exposure ORs: level of `by` versus its reference.
    """
    columns = interaction_columns(result, by, cfg)
    ci = result.conf_int()
    pvalues = result.pvalues

    rows = []
    for name in columns:
        level = name.split("[", 1)[-1].rstrip("]").removeprefix("T.")
        coef = float(result.params[name])
        rows.append(
            {
                "Term": name,
                "Label": f"{by}={level} x exposure",
                "Estimate": coef,
                "OR": float(np.exp(coef)),
                "OR_CI.lower": float(np.exp(ci.loc[name, "lower"])),
                "OR_CI.upper": float(np.exp(ci.loc[name, "upper"])),
                "P": float(pvalues[name]),
            }
        )
    return pd.DataFrame(rows)


def interpret_interaction(test: dict[str, Any]) -> str:
    """One-line reading of an interaction test for the log."""
    if test["significant"]:
        return (
            f"The exposure effect differs across levels of {test['variable']} "
            f"(P for interaction = {test['p_value']:.4f})."
        )
    return (
        f"No evidence that the exposure effect varies by {test['variable']} "
        f"(P for interaction = {test['p_value']:.4f})."
    )
