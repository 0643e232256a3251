"""
Unit tests for svystudy/formulas.py
"""

import pytest

from config import CONFIG
from svystudy.formulas import (
    covariate_terms,
    exposure_coef_name,
    exposure_term,
    interaction_formula,
    main_formula,
    sensitivity_formulas,
    spline_formula,
    subgroup_formula,
)

COVARIATES = "age + BMI + PIR + C(sex) + C(race) + C(education) + C(smoking)"


class TestFormulas:
    def test_main_formula_enumerates_covariates(self):
        assert main_formula() == f"hypertension ~ dietary_intake + {COVARIATES}"

    def test_interaction_drops_duplicate_main_effect(self):
        formula = interaction_formula("sex")
        assert formula.startswith("hypertension ~ dietary_intake * C(sex) + age")
        assert formula.count("C(sex)") == 1

    def test_subgroup_formula_excludes_stratifier(self):
        assert "C(race)" not in subgroup_formula("race")
        assert "C(sex)" in subgroup_formula("race")

    def test_spline_formula(self):
        assert spline_formula() == f"hypertension ~ bs(dietary_intake, df=4) + {COVARIATES}"
        assert "df=6" in spline_formula(df=6)

    def test_sensitivity_formulas_extend_main(self):
        formulas = sensitivity_formulas()

        assert set(formulas) == {"energy_adjusted", "lifestyle_adjusted"}
        assert formulas["energy_adjusted"].endswith("C(smoking) + energy_intake")
        assert formulas["lifestyle_adjusted"].endswith("alcohol_use + physical_activity")

    def test_exposure_scaling(self):
        CONFIG.update("study.exposure_scale", 100.0)
        assert exposure_term() == "I(dietary_intake / 100)"
        assert main_formula().startswith("hypertension ~ I(dietary_intake / 100) + age")

    def test_declared_categorical_extra(self):
        CONFIG.update("study.categorical_covariates", ["sex", "alcohol_use"])
        terms = covariate_terms(extra=["alcohol_use"])
        assert terms.count("C(alcohol_use)") == 1
        assert "alcohol_use" not in terms


class TestExposureCoefName:
    def test_plain(self):
        assert exposure_coef_name(["Intercept", "dietary_intake", "age"], "dietary_intake") == "dietary_intake"

    def test_scaled(self):
        names = ["Intercept", "I(dietary_intake / 100)", "I(dietary_intake / 100):C(sex)[T.2]"]
        assert exposure_coef_name(names, "dietary_intake") == "I(dietary_intake / 100)"

    def test_spline_only_raises(self):
        with pytest.raises(KeyError):
            exposure_coef_name(["Intercept", "bs(dietary_intake, df=4)[0]"], "dietary_intake")
