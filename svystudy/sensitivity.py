"""
Sensitivity Analysis Module

- Refits of the main model with extended covariate sets
- E-value for unmeasured confounding of the main exposure OR

References:
    VanderWeele, T.J. & Ding, P. (2017). Sensitivity analysis in
        observational research: introducing the E-value. Annals of Internal
        Medicine.
"""

from __future__ import annotations

from typing import Any, Literal

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from svystudy.formulas import exposure_coef_name, main_formula, sensitivity_formulas
from svystudy.survey_design import SurveyDesign
from svystudy.survey_glm import SurveyGLMResult, fit_svyglm

logger = get_logger(__name__)


# =============================================================================
# E-VALUE FOR UNMEASURED CONFOUNDING
# =============================================================================


def calculate_e_value(
    estimate: float,
    lower: float | None = None,
    upper: float | None = None,
    estimate_type: Literal["RR", "OR"] = "OR",
) -> dict[str, float]:
    """
    E-value for a risk ratio (RR) or odds ratio (OR).

    E-value = RR + sqrt(RR * (RR - 1)). An OR is first converted to an
    approximate RR with the square-root heuristic (common outcome).
    Protective estimates are inverted; the CI limit used is the one closest
    to the null, and an interval crossing 1 gives a limit E-value of 1.

    Raises:
        ValueError: Non-positive estimate or unknown estimate_type.
    """
    if estimate is None or not np.isfinite(estimate) or estimate <= 0:
        raise ValueError("Estimate must be a positive number")
    if estimate_type not in ("RR", "OR"):
        raise ValueError(f"Invalid estimate_type: {estimate_type}. Must be 'RR' or 'OR'.")

    original_estimate = estimate
    if estimate == 1.0:
        return {"original_estimate": estimate, "e_value_estimate": 1.0, "e_value_ci_limit": 1.0}

    if estimate_type == "OR":
        estimate = np.sqrt(estimate)
        lower = np.sqrt(lower) if lower is not None and lower > 0 else None
        upper = np.sqrt(upper) if upper is not None and upper > 0 else None

    if estimate < 1:
        est_prime = 1 / estimate
        l_prime = 1 / upper if upper else None
    else:
        est_prime = estimate
        l_prime = lower

    def compute_e(val):
        if val is None or val <= 1:
            return 1.0
        return val + np.sqrt(val * (val - 1))

    return {
        "original_estimate": float(original_estimate),
        "e_value_estimate": round(float(compute_e(est_prime)), 3),
        "e_value_ci_limit": round(float(compute_e(l_prime)), 3),
    }


# =============================================================================
# EXTENDED COVARIATE SETS
# =============================================================================


def _exposure_summary(model: str, formula: str, result: SurveyGLMResult, exposure: str) -> dict[str, Any]:
    name = exposure_coef_name(list(result.params.index), exposure)
    ci = result.conf_int().loc[name]
    return {
        "Model": model,
        "Formula": formula,
        "N": result.n_obs,
        "Estimate": float(result.params[name]),
        "OR": float(np.exp(result.params[name])),
        "OR_CI.lower": float(np.exp(ci["lower"])),
        "OR_CI.upper": float(np.exp(ci["upper"])),
        "P": float(result.pvalues[name]),
    }


def run_sensitivity_analyses(
    design: SurveyDesign,
    main_result: SurveyGLMResult | None = None,
    cfg: Any = None,
) -> tuple[pd.DataFrame, dict[str, SurveyGLMResult]]:
    """
    Exposure OR under the main model and each extended covariate set.

    The main model row also carries the E-value of its OR.

    Returns:
        tuple: (one row per model, fitted results by model name)

    Raises:
        ModelFitError: If any model fails to fit.
    """
    cfg = cfg or CONFIG
    exposure = cfg.get("study.exposure")

    formula = main_formula(cfg)
    if main_result is None:
        main_result = fit_svyglm(design, formula)

    results: dict[str, SurveyGLMResult] = {"main": main_result}
    rows = [_exposure_summary("main", formula, main_result, exposure)]

    for name, sens_formula in sensitivity_formulas(cfg).items():
        logger.info(f"Sensitivity model '{name}': {sens_formula}")
        with logger.track_time(f"sensitivity_{name}"):
            result = fit_svyglm(design, sens_formula)
        results[name] = result
        rows.append(_exposure_summary(name, sens_formula, result, exposure))

    table = pd.DataFrame(rows)

    main_row = rows[0]
    e_value = calculate_e_value(
        main_row["OR"], main_row["OR_CI.lower"], main_row["OR_CI.upper"], estimate_type="OR"
    )
    table["E_value"] = np.nan
    table["E_value_CI"] = np.nan
    table.loc[0, "E_value"] = e_value["e_value_estimate"]
    table.loc[0, "E_value_CI"] = e_value["e_value_ci_limit"]

    shift = (table["OR"] / main_row["OR"] - 1).abs().max()
    logger.info(f"Sensitivity: {len(table)} models, max relative OR shift {shift:.1%}")
    return table, results
