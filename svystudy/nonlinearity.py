"""
Nonlinear Exposure-Response via Regression Splines

The exposure enters the survey GLM as a B-spline basis, bs(exposure, df=k).
Two design-based Wald tests are reported:

- overall: all spline coefficients are zero (no association)
- nonlinearity: the spline curve has no component beyond a straight line,
  tested as the spline fit projected off a linear trend over a grid of
  exposure values
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import ModelFitError
from svystudy.formulas import spline_formula
from svystudy.reporting import prediction_curve, prediction_grid
from svystudy.survey_design import SurveyDesign
from svystudy.survey_glm import SurveyGLMResult, fit_svyglm

logger = get_logger(__name__)


def spline_columns(result: SurveyGLMResult) -> list[str]:
    """Coefficient names of the bs() basis term."""
    terms = [t for t in result.design_info.term_names if t.startswith("bs(")]
    if not terms:
        raise KeyError(f"No spline term in '{result.formula}'")
    return result.term_columns(terms[0])


def nonlinearity_contrast(
    result: SurveyGLMResult,
    design: SurveyDesign,
    n_points: int = 50,
    cfg: Any = None,
) -> np.ndarray:
    """
    Contrast matrix whose rows vanish exactly when the spline is linear.

    The basis is evaluated on a grid over the exposure range and its
    projection onto [1, exposure] is removed; the remaining rows act on the
    spline coefficients only.
    """
    cfg = cfg or CONFIG
    exposure = cfg.get("study.exposure")
    grid = prediction_grid(design, exposure, n_points, cfg)

    X_grid = pd.DataFrame(result.design_matrix(grid), columns=result.params.index)
    cols = spline_columns(result)
    basis = X_grid[cols].to_numpy()

    linear = np.column_stack([np.ones(len(grid)), grid[exposure].to_numpy()])
    hat = linear @ np.linalg.pinv(linear)
    residual_basis = basis - hat @ basis

    # Keep only the independent directions (k - 1 for a k-column basis)
    _, s, vt = np.linalg.svd(residual_basis, full_matrices=False)
    rank = int((s > s[0] * 1e-8).sum()) if s.size and s[0] > 0 else 0
    if rank == 0:
        raise ModelFitError("Spline basis has no component beyond a linear trend")

    L = np.zeros((rank, len(result.params)))
    idx = [result.params.index.get_loc(c) for c in cols]
    L[:, idx] = vt[:rank]
    return L


def analyze_nonlinearity(
    design: SurveyDesign,
    cfg: Any = None,
    df: int | None = None,
) -> dict[str, Any]:
    """
    Fit the spline model, test it, and compute its prediction curve.

    Returns:
        dict: {'formula', 'result', 'p_overall', 'p_nonlinear', 'overall',
        'nonlinear', 'curve'}

    Raises:
        ModelFitError: If the spline model cannot be fitted.
    """
    cfg = cfg or CONFIG
    formula = spline_formula(cfg, df)
    logger.info(f"Spline model: {formula}")

    with logger.track_time("spline_model"):
        result = fit_svyglm(design, formula)

    overall = result.wald_test(spline_columns(result))
    nonlinear = result.wald_test_contrast(nonlinearity_contrast(result, design, cfg=cfg))
    curve = prediction_curve(result, design, cfg=cfg)

    logger.info(
        f"Spline tests: P overall={overall['p_value']:.4f}, "
        f"P nonlinear={nonlinear['p_value']:.4f} (df={nonlinear['df']})"
    )

    return {
        "formula": formula,
        "result": result,
        "overall": overall,
        "nonlinear": nonlinear,
        "p_overall": overall["p_value"],
        "p_nonlinear": nonlinear["p_value"],
        "curve": curve,
    }


def nonlinearity_table(analysis: dict[str, Any]) -> pd.DataFrame:
    """Two-row summary of the spline Wald tests."""
    rows = []
    for name in ("overall", "nonlinear"):
        test = analysis[name]
        rows.append(
            {
                "Test": name,
                "F": test["F"],
                "df": test["df"],
                "ddf": test["ddf"],
                "P": test["p_value"],
            }
        )
    return pd.DataFrame(rows)
