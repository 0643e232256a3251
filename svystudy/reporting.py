"""
Result Tables and Prediction Curves

Coefficient / odds-ratio tables written as CSV, and the predicted-probability
curve over the exposure range with the other covariates held fixed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import DataFormatError
from svystudy.survey_design import SurveyDesign
from svystudy.survey_glm import SurveyGLMResult

logger = get_logger(__name__)

RESULT_COLUMNS = ["Estimate", "CI.lower", "CI.upper", "OR", "OR_CI.lower", "OR_CI.upper"]


def coefficient_table(result: SurveyGLMResult, level: float | None = None) -> pd.DataFrame:
    """
    Estimates, Wald limits and their exponentiated odds-ratio counterparts.

    One row per model coefficient (intercept included), indexed by term.
    """
    ci = result.conf_int(level)
    table = pd.DataFrame(
        {
            "Estimate": result.params,
            "CI.lower": ci["lower"],
            "CI.upper": ci["upper"],
        }
    )
    table["OR"] = np.exp(table["Estimate"])
    table["OR_CI.lower"] = np.exp(table["CI.lower"])
    table["OR_CI.upper"] = np.exp(table["CI.upper"])
    table.index.name = "Term"
    return table[RESULT_COLUMNS]


def output_path(filename: str, output_dir: str | Path | None = None) -> Path:
    """Resolve `filename` under the report output directory, creating it."""
    out_dir = Path(output_dir or CONFIG.get("report.output_dir", "output"))
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir / filename


def write_table(
    table: pd.DataFrame,
    filename: str,
    output_dir: str | Path | None = None,
    index: bool = True,
) -> Path:
    """Write a result table as CSV and log where it went."""
    path = output_path(filename, output_dir)
    table.to_csv(path, index=index)
    logger.log_operation("write_table", "completed", file=str(path), rows=len(table))
    return path


def write_main_results(result: SurveyGLMResult, output_dir: str | Path | None = None) -> Path:
    """Write the main model's coefficient table to main_results.csv."""
    filename = CONFIG.get("report.main_results_file", "main_results.csv")
    return write_table(coefficient_table(result), filename, output_dir)


def _reference_level(values: pd.Series, column: str, configured: dict[str, Any]) -> Any:
    observed = sorted(values.dropna().unique(), key=lambda v: (str(type(v)), v))
    if column not in configured:
        return observed[0]
    wanted = configured[column]
    for level in observed:
        if level == wanted or str(level) == str(wanted):
            return level
    raise DataFormatError(
        f"Reference level {wanted!r} for '{column}' not observed; levels: {observed}"
    )


def covariate_reference_values(design: SurveyDesign, cfg: Any = None) -> dict[str, Any]:
    """
    Fixed covariate values for prediction.

    Continuous covariates (sensitivity extras included) take their domain
    sample mean; categorical covariates take the configured reference level,
    or else their first sorted observed level.
    """
    cfg = cfg or CONFIG
    study = cfg.get_section("study")
    configured = cfg.get("report.reference_levels", {}) or {}
    domain = design.domain_data()

    categorical = list(study.get("categorical_covariates", []))
    continuous = list(study.get("continuous_covariates", []))
    for extra in (study.get("sensitivity_sets", {}) or {}).values():
        continuous += [c for c in extra if c not in categorical]

    values: dict[str, Any] = {}
    for col in dict.fromkeys(continuous):
        if col in domain.columns:
            values[col] = float(domain[col].mean())
    for col in categorical:
        values[col] = _reference_level(domain[col], col, configured)
    return values


def prediction_grid(
    design: SurveyDesign,
    exposure: str | None = None,
    n_points: int | None = None,
    cfg: Any = None,
) -> pd.DataFrame:
    """Exposure spread evenly over its observed domain range, other covariates fixed."""
    cfg = cfg or CONFIG
    exposure = exposure or cfg.get("study.exposure")
    n_points = n_points or cfg.get("report.grid_points", 100)

    x = design.domain_data()[exposure]
    grid = pd.DataFrame({exposure: np.linspace(x.min(), x.max(), n_points)})
    for col, value in covariate_reference_values(design, cfg).items():
        if col != exposure:
            grid[col] = value
    return grid


def prediction_curve(
    result: SurveyGLMResult,
    design: SurveyDesign,
    exposure: str | None = None,
    n_points: int | None = None,
    cfg: Any = None,
) -> pd.DataFrame:
    """
    Predicted probability (with delta-method band) at each exposure grid point.

    Returns:
        DataFrame with columns exposure, prob, lower, upper
    """
    cfg = cfg or CONFIG
    exposure = exposure or cfg.get("study.exposure")
    grid = prediction_grid(design, exposure, n_points, cfg)
    predicted = result.predict_with_ci(grid)
    curve = pd.concat([grid[[exposure]].rename(columns={exposure: "exposure"}), predicted], axis=1)
    logger.debug(
        f"Prediction curve: {len(curve)} points, prob in "
        f"[{curve['prob'].min():.3f}, {curve['prob'].max():.3f}]"
    )
    return curve
