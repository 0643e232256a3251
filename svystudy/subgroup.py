"""
🧪 Subgroup Analysis on Survey Domains

Exposure odds ratios within each level of a stratifying covariate, fitted on
domain views of the survey design (full PSU structure kept for variance),
with the P for interaction from the exposure x subgroup model.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd
import plotly.graph_objects as go

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import ModelFitError
from svystudy.formulas import exposure_coef_name, main_formula, subgroup_formula
from svystudy.interaction import assess_interaction
from svystudy.survey_design import SurveyDesign
from svystudy.survey_glm import SurveyGLMResult, fit_svyglm
from svystudy.visualizations import create_forest_plot

logger = get_logger(__name__)


def _exposure_row(result: SurveyGLMResult, exposure: str) -> dict[str, float]:
    name = exposure_coef_name(list(result.params.index), exposure)
    ci = result.conf_int().loc[name]
    return {
        "Estimate": float(result.params[name]),
        "OR": float(np.exp(result.params[name])),
        "OR_CI.lower": float(np.exp(ci["lower"])),
        "OR_CI.upper": float(np.exp(ci["upper"])),
        "P": float(result.pvalues[name]),
    }


def fit_subgroup(
    design: SurveyDesign,
    by: str,
    level: Any,
    cfg: Any = None,
) -> SurveyGLMResult:
    """
    Fit the main model within one level of `by`.

    The stratifying variable is dropped from the covariates since it is
    constant inside the domain.

    Raises:
        ModelFitError: If the domain is empty or the fit fails.
    """
    sub_design = design.subset(lambda d: d[by] == level)
    if sub_design.n_domain == 0:
        raise ModelFitError(f"Subgroup {by}={level} has no rows")
    return fit_svyglm(sub_design, subgroup_formula(by, cfg))


class SubgroupAnalysisSurvey:
    """
    Subgroup analysis for survey-weighted logistic regression.
    """

    def __init__(self, design: SurveyDesign, cfg: Any = None):
        self.design = design
        self.cfg = cfg or CONFIG
        self.results: pd.DataFrame | None = None
        self.interaction_result: dict[str, Any] | None = None
        self.figure: go.Figure | None = None
        self.subgroup_col: str | None = None

    def validate_inputs(self, subgroup_col: str) -> None:
        """Check the stratifying column exists and has at least two levels in the domain."""
        if subgroup_col not in self.design.data.columns:
            raise ValueError(f"Missing column: {subgroup_col}")
        if self.design.domain_data()[subgroup_col].nunique() < 2:
            raise ValueError(f"Subgroup '{subgroup_col}' must have 2+ categories")

    def analyze(self, subgroup_col: str, levels: list[Any] | None = None) -> dict[str, Any]:
        """
        Overall, per-level and interaction fits for one stratifying covariate.

        Args:
            subgroup_col: Categorical covariate defining the subgroups
            levels: Levels to fit (default: every level observed in the domain)

        Returns:
            dict: {'overall', 'subgroups', 'interaction', 'results_df'}

        Raises:
            ModelFitError: On an empty requested level or any failed fit.
        """
        self.validate_inputs(subgroup_col)
        self.subgroup_col = subgroup_col
        exposure = self.cfg.get("study.exposure")
        outcome = self.cfg.get("study.outcome")
        domain = self.design.domain_data()

        results_list: list[dict[str, Any]] = []

        logger.info("Computing overall model...")
        overall = fit_svyglm(self.design, main_formula(self.cfg))
        results_list.append(
            {
                "Subgroup": subgroup_col,
                "Level": "Overall",
                "Label": f"Overall (N={overall.n_obs})",
                "N": overall.n_obs,
                "Events": int(domain[outcome].sum()),
                **_exposure_row(overall, exposure),
                "type": "overall",
            }
        )

        if levels is None:
            levels = sorted(domain[subgroup_col].dropna().unique())
        logger.info(f"Computing {len(levels)} subgroup models for '{subgroup_col}'...")

        for level in levels:
            result = fit_subgroup(self.design, subgroup_col, level, self.cfg)
            row = _exposure_row(result, exposure)
            n_events = int(domain.loc[domain[subgroup_col] == level, outcome].sum())
            results_list.append(
                {
                    "Subgroup": subgroup_col,
                    "Level": str(level),
                    "Label": f"{subgroup_col}={level} (N={result.n_obs})",
                    "N": result.n_obs,
                    "Events": n_events,
                    **row,
                    "type": "subgroup",
                }
            )
            logger.info(f"Subgroup {subgroup_col}={level}: OR={row['OR']:.3f}, P={row['P']:.4f}")

        logger.info("Computing interaction test...")
        self.interaction_result = assess_interaction(self.design, subgroup_col, self.cfg)

        self.results = pd.DataFrame(results_list)
        self.results["P_interaction"] = self.interaction_result["p_value"]
        return self._format_output()

    def _format_output(self) -> dict[str, Any]:
        overall = self.results[self.results["type"] == "overall"].iloc[0]
        return {
            "overall": {
                "or": float(overall["OR"]),
                "ci": (float(overall["OR_CI.lower"]), float(overall["OR_CI.upper"])),
                "p_value": float(overall["P"]),
                "n": int(overall["N"]),
                "events": int(overall["Events"]),
            },
            "subgroups": self.results[self.results["type"] == "subgroup"].to_dict("records"),
            "interaction": {
                "p_value": float(self.interaction_result["p_value"]),
                "significant": bool(self.interaction_result["significant"]),
            },
            "results_df": self.results,
        }

    def create_forest_plot(self, title: str | None = None) -> go.Figure:
        """Forest plot of the overall and per-level exposure ORs."""
        if self.results is None:
            raise ValueError("Run analyze() first")

        p_int = self.interaction_result["p_value"]
        het_text = "Heterogeneous" if self.interaction_result["significant"] else "Homogeneous"
        title = title or f"Subgroup Analysis: {self.subgroup_col}"

        self.figure = create_forest_plot(
            data=self.results,
            estimate_col="OR",
            ci_low_col="OR_CI.lower",
            ci_high_col="OR_CI.upper",
            label_col="Label",
            pval_col="P",
            title=f"{title}<br>P interaction = {p_int:.3f} ({het_text})",
            x_label="Odds Ratio (95% CI)",
        )
        return self.figure


def run_subgroup_analyses(
    design: SurveyDesign,
    subgroups: list[str] | None = None,
    cfg: Any = None,
) -> tuple[pd.DataFrame, dict[str, SubgroupAnalysisSurvey]]:
    """
    Run SubgroupAnalysisSurvey for every configured stratifying covariate.

    Returns:
        tuple: (stacked results table, analyses by column)
    """
    cfg = cfg or CONFIG
    subgroups = subgroups if subgroups is not None else cfg.get("study.subgroups", [])

    analyses: dict[str, SubgroupAnalysisSurvey] = {}
    tables = []
    for col in subgroups:
        with logger.track_time(f"subgroup_{col}"):
            analysis = SubgroupAnalysisSurvey(design, cfg)
            analysis.analyze(col)
        analyses[col] = analysis
        tables.append(analysis.results)

    table = pd.concat(tables, ignore_index=True) if tables else pd.DataFrame()
    return table, analyses
