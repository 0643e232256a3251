"""
Survey Diet/Outcome Study - Pipeline Entry Point

Loader -> Imputer -> Survey design -> Model fits -> Reporter.

Run with: python run_analysis.py   (or the `svystudy-run` console script)
Configuration comes from config.py and SVYSTUDY_* environment variables.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pandas as pd

from config import CONFIG
from logger import LoggerFactory, get_logger
from svystudy.data_loader import load_study_data
from svystudy.exceptions import StudyError
from svystudy.formulas import main_formula
from svystudy.imputation import RandomForestImputer, get_imputation_summary
from svystudy.interaction import interpret_interaction
from svystudy.nonlinearity import analyze_nonlinearity, nonlinearity_table
from svystudy.reporting import output_path, write_main_results, write_table
from svystudy.sensitivity import run_sensitivity_analyses
from svystudy.subgroup import run_subgroup_analyses
from svystudy.survey_design import build_survey_design
from svystudy.survey_glm import fit_svyglm
from svystudy.visualizations import create_forest_plot, plot_prediction_curve, write_forest_plot

logger = get_logger(__name__)


def imputation_columns(cfg: Any = None, df: pd.DataFrame | None = None) -> tuple[list[str], list[str]]:
    """
    Analysis columns to impute, and which of them are discrete.

    Design columns are never imputed. The outcome, categorical covariates,
    subgroup variables and `study.discrete_covariates` are imputed as
    discrete levels. When `df` is given, any other imputed column with at
    most two observed numeric values (a 0/1 indicator) is discrete too.
    """
    cfg = cfg or CONFIG
    study = cfg.get_section("study")
    columns = [study["outcome"], study["exposure"]]
    columns += study.get("continuous_covariates", [])
    columns += study.get("categorical_covariates", [])
    columns += study.get("subgroups", [])
    for extra in (study.get("sensitivity_sets", {}) or {}).values():
        columns += list(extra)
    columns = list(dict.fromkeys(columns))

    categorical = [study["outcome"]] + study.get("categorical_covariates", []) + study.get("subgroups", [])
    categorical += [c for c in study.get("discrete_covariates", []) if c in columns]

    if df is not None:
        continuous = set(study.get("continuous_covariates", [])) | {study["exposure"]}
        for col in columns:
            if col in continuous or col in categorical or col not in df.columns:
                continue
            if df[col].dropna().nunique() <= 2:
                categorical.append(col)

    return columns, list(dict.fromkeys(categorical))


def run_study(
    data_path: str | Path | None = None,
    output_dir: str | Path | None = None,
    cfg: Any = None,
) -> dict[str, Any]:
    """
    Run the whole analysis and write every report artifact.

    Returns:
        dict of the intermediate handles and the written paths

    Raises:
        StudyError: Any stage failure (data, imputation, design, model).
    """
    cfg = cfg or CONFIG
    data_path = data_path or cfg.get("study.data_path")
    output_dir = Path(output_dir or cfg.get("report.output_dir", "output"))
    report = cfg.get_section("report")
    outputs: dict[str, Path] = {}

    logger.log_operation("study", "started", data=str(data_path), output=str(output_dir))

    # 1. Load
    df = load_study_data(data_path)

    # 2. Impute
    columns, categorical = imputation_columns(cfg, df)
    with logger.track_time("imputation", log_level="INFO"):
        imputation = RandomForestImputer.from_config().fit_transform(df, columns, categorical)
    imputed = imputation.data

    # 3. Survey design
    design = build_survey_design(imputed)

    # 4. Model fits
    logger.set_context(model="main")
    formula = main_formula(cfg)
    logger.info(f"Main model: {formula}")
    with logger.track_time("main_model", log_level="INFO"):
        main_result = fit_svyglm(design, formula)

    logger.set_context(model="spline")
    spline = analyze_nonlinearity(design, cfg)

    logger.set_context(model="subgroup")
    subgroup_table, analyses = run_subgroup_analyses(design, cfg=cfg)
    for analysis in analyses.values():
        logger.info(interpret_interaction(analysis.interaction_result))

    logger.set_context(model="sensitivity")
    sensitivity_table, _ = run_sensitivity_analyses(design, main_result, cfg)
    logger.clear_context()

    # 5. Report
    outputs["main_results"] = write_main_results(main_result, output_dir)
    outputs["figure"] = plot_prediction_curve(
        spline["curve"], output_path(report["figure_file"], output_dir)
    )
    outputs["spline_curve"] = write_table(spline["curve"], report["spline_file"], output_dir, index=False)
    outputs["nonlinearity"] = write_table(
        nonlinearity_table(spline), report["nonlinearity_file"], output_dir, index=False
    )
    outputs["sensitivity"] = write_table(sensitivity_table, report["sensitivity_file"], output_dir, index=False)

    if not subgroup_table.empty:
        outputs["subgroups"] = write_table(subgroup_table, report["subgroup_file"], output_dir, index=False)
        if report.get("forest_plot_enabled", True):
            forest_rows = pd.concat(
                [subgroup_table[subgroup_table["type"] == "overall"].head(1),
                 subgroup_table[subgroup_table["type"] == "subgroup"]],
                ignore_index=True,
            )
            fig = create_forest_plot(
                forest_rows, label_col="Label", pval_col="P",
                title=f"Exposure OR by subgroup: {cfg.get('study.exposure')}",
            )
            outputs["forest"] = write_forest_plot(fig, output_path(report["forest_file"], output_dir))

    imputation_summary = get_imputation_summary(imputation)
    if not imputation_summary.empty:
        outputs["imputation"] = write_table(
            imputation_summary, report["imputation_file"], output_dir, index=False
        )

    logger.log_operation("study", "completed", artifacts=len(outputs))
    return {
        "imputation": imputation,
        "design": design,
        "main_result": main_result,
        "spline": spline,
        "subgroups": subgroup_table,
        "sensitivity": sensitivity_table,
        "outputs": outputs,
    }


def main() -> int:
    """Validate configuration, run the study, and map failures to an exit code."""
    is_valid, errors = CONFIG.validate()
    if not is_valid:
        for err in errors:
            logger.warning(f"Config validation: {err}")
        if CONFIG.get("validation.strict_mode"):
            logger.error("Invalid configuration in strict mode; aborting")
            return 2

    try:
        run_study()
    except StudyError:
        logger.exception("Study aborted")
        return 1

    LoggerFactory.get_performance_logger().print_summary()
    return 0


if __name__ == "__main__":
    sys.exit(main())
