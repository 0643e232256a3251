"""
Integration tests for the full study pipeline (run_analysis.py)

CSV extract with missing covariates -> imputation -> survey design ->
main, spline, subgroup and sensitivity fits -> written artifacts.
"""

import numpy as np
import pandas as pd
import pytest

from config import CONFIG
from run_analysis import imputation_columns, main, run_study
from svystudy.imputation import RandomForestImputer
from svystudy.reporting import RESULT_COLUMNS

pytestmark = pytest.mark.integration


@pytest.fixture
def extract(make_data, tmp_path):
    df = make_data(n=500, seed=21)
    np.random.seed(5)
    df.loc[np.random.choice(df.index, 50, replace=False), "BMI"] = np.nan
    df.loc[np.random.choice(df.index, 25, replace=False), "education"] = np.nan
    path = tmp_path / "extract.csv"
    df.to_csv(path, index=False)
    return df, path


@pytest.fixture
def study(extract, tmp_path, fast_imputation):
    _, path = extract
    return run_study(path, tmp_path / "out")


class TestImputationColumns:
    def test_design_columns_never_imputed(self):
        columns, categorical = imputation_columns()

        for design_col in ("SDMVPSU", "SDMVSTRA", "WTDRD1"):
            assert design_col not in columns
        assert "hypertension" in categorical
        assert "dietary_intake" not in categorical
        assert set(categorical) <= set(columns)

    def test_declared_discrete_covariate(self):
        _, categorical = imputation_columns()

        assert "alcohol_use" in categorical
        assert "physical_activity" not in categorical

    def test_binary_extra_detected_from_data(self, make_data):
        CONFIG.update("study.discrete_covariates", [])
        df = make_data(n=200, seed=4)

        assert "alcohol_use" not in imputation_columns()[1]
        _, categorical = imputation_columns(df=df)
        assert "alcohol_use" in categorical
        assert "energy_intake" not in categorical

    def test_imputed_binary_extra_stays_binary(self, make_data, fast_imputation):
        CONFIG.update("study.discrete_covariates", [])
        df = make_data(n=300, seed=8)
        np.random.seed(3)
        df.loc[np.random.choice(df.index, 30, replace=False), "alcohol_use"] = np.nan

        columns, categorical = imputation_columns(df=df)
        result = RandomForestImputer.from_config().fit_transform(df, columns, categorical)

        assert result.data["alcohol_use"].isna().sum() == 0
        assert set(result.data["alcohol_use"].unique()) <= {0.0, 1.0}


class TestRunStudy:
    def test_imputed_columns_complete_and_in_range(self, extract, study):
        df, _ = extract
        data = study["imputation"].data

        assert data["BMI"].isna().sum() == 0
        assert data["BMI"].between(df["BMI"].min(), df["BMI"].max()).all()
        assert set(data["education"].unique()) <= set(df["education"].dropna().unique())
        assert set(study["imputation"].columns_imputed) == {"BMI", "education"}

    def test_main_results_written(self, study):
        path = study["outputs"]["main_results"]
        written = pd.read_csv(path, index_col=0)

        assert list(written.columns) == RESULT_COLUMNS
        assert list(written.index) == list(study["main_result"].params.index)
        assert "dietary_intake" in written.index

    def test_every_artifact_written(self, study):
        expected = {
            "main_results", "figure", "spline_curve", "nonlinearity",
            "sensitivity", "subgroups", "forest", "imputation",
        }
        assert set(study["outputs"]) == expected
        for path in study["outputs"].values():
            assert path.exists()
            assert path.stat().st_size > 0

    def test_subgroup_table_covers_configured_variables(self, study):
        table = study["subgroups"]
        assert set(table["Subgroup"]) == set(CONFIG.get("study.subgroups"))

    def test_sensitivity_rows(self, study):
        table = pd.read_csv(study["outputs"]["sensitivity"])
        assert list(table["Model"]) == ["main", "energy_adjusted", "lifestyle_adjusted"]

    def test_imputation_summary(self, study):
        summary = pd.read_csv(study["outputs"]["imputation"])
        row = summary.set_index("Variable").loc["BMI"]
        assert row["N Imputed"] == 50


class TestMain:
    def test_missing_file_exit_code(self, tmp_path):
        CONFIG.update("study.data_path", str(tmp_path / "missing.csv"))
        CONFIG.update("report.output_dir", str(tmp_path / "out"))

        assert main() == 1

    def test_strict_mode_rejects_invalid_config(self, tmp_path):
        CONFIG.update("validation.strict_mode", True)
        CONFIG.update("model.ci_level", 1.5)

        assert main() == 2

    def test_successful_run(self, extract, tmp_path, fast_imputation):
        _, path = extract
        CONFIG.update("study.data_path", str(path))
        CONFIG.update("report.output_dir", str(tmp_path / "main_out"))

        assert main() == 0
        assert (tmp_path / "main_out" / "main_results.csv").exists()
