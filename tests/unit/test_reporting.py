"""
Unit tests for svystudy/reporting.py and svystudy/visualizations.py
"""

import numpy as np
import pandas as pd
import pytest

from config import CONFIG
from svystudy.exceptions import DataFormatError
from svystudy.formulas import main_formula
from svystudy.reporting import (
    RESULT_COLUMNS,
    coefficient_table,
    covariate_reference_values,
    prediction_curve,
    prediction_grid,
    write_main_results,
)
from svystudy.survey_glm import fit_svyglm
from svystudy.visualizations import create_forest_plot, plot_prediction_curve


@pytest.fixture
def main_result(survey_design):
    return fit_svyglm(survey_design, main_formula())


class TestCoefficientTable:
    def test_columns_and_index(self, main_result):
        table = coefficient_table(main_result)

        assert list(table.columns) == RESULT_COLUMNS
        assert list(table.index) == list(main_result.params.index)

    def test_odds_ratios_are_exponentiated(self, main_result):
        table = coefficient_table(main_result)

        np.testing.assert_allclose(table["OR"], np.exp(table["Estimate"]))
        np.testing.assert_allclose(table["OR_CI.lower"], np.exp(table["CI.lower"]))
        assert (table["OR_CI.lower"] < table["OR"]).all()
        assert (table["OR"] < table["OR_CI.upper"]).all()

    def test_write_main_results(self, main_result, tmp_path):
        path = write_main_results(main_result, tmp_path)

        assert path.name == "main_results.csv"
        written = pd.read_csv(path, index_col=0)
        assert list(written.columns) == RESULT_COLUMNS
        assert len(written) == len(main_result.params)


class TestPredictionCurve:
    def test_reference_values(self, survey_design):
        values = covariate_reference_values(survey_design)

        assert values["age"] == pytest.approx(survey_design.data["age"].mean())
        assert values["sex"] == 1
        assert values["race"] == 1
        assert "energy_intake" in values

    def test_configured_reference_level(self, survey_design):
        CONFIG.update("report.reference_levels", {"race": "3"})
        assert covariate_reference_values(survey_design)["race"] == 3

    def test_unobserved_reference_level(self, survey_design):
        CONFIG.update("report.reference_levels", {"race": 9})
        with pytest.raises(DataFormatError, match="not observed"):
            covariate_reference_values(survey_design)

    def test_grid_spans_observed_range(self, survey_design):
        grid = prediction_grid(survey_design, n_points=25)
        x = survey_design.data["dietary_intake"]

        assert len(grid) == 25
        assert grid["dietary_intake"].iloc[0] == pytest.approx(x.min())
        assert grid["dietary_intake"].iloc[-1] == pytest.approx(x.max())
        assert grid["BMI"].nunique() == 1

    def test_curve(self, main_result, survey_design):
        curve = prediction_curve(main_result, survey_design)

        assert list(curve.columns) == ["exposure", "prob", "lower", "upper"]
        assert len(curve) == CONFIG.get("report.grid_points")
        assert curve["prob"].between(0, 1).all()
        # Monotone in the exposure for a linear term
        diffs = np.diff(curve["prob"].to_numpy())
        assert (diffs > 0).all() or (diffs < 0).all()

    def test_plot_written(self, main_result, survey_design, tmp_path):
        curve = prediction_curve(main_result, survey_design, n_points=20)
        path = plot_prediction_curve(curve, tmp_path / "fig" / "curve.png")

        assert path.exists()
        assert path.stat().st_size > 0


class TestForestPlot:
    def test_forest_plot_figure(self):
        data = pd.DataFrame(
            {
                "Label": ["Overall", "sex=1", "sex=2"],
                "OR": [1.2, 1.1, 1.4],
                "OR_CI.lower": [1.0, 0.8, 1.05],
                "OR_CI.upper": [1.4, 1.5, 1.9],
                "P": [0.04, 0.5, 0.01],
            }
        )

        fig = create_forest_plot(data, pval_col="P", title="Test")

        assert len(fig.data) == 4
        assert "Test" in fig.layout.title.text

    def test_empty_frame_rejected(self):
        with pytest.raises(ValueError):
            create_forest_plot(pd.DataFrame())
