"""
Unit tests for svystudy/interaction.py and svystudy/subgroup.py
"""

import numpy as np
import pytest

from svystudy.exceptions import ModelFitError
from svystudy.interaction import (
    assess_interaction,
    format_interaction_results,
    interaction_columns,
    interpret_interaction,
)
from svystudy.subgroup import SubgroupAnalysisSurvey, fit_subgroup, run_subgroup_analyses


class TestInteraction:
    def test_interaction_test(self, survey_design):
        test = assess_interaction(survey_design, "race")

        assert test["terms"] == [
            "dietary_intake:C(race)[T.2]",
            "dietary_intake:C(race)[T.3]",
            "dietary_intake:C(race)[T.4]",
        ]
        assert test["df"] == 3
        assert test["F"] >= 0
        assert 0 <= test["p_value"] <= 1
        assert "C(race)" in test["formula"]

    def test_formatted_results(self, survey_design):
        test = assess_interaction(survey_design, "sex")
        table = format_interaction_results(test["result"], "sex")

        assert len(table) == 1
        row = table.iloc[0]
        assert row["Label"] == "sex=2 x exposure"
        assert row["OR"] == pytest.approx(np.exp(row["Estimate"]))
        assert row["OR_CI.lower"] < row["OR"] < row["OR_CI.upper"]

    def test_interaction_columns_missing_term(self, survey_design):
        test = assess_interaction(survey_design, "sex")
        with pytest.raises(KeyError):
            interaction_columns(test["result"], "race")

    def test_interpretation_text(self):
        text = interpret_interaction({"variable": "sex", "p_value": 0.2, "significant": False})
        assert "No evidence" in text and "sex" in text


class TestSubgroup:
    def test_empty_subgroup_raises(self, survey_design):
        with pytest.raises(ModelFitError):
            fit_subgroup(survey_design, "race", 99)

    def test_subgroup_fit_is_domain_fit(self, survey_design):
        result = fit_subgroup(survey_design, "sex", 1)

        assert result.n_obs == int((survey_design.data["sex"] == 1).sum())
        assert "C(sex)[T.2]" not in result.params.index

    def test_analyze(self, survey_design):
        analysis = SubgroupAnalysisSurvey(survey_design)
        output = analysis.analyze("sex")

        results = output["results_df"]
        assert list(results["Level"]) == ["Overall", "1", "2"]
        assert results["N"].iloc[1] + results["N"].iloc[2] == results["N"].iloc[0]
        assert (results["OR_CI.lower"] < results["OR"]).all()
        assert (results["OR"] < results["OR_CI.upper"]).all()
        assert results["P_interaction"].nunique() == 1
        assert 0 <= output["interaction"]["p_value"] <= 1

    def test_requested_empty_level_raises(self, survey_design):
        with pytest.raises(ModelFitError):
            SubgroupAnalysisSurvey(survey_design).analyze("sex", levels=[1, 3])

    def test_single_level_column_rejected(self, survey_design):
        survey_design.data["constant"] = 1
        with pytest.raises(ValueError, match="2\\+ categories"):
            SubgroupAnalysisSurvey(survey_design).analyze("constant")

    def test_forest_plot_requires_analysis(self, survey_design):
        with pytest.raises(ValueError, match="analyze"):
            SubgroupAnalysisSurvey(survey_design).create_forest_plot()

    def test_forest_plot(self, survey_design):
        analysis = SubgroupAnalysisSurvey(survey_design)
        analysis.analyze("smoking")

        fig = analysis.create_forest_plot()

        assert "P interaction" in fig.layout.title.text

    def test_run_subgroup_analyses_stacks_tables(self, survey_design):
        table, analyses = run_subgroup_analyses(survey_design, ["sex", "smoking"])

        assert set(analyses) == {"sex", "smoking"}
        assert set(table["Subgroup"]) == {"sex", "smoking"}
        assert (table["type"] == "overall").sum() == 2
