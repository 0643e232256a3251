"""
Unit tests for config.py

Dot-path access, runtime updates, environment overrides and validation.
"""

import pytest

from config import CONFIG, ConfigManager


class TestConfigAccess:
    def test_get_nested_value(self):
        assert CONFIG.get("survey.psu") == "SDMVPSU"
        assert CONFIG.get("study.spline_df") == 4

    def test_get_missing_returns_default(self):
        assert CONFIG.get("study.not_a_key", "fallback") == "fallback"
        assert CONFIG.get("no.such.path") is None

    def test_update_existing_key(self):
        CONFIG.update("imputation.max_iter", 20)
        assert CONFIG.get("imputation.max_iter") == 20

    def test_update_unknown_key_raises(self):
        with pytest.raises(KeyError):
            CONFIG.update("imputation.not_a_key", 1)

    def test_get_section_is_a_copy(self):
        section = CONFIG.get_section("study")
        section["continuous_covariates"].append("waist")
        assert "waist" not in CONFIG.get("study.continuous_covariates")


class TestEnvOverrides:
    def test_typed_overrides(self, monkeypatch):
        monkeypatch.setenv("SVYSTUDY_STUDY_DATA_PATH", "data/other.csv")
        monkeypatch.setenv("SVYSTUDY_IMPUTATION_MAX_ITER", "7")
        monkeypatch.setenv("SVYSTUDY_MODEL_CI_LEVEL", "0.9")
        monkeypatch.setenv("SVYSTUDY_SURVEY_NEST", "false")
        monkeypatch.setenv("SVYSTUDY_STUDY_SUBGROUPS", "sex, race")

        cfg = ConfigManager()

        assert cfg.get("study.data_path") == "data/other.csv"
        assert cfg.get("imputation.max_iter") == 7
        assert cfg.get("model.ci_level") == 0.9
        assert cfg.get("survey.nest") is False
        assert cfg.get("study.subgroups") == ["sex", "race"]

    def test_unknown_override_warns(self, monkeypatch):
        monkeypatch.setenv("SVYSTUDY_SURVEY_BOGUS", "1")
        with pytest.warns(UserWarning, match="SVYSTUDY_SURVEY_BOGUS"):
            ConfigManager()

    def test_bad_boolean_warns_and_keeps_default(self, monkeypatch):
        monkeypatch.setenv("SVYSTUDY_SURVEY_NEST", "maybe")
        with pytest.warns(UserWarning):
            cfg = ConfigManager()
        assert cfg.get("survey.nest") is True


class TestValidation:
    def test_defaults_are_valid(self):
        is_valid, errors = CONFIG.validate()
        assert is_valid, errors

    def test_invalid_values_reported(self):
        CONFIG.update("model.ci_level", 1.5)
        CONFIG.update("survey.lonely_psu", "ignore")
        CONFIG.update("report.grid_points", 1)

        is_valid, errors = CONFIG.validate()

        assert not is_valid
        assert any("ci_level" in e for e in errors)
        assert any("lonely_psu" in e for e in errors)
        assert any("grid_points" in e for e in errors)
