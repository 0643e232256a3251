"""
Configuration Management System for the Survey Diet/Outcome Study

This module provides centralized configuration for the analysis pipeline:
column bindings, imputation parameters, survey design settings, model and
report options, and logging configuration.

Usage:
    from config import CONFIG

    # Access config
    print(CONFIG.get('study.exposure'))

    # Update config (runtime)
    CONFIG.update('imputation.max_iter', 20)

    # Get with default
    value = CONFIG.get('some.nested.key', default='default_value')

Environment overrides use the SVYSTUDY_ prefix:
    SVYSTUDY_STUDY_DATA_PATH=data/nhanes.csv -> study.data_path
"""

import copy
import json
import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional


class ConfigManager:
    """
    Centralized configuration management with hierarchical key access.

    Supports:
    - Nested dictionary access with dot notation
    - Environment variable overrides (typed after the default value)
    - Config validation
    - Runtime updates
    """

    def __init__(self, config_dict: Optional[Dict] = None):
        """
        Create a ConfigManager populated with the given configuration or the module defaults and apply environment variable overrides.

        Parameters:
            config_dict (dict | None): Optional initial configuration dictionary to use instead of the built-in defaults.
        """
        self._config = config_dict or self._get_default_config()
        self._env_prefix = "SVYSTUDY_"
        self._load_env_overrides()

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """
        Provide the default nested configuration used by the pipeline.

        Returns:
            Dict[str, Any]: Sections 'study', 'imputation', 'survey', 'model',
            'report', 'logging' and 'validation' with their default settings.
        """
        return {

            # ========== STUDY VARIABLES ==========
            "study": {
                "data_path": "data/survey_data.csv",
                "outcome": "hypertension",
                "exposure": "dietary_intake",
                "exposure_scale": 1.0,  # Exposure enters as I(x / scale) when != 1
                "continuous_covariates": ["age", "BMI", "PIR"],
                "categorical_covariates": ["sex", "race", "education", "smoking"],
                "subgroups": ["sex", "race", "smoking"],
                "sensitivity_sets": {
                    "energy_adjusted": ["energy_intake"],
                    "lifestyle_adjusted": ["alcohol_use", "physical_activity"],
                },
                "discrete_covariates": ["alcohol_use"],  # numeric 0/1 covariates imputed as levels
                "spline_df": 4,
            },

            # ========== IMPUTATION (random forest, chained equations) ==========
            "imputation": {
                "max_iter": 10,  # maxiter: stopping bound
                "n_estimators": 100,  # ntree: forest size
                "random_state": 42,
                "n_jobs": 1,
                "tol": 1e-3,
                "on_nonconvergence": "warn",  # 'warn', 'raise'
            },

            # ========== SURVEY DESIGN ==========
            "survey": {
                "psu": "SDMVPSU",
                "strata": "SDMVSTRA",
                "weight": "WTDRD1",
                "nest": True,
                "lonely_psu": "fail",  # 'fail', 'certainty', 'adjust', 'average'
            },

            # ========== MODEL FITTING ==========
            "model": {
                "max_iter": 100,
                "ci_level": 0.95,
                "min_domain_n": 1,
            },

            # ========== REPORT OUTPUT ==========
            "report": {
                "output_dir": "output",
                "main_results_file": "main_results.csv",
                "figure_file": "predicted_probability.png",
                "subgroup_file": "subgroup_results.csv",
                "forest_file": "subgroup_forest.html",
                "spline_file": "spline_curve.csv",
                "nonlinearity_file": "nonlinearity_tests.csv",
                "sensitivity_file": "sensitivity_results.csv",
                "imputation_file": "imputation_summary.csv",
                "grid_points": 100,
                "reference_levels": {},  # categorical column -> level held fixed
                "figure_width": 7,
                "figure_height": 5,
                "figure_dpi": 150,
                "forest_plot_enabled": True,
            },

            # ========== LOGGING SETTINGS ==========
            "logging": {
                "enabled": True,
                "level": "INFO",  # DEBUG, INFO, WARNING, ERROR, CRITICAL
                "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
                "date_format": "%Y-%m-%d %H:%M:%S",

                # File Logging
                "file_enabled": True,
                "log_dir": "logs",
                "log_file": "study.log",
                "max_log_size": 10485760,  # 10MB in bytes
                "backup_count": 5,

                # Console Logging
                "console_enabled": True,
                "console_level": "INFO",

                # What to Log
                "log_data_operations": True,
                "log_analysis_operations": True,
                "log_performance": True,  # Timing information
            },

            # ========== VALIDATION SETTINGS ==========
            "validation": {
                "strict_mode": False,  # Raise on config validation errors at startup
            },
        }

    @staticmethod
    def _coerce(value: str, current: Any) -> Any:
        """
        Convert an environment string to the type of the value it replaces.

        Booleans accept true/false/1/0/yes/no, lists are comma separated and
        dictionaries are parsed as JSON. Unknown current types keep the string.
        """
        if isinstance(current, bool):
            lowered = value.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(f"Cannot interpret '{value}' as boolean")
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
        if isinstance(current, list):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(current, dict):
            return json.loads(value)
        return value

    def _load_env_overrides(self) -> None:
        """
        Apply configuration overrides from environment variables that start with the SVYSTUDY_ prefix.

        SVYSTUDY_<SECTION>_<KEY>=value maps to '<section>.<key>' where the key
        keeps its underscores (SVYSTUDY_STUDY_DATA_PATH -> study.data_path).
        Variables without at least a section and key are ignored. Overrides
        that fail to apply emit a warning and are skipped.
        """
        for key, value in os.environ.items():
            if key.startswith(self._env_prefix):
                parts = key[len(self._env_prefix):].lower().split('_')

                if len(parts) < 2:
                    continue

                section = parts[0]
                key_name = '_'.join(parts[1:])
                path = f"{section}.{key_name}"

                try:
                    current = self.get(path)
                    if current is None:
                        raise KeyError(f"Config key '{path}' does not exist")
                    self.update(path, self._coerce(value, current))
                except (KeyError, ValueError, TypeError) as e:
                    warnings.warn(f"Failed to set env override {key}={value}: {e}", stacklevel=2)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value using a dot-separated key path.

        Parameters:
            key (str): Dot-separated path to a nested configuration value (e.g., "survey.psu").
            default: Value to return if the specified path does not exist.

        Returns:
            The configuration value at the given path, or `default` if the path is not found.
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def update(self, key: str, value: Any) -> None:
        """
        Set an existing configuration value identified by a dot-separated path.

        Raises:
            KeyError: If any intermediate path segment or the final key does not exist in the configuration.
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                raise KeyError(f"Config path '{'.'.join(keys[:-1])}' does not exist")
            config = config[k]

        final_key = keys[-1]
        if final_key not in config:
            raise KeyError(f"Config key '{key}' does not exist")

        config[final_key] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Return a deep copy of a top-level configuration section."""
        result = self.get(section, {})
        return copy.deepcopy(result) if isinstance(result, dict) else result

    def to_dict(self) -> Dict[str, Any]:
        """Get a deep copy of the entire configuration dictionary."""
        return copy.deepcopy(self._config)

    def to_json(self, filepath: Optional[str] = None, pretty: bool = True) -> str:
        """
        Serialize the current configuration to a JSON string.

        Parameters:
            filepath (str | None): Optional path to write the JSON output to; overwritten when provided.
            pretty (bool): Indent the JSON when True.

        Returns:
            str: The configuration serialized as JSON.
        """
        json_str = json.dumps(self._config, indent=2 if pretty else None)

        if filepath:
            Path(filepath).write_text(json_str)

        return json_str

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate key configuration constraints and collect any violations.

        Checks:
        - `model.ci_level` is strictly between 0 and 1.
        - `imputation.max_iter` and `imputation.n_estimators` are positive.
        - `imputation.on_nonconvergence` is 'warn' or 'raise'.
        - `survey.lonely_psu` is a known policy.
        - `report.grid_points` is at least 2.
        - `logging.level` is a standard level name.

        Returns:
            tuple: (is_valid, errors)
        """
        errors = []

        ci_level = self.get('model.ci_level')
        if ci_level is None or not (0 < ci_level < 1):
            errors.append("model.ci_level must be between 0 and 1")

        for key in ('imputation.max_iter', 'imputation.n_estimators'):
            val = self.get(key)
            if not isinstance(val, int) or val < 1:
                errors.append(f"{key} must be a positive integer")

        if self.get('imputation.on_nonconvergence') not in ('warn', 'raise'):
            errors.append("imputation.on_nonconvergence must be 'warn' or 'raise'")

        valid_lonely = ['fail', 'certainty', 'adjust', 'average']
        if self.get('survey.lonely_psu') not in valid_lonely:
            errors.append(f"survey.lonely_psu must be one of {valid_lonely}")

        grid_points = self.get('report.grid_points')
        if not isinstance(grid_points, int) or grid_points < 2:
            errors.append("report.grid_points must be an integer >= 2")

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.get('logging.level') not in valid_levels:
            errors.append(f"logging.level must be one of {valid_levels}")

        return len(errors) == 0, errors

    def __repr__(self) -> str:
        return f"ConfigManager({len(self._config)} sections)"


# Global config instance
CONFIG = ConfigManager()
