"""
Observation Table Loading

Reads the survey extract (CSV or Excel), sanitizes column names and checks
that every column the study formulas and the survey design reference is
present. The binary outcome is normalised to 0/1.

Driven by central configuration from config.py
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

import pandas as pd

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import DataFormatError

logger = get_logger(__name__)


def required_study_columns(cfg: Any = None) -> list[str]:
    """
    List every column the configured analysis touches.

    Outcome, exposure, continuous and categorical covariates, subgroup
    variables, every sensitivity covariate and the three design columns,
    deduplicated in that order.
    """
    cfg = cfg or CONFIG
    cols = [cfg.get("study.outcome"), cfg.get("study.exposure")]
    cols += list(cfg.get("study.continuous_covariates", []))
    cols += list(cfg.get("study.categorical_covariates", []))
    cols += list(cfg.get("study.subgroups", []))
    for extra in (cfg.get("study.sensitivity_sets", {}) or {}).values():
        cols += list(extra)
    cols += [cfg.get("survey.psu"), cfg.get("survey.strata"), cfg.get("survey.weight")]
    return list(dict.fromkeys(c for c in cols if c))


def read_table(file_path: str | Path) -> pd.DataFrame:
    """
    Read a delimited or Excel table with encoding and separator detection.

    CSV/TXT/TSV files are tried with several encodings; the separator is
    sniffed by the python engine, with explicit common separators retried
    when sniffing yields a single column.

    Raises:
        DataFormatError: If the file does not exist, has an unsupported
            suffix, or cannot be parsed.
    """
    path = Path(file_path)
    if not path.exists():
        raise DataFormatError(f"File not found: {file_path}")

    suffix = path.suffix.lower()
    df = None
    error_log = []

    if suffix in (".csv", ".txt", ".tsv"):
        encodings = ["utf-8", "utf-8-sig", "cp1252", "latin1"]

        for encoding in encodings:
            try:
                df = pd.read_csv(path, encoding=encoding, sep=None, engine="python")
            except (UnicodeDecodeError, csv.Error, pd.errors.ParserError, ValueError) as e:
                error_log.append(f"CSV fail (enc={encoding}): {e}")
                continue

            if df.shape[1] == 1:
                for trial_sep in [",", ";", "\t", "|"]:
                    try:
                        df_trial = pd.read_csv(path, sep=trial_sep, encoding=encoding, nrows=5)
                    except (pd.errors.ParserError, ValueError):
                        continue
                    if df_trial.shape[1] > 1:
                        logger.info(f"Auto-detected separator: '{trial_sep}'")
                        df = pd.read_csv(path, sep=trial_sep, encoding=encoding)
                        break

            logger.info(f"Read delimited file with encoding={encoding}")
            break

        if df is None:
            logger.error("Failed to read delimited file. Errors: %s", error_log)
            raise DataFormatError(f"Could not read file {path}. Tried encodings: {encodings}")

    elif suffix in (".xlsx", ".xls", ".xlsm"):
        try:
            df = pd.read_excel(path)
        except Exception as e:
            raise DataFormatError(f"Failed to read Excel file {path}: {e}") from e
        logger.info("Read Excel file")

    else:
        raise DataFormatError(f"Unsupported file format: {suffix}")

    df.columns = df.columns.astype(str).str.strip()
    return df.reset_index(drop=True)


def validate_columns(df: pd.DataFrame, required_columns: list[str]) -> None:
    """
    Raise DataFormatError naming every required column absent from `df`.
    """
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise DataFormatError(f"Required columns missing from data: {missing}")


def normalise_binary_outcome(df: pd.DataFrame, outcome: str) -> pd.DataFrame:
    """
    Return a copy of `df` whose outcome column is coded 0/1 (missing kept).

    A two-level outcome that is not already 0/1 is mapped in sorted order
    (first level -> 0).

    Raises:
        DataFormatError: If the non-missing outcome has more than two levels.
    """
    observed = df[outcome].dropna().unique()
    if len(observed) > 2:
        raise DataFormatError(
            f"Outcome '{outcome}' must be binary, found {len(observed)} levels"
        )

    out = df.copy()
    if set(observed).issubset({0, 1}):
        out[outcome] = out[outcome].astype(float)
        return out

    levels = sorted(observed, key=str)
    mapping = {lvl: float(i) for i, lvl in enumerate(levels)}
    logger.info(f"Recoding outcome '{outcome}': {mapping}")
    out[outcome] = out[outcome].map(mapping)
    return out


def load_study_data(
    file_path: str | Path,
    required_columns: list[str] | None = None,
    outcome: str | None = None,
) -> pd.DataFrame:
    """
    Load the observation table and check it against the study configuration.

    Parameters:
        file_path: Path to the survey extract.
        required_columns: Columns that must be present; defaults to
            `required_study_columns()`.
        outcome: Outcome column to normalise to 0/1; defaults to
            CONFIG['study.outcome'].

    Returns:
        pd.DataFrame: One row per respondent.

    Raises:
        DataFormatError: Unreadable file, absent columns or non-binary outcome.
    """
    logger.log_operation("load_data", "started", path=str(file_path))

    with logger.track_time("load_data"):
        df = read_table(file_path)

        if required_columns is None:
            required_columns = required_study_columns()
        validate_columns(df, required_columns)

        outcome = outcome or CONFIG.get("study.outcome")
        if outcome in df.columns:
            df = normalise_binary_outcome(df, outcome)

    logger.log_data_summary(
        "observation_table", df.shape, {c: str(t) for c, t in df.dtypes.items()}
    )
    logger.log_operation("load_data", "completed", rows=len(df), columns=df.shape[1])
    return df
