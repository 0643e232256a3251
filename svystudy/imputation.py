"""
Random-Forest Imputation Module

Single imputation by chained equations with a random-forest estimator for
every incomplete column (the missForest recipe), built on scikit-learn's
IterativeImputer.

Features:
    - Bounded iterations (max_iter) and forest size (n_estimators)
    - Categorical and binary columns imputed on integer codes and snapped
      back to an observed level
    - Imputed values kept inside each column's observed range
    - Deterministic for a fixed random_state
    - Convergence diagnostics, with a warn-or-raise policy

References:
    Stekhoven, D.J. & Buehlmann, P. (2012). MissForest - non-parametric
        missing value imputation for mixed-type data. Bioinformatics.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.exceptions import ConvergenceWarning
from sklearn.experimental import enable_iterative_imputer  # noqa: F401
from sklearn.impute import IterativeImputer

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import ImputationError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ImputationResult:
    """Completed table plus convergence diagnostics."""

    data: pd.DataFrame
    columns_imputed: list[str]
    n_iter: int
    max_iter: int
    converged: bool
    missing_counts: dict[str, int] = field(default_factory=dict)
    observed_ranges: dict[str, tuple[Any, Any]] = field(default_factory=dict)
    original_missing_mask: pd.DataFrame | None = None


class RandomForestImputer:
    """
    Random-forest chained-equation imputer.

    Parameters:
        max_iter: Maximum number of imputation rounds (stopping bound)
        n_estimators: Trees per forest
        random_state: Seed shared by the imputer and every forest
        tol: Relative change below which the rounds stop early
        n_jobs: Parallel jobs for forest fitting
        on_nonconvergence: 'warn' returns the best-effort table,
            'raise' raises ImputationError

    Example:
        >>> imputer = RandomForestImputer(max_iter=10, n_estimators=100)
        >>> result = imputer.fit_transform(df, columns=["BMI", "age", "sex"],
        ...                                categorical=["sex"])
        >>> complete = result.data
    """

    def __init__(
        self,
        max_iter: int = 10,
        n_estimators: int = 100,
        random_state: int = 42,
        tol: float = 1e-3,
        n_jobs: int | None = 1,
        on_nonconvergence: Literal["warn", "raise"] = "warn",
    ):
        self.max_iter = max_iter
        self.n_estimators = n_estimators
        self.random_state = random_state
        self.tol = tol
        self.n_jobs = n_jobs
        self.on_nonconvergence = on_nonconvergence

    @classmethod
    def from_config(cls) -> RandomForestImputer:
        """Build an imputer from the 'imputation' config section."""
        section = CONFIG.get_section("imputation")
        return cls(
            max_iter=section.get("max_iter", 10),
            n_estimators=section.get("n_estimators", 100),
            random_state=section.get("random_state", 42),
            tol=section.get("tol", 1e-3),
            n_jobs=section.get("n_jobs", 1),
            on_nonconvergence=section.get("on_nonconvergence", "warn"),
        )

    def _encode(
        self, df: pd.DataFrame, categorical: set[str]
    ) -> tuple[pd.DataFrame, dict[str, pd.Index]]:
        """
        Turn the working columns into a float matrix.

        Categorical columns (declared, or non-numeric) become integer codes
        over their sorted observed levels; missing stays NaN.
        """
        encoded = pd.DataFrame(index=df.index)
        levels: dict[str, pd.Index] = {}

        for col in df.columns:
            series = df[col]
            if col in categorical or not pd.api.types.is_numeric_dtype(series):
                cat = pd.Categorical(series)
                levels[col] = cat.categories
                codes = cat.codes.astype(float)
                codes[codes < 0] = np.nan
                encoded[col] = codes
            else:
                encoded[col] = series.astype(float)

        return encoded, levels

    def fit_transform(
        self,
        df: pd.DataFrame,
        columns: list[str] | None = None,
        categorical: list[str] | None = None,
    ) -> ImputationResult:
        """
        Fill missing cells of `columns` and return a new table.

        Args:
            df: Observation table (left untouched)
            columns: Columns used as predictors and filled when incomplete
                (default: every numeric column)
            categorical: Columns imputed as discrete levels

        Returns:
            ImputationResult whose `data` has the same shape and index as `df`

        Raises:
            ImputationError: On a column with no observed values, on a
                failure inside the estimator, or on non-convergence when the
                policy is 'raise'
        """
        if columns is None:
            columns = df.select_dtypes(include=[np.number]).columns.tolist()
        else:
            absent = [c for c in columns if c not in df.columns]
            if absent:
                raise ImputationError(f"Columns not found for imputation: {absent}")
        categorical_set = set(categorical or []) & set(columns)

        missing_mask = df[columns].isna()
        missing_counts = {c: int(n) for c, n in missing_mask.sum().items() if n > 0}
        cols_with_missing = list(missing_counts)

        if not cols_with_missing:
            logger.info("No missing data found in imputation columns")
            return ImputationResult(
                data=df.copy(),
                columns_imputed=[],
                n_iter=0,
                max_iter=self.max_iter,
                converged=True,
                original_missing_mask=missing_mask,
            )

        empty = [c for c in cols_with_missing if missing_mask[c].all()]
        if empty:
            raise ImputationError(f"Columns with no observed values: {empty}")

        logger.info(
            "Imputing %d columns with random forest (ntree=%d, maxiter=%d): %s",
            len(cols_with_missing),
            self.n_estimators,
            self.max_iter,
            missing_counts,
        )

        encoded, levels = self._encode(df[columns], categorical_set)
        observed_min = encoded.min(skipna=True)
        observed_max = encoded.max(skipna=True)

        imputer = IterativeImputer(
            estimator=RandomForestRegressor(
                n_estimators=self.n_estimators,
                random_state=self.random_state,
                n_jobs=self.n_jobs,
            ),
            max_iter=self.max_iter,
            tol=self.tol,
            random_state=self.random_state,
            initial_strategy="mean",
            skip_complete=True,
            min_value=observed_min.to_numpy(),
            max_value=observed_max.to_numpy(),
        )

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ConvergenceWarning)
            try:
                values = imputer.fit_transform(encoded)
            except ValueError as e:
                raise ImputationError(f"Imputation failed: {e}") from e

        converged = not any(issubclass(w.category, ConvergenceWarning) for w in caught)
        n_iter = int(getattr(imputer, "n_iter_", self.max_iter))

        if not converged:
            msg = (
                f"Imputation did not converge within {self.max_iter} iterations "
                f"(tol={self.tol})"
            )
            if self.on_nonconvergence == "raise":
                raise ImputationError(msg)
            logger.warning(msg + "; keeping best-effort result")

        filled = pd.DataFrame(values, columns=encoded.columns, index=encoded.index)
        out = df.copy()
        observed_ranges: dict[str, tuple[Any, Any]] = {}

        for col in cols_with_missing:
            mask = missing_mask[col]
            if col in levels:
                cats = levels[col]
                codes = np.clip(np.rint(filled.loc[mask, col]), 0, len(cats) - 1).astype(int)
                out.loc[mask, col] = cats[codes].to_numpy()
                observed_ranges[col] = (cats[0], cats[-1])
            else:
                out.loc[mask, col] = filled.loc[mask, col].to_numpy()
                observed_ranges[col] = (float(observed_min[col]), float(observed_max[col]))

        logger.info(
            "Imputation complete: %d iterations, converged=%s", n_iter, converged
        )

        return ImputationResult(
            data=out,
            columns_imputed=cols_with_missing,
            n_iter=n_iter,
            max_iter=self.max_iter,
            converged=converged,
            missing_counts=missing_counts,
            observed_ranges=observed_ranges,
            original_missing_mask=missing_mask,
        )


def get_imputation_summary(result: ImputationResult) -> pd.DataFrame:
    """
    Summarise imputed cells per column.

    Returns DataFrame with Variable, N Imputed, Observed Min, Observed Max and
    the mean (numeric) or modal level (categorical) of the imputed values.
    """
    if not result.columns_imputed or result.original_missing_mask is None:
        return pd.DataFrame()

    rows = []
    for col in result.columns_imputed:
        mask = result.original_missing_mask[col]
        imputed = result.data.loc[mask, col]
        lo, hi = result.observed_ranges.get(col, (np.nan, np.nan))
        if pd.api.types.is_numeric_dtype(imputed) and not isinstance(lo, str):
            centre = float(imputed.astype(float).mean())
        else:
            centre = imputed.mode().iloc[0] if not imputed.empty else np.nan
        rows.append(
            {
                "Variable": col,
                "N Imputed": int(mask.sum()),
                "Observed Min": lo,
                "Observed Max": hi,
                "Imputed Centre": centre,
            }
        )

    return pd.DataFrame(rows)
