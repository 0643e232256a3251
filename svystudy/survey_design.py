"""
Survey Design Handle

Binds the imputed table to its complex-sampling metadata (PSU, stratum,
sampling weight) for every downstream model fit. Subgroup analyses work on
domains: `subset` narrows a boolean mask over the same table, so variance
estimation keeps the full design's PSU structure.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Literal, Union

import numpy as np
import pandas as pd

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import DesignConfigError

logger = get_logger(__name__)

LonelyPSU = Literal["fail", "certainty", "adjust", "average"]
Predicate = Union[pd.Series, Callable[[pd.DataFrame], pd.Series]]


@dataclass(frozen=True)
class SurveyDesign:
    """
    Read-only design handle.

    Attributes:
        data: Imputed observation table, shared (never copied) by every view
        psu: Primary sampling unit column
        strata: Stratum column, or None for an unstratified design
        weight: Sampling weight column
        nest: PSU ids are only unique within stratum
        lonely_psu: Variance treatment for strata with a single PSU
        domain: Boolean mask selecting the rows of this view (None = all)
    """

    data: pd.DataFrame
    psu: str
    strata: str | None
    weight: str
    nest: bool = True
    lonely_psu: LonelyPSU = "fail"
    domain: pd.Series | None = None

    @property
    def mask(self) -> pd.Series:
        if self.domain is None:
            return pd.Series(True, index=self.data.index)
        return self.domain

    @property
    def n_domain(self) -> int:
        return int(self.mask.sum())

    @property
    def weights(self) -> pd.Series:
        return self.data[self.weight].astype(float)

    @property
    def strata_ids(self) -> pd.Series:
        if self.strata is None:
            return pd.Series("__all__", index=self.data.index)
        return self.data[self.strata].astype(str)

    @property
    def cluster_ids(self) -> pd.Series:
        psu = self.data[self.psu].astype(str)
        if self.nest:
            return self.strata_ids + ":" + psu
        return psu

    def domain_data(self) -> pd.DataFrame:
        """Rows of the table inside this view's domain."""
        return self.data.loc[self.mask]

    def subset(self, predicate: Predicate) -> SurveyDesign:
        """
        Derive a domain view restricted by `predicate`.

        Args:
            predicate: Boolean Series aligned to `data`, or a callable taking
                the table and returning one. Missing values count as False.

        Returns:
            A new SurveyDesign over the same table with the combined mask.
        """
        selected = predicate(self.data) if callable(predicate) else predicate
        if not isinstance(selected, pd.Series):
            selected = pd.Series(np.asarray(selected, dtype=bool), index=self.data.index)
        selected = selected.reindex(self.data.index).fillna(False).astype(bool)
        new_mask = self.mask & selected
        logger.debug("Domain subset: %d -> %d rows", self.n_domain, int(new_mask.sum()))
        return replace(self, domain=new_mask)

    def psu_counts(self) -> pd.Series:
        """Number of distinct PSUs per stratum over the full design."""
        return self.cluster_ids.groupby(self.strata_ids).nunique()

    def degrees_of_freedom(self) -> int:
        """
        Design degrees of freedom: PSUs minus strata among the PSUs that
        contribute rows to this domain.
        """
        mask = self.mask
        clusters = self.cluster_ids[mask]
        strata = self.strata_ids[mask]
        return int(clusters.nunique() - strata.nunique())

    def summary(self) -> dict[str, Any]:
        """Design size statistics for logging and reports."""
        mask = self.mask
        return {
            "n_rows": int(len(self.data)),
            "n_domain": int(mask.sum()),
            "n_strata": int(self.strata_ids.nunique()),
            "n_psu": int(self.cluster_ids.nunique()),
            "design_df": self.degrees_of_freedom(),
            "sum_weights": float(self.weights[mask].sum()),
        }


def build_survey_design(
    df: pd.DataFrame,
    psu: str | None = None,
    strata: str | None = None,
    weight: str | None = None,
    nest: bool | None = None,
    lonely_psu: LonelyPSU | None = None,
) -> SurveyDesign:
    """
    Attach sampling metadata to the imputed table.

    Column names and options default to the 'survey' config section.

    Raises:
        DesignConfigError: A design column is absent or has missing values,
            a weight is not a positive finite number, PSU ids repeat across
            strata without `nest`, or a stratum holds a single PSU while the
            lonely-PSU policy is 'fail'.
    """
    psu = psu or CONFIG.get("survey.psu")
    strata = strata if strata is not None else CONFIG.get("survey.strata")
    weight = weight or CONFIG.get("survey.weight")
    nest = CONFIG.get("survey.nest", True) if nest is None else nest
    lonely_psu = lonely_psu or CONFIG.get("survey.lonely_psu", "fail")

    if lonely_psu not in ("fail", "certainty", "adjust", "average"):
        raise DesignConfigError(f"Unknown lonely PSU policy: {lonely_psu}")

    design_cols = [c for c in (psu, strata, weight) if c]
    absent = [c for c in design_cols if c not in df.columns]
    if absent:
        raise DesignConfigError(f"Design columns not found: {absent}")

    incomplete = [c for c in design_cols if df[c].isna().any()]
    if incomplete:
        raise DesignConfigError(f"Design columns have missing values: {incomplete}")

    w = pd.to_numeric(df[weight], errors="coerce")
    if w.isna().any() or not np.isfinite(w).all():
        raise DesignConfigError(f"Weight column '{weight}' must be numeric and finite")
    if (w <= 0).any():
        raise DesignConfigError(
            f"Weight column '{weight}' has {int((w <= 0).sum())} non-positive values"
        )

    design = SurveyDesign(
        data=df,
        psu=psu,
        strata=strata or None,
        weight=weight,
        nest=nest,
        lonely_psu=lonely_psu,
    )

    if design.strata is not None and not nest:
        spans = df.groupby(psu)[design.strata].nunique()
        if (spans > 1).any():
            raise DesignConfigError(
                "PSU ids repeat across strata; build the design with nest=True"
            )

    counts = design.psu_counts()
    lonely = counts[counts < 2]
    if not lonely.empty:
        if lonely_psu == "fail":
            raise DesignConfigError(
                f"Strata with a single PSU: {list(lonely.index)}; "
                "set survey.lonely_psu to handle them"
            )
        logger.warning(
            "%d strata have a single PSU; variance uses the '%s' policy",
            len(lonely),
            lonely_psu,
        )

    logger.log_operation("survey_design", "completed", **design.summary())
    return design
