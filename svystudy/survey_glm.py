"""
Survey-Weighted Logistic Regression

Quasi-binomial logit fitted to a SurveyDesign. Point estimates come from the
weighted pseudo-likelihood GLM (statsmodels, sampling weights as variance
weights); standard errors come from the design-based sandwich estimator
(Taylor linearisation over PSUs within strata), so clustering, stratification
and weighting all enter the variance.

For domain (subgroup) fits the scores outside the domain are zero and every
PSU of the full design still counts, which is the standard domain estimator.

References:
    Binder, D.A. (1983). On the variances of asymptotically normal estimators
        from complex surveys. International Statistical Review.
    Lumley, T. (2010). Complex Surveys: A Guide to Analysis Using R. Wiley.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
import patsy
import statsmodels.api as sm
from patsy import PatsyError, build_design_matrices
from scipy import stats
from scipy.special import expit
from statsmodels.tools.sm_exceptions import (
    ConvergenceWarning,
    PerfectSeparationError,
    PerfectSeparationWarning,
)

from config import CONFIG
from logger import get_logger
from svystudy.exceptions import DesignConfigError, ModelFitError
from svystudy.survey_design import SurveyDesign

logger = get_logger(__name__)


@dataclass(frozen=True)
class SurveyGLMResult:
    """Fitted survey GLM with design-based covariance."""

    formula: str
    params: pd.Series
    cov: pd.DataFrame
    dispersion: float
    n_obs: int
    df_resid: float
    design_info: Any
    ci_level: float = 0.95

    @property
    def bse(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.cov.to_numpy())), index=self.params.index)

    @property
    def pvalues(self) -> pd.Series:
        """Two-sided t tests on the design degrees of freedom (normal when df <= 0)."""
        t_stat = self.params / self.bse
        if np.isfinite(self.df_resid) and self.df_resid > 0:
            p = 2 * stats.t.sf(np.abs(t_stat), self.df_resid)
        else:
            p = 2 * stats.norm.sf(np.abs(t_stat))
        return pd.Series(p, index=self.params.index)

    def conf_int(self, level: float | None = None) -> pd.DataFrame:
        """Wald confidence limits on the coefficient scale."""
        level = level or self.ci_level
        z = stats.norm.ppf(0.5 + level / 2)
        se = self.bse
        return pd.DataFrame(
            {"lower": self.params - z * se, "upper": self.params + z * se}
        )

    def term_columns(self, term: str) -> list[str]:
        """Coefficient names generated by a formula term (e.g. 'dietary_intake:C(sex)')."""
        slices = self.design_info.term_name_slices
        if term not in slices:
            raise KeyError(f"Term '{term}' not in model; available: {list(slices)}")
        return list(self.params.index[slices[term]])

    def design_matrix(self, newdata: pd.DataFrame) -> np.ndarray:
        """Model matrix for `newdata` using the fitted formula's stateful transforms."""
        (X,) = build_design_matrices([self.design_info], newdata, return_type="matrix")
        return np.asarray(X)

    def predict(self, newdata: pd.DataFrame) -> np.ndarray:
        """Predicted probabilities for `newdata`."""
        return expit(self.design_matrix(newdata) @ self.params.to_numpy())

    def predict_with_ci(self, newdata: pd.DataFrame, level: float | None = None) -> pd.DataFrame:
        """
        Predicted probabilities with a delta-method band from the design covariance.

        The band is built on the linear predictor and mapped through the
        inverse logit, so it stays inside (0, 1).
        """
        level = level or self.ci_level
        X = self.design_matrix(newdata)
        eta = X @ self.params.to_numpy()
        se = np.sqrt(np.einsum("ij,jk,ik->i", X, self.cov.to_numpy(), X))
        z = stats.norm.ppf(0.5 + level / 2)
        return pd.DataFrame(
            {
                "prob": expit(eta),
                "lower": expit(eta - z * se),
                "upper": expit(eta + z * se),
            },
            index=newdata.index,
        )

    def wald_test_contrast(self, L: np.ndarray) -> dict[str, float]:
        """
        Design-based Wald test of L @ beta = 0.

        Reports the chi-square statistic and an F form on the design degrees
        of freedom; `p_value` is the F p-value when df_resid > 0.
        """
        L = np.atleast_2d(np.asarray(L, dtype=float))
        b = L @ self.params.to_numpy()
        V = L @ self.cov.to_numpy() @ L.T
        rank = int(np.linalg.matrix_rank(V, hermitian=True))
        if rank == 0:
            raise ModelFitError("Wald test contrast has zero variance")
        chi2_stat = float(b @ np.linalg.pinv(V, rcond=1e-10, hermitian=True) @ b)
        f_stat = chi2_stat / rank
        p_chi2 = float(stats.chi2.sf(chi2_stat, rank))
        if np.isfinite(self.df_resid) and self.df_resid > 0:
            p_value = float(stats.f.sf(f_stat, rank, self.df_resid))
        else:
            p_value = p_chi2
        return {
            "chi2": chi2_stat,
            "F": f_stat,
            "df": rank,
            "ddf": float(self.df_resid),
            "p_chi2": p_chi2,
            "p_value": p_value,
        }

    def wald_test(self, columns: list[str]) -> dict[str, float]:
        """Joint Wald test that the named coefficients are all zero."""
        idx = [self.params.index.get_loc(c) for c in columns]
        L = np.zeros((len(idx), len(self.params)))
        L[np.arange(len(idx)), idx] = 1.0
        return self.wald_test_contrast(L)


def _stratified_meat(
    scores: pd.DataFrame, design: SurveyDesign
) -> np.ndarray:
    """
    Between-PSU variance of score totals within strata (with replacement).

    Each stratum contributes n_h/(n_h-1) * sum_i (z_hi - zbar_h)(z_hi - zbar_h)'
    over all PSUs of the full design; PSUs without domain rows have zero
    totals. Singleton strata follow the design's lonely-PSU policy.
    """
    clusters = design.cluster_ids
    strata = design.strata_ids
    p = scores.shape[1]

    psu_stratum = pd.Series(strata.to_numpy(), index=clusters.to_numpy())
    psu_stratum = psu_stratum[~psu_stratum.index.duplicated()]

    totals = scores.groupby(clusters.loc[scores.index].to_numpy()).sum()
    totals = totals.reindex(psu_stratum.index, fill_value=0.0)

    grand_mean = totals.to_numpy().mean(axis=0)
    meat = np.zeros((p, p))
    n_lonely = 0
    n_strata = 0

    for _, members in psu_stratum.groupby(psu_stratum):
        n_strata += 1
        z = totals.loc[members.index].to_numpy()
        n_h = z.shape[0]
        if n_h >= 2:
            centred = z - z.mean(axis=0)
            meat += (n_h / (n_h - 1)) * centred.T @ centred
            continue

        n_lonely += 1
        policy = design.lonely_psu
        if policy == "fail":
            raise DesignConfigError("Stratum with a single PSU in variance estimation")
        if policy == "adjust":
            centred = z - grand_mean
            meat += centred.T @ centred

    if n_lonely and design.lonely_psu == "average" and n_strata > n_lonely:
        meat *= n_strata / (n_strata - n_lonely)

    return meat


def fit_svyglm(
    design: SurveyDesign,
    formula: str,
    max_iter: int | None = None,
    ci_level: float | None = None,
) -> SurveyGLMResult:
    """
    Fit a quasi-binomial logit to the design's domain.

    Args:
        design: Survey design handle (full design or a domain view)
        formula: Patsy formula, outcome on the left
        max_iter: IRLS iteration bound (default: CONFIG['model.max_iter'])
        ci_level: Confidence level carried on the result

    Returns:
        SurveyGLMResult

    Raises:
        ModelFitError: Empty or too-small domain, constant outcome, formula
            error, rank-deficient design matrix, perfect separation,
            non-convergence, or a singular information matrix.
    """
    max_iter = max_iter or CONFIG.get("model.max_iter", 100)
    ci_level = ci_level or CONFIG.get("model.ci_level", 0.95)
    min_n = max(1, int(CONFIG.get("model.min_domain_n", 1)))

    n_domain = design.n_domain
    if n_domain < min_n:
        raise ModelFitError(
            f"Domain has {n_domain} rows (minimum {min_n}); cannot fit '{formula}'"
        )

    frame = design.domain_data()
    w = design.weights.loc[frame.index].to_numpy()

    try:
        y_frame, X_frame = patsy.dmatrices(
            formula, frame, NA_action="raise", return_type="dataframe"
        )
    except (PatsyError, ValueError, KeyError) as e:
        raise ModelFitError(f"Could not build model '{formula}': {e}") from e

    if y_frame.shape[1] != 1:
        raise ModelFitError(
            f"Outcome must be a single numeric 0/1 column; got {list(y_frame.columns)}"
        )

    y = y_frame.iloc[:, 0].to_numpy(dtype=float)
    X = X_frame.to_numpy(dtype=float)
    names = list(X_frame.columns)
    model = sm.GLM(y, X, family=sm.families.Binomial(), var_weights=w)

    if np.unique(y).size < 2:
        raise ModelFitError(f"Outcome is constant in this domain (n={n_domain})")

    rank = np.linalg.matrix_rank(X)
    if rank < X.shape[1]:
        raise ModelFitError(
            f"Design matrix is rank deficient ({rank} < {X.shape[1]} columns); "
            f"check collinear or constant covariates in '{formula}'"
        )

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        try:
            result = model.fit(maxiter=max_iter, scale="X2")
        except (PerfectSeparationError, np.linalg.LinAlgError, ValueError) as e:
            raise ModelFitError(f"Model fit failed for '{formula}': {e}") from e

    if any(issubclass(c.category, PerfectSeparationWarning) for c in caught):
        raise ModelFitError(f"Perfect separation detected in '{formula}'")
    if not getattr(result, "converged", True) or any(
        issubclass(c.category, ConvergenceWarning) for c in caught
    ):
        raise ModelFitError(f"IRLS did not converge within {max_iter} iterations for '{formula}'")

    mu = np.asarray(result.mu, dtype=float)
    info = X.T @ (X * (w * mu * (1 - mu))[:, None])
    try:
        info_inv = np.linalg.inv(info)
    except np.linalg.LinAlgError as e:
        raise ModelFitError(f"Singular information matrix for '{formula}'") from e

    scores = pd.DataFrame(X * (w * (y - mu))[:, None], index=frame.index, columns=names)
    meat = _stratified_meat(scores, design)
    cov = info_inv @ meat @ info_inv

    df_resid = design.degrees_of_freedom() - len(names) + 1

    logger.log_analysis("Survey logistic regression", formula.split("~")[0].strip(), len(names), n_domain)
    logger.debug("Dispersion=%.4f, design df=%s", float(result.scale), df_resid)

    return SurveyGLMResult(
        formula=formula,
        params=pd.Series(np.asarray(result.params), index=names),
        cov=pd.DataFrame(cov, index=names, columns=names),
        dispersion=float(result.scale),
        n_obs=n_domain,
        df_resid=float(df_resid),
        design_info=X_frame.design_info,
        ci_level=ci_level,
    )
