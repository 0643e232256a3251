"""
Model Formula Builder

Assembles the patsy formulas for every model in the study from the 'study'
config section. Every covariate is written out explicitly; categorical
covariates enter as C(col).
"""

from __future__ import annotations

from typing import Any

from config import CONFIG


def _study(cfg: Any = None) -> dict[str, Any]:
    return (cfg or CONFIG).get_section("study")


def exposure_term(cfg: Any = None) -> str:
    """Exposure as it appears in formulas: `x` or `I(x / scale)`."""
    study = _study(cfg)
    exposure = study["exposure"]
    scale = float(study.get("exposure_scale", 1.0) or 1.0)
    if scale == 1.0:
        return exposure
    return f"I({exposure} / {scale:g})"


def covariate_terms(
    cfg: Any = None,
    extra: list[str] | None = None,
    exclude: list[str] | tuple[str, ...] = (),
) -> list[str]:
    """
    Formula terms for the adjustment set.

    Args:
        cfg: Config manager (default: CONFIG)
        extra: Additional covariates (sensitivity sets); treated as
            continuous unless declared categorical
        exclude: Covariates left out (the stratifying variable of a
            subgroup fit, or the variable already in an interaction)
    """
    study = _study(cfg)
    categorical = set(study.get("categorical_covariates", []))
    names = list(study.get("continuous_covariates", []))
    names += list(study.get("categorical_covariates", []))
    names += list(extra or [])

    terms = []
    for name in dict.fromkeys(names):
        if name in exclude:
            continue
        terms.append(f"C({name})" if name in categorical else name)
    return terms


def _join(outcome: str, terms: list[str]) -> str:
    return f"{outcome} ~ " + " + ".join(terms)


def main_formula(cfg: Any = None, extra: list[str] | None = None) -> str:
    """outcome ~ exposure + covariates (+ extra)."""
    study = _study(cfg)
    return _join(study["outcome"], [exposure_term(cfg)] + covariate_terms(cfg, extra))


def interaction_formula(by: str, cfg: Any = None) -> str:
    """outcome ~ exposure * C(by) + remaining covariates."""
    study = _study(cfg)
    terms = [f"{exposure_term(cfg)} * C({by})"] + covariate_terms(cfg, exclude=(by,))
    return _join(study["outcome"], terms)


def subgroup_formula(by: str, cfg: Any = None) -> str:
    """Main formula without the stratifying variable (constant within a stratum)."""
    study = _study(cfg)
    return _join(study["outcome"], [exposure_term(cfg)] + covariate_terms(cfg, exclude=(by,)))


def spline_formula(cfg: Any = None, df: int | None = None) -> str:
    """outcome ~ bs(exposure, df=k) + covariates."""
    study = _study(cfg)
    k = int(df or study.get("spline_df", 4))
    terms = [f"bs({study['exposure']}, df={k})"] + covariate_terms(cfg)
    return _join(study["outcome"], terms)


def sensitivity_formulas(cfg: Any = None) -> dict[str, str]:
    """One main-effects formula per configured sensitivity covariate set."""
    sets = _study(cfg).get("sensitivity_sets", {}) or {}
    return {name: main_formula(cfg, extra=list(extra)) for name, extra in sets.items()}


def exposure_coef_name(param_names: list[str], exposure: str) -> str:
    """
    Locate the linear exposure coefficient among fitted parameter names.

    Matches the bare column or its I(...) scaling; interaction and spline
    columns are skipped.

    Raises:
        KeyError: If no such coefficient exists.
    """
    if exposure in param_names:
        return exposure
    for name in param_names:
        if ":" in name or name.startswith("bs("):
            continue
        if name.startswith("I(") and exposure in name:
            return name
    raise KeyError(f"Exposure '{exposure}' not among model coefficients")
