"""
Multiple Testing Correction for termenrich

Adjusts the raw p-values of one ORA or GSEA call (never pooled across calls):
- none, Bonferroni, Holm, Hochberg (FWER)
- Benjamini-Hochberg, Benjamini-Yekutieli (FDR)
- Storey q-values alongside any method
"""

import logging
from typing import NamedTuple, Sequence

import numpy as np
from statsmodels.stats.multitest import multipletests

from .errors import UnknownAdjustMethod

logger = logging.getLogger("TermEnrich.MultiTest")

# User-facing name -> statsmodels method
ADJUST_METHODS = {
    "none": None,
    "bonferroni": "bonferroni",
    "holm": "holm",
    "hochberg": "simes-hochberg",
    "bh": "fdr_bh",
    "fdr": "fdr_bh",
    "fdr_bh": "fdr_bh",
    "by": "fdr_by",
    "fdr_by": "fdr_by",
}

QVALUE_LAMBDA = 0.05


class Correction(NamedTuple):
    """Adjusted p-values and q-values for one run, aligned with the input order"""

    method: str
    p_adjust: np.ndarray
    qvalues: np.ndarray


def resolve_method(method: str) -> str:
    """
    Canonical key for a correction method name (case-insensitive).

    Raises:
        UnknownAdjustMethod: name is not supported
    """
    key = str(method).strip().lower()
    if key not in ADJUST_METHODS:
        raise UnknownAdjustMethod(
            f"Unknown p-value adjustment method '{method}'. "
            f"Choose one of: none, bonferroni, holm, hochberg, BH, BY"
        )
    return key


def _as_pvalues(pvalues: Sequence[float]) -> np.ndarray:
    p = np.asarray(pvalues, dtype=np.float64)
    if p.ndim != 1:
        raise ValueError("p-values must be one-dimensional")
    if np.any(np.isnan(p)) or np.any((p < 0) | (p > 1)):
        raise ValueError("p-values must lie in [0, 1]")
    return p


def adjust_pvalues(pvalues: Sequence[float], method: str = "BH") -> np.ndarray:
    """
    Adjust raw p-values from a single run.

    Args:
        pvalues: Raw p-values, one per tested term
        method: none, bonferroni, holm, hochberg, BH or BY

    Returns:
        Adjusted p-values, each >= its raw value and <= 1
    """
    key = resolve_method(method)
    p = _as_pvalues(pvalues)
    if p.size == 0 or ADJUST_METHODS[key] is None:
        return p.copy()

    _, adjusted, _, _ = multipletests(p, method=ADJUST_METHODS[key])
    return np.clip(np.maximum(adjusted, p), 0.0, 1.0)


def estimate_pi0(pvalues: Sequence[float], lambda_: float = QVALUE_LAMBDA) -> float:
    """Storey's proportion of true nulls for a single tuning value, capped at 1"""
    p = _as_pvalues(pvalues)
    if p.size == 0:
        return 1.0
    pi0 = np.mean(p >= lambda_) / (1.0 - lambda_)
    return float(min(pi0, 1.0))


def qvalues(pvalues: Sequence[float], lambda_: float = QVALUE_LAMBDA) -> np.ndarray:
    """
    Storey q-values.

    q_i = pi0 * min_{j: p_j >= p_i} (m * p_j / rank_j), capped at 1.
    When pi0 estimates to zero (every p-value below lambda) q-values are
    undefined and returned as NaN.
    """
    p = _as_pvalues(pvalues)
    m = p.size
    if m == 0:
        return p.copy()

    pi0 = estimate_pi0(p, lambda_)
    if pi0 <= 0:
        logger.warning(f"pi0 estimate is 0 (all {m} p-values < {lambda_}); q-values not computed")
        return np.full(m, np.nan)

    order = np.argsort(p, kind="mergesort")[::-1]
    ranks = np.arange(m, 0, -1)
    q = pi0 * np.minimum(np.minimum.accumulate(p[order] * m / ranks), 1.0)

    result = np.empty(m)
    result[order] = q
    return result


def correct(pvalues: Sequence[float], method: str = "BH") -> Correction:
    """Adjusted p-values plus q-values for one run"""
    key = resolve_method(method)
    return Correction(method=key, p_adjust=adjust_pvalues(pvalues, key), qvalues=qvalues(pvalues))
