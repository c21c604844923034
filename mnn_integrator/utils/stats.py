"""Statistical utilities for MNN-Integrator.

Provides robust statistics for outlier detection, multiple-testing
correction and a normalized entropy score used to quantify batch mixing.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.stats import entropy

ArrayLike = Union[Iterable[float], np.ndarray]

# Scales the MAD to be comparable to the standard deviation of a normal
MAD_SCALE = 1.4826


def _to_clean_array(values: ArrayLike) -> np.ndarray:
    """Convert input to clean numpy array, removing non-finite values.

    Parameters
    ----------
    values : ArrayLike
        Input values (list, iterable, or array).

    Returns
    -------
    np.ndarray
        Clean array with only finite values.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr
    return arr[np.isfinite(arr)]


def robust_zscore(
    values: ArrayLike,
    *,
    median: float | None = None,
    mad: float | None = None,
) -> np.ndarray:
    """Compute a robust z-score using the median absolute deviation (MAD).

    Parameters
    ----------
    values : ArrayLike
        Input values.
    median : float, optional
        Pre-computed median. If None, computed from data.
    mad : float, optional
        Pre-computed (unscaled) MAD. If None, computed from data.

    Returns
    -------
    np.ndarray
        Robust z-scores. Non-finite inputs become NaN in output.
    """
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return arr

    mask = np.isfinite(arr)
    clean = arr[mask]
    if clean.size == 0:
        return np.full_like(arr, np.nan, dtype=float)

    if median is None:
        median = np.median(clean)
    if mad is None:
        mad = np.median(np.abs(clean - median))

    scale = mad * MAD_SCALE if mad else np.nan

    if not np.isfinite(scale) or scale == 0:
        z = np.zeros_like(clean)
    else:
        z = (clean - median) / scale

    result = np.full_like(arr, np.nan, dtype=float)
    result[mask] = z
    return result


def mad_outlier_bounds(values: ArrayLike, nmads: float = 3.0) -> Tuple[float, float]:
    """Return the (lower, upper) outlier thresholds median -/+ nmads * MAD.

    Parameters
    ----------
    values : ArrayLike
        Input values. Non-finite entries are ignored.
    nmads : float
        Number of scaled MADs away from the median.

    Returns
    -------
    Tuple[float, float]
        Lower and upper bounds. NaN if no finite values are present.
    """
    clean = _to_clean_array(values)
    if clean.size == 0:
        return float("nan"), float("nan")
    median = float(np.median(clean))
    mad = float(np.median(np.abs(clean - median))) * MAD_SCALE
    return median - nmads * mad, median + nmads * mad


def is_outlier(
    values: ArrayLike,
    nmads: float = 3.0,
    direction: str = "both",
    log: bool = False,
    groups: Optional[Sequence] = None,
) -> np.ndarray:
    """Flag values lying more than ``nmads`` scaled MADs from the median.

    Parameters
    ----------
    values : ArrayLike
        Metric values, one per cell.
    nmads : float
        Number of scaled MADs defining the outlier boundary.
    direction : str
        'lower', 'higher' or 'both'.
    log : bool
        Compute thresholds on log10 values. Zeros map to -inf and are
        therefore always lower outliers.
    groups : Sequence, optional
        Group label per value; thresholds are computed within each group.

    Returns
    -------
    np.ndarray
        Boolean mask, True for outliers. NaN inputs are never outliers.
    """
    if direction not in ("lower", "higher", "both"):
        raise ValueError(f"Unknown outlier direction: {direction}")

    arr = np.asarray(list(values), dtype=float)
    if log:
        with np.errstate(divide="ignore", invalid="ignore"):
            arr = np.log10(arr)

    if groups is None:
        group_labels = np.zeros(arr.size, dtype=int)
    else:
        group_labels = pd.Series(list(groups)).astype(str).to_numpy()
        if group_labels.size != arr.size:
            raise ValueError(
                f"groups has {group_labels.size} entries, expected {arr.size}"
            )

    flags = np.zeros(arr.size, dtype=bool)
    for label in pd.unique(group_labels):
        mask = group_labels == label
        subset = arr[mask]
        lower, upper = mad_outlier_bounds(subset, nmads)
        group_flags = np.zeros(subset.size, dtype=bool)
        with np.errstate(invalid="ignore"):
            if direction in ("lower", "both"):
                if np.isnan(lower):
                    group_flags |= np.isneginf(subset)
                else:
                    group_flags |= subset < lower
            if direction in ("higher", "both") and not np.isnan(upper):
                group_flags |= subset > upper
        flags[mask] = group_flags

    return flags


def normalized_entropy(counts: ArrayLike, n_categories: Optional[int] = None) -> float:
    """Shannon entropy of a count vector scaled to [0, 1].

    A value of 1 means the counts are spread evenly over all categories,
    0 means a single category holds everything.

    Parameters
    ----------
    counts : ArrayLike
        Non-negative counts per category.
    n_categories : int, optional
        Number of possible categories. Defaults to ``len(counts)``.

    Returns
    -------
    float
        Normalized entropy. NaN if the counts sum to zero.
    """
    arr = np.asarray(list(counts), dtype=float)
    n_categories = n_categories if n_categories is not None else arr.size
    total = arr.sum()
    if total <= 0:
        return float("nan")
    if n_categories <= 1:
        return 0.0
    return float(entropy(arr / total) / np.log(n_categories))


def adjust_pvalues(p_values: ArrayLike, method: str = "fdr_bh") -> np.ndarray:
    """Adjust p-values for multiple testing.

    Parameters
    ----------
    p_values : ArrayLike
        Raw p-values.
    method : str
        'fdr_bh' (Benjamini-Hochberg), 'bonferroni' or 'none'.

    Returns
    -------
    np.ndarray
        Adjusted p-values in the input order, clipped to [0, 1].
    """
    arr = np.asarray(list(p_values), dtype=float)
    n_tests = arr.size
    if n_tests == 0 or method == "none":
        return arr.copy()

    if method == "bonferroni":
        return np.clip(arr * n_tests, 0.0, 1.0)

    if method != "fdr_bh":
        raise ValueError(f"Unknown correction method: {method}")

    order = np.argsort(arr)
    ranks = np.arange(1, n_tests + 1)
    adjusted_sorted = arr[order] * n_tests / ranks
    # Enforce monotonicity from the largest p-value down
    adjusted_sorted = np.minimum.accumulate(adjusted_sorted[::-1])[::-1]

    adjusted = np.empty(n_tests)
    adjusted[order] = np.clip(adjusted_sorted, 0.0, 1.0)
    return adjusted
