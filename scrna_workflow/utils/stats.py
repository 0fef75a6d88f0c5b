"""Statistical helpers for scrna-workflow.

Robust summaries used by QC diagnostics and the integration check.
"""

from __future__ import annotations

from typing import Iterable, Sequence, Tuple, Union

import numpy as np

ArrayLike = Union[Iterable[float], np.ndarray]

# Scales the MAD to the standard deviation of a normal distribution
MAD_SCALE = 1.4826


def _finite(values: ArrayLike) -> np.ndarray:
    """Return input as a float array with non-finite values dropped."""
    arr = np.asarray(values, dtype=float).ravel()
    return arr[np.isfinite(arr)]


def compute_percentiles(values: ArrayLike, percentiles: Sequence[float]) -> np.ndarray:
    """Compute percentiles ignoring NaN and infinite values.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    percentiles : Sequence[float]
        Percentiles to compute (0-100).

    Returns
    -------
    np.ndarray
        Percentile values, all NaN when no finite input remains.
    """
    arr = _finite(values)
    if arr.size == 0:
        return np.full(len(percentiles), np.nan)
    return np.percentile(arr, percentiles)


def median_mad(values: ArrayLike) -> Tuple[float, float]:
    """Median and scaled median absolute deviation of finite values."""
    arr = _finite(values)
    if arr.size == 0:
        return float("nan"), float("nan")
    median = float(np.median(arr))
    mad = float(np.median(np.abs(arr - median))) * MAD_SCALE
    return median, mad


def robust_zscore(values: ArrayLike) -> np.ndarray:
    """Compute MAD-based z-scores.

    Non-finite inputs become NaN. A zero MAD gives zero scores.

    Parameters
    ----------
    values : ArrayLike
        Input values.

    Returns
    -------
    np.ndarray
        Robust z-scores aligned with the input.
    """
    arr = np.asarray(values, dtype=float).ravel()
    out = np.full_like(arr, np.nan, dtype=float)
    mask = np.isfinite(arr)
    if not mask.any():
        return out

    median, mad = median_mad(arr[mask])
    if mad == 0 or not np.isfinite(mad):
        out[mask] = 0.0
    else:
        out[mask] = (arr[mask] - median) / mad
    return out


def mad_bounds(
    values: ArrayLike, n_mads: float = 3.0, log10: bool = False
) -> Tuple[float, float]:
    """Compute median +/- n_mads * MAD bounds.

    Parameters
    ----------
    values : ArrayLike
        Input values.
    n_mads : float
        Number of scaled MADs from the median.
    log10 : bool
        Compute bounds on log10 values (positive entries only) and
        return them back-transformed.

    Returns
    -------
    Tuple[float, float]
        (lower, upper) bounds, NaN when no finite input remains.
    """
    arr = _finite(values)
    if log10:
        arr = np.log10(arr[arr > 0])

    median, mad = median_mad(arr)
    lower, upper = median - n_mads * mad, median + n_mads * mad
    if log10:
        return float(10 ** lower), float(10 ** upper)
    return float(lower), float(upper)


def shannon_entropy(counts: ArrayLike) -> float:
    """Shannon entropy (natural log) of a count vector."""
    arr = _finite(counts)
    total = arr.sum()
    if total <= 0:
        return 0.0
    p = arr[arr > 0] / total
    return float(-(p * np.log(p)).sum())
