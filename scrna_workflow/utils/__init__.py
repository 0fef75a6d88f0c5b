"""Utility functions for scrna-workflow."""

from .stats import (
    compute_percentiles,
    mad_bounds,
    median_mad,
    robust_zscore,
    shannon_entropy,
)

__all__ = [
    "compute_percentiles",
    "mad_bounds",
    "median_mad",
    "robust_zscore",
    "shannon_entropy",
]
