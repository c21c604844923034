"""Utility functions for MNN-Integrator.

Provides statistical helpers shared across modules.
"""

from .stats import (
    MAD_SCALE,
    robust_zscore,
    mad_outlier_bounds,
    is_outlier,
    normalized_entropy,
    adjust_pvalues,
)

__all__ = [
    "MAD_SCALE",
    "robust_zscore",
    "mad_outlier_bounds",
    "is_outlier",
    "normalized_entropy",
    "adjust_pvalues",
]
