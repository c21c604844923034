"""Within-dataset normalization (Stage C).

Computes size factors per cell, optionally rescales them so all batches
share the coverage of the shallowest batch, and stores log-transformed
normalized expression in ``X`` with raw counts kept in
``layers["counts"]``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
import logging

import numpy as np
from scipy import sparse

from .config import NormalizationConfig


SIZE_FACTOR_KEY = "size_factor"
COUNTS_LAYER = "counts"


@dataclass
class NormalizationResult:
    """Result from normalizing a single dataset.

    Attributes
    ----------
    name : str
        Dataset name
    adata : AnnData
        Normalized data
    coverage : float
        Mean library size before rescaling
    batch_scale : float
        Factor applied to all size factors of the dataset
    """

    name: str
    adata: Any = None  # AnnData
    coverage: float = 0.0
    batch_scale: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        sf = np.asarray(self.adata.obs[SIZE_FACTOR_KEY]) if self.adata is not None else []
        return {
            "dataset": self.name,
            "coverage": round(self.coverage, 2),
            "batch_scale": round(self.batch_scale, 4),
            "size_factor_min": float(np.min(sf)) if len(sf) else float("nan"),
            "size_factor_median": float(np.median(sf)) if len(sf) else float("nan"),
            "size_factor_max": float(np.max(sf)) if len(sf) else float("nan"),
        }


def library_sizes(adata: Any) -> np.ndarray:
    """Return the total count per cell from the counts layer (or ``X``)."""
    counts = adata.layers[COUNTS_LAYER] if COUNTS_LAYER in adata.layers else adata.X
    return np.asarray(counts.sum(axis=1)).ravel().astype(float)


class Normalizer:
    """Library-size normalizer for count data.

    Parameters
    ----------
    config : NormalizationConfig
        Normalization configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.preprocessing import Normalizer
    >>> results = Normalizer().normalize_batches({"grun": grun, "muraro": muraro})
    >>> results["grun"].adata.X  # log2 normalized expression
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.method not in ("library_size", "total"):
            raise ValueError(f"Unknown normalization method: {self.config.method}")
        if self.config.pseudocount <= 0:
            raise ValueError("pseudocount must be positive")
        if self.config.log_base <= 1:
            raise ValueError("log_base must be greater than 1")

    def compute_size_factors(self, adata: Any, target: Optional[float] = None) -> np.ndarray:
        """Compute per-cell size factors.

        ``library_size`` scales library sizes to a mean of one; ``total``
        divides them by ``target``, else ``target_sum``, else the median
        library size, which matches the scaling of ``scanpy.pp.normalize_total``.

        Raises
        ------
        ValueError
            If any cell has a non-positive library size
        """
        lib = library_sizes(adata)
        if lib.size == 0:
            raise ValueError("Cannot compute size factors for an empty dataset")
        if np.any(lib <= 0):
            raise ValueError(
                f"{int(np.sum(lib <= 0))} cells have zero library size; run QC first"
            )

        if self.config.method == "library_size":
            return lib / lib.mean()

        target = target or self.config.target_sum or float(np.median(lib))
        return lib / target

    def log_normalize(self, adata: Any, size_factors: np.ndarray) -> Any:
        """Store log-normalized expression in ``X``.

        ``X = log(counts / size_factor + pseudocount)`` in the configured
        base. With a pseudocount of one the matrix stays sparse.

        Parameters
        ----------
        adata : AnnData
            Dataset with raw counts in ``X`` or ``layers["counts"]``
        size_factors : np.ndarray
            Strictly positive size factor per cell

        Returns
        -------
        AnnData
            The same object, modified in place
        """
        size_factors = np.asarray(size_factors, dtype=float)
        if size_factors.shape != (adata.n_obs,):
            raise ValueError(
                f"Expected {adata.n_obs} size factors, got {size_factors.shape}"
            )
        if np.any(size_factors <= 0) or not np.all(np.isfinite(size_factors)):
            raise ValueError("Size factors must be positive and finite")

        if COUNTS_LAYER not in adata.layers:
            adata.layers[COUNTS_LAYER] = adata.X.copy()
        counts = sparse.csr_matrix(adata.layers[COUNTS_LAYER], dtype=np.float64)

        scaled = sparse.diags(1.0 / size_factors) @ counts
        log_base = np.log(self.config.log_base)
        pseudocount = self.config.pseudocount

        if pseudocount == 1.0:
            scaled = sparse.csr_matrix(scaled)
            scaled.data = np.log1p(scaled.data) / log_base
            adata.X = scaled.astype(np.float32)
        else:
            dense = scaled.toarray()
            adata.X = (np.log(dense + pseudocount) / log_base).astype(np.float32)

        adata.obs[SIZE_FACTOR_KEY] = size_factors
        return adata

    def batch_scales(self, coverages: Mapping[str, float]) -> Dict[str, float]:
        """Compute the per-batch size factor scaling.

        Every batch is scaled down to the coverage of the batch with the
        lowest mean library size, so the lowest-coverage batch gets 1.
        """
        lowest = min(coverages.values())
        return {name: float(cov / lowest) for name, cov in coverages.items()}

    def normalize_batches(self, adatas: Mapping[str, Any]) -> Dict[str, NormalizationResult]:
        """Normalize several datasets.

        Parameters
        ----------
        adatas : Mapping[str, AnnData]
            QC-filtered count data per dataset

        Returns
        -------
        Dict[str, NormalizationResult]
            Normalization result per dataset
        """
        if not adatas:
            raise ValueError("No datasets to normalize")

        target = None
        if self.config.method == "total" and not self.config.target_sum:
            # One target over all batches keeps their scales comparable
            pooled = np.concatenate([library_sizes(a) for a in adatas.values()])
            target = float(np.median(pooled))

        size_factors = {
            name: self.compute_size_factors(a, target=target) for name, a in adatas.items()
        }
        coverages = {name: float(library_sizes(a).mean()) for name, a in adatas.items()}

        # Size factors of the total method already share one target
        if (
            self.config.rescale_batches
            and len(adatas) > 1
            and self.config.method == "library_size"
        ):
            scales = self.batch_scales(coverages)
        else:
            scales = {name: 1.0 for name in adatas}

        results: Dict[str, NormalizationResult] = {}
        for name, adata in adatas.items():
            sf = size_factors[name] * scales[name]
            self.log_normalize(adata, sf)
            results[name] = NormalizationResult(
                name=name,
                adata=adata,
                coverage=coverages[name],
                batch_scale=scales[name],
            )
            self.logger.info(
                "%s: coverage %.1f, batch scale %.3f, size factors %.3f-%.3f",
                name,
                coverages[name],
                scales[name],
                sf.min(),
                sf.max(),
            )

        return results
