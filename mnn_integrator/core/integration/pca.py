"""Multi-batch principal component analysis.

The rotation is computed on data centred at the average of the batch
means, with each cell weighted by the inverse size of its batch so that
every batch contributes equally. All cells are then projected onto the
shared components.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional
import logging

import numpy as np
import pandas as pd
from scipy import sparse

from .config import PCAConfig


@dataclass
class PCAResult:
    """Result from multi-batch PCA.

    Attributes
    ----------
    embedding : np.ndarray
        Cells x components coordinates
    components : np.ndarray
        Genes x components rotation
    variance : np.ndarray
        Weighted variance captured by each component
    variance_ratio : np.ndarray
        Fraction of weighted variance captured by each component
    center : np.ndarray
        Per-gene centre (average of batch means)
    genes : List[str]
        Genes used for the rotation
    """

    embedding: np.ndarray
    components: np.ndarray
    variance: np.ndarray
    variance_ratio: np.ndarray
    center: np.ndarray
    genes: List[str] = field(default_factory=list)

    @property
    def n_components(self) -> int:
        return self.embedding.shape[1]


def cosine_normalize(X: np.ndarray) -> np.ndarray:
    """Scale every row to unit L2 norm; all-zero rows are left at zero."""
    X = np.asarray(X, dtype=np.float64)
    norms = np.linalg.norm(X, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return X / norms


def to_dense(X: Any) -> np.ndarray:
    """Return X as a dense float64 array."""
    if sparse.issparse(X):
        return X.toarray().astype(np.float64)
    return np.asarray(X, dtype=np.float64)


class MultiBatchPCA:
    """PCA with equal batch contributions.

    Parameters
    ----------
    config : PCAConfig
        PCA configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.integration import MultiBatchPCA
    >>> result = MultiBatchPCA().fit_transform(X, batches)
    >>> result.embedding.shape
    (n_cells, 50)
    """

    def __init__(
        self,
        config: Optional[PCAConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PCAConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.svd_solver not in ("randomized", "exact"):
            raise ValueError(f"Unknown SVD solver: {self.config.svd_solver}")

    def effective_components(self, n_cells: int, n_genes: int) -> int:
        """Number of components after capping at ``min(n_cells, n_genes) - 1``."""
        cap = min(n_cells, n_genes) - 1
        if cap < 1:
            raise ValueError(
                f"PCA needs at least 2 cells and 2 genes, got {n_cells} x {n_genes}"
            )
        n_components = min(self.config.n_components, cap)
        if n_components < self.config.n_components:
            self.logger.info(
                "Capping PCA at %d components (data is %d x %d)",
                n_components,
                n_cells,
                n_genes,
            )
        return n_components

    def _svd(self, W: np.ndarray, n_components: int):
        if self.config.svd_solver == "randomized":
            from sklearn.utils.extmath import randomized_svd

            _, s, vt = randomized_svd(
                W, n_components=n_components, random_state=self.config.random_seed
            )
        else:
            _, s, vt = np.linalg.svd(W, full_matrices=False)
            s, vt = s[:n_components], vt[:n_components]

        # Deterministic signs: largest absolute loading is positive
        idx = np.argmax(np.abs(vt), axis=1)
        signs = np.sign(vt[np.arange(vt.shape[0]), idx])
        signs[signs == 0] = 1.0
        return s, vt * signs[:, None]

    def fit_transform(
        self,
        X: Any,
        batches: Any,
        genes: Optional[List[str]] = None,
    ) -> PCAResult:
        """Compute the multi-batch rotation and project all cells.

        Parameters
        ----------
        X : array-like or sparse matrix
            Cells x genes log-expression
        batches : array-like
            Batch label per cell
        genes : List[str], optional
            Gene names, kept in the result

        Returns
        -------
        PCAResult
            Embedding, rotation and explained variance
        """
        data = to_dense(X)
        batches = np.asarray(pd.Series(batches).astype(str))
        if batches.shape[0] != data.shape[0]:
            raise ValueError(
                f"Got {batches.shape[0]} batch labels for {data.shape[0]} cells"
            )

        n_cells, n_genes = data.shape
        n_components = self.effective_components(n_cells, n_genes)

        if self.config.cos_norm:
            data = cosine_normalize(data)

        labels = pd.unique(batches)
        batch_means = np.vstack([data[batches == b].mean(axis=0) for b in labels])
        center = batch_means.mean(axis=0)
        centered = data - center

        # Weight rows so every batch has the same total weight
        sizes = pd.Series(batches).map(pd.Series(batches).value_counts()).to_numpy()
        weighted = centered / np.sqrt(sizes.astype(float))[:, None]

        s, vt = self._svd(weighted, n_components)
        rotation = vt.T
        variance = s ** 2 / len(labels)
        total = float(np.sum(weighted ** 2)) / len(labels)
        variance_ratio = variance / total if total > 0 else np.zeros_like(variance)

        embedding = centered @ rotation
        self.logger.info(
            "Multi-batch PCA on %d cells x %d genes (%d batches): %d components, "
            "%.1f%% variance",
            n_cells,
            n_genes,
            len(labels),
            n_components,
            100 * float(variance_ratio.sum()),
        )
        return PCAResult(
            embedding=embedding,
            components=rotation,
            variance=variance,
            variance_ratio=variance_ratio,
            center=center,
            genes=list(genes) if genes is not None else [],
        )

    def run(
        self,
        adata: Any,
        batch_key: str = "batch",
        use_hvg: bool = True,
        key_added: str = "X_pca",
    ) -> PCAResult:
        """Run multi-batch PCA on an AnnData object.

        Stores ``obsm[key_added]``, ``varm["PCs"]`` (zero rows for genes
        not used) and ``uns["pca"]``.
        """
        if batch_key not in adata.obs.columns:
            raise ValueError(f"Batch column '{batch_key}' not found in obs")

        if use_hvg and "highly_variable" in adata.var.columns:
            mask = np.asarray(adata.var["highly_variable"], dtype=bool)
            if mask.sum() < 2:
                raise ValueError(
                    f"Only {int(mask.sum())} highly variable genes; need at least 2"
                )
        else:
            mask = np.ones(adata.n_vars, dtype=bool)

        genes = adata.var_names[mask].astype(str).tolist()
        result = self.fit_transform(adata.X[:, mask], adata.obs[batch_key], genes)

        loadings = np.zeros((adata.n_vars, result.n_components), dtype=np.float32)
        loadings[mask] = result.components
        adata.obsm[key_added] = result.embedding.astype(np.float32)
        adata.varm["PCs"] = loadings
        adata.uns["pca"] = {
            "variance": result.variance,
            "variance_ratio": result.variance_ratio,
            "params": {
                "n_components": result.n_components,
                "cos_norm": self.config.cos_norm,
                "svd_solver": self.config.svd_solver,
                "use_hvg": bool(use_hvg),
                "multi_batch": True,
            },
        }
        return result
