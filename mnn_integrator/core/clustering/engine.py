"""Clustering engine for integrated data.

Builds a nearest-neighbor graph on the corrected representation, runs
Leiden clustering, and computes t-SNE embeddings of the corrected and
uncorrected coordinates.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import numpy as np

from .config import ClusteringStageConfig


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    n_clusters : int
        Number of clusters found
    cluster_key : str
        Key in adata.obs containing cluster assignments
    use_rep : str
        obsm key the graph was built on
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    embeddings : List[str]
        obsm keys of computed t-SNE embeddings
    """

    n_clusters: int = 0
    cluster_key: str = "cluster"
    use_rep: str = "X_pca"
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    embeddings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_clusters": self.n_clusters,
            "cluster_key": self.cluster_key,
            "use_rep": self.use_rep,
            "embeddings": list(self.embeddings),
        }


def sort_cluster_labels(labels: Any) -> List[str]:
    """Sort cluster labels numerically where possible."""
    values = [str(v) for v in labels]
    return sorted(values, key=lambda v: (0, int(v), v) if v.isdigit() else (1, 0, v))


class ClusteringEngine:
    """Clustering engine with Leiden algorithm.

    Parameters
    ----------
    config : ClusteringStageConfig
        Clustering configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.clustering import ClusteringEngine
    >>> engine = ClusteringEngine()
    >>> result = engine.run_clustering(adata, use_rep="X_mnn")
    >>> engine.compute_tsne(adata, use_rep="X_mnn", key="corrected")
    """

    def __init__(
        self,
        config: Optional[ClusteringStageConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringStageConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy. Install with: pip install scanpy"
            )

    def resolve_rep(self, adata: Any, use_rep: Optional[str] = None) -> str:
        """Pick the representation to cluster on.

        Order: explicit argument, config, the representation recorded by
        integration, then ``X_pca``.
        """
        rep = use_rep or self.config.graph.use_rep
        if rep is None:
            integration = adata.uns.get("integration", {})
            rep = integration.get("use_rep", "X_pca") if hasattr(integration, "get") else "X_pca"
        if rep not in adata.obsm:
            raise ValueError(
                f"Representation '{rep}' not found in obsm (available: {list(adata.obsm)})"
            )
        return str(rep)

    def run_clustering(
        self,
        adata: Any,  # AnnData
        use_rep: Optional[str] = None,
        cluster_key: Optional[str] = None,
        neighbors_k: Optional[int] = None,
        resolution: Optional[float] = None,
        random_seed: Optional[int] = None,
    ) -> ClusteringResult:
        """Build the neighbor graph and run Leiden clustering.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object (modified in place)
        use_rep : str, optional
            obsm key for the graph. Resolved with :meth:`resolve_rep` if None.
        cluster_key : str, optional
            obs column for cluster assignments. Uses config default if None.
        neighbors_k : int, optional
            k for neighborhood graph. Uses config default if None.
        resolution : float, optional
            Leiden resolution. Uses config default if None.
        random_seed : int, optional
            Random seed for reproducibility. Uses config default if None.

        Returns
        -------
        ClusteringResult
            Clustering result with cluster statistics
        """
        import scanpy as sc

        cfg = self.config.graph
        use_rep = self.resolve_rep(adata, use_rep)
        cluster_key = cluster_key or cfg.cluster_key
        neighbors_k = neighbors_k if neighbors_k is not None else cfg.neighbors_k
        resolution = resolution if resolution is not None else cfg.resolution
        random_seed = random_seed if random_seed is not None else cfg.random_seed

        # The graph needs at least one neighbor besides the cell itself
        neighbors_k = max(2, min(neighbors_k, adata.n_obs - 1))

        self.logger.info(
            "Running clustering on %s: neighbors_k=%d, resolution=%.3f",
            use_rep,
            neighbors_k,
            resolution,
        )

        sc.pp.neighbors(
            adata,
            n_neighbors=neighbors_k,
            use_rep=use_rep,
            random_state=random_seed,
        )
        sc.tl.leiden(
            adata,
            resolution=resolution,
            random_state=random_seed,
            key_added=cluster_key,
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )

        categories = sort_cluster_labels(adata.obs[cluster_key].cat.categories)
        adata.obs[cluster_key] = adata.obs[cluster_key].cat.reorder_categories(categories)

        result = ClusteringResult(cluster_key=cluster_key, use_rep=use_rep)
        result.n_clusters = int(adata.obs[cluster_key].nunique())
        result.cluster_sizes = {
            str(k): int(v)
            for k, v in adata.obs[cluster_key].value_counts(sort=False).items()
        }

        self.logger.info(
            "Computed Leiden clustering with %d clusters", result.n_clusters
        )
        return result

    def compute_tsne(
        self,
        adata: Any,
        use_rep: str,
        key: str,
        perplexity: Optional[float] = None,
        random_seed: Optional[int] = None,
    ) -> str:
        """Compute a t-SNE embedding and store it as ``obsm["X_tsne_<key>"]``.

        Returns
        -------
        str
            The obsm key written
        """
        import scanpy as sc

        cfg = self.config.embedding
        perplexity = perplexity if perplexity is not None else cfg.perplexity
        random_seed = random_seed if random_seed is not None else cfg.random_seed

        if use_rep not in adata.obsm:
            raise ValueError(f"Representation '{use_rep}' not found in obsm")
        if adata.n_obs < 4:
            raise ValueError("t-SNE needs at least 4 cells")

        # Perplexity must stay well below the number of cells
        max_perplexity = max(1.0, (adata.n_obs - 1) / 3.0)
        if perplexity > max_perplexity:
            self.logger.info(
                "Lowering perplexity from %.1f to %.1f for %d cells",
                perplexity,
                max_perplexity,
                adata.n_obs,
            )
            perplexity = max_perplexity

        previous = adata.obsm.get("X_tsne")
        sc.tl.tsne(
            adata,
            use_rep=use_rep,
            perplexity=perplexity,
            random_state=random_seed,
        )

        obsm_key = f"X_tsne_{key}"
        adata.obsm[obsm_key] = np.asarray(adata.obsm["X_tsne"], dtype=np.float32)
        if previous is not None:
            adata.obsm["X_tsne"] = previous
        self.logger.info("Computed t-SNE of %s -> %s", use_rep, obsm_key)
        return obsm_key

    def run(self, adata: Any, use_rep: Optional[str] = None) -> ClusteringResult:
        """Cluster the corrected data and compute the configured embeddings."""
        result = self.run_clustering(adata, use_rep=use_rep)

        emb = self.config.embedding
        if emb.compute_tsne:
            result.embeddings.append(
                self.compute_tsne(adata, result.use_rep, key="corrected")
            )
            if (
                emb.embed_uncorrected
                and result.use_rep != "X_pca"
                and "X_pca" in adata.obsm
            ):
                result.embeddings.append(
                    self.compute_tsne(adata, "X_pca", key="uncorrected")
                )

        adata.uns["clustering"] = {
            "cluster_key": result.cluster_key,
            "use_rep": result.use_rep,
            "n_clusters": result.n_clusters,
            "params": self.config.to_dict(),
        }
        return result
