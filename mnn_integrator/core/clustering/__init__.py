"""Clustering module for corrected single-cell data.

Provides Leiden clustering on the corrected representation, t-SNE
embeddings of corrected and uncorrected coordinates, and batch-mixing
diagnostics.

Example Usage
-------------
>>> from mnn_integrator.core.clustering import (
...     ClusteringEngine, ClusteringStageConfig, batch_mixing_entropy,
... )
>>> engine = ClusteringEngine(ClusteringStageConfig())
>>> result = engine.run_clustering(adata, use_rep="X_mnn")
>>> mixing = batch_mixing_entropy(adata.obs, cluster_key=result.cluster_key)
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    ClusteringConfig,
    EmbeddingConfig,
    ClusteringStageConfig,
)

# Clustering engine
from .engine import (
    ClusteringEngine,
    ClusteringResult,
    sort_cluster_labels,
)

# Diagnostics
from .diagnostics import (
    cluster_batch_table,
    batch_mixing_entropy,
    cluster_composition,
    lost_variance_table,
    summarize_batches,
)

# Stage orchestration
from .runner import (
    ClusteringStageResult,
    run_clustering_stage,
    write_clustering_outputs,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "ClusteringConfig",
    "EmbeddingConfig",
    "ClusteringStageConfig",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
    "sort_cluster_labels",
    # Diagnostics
    "cluster_batch_table",
    "batch_mixing_entropy",
    "cluster_composition",
    "lost_variance_table",
    "summarize_batches",
    # Runner
    "ClusteringStageResult",
    "run_clustering_stage",
    "write_clustering_outputs",
]
