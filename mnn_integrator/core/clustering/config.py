"""Configuration classes for clustering module."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass
class ClusteringConfig:
    """Configuration for graph-based clustering.

    Attributes
    ----------
    use_rep : str, optional
        obsm key used for the neighbor graph (default: the corrected
        representation recorded by integration, else X_pca)
    neighbors_k : int
        k for the neighborhood graph
    resolution : float
        Leiden resolution
    random_seed : int
        Random seed for reproducibility
    cluster_key : str
        obs column receiving cluster assignments
    """

    use_rep: Optional[str] = None
    neighbors_k: int = 15
    resolution: float = 1.0
    random_seed: int = 1337
    cluster_key: str = "cluster"


@dataclass
class EmbeddingConfig:
    """Configuration for t-SNE embeddings.

    Attributes
    ----------
    compute_tsne : bool
        Compute a t-SNE of the corrected representation
    embed_uncorrected : bool
        Also embed the uncorrected PCA coordinates for comparison
    perplexity : float
        t-SNE perplexity (lowered automatically for small data)
    random_seed : int
        Random seed for reproducibility
    """

    compute_tsne: bool = True
    embed_uncorrected: bool = True
    perplexity: float = 30.0
    random_seed: int = 100


@dataclass
class ClusteringStageConfig:
    """Master configuration for clustering and diagnostics.

    Attributes
    ----------
    graph : ClusteringConfig
        Neighbor graph and Leiden configuration
    embedding : EmbeddingConfig
        Embedding configuration
    batch_key : str
        obs column with the batch label
    cell_type_key : str
        obs column with the published cell-type label
    """

    graph: ClusteringConfig = field(default_factory=ClusteringConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    batch_key: str = "batch"
    cell_type_key: str = "cell_type"

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusteringStageConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested clustering section
        if "clustering" in data:
            data = data["clustering"]

        return cls(
            graph=ClusteringConfig(**data.get("graph", {})),
            embedding=EmbeddingConfig(**data.get("embedding", {})),
            batch_key=data.get("batch_key", "batch"),
            cell_type_key=data.get("cell_type_key", "cell_type"),
        )

    @classmethod
    def default(cls) -> "ClusteringStageConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "graph": {
                "use_rep": self.graph.use_rep or "",
                "neighbors_k": self.graph.neighbors_k,
                "resolution": self.graph.resolution,
                "random_seed": self.graph.random_seed,
                "cluster_key": self.graph.cluster_key,
            },
            "embedding": {
                "compute_tsne": self.embedding.compute_tsne,
                "embed_uncorrected": self.embedding.embed_uncorrected,
                "perplexity": self.embedding.perplexity,
                "random_seed": self.embedding.random_seed,
            },
            "batch_key": self.batch_key,
            "cell_type_key": self.cell_type_key,
        }
