"""Configuration classes for the integration module."""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class PCAConfig:
    """Configuration for multi-batch PCA.

    Attributes
    ----------
    n_components : int
        Number of principal components (capped by data size)
    cos_norm : bool
        Cosine-normalize each cell before PCA
    svd_solver : str
        'randomized' (scikit-learn) or 'exact' (numpy)
    random_seed : int
        Random seed for the randomized solver
    """

    n_components: int = 50
    cos_norm: bool = True
    svd_solver: str = "randomized"
    random_seed: int = 100


@dataclass
class MNNConfig:
    """Configuration for mutual nearest neighbor correction.

    Attributes
    ----------
    k : int
        Number of nearest neighbors searched in each direction
    sigma : float
        Bandwidth of the Gaussian smoothing kernel, as a multiple of the
        median distance between target cells and their nearest MNN cells
    smooth_k : int
        Number of nearest MNN cells used to smooth each correction vector
    merge_order : List[str], optional
        Explicit batch merge order
    auto_merge : bool
        Choose the merge order by the number of MNN pairs
    remove_batch_axis : bool
        Remove within-batch variation along the average batch vector
    """

    k: int = 20
    sigma: float = 1.0
    smooth_k: int = 20
    merge_order: Optional[List[str]] = None
    auto_merge: bool = False
    remove_batch_axis: bool = True


@dataclass
class IntegrationConfig:
    """Master configuration for integration.

    Attributes
    ----------
    method : str
        'mnn', 'harmony', 'combat' or 'none'
    batch_key : str
        obs column with the batch label
    use_hvg : bool
        Restrict PCA input to genes flagged ``highly_variable``
    pca : PCAConfig
        Multi-batch PCA configuration
    mnn : MNNConfig
        MNN configuration
    """

    method: str = "mnn"
    batch_key: str = "batch"
    use_hvg: bool = True
    pca: PCAConfig = field(default_factory=PCAConfig)
    mnn: MNNConfig = field(default_factory=MNNConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "IntegrationConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested integration section
        if "integration" in data:
            data = data["integration"]

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntegrationConfig":
        """Build configuration from a plain mapping."""
        return cls(
            method=data.get("method", "mnn"),
            batch_key=data.get("batch_key", "batch"),
            use_hvg=data.get("use_hvg", True),
            pca=PCAConfig(**data.get("pca", {})),
            mnn=MNNConfig(**data.get("mnn", {})),
        )

    @classmethod
    def default(cls) -> "IntegrationConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = asdict(self)
        if result["mnn"]["merge_order"] is None:
            result["mnn"]["merge_order"] = []
        return result
