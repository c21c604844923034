"""Integration module for multi-batch PCA and batch correction.

Provides PCA with equal batch contributions and progressive mutual
nearest neighbor (MNN) correction in PC space, with Harmony and ComBat
as alternative correction methods.

Example Usage
-------------
>>> from mnn_integrator.core.integration import (
...     IntegrationEngine, IntegrationConfig, MNNConfig,
... )
>>> config = IntegrationConfig(method="mnn", mnn=MNNConfig(k=20, auto_merge=True))
>>> result = IntegrationEngine(config).run(adata)
>>> adata.obsm["X_mnn"]
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    PCAConfig,
    MNNConfig,
    IntegrationConfig,
)

# Multi-batch PCA
from .pca import (
    MultiBatchPCA,
    PCAResult,
    cosine_normalize,
)

# MNN correction
from .mnn import (
    MNNCorrector,
    MNNResult,
    MergeStep,
    find_mutual_nn,
    center_along_batch_vector,
)

# Engine
from .engine import (
    IntegrationEngine,
    IntegrationResult,
    METHODS,
    REPRESENTATION_KEYS,
)

# Stage orchestration
from .runner import (
    run_integration,
    write_integration_outputs,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "PCAConfig",
    "MNNConfig",
    "IntegrationConfig",
    # PCA
    "MultiBatchPCA",
    "PCAResult",
    "cosine_normalize",
    # MNN
    "MNNCorrector",
    "MNNResult",
    "MergeStep",
    "find_mutual_nn",
    "center_along_batch_vector",
    # Engine
    "IntegrationEngine",
    "IntegrationResult",
    "METHODS",
    "REPRESENTATION_KEYS",
    # Runner
    "run_integration",
    "write_integration_outputs",
]
