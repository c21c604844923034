"""Preprocessing module for loading, quality control and merging.

Provides dataset loading, cell QC, size-factor normalization, per-gene
variance modelling and merging of several scRNA-seq datasets.

Pipeline Stages
---------------
- Stage A (Loader): Count matrix and metadata loading and validation
- Stage B (QC): MAD-based cell quality control
- Stage C (Normalization): Size factors and log transformation
- Stage D (Variance): Variance decomposition and gene selection
- Stage E (Merge): Shared-gene concatenation of all batches

Example Usage
-------------
>>> from mnn_integrator.core.preprocessing import (
...     DatasetLoader, DatasetSpec,
...     CellQC, QCConfig,
...     Normalizer,
...     VarianceModeler,
...     DatasetMerger,
... )
>>> loaded = DatasetLoader().load_dataset(DatasetSpec("grun", "grun.csv.gz"))
>>> qc_result = CellQC(QCConfig(nmads=3)).filter_dataset(loaded.adata, "grun")
>>> normalized = Normalizer().normalize_batches({"grun": qc_result.adata})
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    DatasetSpec,
    LoaderConfig,
    QCConfig,
    NormalizationConfig,
    FeatureSelectionConfig,
    MergeConfig,
    PreprocessingConfig,
)

# Stage A: Data loading
from .loader import (
    DatasetLoader,
    LoadResult,
)

# Stage B: Cell QC
from .qc import (
    CellQC,
    QCResult,
    REASON_COLUMNS,
)

# Stage C: Normalization
from .normalization import (
    Normalizer,
    NormalizationResult,
    library_sizes,
)

# Stage D: Variance modelling
from .variance import (
    VarianceModeler,
    VarianceResult,
    VARIANCE_COLUMNS,
)

# Stage E: Data merging
from .merge import (
    DatasetMerger,
    MergeResult,
    shared_genes,
)

# Stage orchestration
from .runner import (
    PreprocessingResult,
    run_preprocessing,
    write_preprocessing_outputs,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "DatasetSpec",
    "LoaderConfig",
    "QCConfig",
    "NormalizationConfig",
    "FeatureSelectionConfig",
    "MergeConfig",
    "PreprocessingConfig",
    # Stage A: Loader
    "DatasetLoader",
    "LoadResult",
    # Stage B: QC
    "CellQC",
    "QCResult",
    "REASON_COLUMNS",
    # Stage C: Normalization
    "Normalizer",
    "NormalizationResult",
    "library_sizes",
    # Stage D: Variance
    "VarianceModeler",
    "VarianceResult",
    "VARIANCE_COLUMNS",
    # Stage E: Merge
    "DatasetMerger",
    "MergeResult",
    "shared_genes",
    # Runner
    "PreprocessingResult",
    "run_preprocessing",
    "write_preprocessing_outputs",
]
