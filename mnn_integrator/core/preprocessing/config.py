"""Configuration classes for preprocessing stages.

All preprocessing parameters are configurable via YAML so that new
datasets can be added without code changes.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class DatasetSpec:
    """Description of one input dataset (batch).

    Attributes
    ----------
    name : str
        Dataset name, used as the batch label
    counts_path : str
        Path to the count matrix (.csv/.tsv, optionally gzipped, or .h5ad)
    metadata_path : str, optional
        Path to the per-cell metadata table
    genes_in_rows : bool
        Whether the count matrix is genes x cells (as exported from R)
    cell_id_col : str, optional
        Metadata column holding cell IDs (default: first column)
    donor_col : str, optional
        Metadata column holding the donor label
    donor_pattern : str, optional
        Regex with one group extracting the donor from the cell ID
    cell_type_col : str, optional
        Metadata column holding the published cell-type label
    quality_col : str, optional
        Metadata column holding a per-cell quality flag
    quality_keep : List[str]
        Quality flag values to keep (others are removed)
    gene_pattern : str, optional
        Regex with one group extracting the gene symbol from row names
    exclude_donors : List[str]
        Donors to drop entirely
    strict_metadata : bool
        Halt if metadata and matrix cell IDs differ
    """

    name: str
    counts_path: str
    metadata_path: Optional[str] = None
    genes_in_rows: bool = True
    cell_id_col: Optional[str] = None
    donor_col: Optional[str] = None
    donor_pattern: Optional[str] = None
    cell_type_col: Optional[str] = None
    quality_col: Optional[str] = None
    quality_keep: List[str] = field(default_factory=list)
    gene_pattern: Optional[str] = None
    exclude_donors: List[str] = field(default_factory=list)
    strict_metadata: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "DatasetSpec":
        """Build a spec from a YAML mapping, resolving relative paths."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown dataset keys for '{data.get('name')}': {unknown}")

        spec = cls(**data)
        if base_dir is not None:
            spec.counts_path = _resolve_path(spec.counts_path, base_dir)
            if spec.metadata_path:
                spec.metadata_path = _resolve_path(spec.metadata_path, base_dir)
        return spec


def _resolve_path(value: str, base: Path) -> str:
    """Resolve a path relative to a base directory."""
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = (base / candidate).resolve()
    return str(candidate)


@dataclass
class LoaderConfig:
    """Configuration for data loading (Stage A).

    Attributes
    ----------
    batch_key : str
        obs column receiving the dataset name
    donor_key : str
        obs column receiving the donor label
    cell_type_key : str
        obs column receiving the cell-type label
    unknown_label : str
        Fill value for missing donor / cell-type labels
    """

    batch_key: str = "batch"
    donor_key: str = "donor"
    cell_type_key: str = "cell_type"
    unknown_label: str = "unknown"


@dataclass
class QCConfig:
    """Configuration for cell QC (Stage B).

    Attributes
    ----------
    nmads : float
        Number of MADs from the median defining an outlier
    by_donor : bool
        Compute outlier thresholds within each donor
    spike_prefix : str
        Gene name prefix of spike-in transcripts
    mito_prefix : str
        Gene name prefix of mitochondrial genes
    use_spike : bool
        Flag cells with a high spike-in percentage
    use_mito : bool
        Flag cells with a high mitochondrial percentage
    min_cells_per_gene : int
        Drop genes detected in fewer cells
    max_removal_fraction : float
        Maximum fraction of cells removed per dataset
    """

    nmads: float = 3.0
    by_donor: bool = True
    spike_prefix: str = "ERCC-"
    mito_prefix: str = "MT-"
    use_spike: bool = True
    use_mito: bool = False
    min_cells_per_gene: int = 1
    max_removal_fraction: float = 0.5


@dataclass
class NormalizationConfig:
    """Configuration for normalization (Stage C).

    Attributes
    ----------
    method : str
        Size factor method: 'library_size' or 'total'
    target_sum : float, optional
        Target total for the 'total' method (default: median library size)
    pseudocount : float
        Pseudocount added before log transformation
    log_base : float
        Logarithm base
    rescale_batches : bool
        Rescale size factors so all batches share the lowest coverage
    """

    method: str = "library_size"
    target_sum: Optional[float] = None
    pseudocount: float = 1.0
    log_base: float = 2.0
    rescale_batches: bool = True


@dataclass
class FeatureSelectionConfig:
    """Configuration for feature selection (Stage D).

    Attributes
    ----------
    method : str
        'trend' (per-batch variance decomposition) or 'scanpy'
    selection : str
        'positive_bio', 'top_n' or 'fdr'
    min_bio : float
        Minimum biological component for 'positive_bio'
    n_top_genes : int
        Number of genes for 'top_n' and the 'scanpy' method
    fdr_threshold : float
        FDR threshold for 'fdr'
    lowess_frac : float
        Fraction of genes used for each local LOWESS fit
    min_mean : float
        Genes with lower mean log-expression are excluded from the trend fit
    """

    method: str = "trend"
    selection: str = "positive_bio"
    min_bio: float = 0.0
    n_top_genes: int = 2000
    fdr_threshold: float = 0.05
    lowess_frac: float = 0.3
    min_mean: float = 0.0


@dataclass
class MergeConfig:
    """Configuration for dataset merging (Stage E).

    Attributes
    ----------
    index_separator : str
        Separator between cell ID and batch in merged cell names
    subset_hvg : bool
        Keep only selected genes in the merged object
    """

    index_separator: str = "-"
    subset_hvg: bool = False


@dataclass
class PreprocessingConfig:
    """Master configuration for the preprocessing pipeline.

    Attributes
    ----------
    datasets : List[DatasetSpec]
        Input datasets
    loader : LoaderConfig
        Stage A configuration
    qc : QCConfig
        Stage B configuration
    normalization : NormalizationConfig
        Stage C configuration
    feature_selection : FeatureSelectionConfig
        Stage D configuration
    merge : MergeConfig
        Stage E configuration
    """

    datasets: List[DatasetSpec] = field(default_factory=list)
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    feature_selection: FeatureSelectionConfig = field(default_factory=FeatureSelectionConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested preprocessing section
        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], base_dir: Optional[Path] = None
    ) -> "PreprocessingConfig":
        """Build configuration from a plain mapping."""
        datasets = [
            DatasetSpec.from_dict(entry, base_dir=base_dir)
            for entry in data.get("datasets", [])
        ]
        names = [d.name for d in datasets]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate dataset names: {duplicates}")

        return cls(
            datasets=datasets,
            loader=LoaderConfig(**data.get("loader", {})),
            qc=QCConfig(**data.get("qc", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
            feature_selection=FeatureSelectionConfig(**data.get("feature_selection", {})),
            merge=MergeConfig(**data.get("merge", {})),
        )

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "datasets": [d.name for d in self.datasets],
            "loader": {
                "batch_key": self.loader.batch_key,
                "donor_key": self.loader.donor_key,
                "cell_type_key": self.loader.cell_type_key,
            },
            "qc": {
                "nmads": self.qc.nmads,
                "by_donor": self.qc.by_donor,
                "use_spike": self.qc.use_spike,
                "use_mito": self.qc.use_mito,
                "max_removal_fraction": self.qc.max_removal_fraction,
            },
            "normalization": {
                "method": self.normalization.method,
                "pseudocount": self.normalization.pseudocount,
                "log_base": self.normalization.log_base,
                "rescale_batches": self.normalization.rescale_batches,
            },
            "feature_selection": {
                "method": self.feature_selection.method,
                "selection": self.feature_selection.selection,
                "min_bio": self.feature_selection.min_bio,
                "n_top_genes": self.feature_selection.n_top_genes,
            },
            "merge": {
                "index_separator": self.merge.index_separator,
                "subset_hvg": self.merge.subset_hvg,
            },
        }
