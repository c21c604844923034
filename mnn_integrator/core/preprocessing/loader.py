"""Dataset loader for the preprocessing pipeline (Stage A).

Loads a count matrix and its per-cell metadata into an AnnData object,
harmonizes gene names, derives donor / cell-type labels, and checks that
matrix and metadata describe the same cells.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import re

import numpy as np
import pandas as pd
from scipy import sparse

from ...io.tables import read_table
from .config import DatasetSpec, LoaderConfig


@dataclass
class LoadResult:
    """Result from loading a single dataset.

    Attributes
    ----------
    name : str
        Dataset name
    adata : AnnData
        Cells x genes count data with harmonized obs columns
    n_cells_raw : int
        Number of cells in the count matrix
    n_cells : int
        Number of cells after quality-flag and donor filtering
    n_genes : int
        Number of genes after name cleanup
    n_low_quality : int
        Cells removed by the metadata quality flag
    n_excluded_donor : int
        Cells removed because their donor was excluded
    issues : List[str]
        List of any issues found
    status : str
        'OK' or 'CHECK'
    """

    name: str
    adata: Any = None  # AnnData
    n_cells_raw: int = 0
    n_cells: int = 0
    n_genes: int = 0
    n_low_quality: int = 0
    n_excluded_donor: int = 0
    issues: List[str] = field(default_factory=list)
    status: str = "OK"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "dataset": self.name,
            "n_cells_raw": self.n_cells_raw,
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "n_low_quality": self.n_low_quality,
            "n_excluded_donor": self.n_excluded_donor,
            "status": self.status,
            "issues": ";".join(self.issues) if self.issues else "",
        }


class DatasetLoader:
    """Dataset loader with validation.

    Parameters
    ----------
    config : LoaderConfig
        Loader configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.preprocessing import DatasetLoader, DatasetSpec
    >>> spec = DatasetSpec(name="muraro", counts_path="muraro.csv.gz",
    ...                    gene_pattern=r"^(.+?)__")
    >>> result = DatasetLoader().load_dataset(spec)
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or LoaderConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import anndata
        except ImportError:
            raise RuntimeError(
                "Dataset loading requires anndata. "
                "Install with: pip install anndata"
            )

    def load_counts(self, spec: DatasetSpec) -> Any:
        """Load a count matrix as a cells x genes AnnData.

        Parameters
        ----------
        spec : DatasetSpec
            Dataset description

        Returns
        -------
        AnnData
            Count matrix in CSR float32 format
        """
        import anndata as ad

        path = Path(spec.counts_path)
        if path.suffix == ".h5ad":
            if not path.exists():
                raise FileNotFoundError(f"Count matrix not found: {path}")
            adata = ad.read_h5ad(path)
            adata.X = sparse.csr_matrix(adata.X, dtype=np.float32)
        else:
            df = read_table(path)
            if spec.genes_in_rows:
                df = df.T
            numeric = df.apply(pd.to_numeric, errors="coerce")
            n_bad = int(numeric.isna().to_numpy().sum())
            if n_bad:
                raise ValueError(f"{n_bad} non-numeric entries in count matrix {path}")
            adata = ad.AnnData(
                X=sparse.csr_matrix(numeric.to_numpy(dtype=np.float32)),
                obs=pd.DataFrame(index=numeric.index.astype(str)),
                var=pd.DataFrame(index=numeric.columns.astype(str)),
            )

        adata.obs_names = adata.obs_names.astype(str)
        adata.var_names = adata.var_names.astype(str)

        if not adata.obs_names.is_unique:
            raise ValueError(f"Duplicate cell IDs in count matrix {path}")

        self.logger.info(
            "Loaded %s counts: %d cells x %d genes", spec.name, adata.n_obs, adata.n_vars
        )
        return adata

    def clean_gene_names(self, adata: Any, pattern: Optional[str]) -> Any:
        """Harmonize gene names and sum counts of duplicated genes.

        Parameters
        ----------
        adata : AnnData
            Count data
        pattern : str, optional
            Regex with one capture group extracting the gene symbol.
            Names that do not match are dropped.

        Returns
        -------
        AnnData
            Count data with unique, cleaned gene names
        """
        import anndata as ad

        names = pd.Series(adata.var_names, dtype=str)
        if pattern:
            regex = re.compile(pattern)
            if regex.groups != 1:
                raise ValueError(f"gene_pattern must have exactly one group: {pattern}")
            names = names.str.extract(regex, expand=False)
        names = names.str.strip()

        keep = names.notna() & (names != "")
        n_dropped = int((~keep).sum())
        if n_dropped:
            self.logger.info("Dropping %d genes with unparseable names", n_dropped)
            adata = adata[:, keep.to_numpy()].copy()
            names = names[keep]

        if names.is_unique:
            adata.var_names = pd.Index(names.to_numpy(), dtype=str)
            return adata

        # Sum duplicated genes with a gene -> unique-name indicator matrix
        codes, uniques = pd.factorize(names)
        indicator = sparse.csr_matrix(
            (np.ones(len(codes), dtype=np.float32), (np.arange(len(codes)), codes)),
            shape=(len(codes), len(uniques)),
        )
        summed = sparse.csr_matrix(adata.X) @ indicator
        self.logger.info(
            "Summed %d duplicated gene names into %d genes",
            len(codes) - len(uniques),
            len(uniques),
        )
        return ad.AnnData(
            X=sparse.csr_matrix(summed, dtype=np.float32),
            obs=adata.obs.copy(),
            var=pd.DataFrame(index=pd.Index(uniques.astype(str))),
        )

    def load_metadata(self, spec: DatasetSpec) -> Optional[pd.DataFrame]:
        """Load per-cell metadata indexed by cell ID.

        Returns
        -------
        pd.DataFrame or None
            Metadata, or None if the dataset has no metadata file
        """
        if not spec.metadata_path:
            return None

        df = read_table(spec.metadata_path, index_col=None)
        id_col = spec.cell_id_col or df.columns[0]
        if id_col not in df.columns:
            raise ValueError(
                f"Cell ID column '{id_col}' not found in {spec.metadata_path}"
            )

        df[id_col] = df[id_col].astype(str)
        if df[id_col].duplicated().any():
            raise ValueError(f"Duplicate cell IDs in metadata {spec.metadata_path}")

        return df.set_index(id_col)

    def check_consistency(
        self,
        matrix_ids: pd.Index,
        metadata_ids: pd.Index,
        spec: DatasetSpec,
    ) -> List[str]:
        """Compare matrix and metadata cell IDs.

        Raises
        ------
        ValueError
            If the ID sets differ and ``spec.strict_metadata`` is set
        """
        issues: List[str] = []
        missing_in_metadata = matrix_ids.difference(metadata_ids)
        missing_in_matrix = metadata_ids.difference(matrix_ids)

        if len(missing_in_metadata):
            issues.append(f"missing_in_metadata:{len(missing_in_metadata)}")
        if len(missing_in_matrix):
            issues.append(f"missing_in_matrix:{len(missing_in_matrix)}")

        if issues and spec.strict_metadata:
            examples = list(missing_in_metadata[:3]) + list(missing_in_matrix[:3])
            raise ValueError(
                f"Metadata and count matrix of '{spec.name}' describe different cells "
                f"({', '.join(issues)}; e.g. {examples})"
            )
        return issues

    def _derive_donor(
        self, spec: DatasetSpec, cell_ids: pd.Index, metadata: Optional[pd.DataFrame]
    ) -> pd.Series:
        """Derive the donor label per cell."""
        if spec.donor_col:
            if metadata is None or spec.donor_col not in metadata.columns:
                raise ValueError(
                    f"Donor column '{spec.donor_col}' not available for '{spec.name}'"
                )
            donor = metadata[spec.donor_col].reindex(cell_ids)
        elif spec.donor_pattern:
            donor = pd.Series(cell_ids, index=cell_ids).str.extract(
                spec.donor_pattern, expand=False
            )
        else:
            donor = pd.Series(spec.name, index=cell_ids)
        return donor.astype(object).where(donor.notna(), self.config.unknown_label).astype(str)

    def load_dataset(self, spec: DatasetSpec) -> LoadResult:
        """Load and validate a single dataset.

        Parameters
        ----------
        spec : DatasetSpec
            Dataset description

        Returns
        -------
        LoadResult
            Loading result with AnnData and validation status
        """
        cfg = self.config
        result = LoadResult(name=spec.name)

        adata = self.load_counts(spec)
        adata = self.clean_gene_names(adata, spec.gene_pattern)
        result.n_cells_raw = adata.n_obs

        metadata = self.load_metadata(spec)
        if metadata is not None:
            result.issues.extend(
                self.check_consistency(adata.obs_names, metadata.index, spec)
            )
            common = adata.obs_names.intersection(metadata.index, sort=False)
            if len(common) < adata.n_obs:
                adata = adata[adata.obs_names.isin(common)].copy()
            metadata = metadata.reindex(adata.obs_names)

        obs = pd.DataFrame(index=adata.obs_names)
        obs[cfg.batch_key] = spec.name
        obs[cfg.donor_key] = self._derive_donor(spec, adata.obs_names, metadata)

        if spec.cell_type_col:
            if metadata is None or spec.cell_type_col not in metadata.columns:
                raise ValueError(
                    f"Cell-type column '{spec.cell_type_col}' not available for '{spec.name}'"
                )
            cell_type = metadata[spec.cell_type_col]
            obs[cfg.cell_type_key] = (
                cell_type.astype(object).where(cell_type.notna(), cfg.unknown_label).astype(str)
            )
        else:
            obs[cfg.cell_type_key] = cfg.unknown_label
        adata.obs = obs

        keep = np.ones(adata.n_obs, dtype=bool)

        if spec.quality_col:
            if metadata is None or spec.quality_col not in metadata.columns:
                raise ValueError(
                    f"Quality column '{spec.quality_col}' not available for '{spec.name}'"
                )
            quality = metadata[spec.quality_col].astype(str)
            if spec.quality_keep:
                good = quality.isin(spec.quality_keep).to_numpy()
            else:
                good = metadata[spec.quality_col].notna().to_numpy()
            result.n_low_quality = int((keep & ~good).sum())
            keep &= good

        if spec.exclude_donors:
            excluded = obs[cfg.donor_key].isin(spec.exclude_donors).to_numpy()
            result.n_excluded_donor = int((keep & excluded).sum())
            keep &= ~excluded

        if not keep.all():
            self.logger.info(
                "%s: removing %d low-quality and %d excluded-donor cells",
                spec.name,
                result.n_low_quality,
                result.n_excluded_donor,
            )
            adata = adata[keep].copy()

        if adata.n_obs == 0:
            raise ValueError(f"No cells left in '{spec.name}' after metadata filtering")

        result.adata = adata
        result.n_cells = adata.n_obs
        result.n_genes = adata.n_vars
        result.status = "OK" if not result.issues else "CHECK"

        self.logger.info(
            "%s: %d cells, %d genes, %d donors (%s)",
            spec.name,
            result.n_cells,
            result.n_genes,
            adata.obs[cfg.donor_key].nunique(),
            result.status,
        )
        return result
