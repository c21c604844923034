"""Dataset merging (Stage E).

Restricts all datasets to their shared genes and concatenates them into a
single AnnData object carrying the batch label, harmonized cell
annotations and the combined variance decomposition.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

import numpy as np
import pandas as pd

from .config import MergeConfig
from .variance import VARIANCE_COLUMNS, VarianceResult


@dataclass
class MergeResult:
    """Result from merging datasets.

    Attributes
    ----------
    adata : AnnData
        Merged AnnData object
    n_cells : int
        Total number of cells
    n_genes : int
        Number of shared genes kept
    n_hvg : int
        Number of genes flagged as highly variable
    cells_per_batch : Dict[str, int]
        Cell count per batch
    """

    adata: Any = None  # AnnData
    n_cells: int = 0
    n_genes: int = 0
    n_hvg: int = 0
    cells_per_batch: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "n_hvg": self.n_hvg,
            "cells_per_batch": dict(self.cells_per_batch),
        }


def shared_genes(adatas: Mapping[str, Any]) -> List[str]:
    """Genes present in every dataset, in the order of the first one."""
    names = list(adatas)
    if not names:
        return []
    genes = pd.Index(adatas[names[0]].var_names)
    for name in names[1:]:
        genes = genes[genes.isin(adatas[name].var_names)]
    return genes.astype(str).tolist()


class DatasetMerger:
    """Merger of per-dataset AnnData objects.

    Parameters
    ----------
    config : MergeConfig
        Merge configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.preprocessing import DatasetMerger
    >>> result = DatasetMerger().merge({"grun": grun, "muraro": muraro}, variance)
    >>> result.adata.obs["batch"].value_counts()
    """

    def __init__(
        self,
        config: Optional[MergeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MergeConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import anndata
        except ImportError:
            raise RuntimeError(
                "Data merging requires anndata. "
                "Install with: pip install anndata"
            )

    def merge(
        self,
        adatas: Mapping[str, Any],
        variance: Optional[VarianceResult] = None,
        batch_key: str = "batch",
        label_columns: Optional[List[str]] = None,
        unknown_label: str = "unknown",
    ) -> MergeResult:
        """Merge datasets over their shared genes.

        Parameters
        ----------
        adatas : Mapping[str, AnnData]
            Normalized data per dataset, in batch order
        variance : VarianceResult, optional
            Combined variance decomposition and selected genes
        batch_key : str
            obs column receiving the dataset name
        label_columns : List[str], optional
            Categorical obs columns to harmonize (default: donor, cell_type)
        unknown_label : str
            Fill value for missing labels

        Returns
        -------
        MergeResult
            Merged result with AnnData object
        """
        import anndata as ad

        if not adatas:
            raise ValueError("No datasets to merge")

        label_columns = label_columns or ["donor", "cell_type"]
        names = list(adatas)
        genes = shared_genes(adatas)
        if not genes:
            raise ValueError(f"Datasets {names} share no genes")

        pieces = []
        for name in names:
            piece = adatas[name][:, genes].copy()
            piece.obs = piece.obs.drop(columns=[batch_key], errors="ignore")
            # concat drops obs columns missing from any piece
            for column in label_columns:
                if column not in piece.obs.columns:
                    piece.obs[column] = unknown_label
            pieces.append(piece)
            self.logger.debug("%s: %d cells", name, piece.n_obs)

        merged = ad.concat(
            pieces,
            join="inner",
            label=batch_key,
            keys=names,
            index_unique=self.config.index_separator,
        )
        merged.obs[batch_key] = pd.Categorical(
            merged.obs[batch_key].astype(str), categories=names
        )

        for column in label_columns:
            if column in merged.obs.columns:
                values = merged.obs[column].astype(object)
                values = values.where(values.notna(), unknown_label).astype(str)
            else:
                values = pd.Series(unknown_label, index=merged.obs_names)
            merged.obs[column] = pd.Categorical(values)

        merged.var = pd.DataFrame(index=pd.Index(genes))
        self.annotate_variance(merged, variance)

        if self.config.subset_hvg:
            merged = self.subset_hvg(merged)

        merged.uns["batch_order"] = list(names)

        result = MergeResult(
            adata=merged,
            n_cells=merged.n_obs,
            n_genes=merged.n_vars,
            n_hvg=int(np.sum(merged.var["highly_variable"])),
            cells_per_batch={
                str(k): int(v)
                for k, v in merged.obs[batch_key].value_counts(sort=False).items()
            },
        )
        self.logger.info(
            "Merged %d datasets: %d cells x %d shared genes (%d highly variable)",
            len(names),
            result.n_cells,
            result.n_genes,
            result.n_hvg,
        )
        return result

    def annotate_variance(self, adata: Any, variance: Optional[VarianceResult]) -> None:
        """Copy the variance decomposition into ``var`` and flag selected genes.

        Without a decomposition every gene is flagged as highly variable.
        """
        genes = adata.var_names
        if variance is None or variance.combined is None:
            adata.var["highly_variable"] = True
            return

        table = variance.combined.reindex(genes)
        for column in VARIANCE_COLUMNS:
            if column in table.columns:
                adata.var[column] = table[column].to_numpy()
        adata.var["highly_variable"] = genes.isin(variance.selected)

    def subset_hvg(self, adata: Any) -> Any:
        """Return a copy restricted to highly variable genes."""
        mask = np.asarray(adata.var["highly_variable"], dtype=bool)
        if not mask.any():
            raise ValueError("subset_hvg is set but no genes are highly variable")
        return adata[:, mask].copy()
