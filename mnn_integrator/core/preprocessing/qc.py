"""Cell-level quality control (Stage B).

Flags cells whose library size, number of detected features, spike-in
percentage or mitochondrial percentage lie more than ``nmads`` median
absolute deviations from the median of their donor.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from ...utils.stats import is_outlier
from .config import QCConfig


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "low_lib_size",
    "low_n_features",
    "high_spike_percent",
    "high_mito_percent",
]

# obs columns kept from scanpy's QC metrics
METRIC_COLUMNS = {
    "total_counts": "lib_size",
    "n_genes_by_counts": "n_features",
    "pct_counts_spike": "spike_percent",
    "pct_counts_mito": "mito_percent",
}


@dataclass
class QCResult:
    """Result from QC filtering a single dataset.

    Attributes
    ----------
    name : str
        Dataset name
    cells_total : int
        Total cells before filtering
    cells_removed : int
        Number of cells removed
    removal_fraction : float
        Fraction of cells removed
    capped_by_max : bool
        Whether removal was capped by max_removal_fraction
    genes_removed : int
        Spike-in and rarely detected genes dropped after filtering
    reason_counts : Dict[str, int]
        Counts per removal reason
    adata : AnnData
        Filtered data
    removal_records : List[Dict]
        Details of removed cells
    """

    name: str
    cells_total: int = 0
    cells_removed: int = 0
    removal_fraction: float = 0.0
    capped_by_max: bool = False
    genes_removed: int = 0
    reason_counts: Dict[str, int] = field(default_factory=dict)
    adata: Any = None  # AnnData
    removal_records: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "dataset": self.name,
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
            "capped_by_max": self.capped_by_max,
            "genes_removed": self.genes_removed,
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result


class CellQC:
    """Cell-level quality control filter.

    Parameters
    ----------
    config : QCConfig
        QC configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.preprocessing import CellQC, QCConfig
    >>> qc = CellQC(QCConfig(nmads=3, use_mito=True))
    >>> result = qc.filter_dataset(adata, "grun")
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compute_metrics(self, adata: Any) -> pd.DataFrame:
        """Compute per-cell QC metrics.

        Parameters
        ----------
        adata : AnnData
            Raw count data

        Returns
        -------
        pd.DataFrame
            Columns lib_size, n_features, spike_percent, mito_percent and
            endogenous_lib_size (library size without spike-ins)
        """
        import scanpy as sc

        names = pd.Index(adata.var_names).str.upper()
        spike = names.str.startswith(self.config.spike_prefix.upper())
        mito = names.str.startswith(self.config.mito_prefix.upper())

        # Flags go on a copy so the input var is left untouched
        tmp = adata.copy()
        tmp.var["spike"] = spike
        tmp.var["mito"] = mito
        obs_metrics, _ = sc.pp.calculate_qc_metrics(
            tmp,
            qc_vars=["spike", "mito"],
            percent_top=None,
            log1p=False,
            inplace=False,
        )

        metrics = obs_metrics[list(METRIC_COLUMNS)].rename(columns=METRIC_COLUMNS)
        metrics = metrics.astype(float)
        metrics["endogenous_lib_size"] = (
            obs_metrics["total_counts"] - obs_metrics["total_counts_spike"]
        ).astype(float)
        metrics.index = adata.obs_names
        return metrics

    def flag_outliers(
        self, metrics: pd.DataFrame, groups: Optional[pd.Series] = None
    ) -> pd.DataFrame:
        """Build boolean reason flags from QC metrics.

        Parameters
        ----------
        metrics : pd.DataFrame
            Output of :meth:`compute_metrics`
        groups : pd.Series, optional
            Group label per cell (donor) for per-group thresholds

        Returns
        -------
        pd.DataFrame
            One boolean column per entry of ``REASON_COLUMNS``
        """
        cfg = self.config
        group_values = None if groups is None else groups.to_numpy()
        reasons = pd.DataFrame(index=metrics.index)

        reasons["low_lib_size"] = is_outlier(
            metrics["lib_size"], cfg.nmads, "lower", log=True, groups=group_values
        )
        reasons["low_n_features"] = is_outlier(
            metrics["n_features"], cfg.nmads, "lower", log=True, groups=group_values
        )

        reasons["high_spike_percent"] = False
        if cfg.use_spike and metrics["spike_percent"].gt(0).any():
            reasons["high_spike_percent"] = is_outlier(
                metrics["spike_percent"], cfg.nmads, "higher", groups=group_values
            )

        reasons["high_mito_percent"] = False
        if cfg.use_mito and metrics["mito_percent"].gt(0).any():
            reasons["high_mito_percent"] = is_outlier(
                metrics["mito_percent"], cfg.nmads, "higher", groups=group_values
            )

        # Cells without endogenous counts cannot receive a size factor
        reasons.loc[metrics["endogenous_lib_size"] <= 0, "low_lib_size"] = True
        return reasons.astype(bool)

    def filter_dataset(
        self,
        adata: Any,
        name: str,
        donor_key: str = "donor",
    ) -> QCResult:
        """Filter cells and genes of one dataset.

        Parameters
        ----------
        adata : AnnData
            Raw count data from the loader
        name : str
            Dataset name
        donor_key : str
            obs column with the donor label

        Returns
        -------
        QCResult
            Filtering result with cleaned data
        """
        import scanpy as sc

        cfg = self.config
        result = QCResult(name=name)

        metrics = self.compute_metrics(adata)
        groups = None
        if cfg.by_donor and donor_key in adata.obs.columns:
            groups = adata.obs[donor_key].astype(str)
        reasons = self.flag_outliers(metrics, groups)

        flagged = reasons.any(axis=1)
        ranking = pd.DataFrame(
            {
                "mandatory": metrics["endogenous_lib_size"] <= 0,
                "severity": reasons.sum(axis=1),
                "lib_size": metrics["lib_size"],
            },
            index=reasons.index,
        )

        # Compute removal counts
        result.cells_total = len(reasons)
        flagged_count = int(flagged.sum())
        max_remove = int(result.cells_total * cfg.max_removal_fraction)
        remove_count = max(
            min(flagged_count, max_remove), int(ranking["mandatory"].sum())
        )
        result.capped_by_max = flagged_count > remove_count

        # Select cells to remove (worst first)
        removal_ids: List[str] = []
        if remove_count > 0:
            removal_ids = (
                ranking.loc[flagged]
                .sort_values(
                    by=["mandatory", "severity", "lib_size"],
                    ascending=[False, False, True],
                )
                .head(remove_count)
                .index.tolist()
            )

        for cell_id in removal_ids:
            row = reasons.loc[cell_id]
            cell_reasons = [reason for reason in REASON_COLUMNS if bool(row[reason])]
            result.removal_records.append(
                {
                    "dataset": name,
                    "cell_id": cell_id,
                    "reasons": ";".join(cell_reasons),
                }
            )
            for reason in cell_reasons:
                result.reason_counts[reason] = result.reason_counts.get(reason, 0) + 1

        if result.capped_by_max:
            self.logger.warning(
                "%s: %d cells flagged, removal capped at %d (max_removal_fraction=%.2f)",
                name,
                flagged_count,
                remove_count,
                cfg.max_removal_fraction,
            )

        keep = ~adata.obs_names.isin(removal_ids)
        filtered = adata[keep].copy()
        for column in metrics.columns:
            filtered.obs[column] = metrics.loc[filtered.obs_names, column].to_numpy()

        # Spike-ins are only used for QC
        n_genes_before = filtered.n_vars
        is_spike = pd.Index(filtered.var_names).str.upper().str.startswith(
            cfg.spike_prefix.upper()
        )
        if is_spike.any():
            filtered = filtered[:, ~is_spike].copy()
        if cfg.min_cells_per_gene > 0:
            sc.pp.filter_genes(filtered, min_cells=cfg.min_cells_per_gene)
            filtered.var = filtered.var.drop(columns=["n_cells"], errors="ignore")
        result.genes_removed = n_genes_before - filtered.n_vars

        result.adata = filtered
        result.cells_removed = len(removal_ids)
        result.removal_fraction = (
            result.cells_removed / result.cells_total if result.cells_total > 0 else 0.0
        )

        self.logger.info(
            "%s: removed %d/%d cells (%.1f%%), %d genes; reasons %s",
            name,
            result.cells_removed,
            result.cells_total,
            100 * result.removal_fraction,
            result.genes_removed,
            result.reason_counts or "{}",
        )
        return result
