"""Per-gene variance modelling and feature selection (Stage D).

The variance of the log-expression of each gene is decomposed into a
technical component, taken from a LOWESS trend of variance against mean,
and a biological component (the residual). Per-batch decompositions are
combined across batches before genes with positive biological variance
are selected.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

import numpy as np
import pandas as pd
from scipy import sparse
from scipy.stats import chi2

from ...utils.stats import adjust_pvalues
from .config import FeatureSelectionConfig


VARIANCE_COLUMNS = ["mean", "total", "tech", "bio", "p_value", "fdr"]

# Smallest p-value used in Fisher's method
_P_FLOOR = 1e-300


@dataclass
class VarianceResult:
    """Result from variance modelling.

    Attributes
    ----------
    per_batch : Dict[str, pd.DataFrame]
        Variance decomposition per dataset
    n_cells : Dict[str, int]
        Number of cells per dataset
    combined : pd.DataFrame
        Decomposition combined over batches (shared genes only)
    selected : List[str]
        Selected genes, ordered by decreasing biological component
    """

    per_batch: Dict[str, pd.DataFrame] = field(default_factory=dict)
    n_cells: Dict[str, int] = field(default_factory=dict)
    combined: Optional[pd.DataFrame] = None
    selected: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_batches": len(self.per_batch),
            "n_genes_shared": 0 if self.combined is None else len(self.combined),
            "n_selected": len(self.selected),
        }


def _mean_var(X: Any) -> tuple:
    """Column means and unbiased variances of a dense or sparse matrix."""
    n = X.shape[0]
    if sparse.issparse(X):
        X = sparse.csr_matrix(X, dtype=np.float64)
        mean = np.asarray(X.mean(axis=0)).ravel()
        mean_sq = np.asarray(X.multiply(X).mean(axis=0)).ravel()
    else:
        X = np.asarray(X, dtype=np.float64)
        mean = X.mean(axis=0)
        mean_sq = (X ** 2).mean(axis=0)
    var = np.maximum(mean_sq - mean ** 2, 0.0) * n / (n - 1)
    return mean, var


class VarianceModeler:
    """Variance decomposition and highly variable gene selection.

    Parameters
    ----------
    config : FeatureSelectionConfig
        Feature selection configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from mnn_integrator.core.preprocessing import VarianceModeler
    >>> modeler = VarianceModeler()
    >>> result = modeler.run({"grun": grun, "muraro": muraro})
    >>> result.combined.sort_values("bio", ascending=False).head()
    """

    def __init__(
        self,
        config: Optional[FeatureSelectionConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or FeatureSelectionConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.method not in ("trend", "scanpy"):
            raise ValueError(f"Unknown feature selection method: {self.config.method}")
        if self.config.selection not in ("positive_bio", "top_n", "fdr"):
            raise ValueError(f"Unknown gene selection rule: {self.config.selection}")
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import statsmodels.api
        except ImportError:
            raise RuntimeError(
                "Variance modelling requires statsmodels. "
                "Install with: pip install statsmodels"
            )

    def fit_trend(self, mean: np.ndarray, var: np.ndarray) -> np.ndarray:
        """Fit the mean-variance trend and evaluate it for every gene.

        Parameters
        ----------
        mean : np.ndarray
            Mean log-expression per gene
        var : np.ndarray
            Variance of log-expression per gene

        Returns
        -------
        np.ndarray
            Non-negative fitted (technical) variance per gene
        """
        from statsmodels.nonparametric.smoothers_lowess import lowess

        use = np.isfinite(mean) & np.isfinite(var) & (mean > self.config.min_mean)
        if use.sum() < 3:
            self.logger.warning(
                "Only %d genes above min_mean; using mean variance as trend",
                int(use.sum()),
            )
            return np.full_like(var, float(np.nanmean(var)) if var.size else 0.0)

        fitted = lowess(
            var[use],
            mean[use],
            frac=self.config.lowess_frac,
            it=3,
            return_sorted=True,
        )
        # Interpolate (and flat-extrapolate) the trend to all genes
        trend = np.interp(mean, fitted[:, 0], fitted[:, 1])
        return np.maximum(np.nan_to_num(trend, nan=0.0), 0.0)

    def model_gene_var(self, adata: Any) -> pd.DataFrame:
        """Decompose per-gene variance of one dataset.

        Parameters
        ----------
        adata : AnnData
            Dataset with log-normalized expression in ``X``

        Returns
        -------
        pd.DataFrame
            Indexed by gene with columns mean, total, tech, bio, p_value, fdr
        """
        n_cells = adata.n_obs
        if n_cells < 2:
            raise ValueError("Variance modelling needs at least 2 cells")

        mean, total = _mean_var(adata.X)
        tech = self.fit_trend(mean, total)
        bio = total - tech

        # Under the null, (n-1) * total / tech follows chi2 with n-1 dof
        dof = n_cells - 1
        p_value = np.ones_like(total)
        positive = tech > 0
        p_value[positive] = chi2.sf(total[positive] * dof / tech[positive], dof)

        table = pd.DataFrame(
            {
                "mean": mean,
                "total": total,
                "tech": tech,
                "bio": bio,
                "p_value": p_value,
                "fdr": adjust_pvalues(p_value),
            },
            index=pd.Index(adata.var_names, name="gene"),
        )
        return table

    def combine_var(
        self,
        tables: Mapping[str, pd.DataFrame],
        n_cells: Mapping[str, int],
    ) -> pd.DataFrame:
        """Combine per-batch decompositions over shared genes.

        Components are averaged with weights equal to the residual degrees
        of freedom of each batch; p-values are combined with Fisher's
        method and adjusted again.

        Parameters
        ----------
        tables : Mapping[str, pd.DataFrame]
            Output of :meth:`model_gene_var` per batch
        n_cells : Mapping[str, int]
            Number of cells per batch

        Returns
        -------
        pd.DataFrame
            Combined decomposition in the gene order of the first batch
        """
        if not tables:
            raise ValueError("No variance tables to combine")

        names = list(tables)
        shared = tables[names[0]].index
        for name in names[1:]:
            shared = shared[shared.isin(tables[name].index)]

        weights = np.array([n_cells[name] - 1 for name in names], dtype=float)
        weights = weights / weights.sum()

        combined = pd.DataFrame(index=shared)
        for column in ["mean", "total", "tech", "bio"]:
            stacked = np.column_stack(
                [tables[name].loc[shared, column].to_numpy() for name in names]
            )
            combined[column] = stacked @ weights

        # Fisher's method, as scipy.stats.combine_pvalues(method="fisher")
        p_stack = np.column_stack(
            [tables[name].loc[shared, "p_value"].to_numpy() for name in names]
        )
        statistic = -2.0 * np.log(np.clip(p_stack, _P_FLOOR, 1.0)).sum(axis=1)
        combined["p_value"] = chi2.sf(statistic, 2 * len(names))
        combined["fdr"] = adjust_pvalues(combined["p_value"].to_numpy())
        combined.index.name = "gene"
        return combined

    def select_genes(self, table: pd.DataFrame) -> List[str]:
        """Select highly variable genes from a decomposition.

        Returns
        -------
        List[str]
            Genes ordered by decreasing biological component
        """
        cfg = self.config
        ranked = table.sort_values("bio", ascending=False)

        if cfg.selection == "positive_bio":
            chosen = ranked[ranked["bio"] > cfg.min_bio]
        elif cfg.selection == "top_n":
            chosen = ranked.head(cfg.n_top_genes)
        else:
            chosen = ranked[(ranked["fdr"] <= cfg.fdr_threshold) & (ranked["bio"] > 0)]

        if chosen.empty:
            self.logger.warning("No genes selected by rule '%s'", cfg.selection)
        return chosen.index.astype(str).tolist()

    def run(self, adatas: Mapping[str, Any]) -> VarianceResult:
        """Model variance per batch, combine, and select genes.

        Parameters
        ----------
        adatas : Mapping[str, AnnData]
            Log-normalized data per dataset

        Returns
        -------
        VarianceResult
            Per-batch and combined decompositions with selected genes
        """
        result = VarianceResult()
        for name, adata in adatas.items():
            table = self.model_gene_var(adata)
            result.per_batch[name] = table
            result.n_cells[name] = adata.n_obs
            self.logger.info(
                "%s: %d genes with positive biological variance",
                name,
                int((table["bio"] > 0).sum()),
            )

        result.combined = self.combine_var(result.per_batch, result.n_cells)
        result.selected = self.select_genes(result.combined)
        self.logger.info(
            "Selected %d of %d shared genes (%s)",
            len(result.selected),
            len(result.combined),
            self.config.selection,
        )
        return result

    def run_scanpy(self, adata: Any, batch_key: str = "batch") -> VarianceResult:
        """Select genes with ``scanpy.pp.highly_variable_genes`` on merged data.

        Parameters
        ----------
        adata : AnnData
            Merged log-normalized data
        batch_key : str
            obs column with the batch label

        Returns
        -------
        VarianceResult
            Result with ``combined`` holding scanpy's gene statistics
        """
        import scanpy as sc

        n_top = min(self.config.n_top_genes, adata.n_vars)
        hvg = sc.pp.highly_variable_genes(
            adata,
            n_top_genes=n_top,
            batch_key=batch_key if adata.obs[batch_key].nunique() > 1 else None,
            flavor="seurat",
            inplace=False,
        )
        hvg.index = pd.Index(adata.var_names, name="gene")
        table = hvg.rename(columns={"means": "mean", "dispersions_norm": "bio"})

        result = VarianceResult(
            n_cells={
                str(k): int(v) for k, v in adata.obs[batch_key].value_counts().items()
            },
            combined=table,
        )
        result.selected = (
            table[table["highly_variable"]]
            .sort_values("bio", ascending=False)
            .index.astype(str)
            .tolist()
        )
        self.logger.info(
            "scanpy selected %d of %d genes", len(result.selected), adata.n_vars
        )
        return result
