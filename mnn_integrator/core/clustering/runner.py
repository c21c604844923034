"""Clustering stage orchestration.

Clusters the corrected representation, embeds it with t-SNE and writes
the batch-mixing diagnostics.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import pandas as pd

from ...io.tables import ensure_output_dir, write_dataframe
from .config import ClusteringStageConfig
from .diagnostics import (
    batch_mixing_entropy,
    cluster_batch_table,
    cluster_composition,
    lost_variance_table,
    summarize_batches,
)
from .engine import ClusteringEngine, ClusteringResult


@dataclass
class ClusteringStageResult:
    """Clustering result with its diagnostics tables."""

    clustering: ClusteringResult
    cluster_by_batch: pd.DataFrame = field(default_factory=pd.DataFrame)
    cluster_mixing: pd.DataFrame = field(default_factory=pd.DataFrame)
    cluster_composition: pd.DataFrame = field(default_factory=pd.DataFrame)
    batch_summary: pd.DataFrame = field(default_factory=pd.DataFrame)
    lost_variance: pd.DataFrame = field(default_factory=pd.DataFrame)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        mixing = self.cluster_mixing
        return {
            **self.clustering.to_dict(),
            "mean_entropy": float(mixing["entropy"].mean()) if not mixing.empty else None,
        }


def run_clustering_stage(
    adata: Any,
    config: Optional[ClusteringStageConfig] = None,
    output_dir: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> ClusteringStageResult:
    """Cluster corrected data in place and build the diagnostics tables.

    Parameters
    ----------
    adata : AnnData
        Corrected data from integration
    config : ClusteringStageConfig, optional
        Clustering configuration
    output_dir : Path, optional
        If given, write clustered.h5ad and the diagnostics CSV files here
    logger : logging.Logger, optional
        Logger instance

    Returns
    -------
    ClusteringStageResult
        Clustering result and diagnostics
    """
    logger = logger or logging.getLogger(__name__)
    config = config or ClusteringStageConfig()

    engine = ClusteringEngine(config, logger=logger)
    clustering = engine.run(adata)

    obs = adata.obs
    cluster_key = clustering.cluster_key
    result = ClusteringStageResult(clustering=clustering)
    result.cluster_by_batch = cluster_batch_table(obs, cluster_key, config.batch_key)
    result.cluster_mixing = batch_mixing_entropy(obs, cluster_key, config.batch_key)
    if config.cell_type_key in obs.columns:
        result.cluster_composition = cluster_composition(
            obs, cluster_key, config.cell_type_key
        )
    result.batch_summary = summarize_batches(
        obs,
        batch_key=config.batch_key,
        cluster_key=cluster_key,
        cell_type_key=config.cell_type_key,
    )
    result.lost_variance = lost_variance_table(adata)

    logger.info("Cluster x batch counts:\n%s", result.cluster_by_batch.to_string())
    if not result.cluster_mixing.empty:
        logger.info(
            "Batch mixing entropy: mean=%.3f, min=%.3f",
            result.cluster_mixing["entropy"].mean(),
            result.cluster_mixing["entropy"].min(),
        )
    if not result.lost_variance.empty:
        logger.info("Lost variance per merge step:\n%s", result.lost_variance.to_string())

    if output_dir is not None:
        write_clustering_outputs(adata, result, Path(output_dir), logger)
    return result


def write_clustering_outputs(
    adata: Any,
    result: ClusteringStageResult,
    output_dir: Path,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Path]:
    """Write clustered.h5ad and the diagnostics tables."""
    logger = logger or logging.getLogger(__name__)
    output_dir = ensure_output_dir(output_dir)

    written = {
        "cluster_by_batch": write_dataframe(
            result.cluster_by_batch, output_dir / "cluster_by_batch.csv", index=True
        ),
        "cluster_mixing": write_dataframe(
            result.cluster_mixing, output_dir / "cluster_mixing.csv"
        ),
        "cluster_composition": write_dataframe(
            result.cluster_composition, output_dir / "cluster_composition.csv"
        ),
        "batch_summary": write_dataframe(
            result.batch_summary, output_dir / "batch_summary.csv"
        ),
    }
    h5ad_path = output_dir / "clustered.h5ad"
    adata.write_h5ad(h5ad_path)
    written["clustered"] = h5ad_path

    for name, path in written.items():
        logger.info("Wrote %s: %s", name, path)
    return written
