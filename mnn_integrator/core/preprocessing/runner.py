"""Preprocessing stage orchestration (Stages A-E).

Runs loading, QC, normalization, variance modelling and merging for all
configured datasets and writes the stage outputs.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from ...io.tables import ensure_output_dir, write_dataframe
from .config import PreprocessingConfig
from .loader import DatasetLoader
from .merge import DatasetMerger
from .normalization import Normalizer
from .qc import CellQC
from .variance import VARIANCE_COLUMNS, VarianceModeler, VarianceResult


@dataclass
class PreprocessingResult:
    """Outputs of the preprocessing stage.

    Attributes
    ----------
    adata : AnnData
        Merged, normalized data with variance decomposition in ``var``
    load_report : pd.DataFrame
        One row per dataset from the loader
    qc_summary : pd.DataFrame
        One row per dataset from cell QC
    qc_removals : pd.DataFrame
        One row per removed cell
    normalization_summary : pd.DataFrame
        Size factor summary per dataset
    gene_variance : pd.DataFrame
        Long table of per-batch and combined variance decompositions
    """

    adata: Any = None  # AnnData
    load_report: Optional[pd.DataFrame] = None
    qc_summary: Optional[pd.DataFrame] = None
    qc_removals: Optional[pd.DataFrame] = None
    normalization_summary: Optional[pd.DataFrame] = None
    gene_variance: Optional[pd.DataFrame] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_cells": 0 if self.adata is None else int(self.adata.n_obs),
            "n_genes": 0 if self.adata is None else int(self.adata.n_vars),
            "n_hvg": 0
            if self.adata is None
            else int(self.adata.var["highly_variable"].sum()),
            "n_removed_qc": 0 if self.qc_removals is None else len(self.qc_removals),
        }


def variance_long_table(variance: VarianceResult) -> pd.DataFrame:
    """Stack per-batch and combined decompositions into one table."""
    frames: List[pd.DataFrame] = []
    for name, table in variance.per_batch.items():
        frame = table.reset_index().rename(columns={"index": "gene"})
        frame.insert(1, "batch", name)
        frames.append(frame)

    if variance.combined is not None:
        combined = variance.combined.reset_index().rename(columns={"index": "gene"})
        combined.insert(1, "batch", "combined")
        combined["highly_variable"] = combined["gene"].isin(variance.selected)
        frames.append(combined)

    if not frames:
        return pd.DataFrame(columns=["gene", "batch"] + VARIANCE_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def run_preprocessing(
    config: PreprocessingConfig,
    output_dir: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> PreprocessingResult:
    """Run Stages A-E on all configured datasets.

    Parameters
    ----------
    config : PreprocessingConfig
        Preprocessing configuration with at least one dataset
    output_dir : Path, optional
        If given, write merged.h5ad and the report tables here
    logger : logging.Logger, optional
        Logger instance

    Returns
    -------
    PreprocessingResult
        Merged data and report tables
    """
    logger = logger or logging.getLogger(__name__)
    if not config.datasets:
        raise ValueError("No datasets configured")

    loader_cfg = config.loader

    # Stage A: load
    logger.info("Stage A: loading %d datasets", len(config.datasets))
    loader = DatasetLoader(loader_cfg, logger=logger)
    raw: Dict[str, Any] = {}
    load_rows = []
    for idx, spec in enumerate(config.datasets, start=1):
        logger.info("[%d/%d] Loading %s", idx, len(config.datasets), spec.name)
        load_result = loader.load_dataset(spec)
        raw[spec.name] = load_result.adata
        load_rows.append(load_result.to_dict())

    # Stage B: QC
    logger.info("Stage B: cell quality control")
    qc = CellQC(config.qc, logger=logger)
    filtered: Dict[str, Any] = {}
    qc_rows = []
    removal_records = []
    for name, adata in raw.items():
        qc_result = qc.filter_dataset(adata, name, donor_key=loader_cfg.donor_key)
        filtered[name] = qc_result.adata
        qc_rows.append(qc_result.to_dict())
        removal_records.extend(qc_result.removal_records)

    # Stage C: normalization
    logger.info("Stage C: normalization")
    normalizer = Normalizer(config.normalization, logger=logger)
    norm_results = normalizer.normalize_batches(filtered)
    normalized = {name: res.adata for name, res in norm_results.items()}

    # Stage D/E: feature selection and merge
    modeler = VarianceModeler(config.feature_selection, logger=logger)
    merger = DatasetMerger(config.merge, logger=logger)
    label_columns = [loader_cfg.donor_key, loader_cfg.cell_type_key]

    if config.feature_selection.method == "trend":
        logger.info("Stage D: per-batch variance modelling")
        variance = modeler.run(normalized)
        logger.info("Stage E: merging datasets")
        merge_result = merger.merge(
            normalized,
            variance,
            batch_key=loader_cfg.batch_key,
            label_columns=label_columns,
            unknown_label=loader_cfg.unknown_label,
        )
        merged = merge_result.adata
    else:
        logger.info("Stage E: merging datasets")
        merge_result = merger.merge(
            normalized,
            None,
            batch_key=loader_cfg.batch_key,
            label_columns=label_columns,
            unknown_label=loader_cfg.unknown_label,
        )
        merged = merge_result.adata
        logger.info("Stage D: scanpy highly variable genes")
        variance = modeler.run_scanpy(merged, batch_key=loader_cfg.batch_key)
        merger.annotate_variance(merged, variance)
        if config.merge.subset_hvg:
            merged = merger.subset_hvg(merged)

    merged.uns["preprocessing"] = config.to_dict()

    result = PreprocessingResult(
        adata=merged,
        load_report=pd.DataFrame(load_rows),
        qc_summary=pd.DataFrame(qc_rows),
        qc_removals=pd.DataFrame(
            removal_records, columns=["dataset", "cell_id", "reasons"]
        ),
        normalization_summary=pd.DataFrame(
            [res.to_dict() for res in norm_results.values()]
        ),
        gene_variance=variance_long_table(variance),
    )

    if output_dir is not None:
        write_preprocessing_outputs(result, Path(output_dir), logger)

    logger.info(
        "Preprocessing complete: %d cells x %d genes, %d highly variable",
        merged.n_obs,
        merged.n_vars,
        int(merged.var["highly_variable"].sum()),
    )
    return result


def write_preprocessing_outputs(
    result: PreprocessingResult,
    output_dir: Path,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Path]:
    """Write merged.h5ad and the report tables.

    Returns
    -------
    Dict[str, Path]
        Output name -> written path
    """
    logger = logger or logging.getLogger(__name__)
    output_dir = ensure_output_dir(output_dir)

    written = {
        "load_report": write_dataframe(result.load_report, output_dir / "load_report.csv"),
        "qc_summary": write_dataframe(result.qc_summary, output_dir / "qc_summary.csv"),
        "qc_removals": write_dataframe(result.qc_removals, output_dir / "qc_removals.csv"),
        "normalization_summary": write_dataframe(
            result.normalization_summary, output_dir / "normalization_summary.csv"
        ),
        "gene_variance": write_dataframe(
            result.gene_variance, output_dir / "gene_variance.csv"
        ),
    }

    h5ad_path = output_dir / "merged.h5ad"
    result.adata.write_h5ad(h5ad_path)
    written["merged"] = h5ad_path

    for name, path in written.items():
        logger.info("Wrote %s: %s", name, path)
    return written
