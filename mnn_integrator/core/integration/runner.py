"""Integration stage orchestration.

Runs multi-batch PCA and batch correction on merged data and writes the
corrected object with the MNN diagnostics tables.
"""

from pathlib import Path
from typing import Any, Dict, Optional
import logging

from ...io.tables import ensure_output_dir, write_dataframe
from .config import IntegrationConfig
from .engine import IntegrationEngine, IntegrationResult


def run_integration(
    adata: Any,
    config: Optional[IntegrationConfig] = None,
    output_dir: Optional[Path] = None,
    logger: Optional[logging.Logger] = None,
) -> IntegrationResult:
    """Integrate merged data in place.

    Parameters
    ----------
    adata : AnnData
        Merged log-normalized data
    config : IntegrationConfig, optional
        Integration configuration
    output_dir : Path, optional
        If given, write corrected.h5ad, mnn_merge_info.csv and
        lost_variance.csv here
    logger : logging.Logger, optional
        Logger instance

    Returns
    -------
    IntegrationResult
        Integration result
    """
    logger = logger or logging.getLogger(__name__)
    engine = IntegrationEngine(config, logger=logger)
    result = engine.run(adata)

    if result.merge_info is not None and not result.merge_info.empty:
        for row in result.merge_info.itertuples(index=False):
            logger.info(
                "  step %d: %s -> %s (%d pairs)",
                row.step,
                row.reference,
                row.target,
                row.n_pairs,
            )

    if output_dir is not None:
        write_integration_outputs(adata, result, Path(output_dir), logger)
    return result


def write_integration_outputs(
    adata: Any,
    result: IntegrationResult,
    output_dir: Path,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Path]:
    """Write corrected.h5ad and the MNN diagnostics tables."""
    logger = logger or logging.getLogger(__name__)
    output_dir = ensure_output_dir(output_dir)

    written = {
        "mnn_merge_info": write_dataframe(
            result.merge_info, output_dir / "mnn_merge_info.csv"
        ),
        "lost_variance": write_dataframe(
            result.lost_variance, output_dir / "lost_variance.csv", index=True
        ),
    }
    h5ad_path = output_dir / "corrected.h5ad"
    adata.write_h5ad(h5ad_path)
    written["corrected"] = h5ad_path

    for name, path in written.items():
        logger.info("Wrote %s: %s", name, path)
    return written
