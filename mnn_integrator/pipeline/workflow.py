"""In-memory preprocessing -> integration -> clustering workflow.

All three stages read their own section of one YAML file
(``preprocessing:``, ``integration:``, ``clustering:``) and share the
AnnData object in memory, so no intermediate checkpoints are read back.
"""

from pathlib import Path
from typing import Any, Dict, Optional
import logging

from ..core.clustering import ClusteringStageConfig, run_clustering_stage
from ..core.integration import IntegrationConfig, run_integration
from ..core.preprocessing import PreprocessingConfig, run_preprocessing
from .executor import InMemoryExecutor
from .logger import PipelineLogger

STAGE_DIRS = {
    "preprocess": "preprocessing",
    "integrate": "integration",
    "cluster": "clustering",
}


def build_workflow(
    preprocessing: PreprocessingConfig,
    integration: Optional[IntegrationConfig] = None,
    clustering: Optional[ClusteringStageConfig] = None,
    output_dir: Optional[Path] = None,
    pipeline_logger: Optional[PipelineLogger] = None,
    logger: Optional[logging.Logger] = None,
) -> InMemoryExecutor:
    """Register the three stages on an :class:`InMemoryExecutor`.

    With ``output_dir`` set, each stage writes its outputs to a
    subdirectory named after the stage (preprocessing/, integration/,
    clustering/).
    """
    logger = logger or (pipeline_logger.logger if pipeline_logger else logging.getLogger(__name__))
    integration = integration or IntegrationConfig()
    clustering = clustering or ClusteringStageConfig()

    def stage_dir(stage_id: str) -> Optional[Path]:
        return Path(output_dir) / STAGE_DIRS[stage_id] if output_dir is not None else None

    def preprocess(stage_results: Dict[str, Any]):
        return run_preprocessing(
            preprocessing, output_dir=stage_dir("preprocess"), logger=logger
        )

    def integrate(stage_results: Dict[str, Any]):
        adata = stage_results["preprocess"].adata
        return run_integration(
            adata, integration, output_dir=stage_dir("integrate"), logger=logger
        )

    def cluster(stage_results: Dict[str, Any]):
        adata = stage_results["preprocess"].adata
        return run_clustering_stage(
            adata, clustering, output_dir=stage_dir("cluster"), logger=logger
        )

    executor = InMemoryExecutor(pipeline_logger)
    executor.register_stage("preprocess", preprocess, name="Preprocessing")
    executor.register_stage(
        "integrate", integrate, depends_on=["preprocess"], name="Integration"
    )
    executor.register_stage(
        "cluster", cluster, depends_on=["integrate"], name="Clustering"
    )
    return executor


def run_workflow(
    config_path: Path,
    output_dir: Optional[Path] = None,
    pipeline_logger: Optional[PipelineLogger] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Any]:
    """Run all stages from one YAML file.

    Returns
    -------
    Dict[str, Any]
        Stage results keyed by "preprocess", "integrate" and "cluster".
        The merged, corrected and clustered AnnData is
        ``results["preprocess"].adata``.
    """
    config_path = Path(config_path)
    executor = build_workflow(
        PreprocessingConfig.from_yaml(config_path),
        IntegrationConfig.from_yaml(config_path),
        ClusteringStageConfig.from_yaml(config_path),
        output_dir=output_dir,
        pipeline_logger=pipeline_logger,
        logger=logger,
    )
    return executor.run()
