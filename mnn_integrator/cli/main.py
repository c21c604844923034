"""Command-line interface for MNN-Integrator.

Provides CLI commands for the preprocessing, integration and clustering
stages, the full in-memory workflow and YAML-driven pipelines.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("mnn_integrator")


@click.group()
@click.version_option(version="1.0.0", prog_name="mnn-integrator")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """MNN-Integrator: batch correction workflow for single-cell RNA-seq.

    Loads several count matrices, filters low-quality cells, normalizes,
    selects variable genes, merges the batches, corrects batch effects with
    mutual nearest neighbors in PC space and clusters the result.

    Examples:

        # Preprocess the datasets listed in a config
        mnn-integrator preprocess --config configs/pancreas.yaml --out out/preprocessing

        # Correct batch effects
        mnn-integrator integrate --input out/preprocessing/merged.h5ad --out out/integration

        # Cluster and report batch mixing
        mnn-integrator cluster --input out/integration/corrected.h5ad --out out/clustering

        # Everything in one process
        mnn-integrator run --config configs/pancreas.yaml --out out/

        # Run a YAML pipeline with checkpoints
        mnn-integrator pipeline --config configs/pipeline.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Preprocessing configuration file (YAML) with a datasets list")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--subset-hvg", is_flag=True, help="Keep only selected genes in merged.h5ad")
@click.pass_context
def preprocess(
    ctx: click.Context,
    config: str,
    output_path: str,
    subset_hvg: bool,
) -> None:
    """Load, QC, normalize, model gene variance and merge datasets."""
    logger = ctx.obj["logger"]
    logger.info(f"Preprocessing config: {config}")
    logger.info(f"Output: {output_path}")

    # Import here to avoid slow startup
    from mnn_integrator.core.preprocessing import PreprocessingConfig, run_preprocessing

    cfg = PreprocessingConfig.from_yaml(Path(config))
    if subset_hvg:
        cfg.merge.subset_hvg = True

    result = run_preprocessing(cfg, output_dir=Path(output_path), logger=logger)
    summary = result.to_dict()

    click.echo(
        f"Preprocessing complete: {summary['n_cells']} cells, "
        f"{summary['n_genes']} genes, {summary['n_hvg']} highly variable"
    )
    click.echo(f"Output saved to: {Path(output_path) / 'merged.h5ad'}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Merged AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML) with an integration section")
@click.option("--method", "-m", type=click.Choice(["mnn", "harmony", "combat", "none"]),
              default=None, help="Correction method")
@click.option("--n-pcs", type=int, default=None, help="Number of principal components")
@click.option("--k", type=int, default=None, help="Nearest neighbors for MNN pairs")
@click.option("--merge-order", multiple=True, help="Batch merge order (repeat per batch)")
@click.option("--auto-merge", is_flag=True, help="Choose merge order by MNN pair counts")
@click.pass_context
def integrate(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    method: Optional[str],
    n_pcs: Optional[int],
    k: Optional[int],
    merge_order: Tuple[str, ...],
    auto_merge: bool,
) -> None:
    """Run multi-batch PCA and batch correction."""
    logger = ctx.obj["logger"]
    logger.info(f"Running integration on: {input_path}")

    import anndata as ad
    from mnn_integrator.core.integration import IntegrationConfig, run_integration

    cfg = IntegrationConfig.from_yaml(Path(config)) if config else IntegrationConfig()
    if method:
        cfg.method = method
    if n_pcs is not None:
        cfg.pca.n_components = n_pcs
    if k is not None:
        cfg.mnn.k = k
    if merge_order:
        cfg.mnn.merge_order = list(merge_order)
    if auto_merge:
        cfg.mnn.auto_merge = True

    adata = ad.read_h5ad(input_path)
    logger.info(f"Loaded {adata.n_obs} cells, {adata.n_vars} genes")

    result = run_integration(adata, cfg, output_dir=Path(output_path), logger=logger)

    click.echo(
        f"Integration complete: {result.method} on {result.n_batches} batches "
        f"({result.n_components} PCs) -> obsm['{result.use_rep}']"
    )
    if result.merge_info is not None and not result.merge_info.empty:
        for row in result.merge_info.itertuples(index=False):
            click.echo(f"  step {row.step}: {row.reference} + {row.target} ({row.n_pairs} pairs)")
    click.echo(f"Output saved to: {Path(output_path) / 'corrected.h5ad'}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Corrected AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML) with a clustering section")
@click.option("--use-rep", default=None, help="obsm key to cluster on")
@click.option("--resolution", type=float, default=None, help="Leiden clustering resolution")
@click.option("--neighbors-k", type=int, default=None, help="k for neighborhood graph")
@click.option("--skip-tsne", is_flag=True, help="Skip t-SNE embeddings")
@click.pass_context
def cluster(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    use_rep: Optional[str],
    resolution: Optional[float],
    neighbors_k: Optional[int],
    skip_tsne: bool,
) -> None:
    """Run Leiden clustering and batch-mixing diagnostics."""
    logger = ctx.obj["logger"]
    logger.info(f"Running clustering on: {input_path}")

    import anndata as ad
    from mnn_integrator.core.clustering import ClusteringStageConfig, run_clustering_stage

    cfg = ClusteringStageConfig.from_yaml(Path(config)) if config else ClusteringStageConfig()
    if use_rep:
        cfg.graph.use_rep = use_rep
    if resolution is not None:
        cfg.graph.resolution = resolution
    if neighbors_k is not None:
        cfg.graph.neighbors_k = neighbors_k
    if skip_tsne:
        cfg.embedding.compute_tsne = False

    adata = ad.read_h5ad(input_path)
    logger.info(f"Loaded {adata.n_obs} cells, {adata.n_vars} genes")

    result = run_clustering_stage(adata, cfg, output_dir=Path(output_path), logger=logger)
    summary = result.to_dict()

    click.echo(f"Clustering complete: {summary['n_clusters']} clusters on {summary['use_rep']}")
    if summary["mean_entropy"] is not None:
        click.echo(f"Mean batch mixing entropy: {summary['mean_entropy']:.3f}")
    click.echo(f"Output saved to: {Path(output_path) / 'clustered.h5ad'}")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Configuration file (YAML) with preprocessing, integration "
                   "and clustering sections")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--log-dir", type=click.Path(), default=None,
              help="Directory for the run log (default: <out>/logs)")
@click.pass_context
def run(
    ctx: click.Context,
    config: str,
    output_path: str,
    log_dir: Optional[str],
) -> None:
    """Run preprocessing, integration and clustering in one process."""
    verbose = ctx.obj["verbose"]

    from mnn_integrator.pipeline import PipelineLogger, run_workflow

    out_dir = Path(output_path)
    pipeline_logger = PipelineLogger(
        str(Path(log_dir) if log_dir else out_dir / "logs"),
        log_level="DEBUG" if verbose else "INFO",
    )
    pipeline_logger.setup()

    try:
        results = run_workflow(Path(config), output_dir=out_dir, pipeline_logger=pipeline_logger)
    except Exception as e:
        click.echo(f"Workflow failed: {e}", err=True)
        sys.exit(1)

    clustering = results["cluster"].to_dict()
    integration = results["integrate"].to_dict()
    click.echo(
        f"Workflow complete: {integration['n_batches']} batches corrected with "
        f"{integration['method']}, {clustering['n_clusters']} clusters"
    )
    click.echo(f"Output saved to: {out_dir}")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
@click.option("--start-stage", help="Stage to start from")
@click.option("--end-stage", help="Stage to end at")
@click.option("--dry-run", is_flag=True, help="Show execution plan without running")
@click.option("--force", is_flag=True, help="Ignore checkpoint and re-run all stages")
@click.option("--resume", is_flag=True, help="Resume from last completed stage")
@click.option("--state-file", type=click.Path(), default=None,
              help="Checkpoint state file (default: .pipeline_state.json)")
@click.pass_context
def pipeline(
    ctx: click.Context,
    config: str,
    start_stage: Optional[str],
    end_stage: Optional[str],
    dry_run: bool,
    force: bool,
    resume: bool,
    state_file: Optional[str],
) -> None:
    """Run stages from a pipeline configuration.

    Executes stages as subprocesses in dependency order, with
    checkpoint support and detailed logging.
    """
    logger = ctx.obj["logger"]
    verbose = ctx.obj["verbose"]

    from mnn_integrator.pipeline import (
        PipelineConfig,
        PipelineExecutor,
        PipelineLogger,
    )

    logger.info(f"Loading pipeline config: {config}")
    pipeline_config = PipelineConfig(config)
    pipeline_config.load()
    pipeline_config.parse_stages()

    valid, errors = pipeline_config.validate_dependencies()
    if not valid:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    order = pipeline_config.get_execution_order()
    click.echo(f"Pipeline stages: {' -> '.join(order)}")

    if dry_run:
        click.echo("Dry run - no stages will be executed")
        for stage_id in order:
            cmd = " ".join(pipeline_config.stages[stage_id].get_command())
            click.echo(f"  {stage_id}: {cmd}")
        return

    log_dir = pipeline_config.global_settings["global"].get(
        "log_dir", str(Path(config).parent / "logs")
    )
    pipeline_logger = PipelineLogger(str(log_dir), log_level="DEBUG" if verbose else "INFO")
    pipeline_logger.setup()

    executor = PipelineExecutor(pipeline_config, pipeline_logger, state_file=state_file)

    if resume:
        resume_stage = executor.get_resume_stage()
        if resume_stage:
            click.echo(f"Resuming from stage: {resume_stage}")
            start_stage = resume_stage

    exit_code = executor.run(
        start_stage=start_stage,
        end_stage=end_stage,
        dry_run=dry_run,
        force=force,
    )

    if exit_code == 0:
        click.echo("Pipeline completed successfully")
    else:
        click.echo(f"Pipeline failed with exit code {exit_code}", err=True)
        sys.exit(exit_code)


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
