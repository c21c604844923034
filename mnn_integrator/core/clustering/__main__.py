"""Clustering module CLI runner.

Enables running clustering and batch-mixing diagnostics as:
    python -m mnn_integrator.core.clustering --input <corrected.h5ad> --output <dir>

Usage Examples:
    # Cluster the MNN-corrected data
    python -m mnn_integrator.core.clustering \
        --input output/pancreas/integration/corrected.h5ad \
        --output output/pancreas/clustering

    # Custom resolution, no t-SNE
    python -m mnn_integrator.core.clustering \
        --input output/pancreas/integration/corrected.h5ad \
        --output output/pancreas/clustering \
        --resolution 0.6 \
        --skip-tsne
"""

import argparse
import sys
from pathlib import Path

from ...io.logging import log_json, log_yaml, setup_logging
from .config import ClusteringStageConfig
from .runner import run_clustering_stage


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="MNN-Integrator Clustering (Leiden + t-SNE + mixing diagnostics)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Cluster corrected data
  python -m mnn_integrator.core.clustering \\
      --input output/pancreas/integration/corrected.h5ad \\
      --output output/pancreas/clustering

  # Cluster the uncorrected PCA coordinates for comparison
  python -m mnn_integrator.core.clustering \\
      --input corrected.h5ad --output clustering_pca --use-rep X_pca
        """,
    )
    parser.add_argument(
        "--input", "-i",
        type=Path,
        required=True,
        help="Corrected AnnData file from integration",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        required=True,
        help="Output directory",
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        default=None,
        help="Path to config YAML with a clustering section (optional)",
    )
    parser.add_argument(
        "--use-rep",
        type=str,
        default=None,
        help="obsm key to cluster on (default: corrected representation)",
    )
    parser.add_argument(
        "--resolution", "-r",
        type=float,
        default=None,
        help="Leiden resolution (overrides config)",
    )
    parser.add_argument(
        "--neighbors-k",
        type=int,
        default=None,
        help="k for neighborhood graph (overrides config)",
    )
    parser.add_argument(
        "--skip-tsne",
        action="store_true",
        help="Skip t-SNE embeddings",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-dir", "-l",
        type=Path,
        default=None,
        help="Directory for log file (default: console only)",
    )

    args = parser.parse_args()

    logger = setup_logging(
        "mnn_integrator.clustering",
        verbose=args.verbose,
        log_dir=args.log_dir,
        log_filename="clustering.log",
    )

    try:
        import anndata as ad

        config = (
            ClusteringStageConfig.from_yaml(args.config)
            if args.config
            else ClusteringStageConfig.default()
        )
        if args.use_rep:
            config.graph.use_rep = args.use_rep
        if args.resolution is not None:
            config.graph.resolution = args.resolution
        if args.neighbors_k is not None:
            config.graph.neighbors_k = args.neighbors_k
        if args.skip_tsne:
            config.embedding.compute_tsne = False

        logger.info("Input: %s", args.input)
        logger.info("Output: %s", args.output)
        adata = ad.read_h5ad(args.input)
        logger.info("Loaded %d cells, %d genes", adata.n_obs, adata.n_vars)

        result = run_clustering_stage(adata, config, output_dir=args.output, logger=logger)
        summary = {"stage": "clustering", **result.to_dict()}
        log_yaml(None, summary, logger=logger)
        if args.log_dir is not None:
            log_json(args.log_dir / "runs.jsonl", summary)

    except Exception as e:
        logger.error(f"Clustering failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
