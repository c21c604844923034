"""Integration module CLI runner.

Enables running multi-batch PCA and batch correction as:
    python -m mnn_integrator.core.integration --input <merged.h5ad> --output <dir>

Usage Examples:
    # MNN correction with default settings
    python -m mnn_integrator.core.integration \
        --input output/pancreas/preprocessing/merged.h5ad \
        --output output/pancreas/integration

    # Automatic merge order and a config file
    python -m mnn_integrator.core.integration \
        --input output/pancreas/preprocessing/merged.h5ad \
        --output output/pancreas/integration \
        --config configs/pancreas.yaml \
        --auto-merge
"""

import argparse
import sys
from pathlib import Path

from ...io.logging import log_json, log_yaml, setup_logging
from .config import IntegrationConfig
from .engine import METHODS
from .runner import run_integration


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="MNN-Integrator Integration (multi-batch PCA + correction)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # MNN correction
  python -m mnn_integrator.core.integration \\
      --input output/pancreas/preprocessing/merged.h5ad \\
      --output output/pancreas/integration

  # Explicit merge order
  python -m mnn_integrator.core.integration \\
      --input merged.h5ad --output integration \\
      --merge-order grun muraro lawlor segerstolpe

  # Harmony instead of MNN (requires harmonypy)
  python -m mnn_integrator.core.integration \\
      --input merged.h5ad --output integration --method harmony
        """,
    )
    parser.add_argument(
        "--input", "-i",
        type=Path,
        required=True,
        help="Merged AnnData file from preprocessing",
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
        help="Path to config YAML with an integration section (optional)",
    )
    parser.add_argument(
        "--method", "-m",
        choices=list(METHODS),
        default=None,
        help="Correction method (overrides config)",
    )
    parser.add_argument(
        "--n-pcs",
        type=int,
        default=None,
        help="Number of principal components (overrides config)",
    )
    parser.add_argument(
        "--k",
        type=int,
        default=None,
        help="Number of nearest neighbors for MNN (overrides config)",
    )
    parser.add_argument(
        "--merge-order",
        nargs="+",
        default=None,
        help="Explicit batch merge order",
    )
    parser.add_argument(
        "--auto-merge",
        action="store_true",
        help="Choose the merge order by the number of MNN pairs",
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
        "mnn_integrator.integration",
        verbose=args.verbose,
        log_dir=args.log_dir,
        log_filename="integration.log",
    )

    try:
        import anndata as ad

        config = (
            IntegrationConfig.from_yaml(args.config)
            if args.config
            else IntegrationConfig.default()
        )
        if args.method:
            config.method = args.method
        if args.n_pcs is not None:
            config.pca.n_components = args.n_pcs
        if args.k is not None:
            config.mnn.k = args.k
        if args.merge_order:
            config.mnn.merge_order = args.merge_order
        if args.auto_merge:
            config.mnn.auto_merge = True

        logger.info("Input: %s", args.input)
        logger.info("Output: %s", args.output)
        adata = ad.read_h5ad(args.input)
        logger.info("Loaded %d cells, %d genes", adata.n_obs, adata.n_vars)

        result = run_integration(adata, config, output_dir=args.output, logger=logger)
        summary = {"stage": "integration", **result.to_dict()}
        log_yaml(None, summary, logger=logger)
        if args.log_dir is not None:
            log_json(args.log_dir / "runs.jsonl", summary)

    except Exception as e:
        logger.error(f"Integration failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
