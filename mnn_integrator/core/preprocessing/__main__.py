"""Preprocessing module CLI runner.

Enables running Stages A-E as:
    python -m mnn_integrator.core.preprocessing --config <yaml> --output <dir>

Usage Examples:
    # Load, QC, normalize and merge the pancreas datasets
    python -m mnn_integrator.core.preprocessing \
        --config configs/pancreas.yaml \
        --output output/pancreas/preprocessing

    # With verbose logging and log file
    python -m mnn_integrator.core.preprocessing \
        --config configs/pancreas.yaml \
        --output output/pancreas/preprocessing \
        --log-dir logs/pancreas \
        --verbose
"""

import argparse
import sys
from pathlib import Path

from ...io.logging import log_json, log_yaml, setup_logging
from .config import PreprocessingConfig
from .runner import run_preprocessing


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="MNN-Integrator Preprocessing (Stages A-E)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all preprocessing stages
  python -m mnn_integrator.core.preprocessing \\
      --config configs/pancreas.yaml \\
      --output output/pancreas/preprocessing

  # Keep only highly variable genes in the merged object
  python -m mnn_integrator.core.preprocessing \\
      --config configs/pancreas.yaml \\
      --output output/pancreas/preprocessing \\
      --subset-hvg
        """,
    )
    parser.add_argument(
        "--config", "-c",
        type=Path,
        required=True,
        help="Path to preprocessing config YAML with a datasets list",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        required=True,
        help="Output directory",
    )
    parser.add_argument(
        "--subset-hvg",
        action="store_true",
        help="Keep only selected genes in merged.h5ad",
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
        "mnn_integrator.preprocessing",
        verbose=args.verbose,
        log_dir=args.log_dir,
        log_filename="preprocessing.log",
    )

    try:
        config = PreprocessingConfig.from_yaml(args.config)
        if args.subset_hvg:
            config.merge.subset_hvg = True

        logger.info("Preprocessing: %d datasets", len(config.datasets))
        logger.info("Config: %s", args.config)
        logger.info("Output: %s", args.output)
        result = run_preprocessing(config, output_dir=args.output, logger=logger)
        summary = {"stage": "preprocessing", **result.to_dict()}
        log_yaml(None, summary, logger=logger)
        if args.log_dir is not None:
            log_json(args.log_dir / "runs.jsonl", summary)

    except Exception as e:
        logger.error(f"Preprocessing failed: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
