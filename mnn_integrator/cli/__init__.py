"""Command-line interface for MNN-Integrator.

Provides CLI commands for running workflow stages.

Example Usage
-------------
    # From command line:
    mnn-integrator --help
    mnn-integrator preprocess --config configs/pancreas.yaml --out out/preprocessing
    mnn-integrator run --config configs/pancreas.yaml --out out/
    mnn-integrator pipeline --config configs/pipeline.yaml
"""

__version__ = "1.0.0"

from .main import cli, main

__all__ = [
    "__version__",
    "cli",
    "main",
]
