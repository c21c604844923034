"""MNN-Integrator: batch correction of single-cell RNA-seq datasets.

This package provides tools for:
- Loading count matrices and per-cell metadata from several studies
- Outlier-based cell quality control with per-reason removal records
- Library-size normalization and gene variance modelling
- Multi-batch PCA and mutual nearest neighbor (MNN) correction
- Leiden clustering with batch-mixing diagnostics

Example usage:
    >>> from mnn_integrator.core.preprocessing import PreprocessingConfig, run_preprocessing
    >>> from mnn_integrator.core.integration import run_integration
    >>> from mnn_integrator.core.clustering import run_clustering_stage
    >>>
    >>> result = run_preprocessing(PreprocessingConfig.from_yaml("configs/pancreas.yaml"))
    >>> run_integration(result.adata)
    >>> run_clustering_stage(result.adata)
"""

__version__ = "1.0.0"
