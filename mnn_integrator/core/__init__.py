"""Core computational modules for MNN-Integrator.

This package contains the analysis stages:
- preprocessing: Data loading, QC, normalization, gene variance, merging
- integration: Multi-batch PCA and MNN batch correction
- clustering: Leiden clustering, t-SNE and batch-mixing diagnostics
"""
