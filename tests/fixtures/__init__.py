"""Test fixtures for MNN-Integrator.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    create_mock_counts,
    create_mock_batches,
    create_merged_adata,
    create_shifted_embedding,
    create_embedding_adata,
    write_dataset_files,
)

__all__ = [
    "create_mock_counts",
    "create_mock_batches",
    "create_merged_adata",
    "create_shifted_embedding",
    "create_embedding_adata",
    "write_dataset_files",
]
