"""Pytest configuration and shared fixtures for MNN-Integrator tests."""

import sys
from pathlib import Path

import pytest
import numpy as np
import pandas as pd

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_mock_counts,
    create_mock_batches,
    create_merged_adata,
    create_shifted_embedding,
    create_embedding_adata,
    write_dataset_files,
)


# ============================================================================
# Mock Data Fixtures
# ============================================================================


@pytest.fixture
def mixing_obs() -> pd.DataFrame:
    """Create obs with clusters that are fully mixed or batch-specific.

    Cluster 0 holds 10 cells from each batch, cluster 1 holds 10 cells
    from batch1 only, cluster 10 holds 5 cells from batch2 only.
    """
    clusters = ["0"] * 20 + ["1"] * 10 + ["10"] * 5
    batches = ["batch1"] * 10 + ["batch2"] * 10 + ["batch1"] * 10 + ["batch2"] * 5
    cell_types = ["alpha"] * 15 + ["beta"] * 5 + ["beta"] * 10 + ["delta"] * 5
    n_cells = len(clusters)
    return pd.DataFrame(
        {
            "cluster": pd.Categorical(clusters),
            "batch": pd.Categorical(batches, categories=["batch1", "batch2", "batch3"]),
            "cell_type": pd.Categorical(cell_types),
            "donor": [f"D{i % 3}" for i in range(n_cells)],
            "size_factor": np.linspace(0.5, 1.5, n_cells),
        },
        index=[f"cell_{i}" for i in range(n_cells)],
    )


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def mock_counts():
    """Create raw counts for one dataset with spike-ins and two donors."""
    return create_mock_counts(n_cells=120, n_genes=200)


@pytest.fixture
def mock_batches():
    """Create two raw count datasets with a batch effect."""
    return create_mock_batches(n_batches=2, n_cells=100, n_genes=150)


@pytest.fixture
def merged_adata():
    """Create merged log-normalized data from three batches."""
    return create_merged_adata(n_batches=3, n_cells=80, n_genes=120)


@pytest.fixture
def embedding_adata():
    """Create AnnData with an integrated embedding in obsm."""
    return create_embedding_adata()


# ============================================================================
# Dataset File Fixtures
# ============================================================================


@pytest.fixture
def dataset_files(tmp_path, mock_batches) -> dict:
    """Write the mock batches as counts and metadata CSV files.

    Returns a mapping of batch name to (counts_path, metadata_path).
    """
    data_dir = tmp_path / "data"
    return {
        name: write_dataset_files(adata, data_dir, name)
        for name, adata in mock_batches.items()
    }


@pytest.fixture
def sample_run_config(tmp_path, dataset_files) -> Path:
    """Create a combined preprocessing/integration/clustering config file."""
    import yaml

    datasets = []
    for name, (counts_path, metadata_path) in dataset_files.items():
        datasets.append(
            {
                "name": name,
                "counts_path": str(counts_path),
                "metadata_path": str(metadata_path),
                "cell_id_col": "cell_id",
                "donor_col": "donor",
                "cell_type_col": "cell_type",
            }
        )

    config = {
        "preprocessing": {
            "datasets": datasets,
            "qc": {"nmads": 3.0, "by_donor": True},
            "feature_selection": {"method": "trend", "selection": "positive_bio"},
        },
        "integration": {
            "method": "mnn",
            "pca": {"n_components": 10, "svd_solver": "exact"},
            "mnn": {"k": 10, "smooth_k": 10},
        },
        "clustering": {
            "graph": {"neighbors_k": 10, "resolution": 0.5},
            "embedding": {"compute_tsne": False},
        },
    }

    path = tmp_path / "run.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f, sort_keys=False)

    return path


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_pipeline_config(tmp_path) -> Path:
    """Create sample pipeline configuration file."""
    import yaml

    config = {
        "pipeline": {
            "name": "Test Pipeline",
            "version": "1.0",
        },
        "global": {
            "output_dir": str(tmp_path / "output"),
            "config": str(tmp_path / "run.yaml"),
            "log_dir": str(tmp_path / "logs"),
        },
        "stages": {
            "preprocess": {
                "name": "Preprocessing",
                "script_module": "mnn_integrator.core.preprocessing",
                "outputs": {"merged": "{global.output_dir}/preprocessing/merged.h5ad"},
                "args": {
                    "config": "{global.config}",
                    "output": "{global.output_dir}/preprocessing",
                },
            },
            "integrate": {
                "name": "Integration",
                "script_module": "mnn_integrator.core.integration",
                "depends_on": ["preprocess"],
                "inputs": {"merged": "{stages.preprocess.outputs.merged}"},
                "args": {
                    "input": "{stages.preprocess.outputs.merged}",
                    "output": "{global.output_dir}/integration",
                },
            },
            "cluster": {
                "name": "Clustering",
                "script_module": "mnn_integrator.core.clustering",
                "depends_on": ["integrate"],
            },
        },
    }

    path = tmp_path / "pipeline.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f, sort_keys=False)

    return path
