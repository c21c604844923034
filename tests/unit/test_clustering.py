"""Unit tests for the clustering module (Leiden, t-SNE and batch-mixing diagnostics)."""

import numpy as np
import pandas as pd
import pytest

from mnn_integrator.core.clustering import (
    ClusteringConfig,
    EmbeddingConfig,
    ClusteringStageConfig,
    ClusteringEngine,
    sort_cluster_labels,
    cluster_batch_table,
    batch_mixing_entropy,
    cluster_composition,
    lost_variance_table,
    summarize_batches,
    run_clustering_stage,
)


class TestClusteringConfig:
    """Tests for clustering configuration."""

    def test_defaults(self):
        """Test default configuration values."""
        config = ClusteringStageConfig.default()
        assert config.graph.neighbors_k == 15
        assert config.graph.resolution == 1.0
        assert config.graph.use_rep is None
        assert config.embedding.compute_tsne is True

    def test_from_yaml(self, tmp_path):
        """Test loading the clustering section of a shared YAML."""
        import yaml

        data = {
            "integration": {"method": "mnn"},
            "clustering": {
                "graph": {"resolution": 0.5, "use_rep": "X_mnn"},
                "embedding": {"perplexity": 10.0},
                "batch_key": "study",
            },
        }
        path = tmp_path / "config.yaml"
        with open(path, "w") as f:
            yaml.dump(data, f)

        config = ClusteringStageConfig.from_yaml(path)
        assert config.graph.resolution == 0.5
        assert config.graph.use_rep == "X_mnn"
        assert config.embedding.perplexity == 10.0
        assert config.batch_key == "study"

    def test_to_dict(self):
        """Test that an unset representation serializes as an empty string."""
        d = ClusteringStageConfig().to_dict()
        assert d["graph"]["use_rep"] == ""
        assert d["embedding"]["random_seed"] == 100


class TestClusteringEngine:
    """Tests for ClusteringEngine."""

    def test_sort_cluster_labels(self):
        """Test numeric-aware label sorting."""
        assert sort_cluster_labels(["10", "2", "1", "a"]) == ["1", "2", "10", "a"]

    def test_resolve_rep_from_integration(self, embedding_adata):
        """Test that the integrated representation is used by default."""
        assert ClusteringEngine().resolve_rep(embedding_adata) == "X_mnn"

    def test_resolve_rep_order(self, embedding_adata):
        """Test that explicit and configured representations take precedence."""
        config = ClusteringStageConfig(graph=ClusteringConfig(use_rep="X_pca"))
        engine = ClusteringEngine(config)
        assert engine.resolve_rep(embedding_adata) == "X_pca"
        assert engine.resolve_rep(embedding_adata, "X_mnn") == "X_mnn"

    def test_resolve_rep_fallback(self, embedding_adata):
        """Test the X_pca fallback without integration metadata."""
        del embedding_adata.uns["integration"]
        assert ClusteringEngine().resolve_rep(embedding_adata) == "X_pca"

    def test_resolve_rep_missing(self, embedding_adata):
        """Test that unknown representations raise."""
        with pytest.raises(ValueError, match="not found"):
            ClusteringEngine().resolve_rep(embedding_adata, "X_harmony")

    def test_run_clustering(self, embedding_adata):
        """Test that Leiden clusters never mix separated groups."""
        result = ClusteringEngine().run_clustering(embedding_adata, neighbors_k=10)
        obs = embedding_adata.obs

        assert result.use_rep == "X_mnn"
        assert result.n_clusters >= 2
        assert sum(result.cluster_sizes.values()) == embedding_adata.n_obs
        assert isinstance(obs["cluster"].dtype, pd.CategoricalDtype)
        assert list(obs["cluster"].cat.categories) == sort_cluster_labels(
            obs["cluster"].cat.categories
        )
        purity = obs.groupby("cluster", observed=True)["cell_type"].nunique()
        assert (purity == 1).all()

    def test_neighbors_clamped(self, embedding_adata):
        """Test that k larger than the data is clamped."""
        adata = embedding_adata[:12].copy()
        result = ClusteringEngine().run_clustering(adata, neighbors_k=50, cluster_key="leiden_small")
        assert "leiden_small" in adata.obs.columns
        assert result.cluster_key == "leiden_small"

    def test_compute_tsne(self, embedding_adata):
        """Test t-SNE storage under a named key with capped perplexity."""
        engine = ClusteringEngine()
        key = engine.compute_tsne(embedding_adata, "X_mnn", key="corrected", perplexity=100.0)

        assert key == "X_tsne_corrected"
        coords = embedding_adata.obsm[key]
        assert coords.shape == (embedding_adata.n_obs, 2)
        assert coords.dtype == np.float32

    def test_compute_tsne_errors(self, embedding_adata):
        """Test t-SNE input validation."""
        engine = ClusteringEngine()
        with pytest.raises(ValueError, match="not found"):
            engine.compute_tsne(embedding_adata, "X_umap", key="x")
        with pytest.raises(ValueError, match="at least 4"):
            engine.compute_tsne(embedding_adata[:3].copy(), "X_mnn", key="x")

    def test_run_embeds_both(self, embedding_adata):
        """Test corrected and uncorrected embeddings."""
        config = ClusteringStageConfig(embedding=EmbeddingConfig(perplexity=10.0))
        result = ClusteringEngine(config).run(embedding_adata)

        assert result.embeddings == ["X_tsne_corrected", "X_tsne_uncorrected"]
        assert embedding_adata.uns["clustering"]["use_rep"] == "X_mnn"
        assert embedding_adata.uns["clustering"]["n_clusters"] == result.n_clusters

    def test_run_without_tsne(self, embedding_adata):
        """Test that embeddings can be skipped."""
        config = ClusteringStageConfig(embedding=EmbeddingConfig(compute_tsne=False))
        result = ClusteringEngine(config).run(embedding_adata)
        assert result.embeddings == []
        assert not any(k.startswith("X_tsne") for k in embedding_adata.obsm)


class TestDiagnostics:
    """Tests for batch-mixing diagnostics."""

    def test_cluster_batch_table(self, mixing_obs):
        """Test counts, numeric cluster order and unused categories."""
        table = cluster_batch_table(mixing_obs)
        assert table.index.tolist() == ["0", "1", "10"]
        assert table.columns.tolist() == ["batch1", "batch2"]
        assert table.loc["0"].tolist() == [10, 10]
        assert table.loc["1"].tolist() == [10, 0]
        assert table.loc["10"].tolist() == [0, 5]

    def test_cluster_batch_table_missing_column(self, mixing_obs):
        """Test that a missing column raises."""
        with pytest.raises(ValueError, match="not found"):
            cluster_batch_table(mixing_obs, batch_key="study")

    def test_batch_mixing_entropy(self, mixing_obs):
        """Test entropy and dominant batch per cluster."""
        mixing = batch_mixing_entropy(mixing_obs).set_index("cluster")

        assert mixing.loc["0", "entropy"] == pytest.approx(1.0)
        assert mixing.loc["0", "n_batches"] == 2
        assert mixing.loc["1", "entropy"] == pytest.approx(0.0)
        assert mixing.loc["1", "dominant_batch"] == "batch1"
        assert mixing.loc["10", "dominant_batch"] == "batch2"
        assert mixing.loc["10", "dominant_fraction"] == pytest.approx(1.0)
        assert mixing.loc["10", "n_cells"] == 5

    def test_cluster_composition(self, mixing_obs):
        """Test cell-type counts and proportions within clusters."""
        comp = cluster_composition(mixing_obs)
        cluster0 = comp[comp["cluster"] == "0"].set_index("cell_type")

        assert cluster0.loc["alpha", "count"] == 15
        assert cluster0.loc["beta", "proportion"] == pytest.approx(0.25)
        assert comp.groupby("cluster", observed=True)["proportion"].sum().tolist() == pytest.approx(
            [1.0, 1.0, 1.0]
        )
        assert (comp["count"] > 0).all()

    def test_cluster_composition_counts_only(self, mixing_obs):
        """Test the unnormalized table."""
        comp = cluster_composition(mixing_obs, normalize=False)
        assert "proportion" not in comp.columns
        assert comp["count"].sum() == len(mixing_obs)

    def test_lost_variance_table(self):
        """Test the table rebuilt from integration metadata."""
        import anndata as ad

        adata = ad.AnnData(X=np.zeros((2, 2)))
        adata.uns["mnn"] = {
            "merge_order": ["b", "a", "c"],
            "lost_variance": {
                "a": np.array([0.1, 0.2]),
                "b": np.array([0.05, 0.07]),
                "c": np.array([0.0, 0.3]),
            },
        }
        table = lost_variance_table(adata)
        assert table.columns.tolist() == ["b", "a", "c"]
        assert table.index.tolist() == [1, 2]
        assert table.index.name == "step"
        assert table.loc[2, "c"] == pytest.approx(0.3)

    def test_lost_variance_table_absent(self):
        """Test that uncorrected data give an empty table."""
        import anndata as ad

        assert lost_variance_table(ad.AnnData(X=np.zeros((2, 2)))).empty

    def test_summarize_batches(self, mixing_obs):
        """Test the per-batch summary."""
        summary = summarize_batches(mixing_obs).set_index("batch")
        assert summary.loc["batch1", "n_cells"] == 20
        assert summary.loc["batch2", "n_cells"] == 15
        assert summary.loc["batch1", "n_clusters"] == 2
        assert "median_size_factor" in summary.columns
        assert "batch3" not in summary.index


class TestRunClusteringStage:
    """Tests for the clustering stage runner."""

    def test_stage_outputs(self, embedding_adata, tmp_output_dir):
        """Test diagnostics and written files."""
        config = ClusteringStageConfig(embedding=EmbeddingConfig(compute_tsne=False))
        result = run_clustering_stage(embedding_adata, config, output_dir=tmp_output_dir)

        assert result.cluster_by_batch.shape[0] == result.clustering.n_clusters
        assert not result.cluster_mixing.empty
        assert not result.cluster_composition.empty
        assert result.lost_variance.empty
        assert 0.0 <= result.to_dict()["mean_entropy"] <= 1.0

        for name in [
            "clustered.h5ad",
            "cluster_by_batch.csv",
            "cluster_mixing.csv",
            "cluster_composition.csv",
            "batch_summary.csv",
        ]:
            assert (tmp_output_dir / name).exists()
