"""Unit tests for clustering module (Stage E)."""

import pytest
import numpy as np
import pandas as pd

from scrna_workflow.core.clustering import (
    ClusteringConfig,
    DEConfig,
    ConservedMarkerConfig,
    AnnotationConfig,
    ClusteringStageConfig,
    ClusteringEngine,
    ClusteringResult,
    resolution_key,
)


def small_config(**clustering) -> ClusteringStageConfig:
    params = dict(n_pcs=10, neighbors_k=10, resolutions=[0.1, 0.5], active_resolution=0.1)
    params.update(clustering)
    return ClusteringStageConfig(clustering=ClusteringConfig(**params))


class TestClusteringConfig:
    """Tests for clustering configuration classes."""

    def test_default_values(self):
        """Test default clustering config."""
        config = ClusteringConfig()
        assert config.n_pcs == 40
        assert config.neighbors_k == 20
        assert config.resolutions == [0.4, 0.6, 0.8, 1.0, 1.4]
        assert config.active_resolution == 0.8
        assert config.cluster_key == "cluster"

    def test_de_defaults(self):
        """Test default differential expression settings."""
        config = DEConfig()
        assert config.method == "wilcoxon"
        assert config.use_raw is True
        assert config.logfc_threshold == 0.25
        assert config.min_pct == 0.1
        assert config.only_positive is True

    def test_conserved_defaults(self):
        """Test conserved marker settings."""
        config = ConservedMarkerConfig()
        assert config.grouping_key == "sample"
        assert config.min_cells_per_group == 3

    def test_from_dict_labels_as_strings(self):
        """Test that integer cluster ids in labels become strings."""
        config = ClusteringStageConfig.from_dict(
            {"annotation": {"labels": {0: "Monocytes", 3: "B cells"}}}
        )
        assert config.annotation.labels == {"0": "Monocytes", "3": "B cells"}

    def test_annotation_follows_cluster_key(self):
        """Test that annotation reads the clustering column by default."""
        config = ClusteringStageConfig.from_dict({"clustering": {"cluster_key": "leiden"}})
        assert config.annotation.cluster_key == "leiden"

        explicit = ClusteringStageConfig.from_dict(
            {"clustering": {"cluster_key": "leiden"}, "annotation": {"cluster_key": "subcluster"}}
        )
        assert explicit.annotation.cluster_key == "subcluster"

    def test_round_trip_dict(self):
        """Test that to_dict output rebuilds the same config."""
        config = ClusteringStageConfig.from_dict(
            {
                "clustering": {"resolutions": [0.2, 0.4]},
                "annotation": AnnotationConfig(labels={"1": "T cells"}).__dict__,
                "marker_genes": ["CD14"],
                "n_top_markers": 5,
            }
        )
        assert ClusteringStageConfig.from_dict(config.to_dict()) == config

    def test_from_yaml_nested(self, tmp_path):
        """Test loading a nested clustering_stage section."""
        import yaml

        path = tmp_path / "config.yaml"
        with open(path, "w") as f:
            yaml.safe_dump({"clustering_stage": {"de": {"method": "t-test"}}}, f)
        assert ClusteringStageConfig.from_yaml(path).de.method == "t-test"


class TestResolutionKey:
    """Tests for resolution column names."""

    def test_float_formatting(self):
        """Test that integer and float resolutions share a name."""
        assert resolution_key(0.8) == "leiden_res_0.8"
        assert resolution_key(1) == "leiden_res_1.0"
        assert resolution_key(1.0) == resolution_key(1)


class TestClusteringEngine:
    """Tests for ClusteringEngine class."""

    def test_init_default(self):
        """Test engine initialization with defaults."""
        engine = ClusteringEngine()
        assert engine.config.clustering.cluster_key == "cluster"

    def test_run(self, clustered_adata):
        """Test graph, UMAP and the Leiden sweep."""
        del clustered_adata.obs["cluster"]
        del clustered_adata.obsm["X_umap"]
        engine = ClusteringEngine(small_config())
        result = engine.run(clustered_adata, use_rep="X_pca_harmony")

        assert isinstance(result, ClusteringResult)
        assert "leiden_res_0.1" in clustered_adata.obs.columns
        assert "leiden_res_0.5" in clustered_adata.obs.columns
        assert "cluster" in clustered_adata.obs.columns
        assert "X_umap" in clustered_adata.obsm
        assert result.n_clusters == clustered_adata.obs["cluster"].nunique()
        assert sum(result.cluster_sizes.values()) == clustered_adata.n_obs
        assert clustered_adata.uns["active_resolution"] == 0.1

    def test_recovers_cell_types(self, clustered_adata):
        """Test that well separated types form separate clusters."""
        truth = clustered_adata.obs["cluster"].astype(str).to_numpy()
        del clustered_adata.obs["cluster"]
        ClusteringEngine(small_config()).run(clustered_adata, use_rep="X_pca_harmony")

        table = pd.crosstab(clustered_adata.obs["cluster"], truth)
        # Each cluster is dominated by a single simulated type
        purity = table.max(axis=1) / table.sum(axis=1)
        assert (purity > 0.95).all()
        assert clustered_adata.obs["cluster"].nunique() >= 3

    def test_active_resolution_added(self, clustered_adata):
        """Test that the active resolution is computed if not in the sweep."""
        engine = ClusteringEngine(small_config(resolutions=[0.5], active_resolution=0.2))
        result = engine.run(clustered_adata, use_rep="X_pca_harmony", compute_umap=False)
        assert sorted(result.resolution_keys) == [0.2, 0.5]
        assert result.active_resolution == 0.2

    def test_cluster_categories_ordered(self, clustered_adata):
        """Test numeric ordering of cluster ids."""
        engine = ClusteringEngine(small_config(resolutions=[3.0], active_resolution=3.0))
        engine.run(clustered_adata, use_rep="X_pca_harmony", compute_umap=False)
        categories = list(clustered_adata.obs["cluster"].cat.categories)
        assert categories == sorted(categories, key=int)

    def test_build_graph_missing_rep(self, clustered_adata):
        """Test error for an unknown embedding."""
        with pytest.raises(KeyError, match="X_missing"):
            ClusteringEngine(small_config()).build_graph(clustered_adata, use_rep="X_missing")

    def test_umap_requires_graph(self, clustered_adata):
        """Test error for UMAP without a neighbor graph."""
        with pytest.raises(KeyError, match="build_graph"):
            ClusteringEngine(small_config()).run_umap(clustered_adata)

    def test_no_resolutions(self, clustered_adata):
        """Test error for an empty resolution list."""
        engine = ClusteringEngine(small_config())
        engine.build_graph(clustered_adata, use_rep="X_pca_harmony")
        with pytest.raises(ValueError, match="resolution"):
            engine.cluster_resolutions(clustered_adata, [])

    def test_set_active_missing(self, clustered_adata):
        """Test error for a resolution that was not computed."""
        with pytest.raises(KeyError, match="not computed"):
            ClusteringEngine(small_config()).set_active_resolution(clustered_adata, 2.0)

    def test_summarize_resolutions(self, clustered_adata):
        """Test per-resolution statistics."""
        engine = ClusteringEngine(small_config())
        engine.run(clustered_adata, use_rep="X_pca_harmony", compute_umap=False)
        summary = engine.summarize_resolutions(
            clustered_adata, use_rep="X_pca_harmony", resolutions=[0.1, 0.5, 9.0]
        )

        assert summary["resolution"].tolist() == [0.1, 0.5]
        assert (summary["min_size"] <= summary["max_size"]).all()
        assert summary["silhouette"].between(-1, 1).all()


class TestClusterSummaries:
    """Tests for per-cluster tables."""

    def test_cells_per_cluster_by_sample(self, clustered_adata):
        """Test the cluster x sample table."""
        table = ClusteringEngine().cells_per_cluster_by_sample(clustered_adata)

        assert table.index.name == "cluster_id"
        assert list(table.columns) == ["ctrl", "stim", "total"]
        assert table["total"].sum() == clustered_adata.n_obs
        assert table.loc["0", "ctrl"] == 40

    def test_cells_per_cluster_missing_column(self, clustered_adata):
        """Test error for an unknown sample column."""
        with pytest.raises(KeyError):
            ClusteringEngine().cells_per_cluster_by_sample(clustered_adata, sample_key="donor")

    def test_cluster_qc_summary(self, clustered_adata):
        """Test median QC metrics and phase fractions per cluster."""
        summary = ClusteringEngine().cluster_qc_summary(clustered_adata)

        assert summary["cluster_id"].astype(str).tolist() == ["0", "1", "2"]
        assert summary["n_cells"].tolist() == [80, 80, 80]
        assert "median_nUMI" in summary.columns
        phase_cols = [c for c in summary.columns if c.startswith("frac_")]
        assert sorted(phase_cols) == ["frac_G1", "frac_G2M", "frac_S"]
        np.testing.assert_allclose(summary[phase_cols].sum(axis=1), 1.0)

    def test_remove_clusters(self, clustered_adata):
        """Test dropping clusters."""
        filtered = ClusteringEngine().remove_clusters(clustered_adata, ["2", "99"])
        assert filtered.n_obs == 160
        assert list(filtered.obs["cluster"].cat.categories) == ["0", "1"]

    def test_remove_all_clusters(self, clustered_adata):
        """Test error when every cell would be removed."""
        with pytest.raises(ValueError, match="all cells"):
            ClusteringEngine().remove_clusters(clustered_adata, ["0", "1", "2"])
