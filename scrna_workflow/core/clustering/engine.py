"""Clustering engine for cell population identification (Stage E).

Builds a kNN graph on the integrated embedding, runs Leiden at several
resolutions and provides the per-cluster summaries used to judge
whether clusters reflect biology or technical artifacts.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd

from .config import ClusteringStageConfig

QC_SUMMARY_METRICS = ["nUMI", "nGene", "log10GenesPerUMI", "mitoRatio", "S_score", "G2M_score"]


def resolution_key(resolution: float) -> str:
    """obs column name for a Leiden resolution (e.g. ``leiden_res_0.8``)."""
    return f"leiden_res_{float(resolution)}"


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    cluster_key : str
        Key in adata.obs containing the active cluster assignments
    n_clusters : int
        Number of clusters at the active resolution
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    resolution_keys : Dict[float, str]
        Resolution to obs column
    active_resolution : float
        Resolution copied into ``cluster_key``
    """

    cluster_key: str = "cluster"
    n_clusters: int = 0
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    resolution_keys: Dict[float, str] = field(default_factory=dict)
    active_resolution: float = float("nan")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "cluster_key": self.cluster_key,
            "n_clusters": self.n_clusters,
            "active_resolution": self.active_resolution,
            "resolutions": sorted(self.resolution_keys),
            "cluster_sizes": {str(k): int(v) for k, v in self.cluster_sizes.items()},
        }


@dataclass
class ResolutionSummary:
    """Cluster statistics for one Leiden resolution."""

    resolution: float
    key: str
    n_clusters: int = 0
    min_size: int = 0
    max_size: int = 0
    silhouette: float = float("nan")


class ClusteringEngine:
    """Graph-based clustering with the Leiden algorithm.

    Pipeline: neighbors on integrated embedding → UMAP → Leiden at each
    resolution → active resolution.

    Parameters
    ----------
    config : ClusteringStageConfig, optional
        Stage configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_workflow.core.clustering import ClusteringEngine
    >>> engine = ClusteringEngine()
    >>> result = engine.run(adata, use_rep="X_pca_harmony")
    >>> adata.obs["cluster"].value_counts()
    """

    def __init__(
        self,
        config: Optional[ClusteringStageConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringStageConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Clustering requires scanpy. Install with: pip install scanpy"
            )
        try:
            import igraph
            import leidenalg
        except ImportError:
            raise RuntimeError(
                "Leiden clustering requires igraph and leidenalg. "
                "Install with: pip install igraph leidenalg"
            )

    def build_graph(
        self,
        adata: Any,  # AnnData
        use_rep: str = "X_pca_harmony",
        n_pcs: Optional[int] = None,
        neighbors_k: Optional[int] = None,
    ) -> None:
        """Build the kNN graph on an embedding in adata.obsm.

        Parameters
        ----------
        adata : AnnData
            Input AnnData object (modified in place)
        use_rep : str
            obsm key of the embedding
        n_pcs : int, optional
            Leading components used. Uses config default if None.
        neighbors_k : int, optional
            Number of neighbors. Uses config default if None.
        """
        import scanpy as sc

        cfg = self.config.clustering
        n_pcs = n_pcs if n_pcs is not None else cfg.n_pcs
        neighbors_k = neighbors_k if neighbors_k is not None else cfg.neighbors_k

        if use_rep not in adata.obsm:
            raise KeyError(f"Representation '{use_rep}' not found in adata.obsm")

        use_pcs = min(n_pcs, adata.obsm[use_rep].shape[1])
        neighbors_k = min(neighbors_k, max(adata.n_obs - 1, 2))

        self.logger.info(
            "Building neighbor graph: rep=%s, n_pcs=%d, k=%d", use_rep, use_pcs, neighbors_k
        )
        sc.pp.neighbors(
            adata,
            n_neighbors=neighbors_k,
            n_pcs=use_pcs,
            use_rep=use_rep,
            random_state=cfg.random_seed,
        )

    def run_umap(self, adata: Any) -> None:
        """Compute a UMAP embedding from the neighbor graph."""
        import scanpy as sc

        if "neighbors" not in adata.uns:
            raise KeyError("Neighbor graph missing; run build_graph first")
        sc.tl.umap(adata, random_state=self.config.clustering.random_seed)
        self.logger.info("Computed UMAP embedding")

    def cluster_resolutions(
        self,
        adata: Any,  # AnnData
        resolutions: Optional[Sequence[float]] = None,
    ) -> Dict[float, str]:
        """Run Leiden at each resolution.

        Returns
        -------
        Dict[float, str]
            Resolution to obs column (``leiden_res_<r>``)
        """
        import scanpy as sc

        cfg = self.config.clustering
        resolutions = list(resolutions if resolutions is not None else cfg.resolutions)
        if not resolutions:
            raise ValueError("At least one clustering resolution is required")

        keys: Dict[float, str] = {}
        for resolution in resolutions:
            key = resolution_key(resolution)
            sc.tl.leiden(
                adata,
                resolution=resolution,
                random_state=cfg.random_seed,
                key_added=key,
                flavor="igraph",
                n_iterations=2,
                directed=False,
            )
            keys[float(resolution)] = key
            self.logger.info(
                "Leiden resolution %.2f: %d clusters",
                resolution,
                adata.obs[key].nunique(),
            )
        return keys

    def set_active_resolution(
        self,
        adata: Any,  # AnnData
        resolution: Optional[float] = None,
    ) -> str:
        """Copy one resolution's clusters into the active cluster column.

        Raises
        ------
        KeyError
            If the resolution has not been computed
        """
        cfg = self.config.clustering
        resolution = resolution if resolution is not None else cfg.active_resolution
        key = resolution_key(resolution)
        if key not in adata.obs.columns:
            raise KeyError(
                f"Resolution {resolution} not computed (missing obs column '{key}')"
            )

        labels = adata.obs[key].astype(str)
        categories = sorted(labels.unique(), key=lambda c: (len(c), c))
        adata.obs[cfg.cluster_key] = pd.Categorical(labels, categories=categories)
        adata.uns["active_resolution"] = float(resolution)

        self.logger.info(
            "Active clustering: %s -> '%s' (%d clusters)",
            key,
            cfg.cluster_key,
            len(categories),
        )
        return key

    def summarize_resolutions(
        self,
        adata: Any,  # AnnData
        use_rep: str = "X_pca_harmony",
        resolutions: Optional[Sequence[float]] = None,
        sample_size: int = 5000,
    ) -> pd.DataFrame:
        """Cluster counts, sizes and silhouette score per resolution.

        Silhouette scores are computed on ``use_rep`` over a random sample
        of at most ``sample_size`` cells.
        """
        from sklearn.metrics import silhouette_score

        cfg = self.config.clustering
        resolutions = list(resolutions if resolutions is not None else cfg.resolutions)
        embedding = np.asarray(adata.obsm[use_rep])[:, : cfg.n_pcs]

        rows: List[Dict[str, Any]] = []
        for resolution in resolutions:
            key = resolution_key(resolution)
            if key not in adata.obs.columns:
                self.logger.warning("Resolution %s not computed; skipped", resolution)
                continue
            labels = adata.obs[key].astype(str).to_numpy()
            sizes = pd.Series(labels).value_counts()
            summary = ResolutionSummary(
                resolution=float(resolution),
                key=key,
                n_clusters=int(sizes.size),
                min_size=int(sizes.min()),
                max_size=int(sizes.max()),
            )
            if 2 <= summary.n_clusters < adata.n_obs:
                summary.silhouette = float(
                    silhouette_score(
                        embedding,
                        labels,
                        sample_size=min(sample_size, adata.n_obs),
                        random_state=cfg.random_seed,
                    )
                )
            rows.append(summary.__dict__)
        return pd.DataFrame(rows)

    def cells_per_cluster_by_sample(
        self,
        adata: Any,  # AnnData
        cluster_key: Optional[str] = None,
        sample_key: str = "sample",
    ) -> pd.DataFrame:
        """Cluster x sample cell counts with a total column."""
        cluster_key = cluster_key or self.config.clustering.cluster_key
        for col in (cluster_key, sample_key):
            if col not in adata.obs.columns:
                raise KeyError(f"Column '{col}' not found in adata.obs")

        table = pd.crosstab(adata.obs[cluster_key], adata.obs[sample_key])
        table.index = table.index.astype(str)
        table.columns = table.columns.astype(str)
        table["total"] = table.sum(axis=1)
        table.index.name = "cluster_id"
        table.columns.name = None
        return table

    def cluster_qc_summary(
        self,
        adata: Any,  # AnnData
        cluster_key: Optional[str] = None,
    ) -> pd.DataFrame:
        """Median QC metrics and cell-cycle phase fractions per cluster.

        Clusters with extreme nUMI, nGene or mitoRatio, or dominated by one
        phase, are candidates for technical artifacts.
        """
        cluster_key = cluster_key or self.config.clustering.cluster_key
        if cluster_key not in adata.obs.columns:
            raise KeyError(f"Cluster column '{cluster_key}' not found in adata.obs")

        obs = adata.obs
        grouped = obs.groupby(cluster_key, observed=True)
        metrics = [m for m in QC_SUMMARY_METRICS if m in obs.columns]

        summary = grouped[metrics].median().add_prefix("median_")
        summary.insert(0, "n_cells", grouped.size())

        if "phase" in obs.columns:
            phase = pd.crosstab(obs[cluster_key], obs["phase"], normalize="index")
            phase.columns = [f"frac_{c}" for c in phase.columns]
            summary = summary.join(phase)

        summary.index.name = "cluster_id"
        return summary.reset_index()

    def remove_clusters(
        self,
        adata: Any,  # AnnData
        clusters: Sequence[str],
        cluster_key: Optional[str] = None,
    ) -> Any:
        """Drop cells of the given clusters.

        Returns
        -------
        AnnData
            Copy without the removed clusters

        Raises
        ------
        ValueError
            If every cell would be removed
        """
        cluster_key = cluster_key or self.config.clustering.cluster_key
        if cluster_key not in adata.obs.columns:
            raise KeyError(f"Cluster column '{cluster_key}' not found in adata.obs")

        drop = {str(c) for c in clusters}
        labels = adata.obs[cluster_key].astype(str)
        unknown = drop - set(labels.unique())
        if unknown:
            self.logger.warning("Clusters not present, ignored: %s", sorted(unknown))

        keep = ~labels.isin(drop).to_numpy()
        if not keep.any():
            raise ValueError("Removing these clusters would remove all cells")

        filtered = adata[keep].copy()
        if hasattr(filtered.obs[cluster_key], "cat"):
            filtered.obs[cluster_key] = filtered.obs[cluster_key].cat.remove_unused_categories()

        self.logger.info(
            "Removed clusters %s: %d -> %d cells",
            sorted(drop - unknown),
            adata.n_obs,
            filtered.n_obs,
        )
        return filtered

    def run(
        self,
        adata: Any,  # AnnData
        use_rep: str = "X_pca_harmony",
        compute_umap: Optional[bool] = None,
    ) -> ClusteringResult:
        """Graph, UMAP, Leiden sweep and active resolution.

        Parameters
        ----------
        adata : AnnData
            Integrated object (modified in place)
        use_rep : str
            obsm key of the integrated embedding
        compute_umap : bool, optional
            Compute UMAP. Uses config default if None.

        Returns
        -------
        ClusteringResult
            Statistics for the active clustering
        """
        cfg = self.config.clustering
        compute_umap = compute_umap if compute_umap is not None else cfg.compute_umap

        self.build_graph(adata, use_rep=use_rep)
        if compute_umap:
            self.run_umap(adata)

        resolutions = list(cfg.resolutions)
        if float(cfg.active_resolution) not in [float(r) for r in resolutions]:
            resolutions.append(cfg.active_resolution)
        keys = self.cluster_resolutions(adata, resolutions)
        self.set_active_resolution(adata, cfg.active_resolution)

        result = ClusteringResult(
            cluster_key=cfg.cluster_key,
            resolution_keys=keys,
            active_resolution=float(cfg.active_resolution),
        )
        result.n_clusters = adata.obs[cfg.cluster_key].nunique()
        result.cluster_sizes = adata.obs[cfg.cluster_key].value_counts().to_dict()

        self.logger.info(
            "Computed Leiden clustering with %d clusters", result.n_clusters
        )
        return result
