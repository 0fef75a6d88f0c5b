"""Configuration classes for clustering, markers and annotation (Stages E-G)."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class ClusteringConfig:
    """Configuration for graph construction and Leiden clustering.

    Attributes
    ----------
    n_pcs : int
        Number of integrated components used for the neighbor graph
    neighbors_k : int
        k for the neighborhood graph
    resolutions : List[float]
        Leiden resolutions computed for comparison
    active_resolution : float
        Resolution copied into the active cluster column
    cluster_key : str
        obs column receiving the active clustering
    random_seed : int
        Random seed for reproducibility
    compute_umap : bool
        Compute UMAP embeddings for visualization
    """

    n_pcs: int = 40
    neighbors_k: int = 20
    resolutions: List[float] = field(
        default_factory=lambda: [0.4, 0.6, 0.8, 1.0, 1.4]
    )
    active_resolution: float = 0.8
    cluster_key: str = "cluster"
    random_seed: int = 0
    compute_umap: bool = True


@dataclass
class DEConfig:
    """Configuration for differential expression between clusters.

    Attributes
    ----------
    method : str
        Test passed to scanpy rank_genes_groups (wilcoxon, t-test, ...)
    use_raw : bool
        Test the full-gene log-normalized matrix kept in adata.raw
    layer : str, optional
        Layer to test instead of raw/X
    logfc_threshold : float
        Minimum absolute log2 fold change
    min_pct : float
        Minimum detection fraction in either compared group
    only_positive : bool
        Keep only genes up-regulated in the tested group
    n_genes : int, optional
        Rank only this many genes per group (None ranks all)
    tie_correct : bool
        Apply tie correction for Wilcoxon test
    """

    method: str = "wilcoxon"
    use_raw: bool = True
    layer: Optional[str] = None
    logfc_threshold: float = 0.25
    min_pct: float = 0.1
    only_positive: bool = True
    n_genes: Optional[int] = None
    tie_correct: bool = False


@dataclass
class ConservedMarkerConfig:
    """Configuration for markers conserved across conditions.

    Attributes
    ----------
    grouping_key : str
        obs column with the condition label
    min_cells_per_group : int
        Conditions with fewer cells of the cluster are skipped
    """

    grouping_key: str = "sample"
    min_cells_per_group: int = 3


@dataclass
class AnnotationConfig:
    """Configuration for cluster to cell-type annotation.

    Attributes
    ----------
    cluster_key : str
        obs column with cluster ids
    label_key : str
        obs column receiving cell-type labels
    labels : Dict[str, str]
        Cluster id to cell-type label
    unassigned_label : str
        Label for clusters without an entry in ``labels``
    """

    cluster_key: str = "cluster"
    label_key: str = "cell_type"
    labels: Dict[str, str] = field(default_factory=dict)
    unassigned_label: str = "Unknown"


@dataclass
class ClusteringStageConfig:
    """Master configuration for stages E-G.

    Attributes
    ----------
    clustering : ClusteringConfig
        Clustering configuration
    de : DEConfig
        Differential expression configuration
    conserved : ConservedMarkerConfig
        Conserved marker configuration
    annotation : AnnotationConfig
        Annotation configuration
    marker_genes : List[str]
        Genes drawn in feature and violin plots
    n_top_markers : int
        Markers per cluster kept in the top-marker table
    """

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    de: DEConfig = field(default_factory=DEConfig)
    conserved: ConservedMarkerConfig = field(default_factory=ConservedMarkerConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    marker_genes: List[str] = field(default_factory=list)
    n_top_markers: int = 10

    def __post_init__(self):
        # Annotation follows the clustering column unless set on its own
        if self.annotation.cluster_key == AnnotationConfig.cluster_key:
            self.annotation.cluster_key = self.clustering.cluster_key

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusteringStageConfig":
        """Build configuration from a (possibly partial) dictionary."""
        annotation = dict(data.get("annotation", {}))
        if "labels" in annotation:
            annotation["labels"] = {
                str(k): str(v) for k, v in (annotation["labels"] or {}).items()
            }
        return cls(
            clustering=ClusteringConfig(**data.get("clustering", {})),
            de=DEConfig(**data.get("de", {})),
            conserved=ConservedMarkerConfig(**data.get("conserved", {})),
            annotation=AnnotationConfig(**annotation),
            marker_genes=list(data.get("marker_genes", [])),
            n_top_markers=int(data.get("n_top_markers", 10)),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusteringStageConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested clustering section
        if "clustering_stage" in data:
            data = data["clustering_stage"] or {}

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "ClusteringStageConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "clustering": {
                "n_pcs": self.clustering.n_pcs,
                "neighbors_k": self.clustering.neighbors_k,
                "resolutions": list(self.clustering.resolutions),
                "active_resolution": self.clustering.active_resolution,
                "cluster_key": self.clustering.cluster_key,
                "random_seed": self.clustering.random_seed,
                "compute_umap": self.clustering.compute_umap,
            },
            "de": {
                "method": self.de.method,
                "use_raw": self.de.use_raw,
                "layer": self.de.layer,
                "logfc_threshold": self.de.logfc_threshold,
                "min_pct": self.de.min_pct,
                "only_positive": self.de.only_positive,
                "n_genes": self.de.n_genes,
                "tie_correct": self.de.tie_correct,
            },
            "conserved": {
                "grouping_key": self.conserved.grouping_key,
                "min_cells_per_group": self.conserved.min_cells_per_group,
            },
            "annotation": {
                "cluster_key": self.annotation.cluster_key,
                "label_key": self.annotation.label_key,
                "labels": dict(self.annotation.labels),
                "unassigned_label": self.annotation.unassigned_label,
            },
            "marker_genes": list(self.marker_genes),
            "n_top_markers": self.n_top_markers,
        }
