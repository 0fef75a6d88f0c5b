"""Clustering module: graph clustering, markers and annotation.

Pipeline Stages
---------------
- Stage E (Clustering): kNN graph on the integrated embedding, UMAP,
  Leiden at several resolutions
- Stage F (Markers): all-vs-rest, pairwise and conserved markers
- Stage G (Annotation): cluster to cell-type labels

Example Usage
-------------
>>> from scrna_workflow.core.clustering import (
...     ClusteringEngine, MarkerFinder, ClusterAnnotator,
... )
>>> ClusteringEngine().run(adata, use_rep="X_pca_harmony")
>>> markers = MarkerFinder().find_all_markers(adata).table
>>> ClusterAnnotator().rename_clusters(adata, {"0": "CD14+ monocytes"})
"""

# Configuration classes
from .config import (
    ClusteringConfig,
    DEConfig,
    ConservedMarkerConfig,
    AnnotationConfig,
    ClusteringStageConfig,
)

# Stage E: Clustering
from .engine import (
    ClusteringEngine,
    ClusteringResult,
    ResolutionSummary,
    resolution_key,
)

# Stage F: Markers
from .markers import (
    MarkerFinder,
    MarkerResult,
    MARKER_COLUMNS,
    annotate_markers,
    top_markers,
)

# Stage G: Annotation
from .annotation import (
    AnnotationResult,
    ClusterAnnotator,
    load_gene_annotations,
)

__all__ = [
    # Config
    "ClusteringConfig",
    "DEConfig",
    "ConservedMarkerConfig",
    "AnnotationConfig",
    "ClusteringStageConfig",
    # Stage E
    "ClusteringEngine",
    "ClusteringResult",
    "ResolutionSummary",
    "resolution_key",
    # Stage F
    "MarkerFinder",
    "MarkerResult",
    "MARKER_COLUMNS",
    "annotate_markers",
    "top_markers",
    # Stage G
    "AnnotationResult",
    "ClusterAnnotator",
    "load_gene_annotations",
]
