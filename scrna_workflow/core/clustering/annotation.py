"""Cluster annotation (Stage G).

Maps cluster ids to cell-type labels chosen from marker tables.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
import logging

import pandas as pd

from .config import AnnotationConfig
from ...io.tables import load_gene_annotations


@dataclass
class AnnotationResult:
    """Result from renaming clusters.

    Attributes
    ----------
    label_key : str
        obs column holding the labels
    n_labels : int
        Distinct labels assigned
    unassigned_clusters : List[str]
        Clusters that received the unassigned label
    unused_keys : List[str]
        Mapping keys that are not clusters
    label_sizes : Dict[str, int]
        Cells per label
    """

    label_key: str = "cell_type"
    n_labels: int = 0
    unassigned_clusters: List[str] = field(default_factory=list)
    unused_keys: List[str] = field(default_factory=list)
    label_sizes: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "label_key": self.label_key,
            "n_labels": self.n_labels,
            "unassigned_clusters": list(self.unassigned_clusters),
            "unused_keys": list(self.unused_keys),
            "label_sizes": dict(self.label_sizes),
        }


class ClusterAnnotator:
    """Assigns cell-type labels to clusters.

    Parameters
    ----------
    config : AnnotationConfig, optional
        Annotation configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.clustering import ClusterAnnotator
    >>> annotator = ClusterAnnotator()
    >>> annotator.rename_clusters(adata, {"0": "CD14+ monocytes", "1": "CD4+ T cells"})
    """

    def __init__(
        self,
        config: Optional[AnnotationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or AnnotationConfig()
        self.logger = logger or logging.getLogger(__name__)

    def rename_clusters(
        self,
        adata: Any,  # AnnData
        labels: Optional[Mapping[Any, str]] = None,
        cluster_key: Optional[str] = None,
        label_key: Optional[str] = None,
    ) -> AnnotationResult:
        """Write cell-type labels into ``obs[label_key]``.

        Several clusters may share a label. Clusters missing from the
        mapping get the unassigned label.

        Parameters
        ----------
        adata : AnnData
            Clustered object (modified in place)
        labels : Mapping, optional
            Cluster id to label. Uses config labels if None.
        cluster_key, label_key : str, optional
            Source and destination obs columns

        Returns
        -------
        AnnotationResult
            Summary of the assignment
        """
        cfg = self.config
        labels = labels if labels is not None else cfg.labels
        cluster_key = cluster_key or cfg.cluster_key
        label_key = label_key or cfg.label_key

        if cluster_key not in adata.obs.columns:
            raise KeyError(f"Cluster column '{cluster_key}' not found in adata.obs")

        mapping = {str(k): str(v) for k, v in labels.items()}
        clusters = adata.obs[cluster_key].astype(str)
        present = sorted(clusters.unique(), key=lambda c: (len(c), c))

        result = AnnotationResult(label_key=label_key)
        result.unused_keys = sorted(set(mapping) - set(present))
        result.unassigned_clusters = [c for c in present if c not in mapping]

        if result.unused_keys:
            self.logger.warning(
                "Label mapping has entries for missing clusters: %s", result.unused_keys
            )
        if result.unassigned_clusters:
            self.logger.info(
                "Clusters without a label (-> %r): %s",
                cfg.unassigned_label,
                result.unassigned_clusters,
            )

        assigned = clusters.map(mapping).fillna(cfg.unassigned_label)
        # Category order follows the first cluster carrying each label
        order: List[str] = []
        for cluster in present:
            label = mapping.get(cluster, cfg.unassigned_label)
            if label not in order:
                order.append(label)
        adata.obs[label_key] = pd.Categorical(assigned, categories=order)

        result.label_sizes = {
            str(k): int(v) for k, v in adata.obs[label_key].value_counts(sort=False).items()
        }
        result.n_labels = len(order)
        self.logger.info(
            "Assigned %d labels to %d clusters", result.n_labels, len(present)
        )
        return result

    def label_counts(
        self,
        adata: Any,  # AnnData
        label_key: Optional[str] = None,
        sample_key: str = "sample",
    ) -> pd.DataFrame:
        """Cells per label and sample with totals and sample fractions."""
        label_key = label_key or self.config.label_key
        for col in (label_key, sample_key):
            if col not in adata.obs.columns:
                raise KeyError(f"Column '{col}' not found in adata.obs")

        counts = pd.crosstab(adata.obs[label_key], adata.obs[sample_key])
        counts.columns = counts.columns.astype(str)
        counts.index = counts.index.astype(str)
        fractions = (counts / counts.sum(axis=0)).add_prefix("frac_")
        table = counts.join(fractions)
        table["total"] = counts.sum(axis=1)
        table.index.name = label_key
        table.columns.name = None
        return table.reset_index()


__all__ = ["AnnotationResult", "ClusterAnnotator", "load_gene_annotations"]
