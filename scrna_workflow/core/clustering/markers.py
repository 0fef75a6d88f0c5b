"""Marker gene identification (Stage F).

Wraps scanpy ``rank_genes_groups`` into long marker tables:

- all markers: every cluster against all other cells;
- pairwise markers: one cluster against another (or the rest);
- conserved markers: a cluster against the rest separately within each
  condition, keeping genes that are markers in every condition.

Marker tables use the columns ``gene``, ``avg_log2FC``, ``pct_1``,
``pct_2``, ``p_val``, ``p_val_adj`` and ``score``; conserved tables
prefix these with the condition label.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging
import time

import numpy as np
import pandas as pd

from .config import ClusteringStageConfig

MARKER_COLUMNS = ["gene", "avg_log2FC", "pct_1", "pct_2", "p_val", "p_val_adj", "score"]

_GROUP_COL = "_marker_group"


@dataclass
class MarkerResult:
    """Result from marker detection across clusters.

    Attributes
    ----------
    table : pd.DataFrame
        Long marker table with a ``cluster_id`` column
    n_clusters : int
        Clusters tested
    markers_per_cluster : Dict[str, int]
        Markers passing thresholds per cluster
    skipped_clusters : List[str]
        Clusters without a result
    elapsed_seconds : float
        Time taken
    """

    table: Optional[pd.DataFrame] = None
    n_clusters: int = 0
    markers_per_cluster: Dict[str, int] = field(default_factory=dict)
    skipped_clusters: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_clusters": self.n_clusters,
            "n_markers": 0 if self.table is None else len(self.table),
            "markers_per_cluster": dict(self.markers_per_cluster),
            "skipped_clusters": list(self.skipped_clusters),
            "elapsed_seconds": round(self.elapsed_seconds, 2),
        }


def annotate_markers(
    markers: pd.DataFrame,
    annotations: Optional[pd.DataFrame],
    gene_col: str = "gene",
    columns: Optional[Sequence[str]] = ("description",),
) -> pd.DataFrame:
    """Left-join gene annotations onto a marker table by gene symbol.

    The annotation table is reduced to one row per ``gene_name`` first,
    so the marker table keeps its row count and order.

    Parameters
    ----------
    markers : pd.DataFrame
        Marker table with gene symbols in ``gene_col``
    annotations : pd.DataFrame, optional
        Table with a ``gene_name`` column; None returns a copy unchanged
    gene_col : str
        Column of ``markers`` holding gene symbols
    columns : Sequence[str], optional
        Annotation columns to add (None adds all)

    Returns
    -------
    pd.DataFrame
        Annotated copy of ``markers``
    """
    if annotations is None:
        return markers.copy()
    if "gene_name" not in annotations.columns:
        raise KeyError("Gene annotation table needs a 'gene_name' column")
    if gene_col not in markers.columns:
        raise KeyError(f"Marker table has no '{gene_col}' column")

    if columns is None:
        columns = [c for c in annotations.columns if c != "gene_name"]
    else:
        columns = [c for c in columns if c in annotations.columns and c != "gene_name"]

    lookup = (
        annotations[["gene_name"] + list(columns)]
        .drop_duplicates(subset="gene_name", keep="first")
        .rename(columns={"gene_name": gene_col})
    )
    lookup[gene_col] = lookup[gene_col].astype(str)

    annotated = markers.copy()
    annotated[gene_col] = annotated[gene_col].astype(str)
    annotated = annotated.merge(lookup, on=gene_col, how="left")
    annotated.index = markers.index
    return annotated


def top_markers(
    markers: pd.DataFrame,
    n: int = 10,
    by: str = "avg_log2FC",
    group_col: str = "cluster_id",
) -> pd.DataFrame:
    """Top ``n`` markers per cluster by a ranking column.

    ``by="avg_fc"`` on a conserved table ranks by the mean of the
    per-condition ``*_avg_log2FC`` columns (added as ``avg_fc``).
    """
    table = markers.copy()
    if by not in table.columns and by == "avg_fc":
        fc_cols = [c for c in table.columns if c.endswith("_avg_log2FC")]
        if not fc_cols:
            raise KeyError("No '*_avg_log2FC' columns to average")
        table["avg_fc"] = table[fc_cols].mean(axis=1)
    if by not in table.columns:
        raise KeyError(f"Ranking column '{by}' not in marker table")
    if group_col not in table.columns:
        return table.nlargest(n, by)

    return (
        table.sort_values([group_col, by], ascending=[True, False], kind="mergesort")
        .groupby(group_col, sort=False, observed=True)
        .head(n)
        .reset_index(drop=True)
    )


class MarkerFinder:
    """Differential expression based marker detection.

    Parameters
    ----------
    config : ClusteringStageConfig, optional
        Stage configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from scrna_workflow.core.clustering import MarkerFinder
    >>> finder = MarkerFinder()
    >>> all_markers = finder.find_all_markers(adata).table
    >>> conserved = finder.get_conserved(adata, "3", annotations)
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
                "Marker detection requires scanpy. Install with: pip install scanpy"
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _data_source(self, adata: Any):
        """Resolve (use_raw, layer, n_tested_genes) from config and data."""
        cfg = self.config.de
        layer = cfg.layer
        if layer is not None:
            if layer not in adata.layers:
                raise KeyError(f"Layer '{layer}' not found in adata.layers")
            return False, layer, adata.n_vars
        if cfg.use_raw and adata.raw is not None:
            return True, None, adata.raw.n_vars
        if cfg.use_raw:
            self.logger.debug("adata.raw is empty; testing adata.X")
        return False, None, adata.n_vars

    def _rank(
        self,
        adata: Any,  # AnnData
        groupby: str,
        groups: Any = "all",
        reference: str = "rest",
        key_added: str = "rank_genes_groups",
    ) -> None:
        import scanpy as sc

        cfg = self.config.de
        use_raw, layer, n_tested = self._data_source(adata)
        n_genes = cfg.n_genes if cfg.n_genes is not None else n_tested

        sc.tl.rank_genes_groups(
            adata,
            groupby=groupby,
            groups=groups,
            reference=reference,
            method=cfg.method,
            n_genes=n_genes,
            use_raw=use_raw,
            layer=layer,
            tie_correct=cfg.tie_correct,
            key_added=key_added,
            pts=True,
        )

    def _tidy(
        self,
        adata: Any,  # AnnData
        group: str,
        reference: str = "rest",
        key: str = "rank_genes_groups",
    ) -> pd.DataFrame:
        """Convert one group's ranking into a marker table."""
        import scanpy as sc

        df = sc.get.rank_genes_groups_df(adata, group=group, key=key)
        df = df.dropna(subset=["names"])
        df = df.rename(
            columns={
                "names": "gene",
                "scores": "score",
                "logfoldchanges": "avg_log2FC",
                "pvals": "p_val",
                "pvals_adj": "p_val_adj",
            }
        )

        stats = adata.uns[key]
        pts = stats["pts"]
        if reference == "rest":
            pts_ref = stats["pts_rest"][group]
        else:
            pts_ref = pts[reference]
        df["pct_1"] = df["gene"].map(pts[group]).to_numpy(dtype=float)
        df["pct_2"] = df["gene"].map(pts_ref).to_numpy(dtype=float)
        df["gene"] = df["gene"].astype(str)
        return df[MARKER_COLUMNS].reset_index(drop=True)

    def _apply_thresholds(self, df: pd.DataFrame) -> pd.DataFrame:
        """Detection fraction, fold-change and direction filters."""
        cfg = self.config.de
        keep = df[["pct_1", "pct_2"]].max(axis=1) >= cfg.min_pct
        keep &= df["avg_log2FC"].abs() >= cfg.logfc_threshold
        if cfg.only_positive:
            keep &= df["avg_log2FC"] > 0
        return df.loc[keep].sort_values(
            ["p_val", "avg_log2FC"], ascending=[True, False], kind="mergesort"
        ).reset_index(drop=True)

    def _cluster_labels(self, adata: Any, cluster_key: str) -> pd.Series:
        if cluster_key not in adata.obs.columns:
            raise KeyError(f"Cluster column '{cluster_key}' not found in adata.obs")
        return adata.obs[cluster_key].astype(str)

    @staticmethod
    def _ordered_clusters(labels: pd.Series) -> List[str]:
        return sorted(labels.unique(), key=lambda c: (len(c), c))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def find_all_markers(
        self,
        adata: Any,  # AnnData
        cluster_key: Optional[str] = None,
    ) -> MarkerResult:
        """Markers of every cluster against all other cells.

        Parameters
        ----------
        adata : AnnData
            Clustered object (full-gene log data in .raw)
        cluster_key : str, optional
            obs column with cluster ids

        Returns
        -------
        MarkerResult
            Long table with ``cluster_id`` and the marker columns
        """
        cluster_key = cluster_key or self.config.clustering.cluster_key
        labels = self._cluster_labels(adata, cluster_key)
        clusters = self._ordered_clusters(labels)
        if len(clusters) < 2:
            raise ValueError("Marker detection needs at least two clusters")

        self.logger.info(
            "Finding markers for %d clusters (method=%s)",
            len(clusters),
            self.config.de.method,
        )
        start = time.time()
        adata.obs[_GROUP_COL] = pd.Categorical(labels, categories=clusters)
        try:
            self._rank(adata, groupby=_GROUP_COL, key_added="markers_all")
            tables = []
            result = MarkerResult(n_clusters=len(clusters))
            for cluster in clusters:
                df = self._apply_thresholds(
                    self._tidy(adata, cluster, key="markers_all")
                )
                df.insert(0, "cluster_id", cluster)
                result.markers_per_cluster[cluster] = len(df)
                tables.append(df)
        finally:
            del adata.obs[_GROUP_COL]

        result.table = pd.concat(tables, ignore_index=True)
        result.elapsed_seconds = time.time() - start
        self.logger.info(
            "Found %d markers across %d clusters in %.1f s",
            len(result.table),
            len(clusters),
            result.elapsed_seconds,
        )
        return result

    def find_markers(
        self,
        adata: Any,  # AnnData
        group_1: str,
        group_2: Optional[str] = None,
        cluster_key: Optional[str] = None,
    ) -> pd.DataFrame:
        """Markers of one cluster against another cluster or all others.

        Raises
        ------
        KeyError
            If a cluster id is not present
        """
        cluster_key = cluster_key or self.config.clustering.cluster_key
        labels = self._cluster_labels(adata, cluster_key)
        clusters = self._ordered_clusters(labels)
        group_1 = str(group_1)
        reference = "rest" if group_2 is None else str(group_2)
        for group in (group_1, reference):
            if group != "rest" and group not in clusters:
                raise KeyError(f"Cluster '{group}' not found in '{cluster_key}'")
        if group_1 == reference:
            raise ValueError("group_1 and group_2 must differ")

        adata.obs[_GROUP_COL] = pd.Categorical(labels, categories=clusters)
        try:
            self._rank(
                adata,
                groupby=_GROUP_COL,
                groups=[group_1],
                reference=reference,
                key_added="markers_pair",
            )
            df = self._tidy(adata, group_1, reference=reference, key="markers_pair")
        finally:
            del adata.obs[_GROUP_COL]

        df = self._apply_thresholds(df)
        self.logger.info(
            "Cluster %s vs %s: %d markers", group_1, reference, len(df)
        )
        return df

    def find_conserved_markers(
        self,
        adata: Any,  # AnnData
        cluster: str,
        cluster_key: Optional[str] = None,
        grouping_key: Optional[str] = None,
    ) -> pd.DataFrame:
        """Markers of a cluster that hold in every condition.

        Within each condition the cluster is tested against the other
        cells of that condition. Genes passing the thresholds in all
        tested conditions are kept, with per-condition columns prefixed
        by the condition label, plus ``max_pval``, ``minimump_p_val``
        (Tippett combination of the per-condition p-values) and its
        Benjamini-Hochberg adjustment ``minimump_p_val_adj``.

        Raises
        ------
        ValueError
            If no condition has enough cells of the cluster
        """
        from scipy.stats import combine_pvalues
        from statsmodels.stats.multitest import multipletests

        cluster_key = cluster_key or self.config.clustering.cluster_key
        grouping_key = grouping_key or self.config.conserved.grouping_key
        min_cells = self.config.conserved.min_cells_per_group
        cluster = str(cluster)

        labels = self._cluster_labels(adata, cluster_key)
        if cluster not in set(labels):
            raise KeyError(f"Cluster '{cluster}' not found in '{cluster_key}'")
        if grouping_key not in adata.obs.columns:
            raise KeyError(f"Grouping column '{grouping_key}' not found in adata.obs")

        conditions = adata.obs[grouping_key].astype(str)
        per_condition: Dict[str, pd.DataFrame] = {}
        for condition in self._ordered_conditions(adata.obs[grouping_key]):
            in_condition = (conditions == condition).to_numpy()
            in_cluster = (labels == cluster).to_numpy() & in_condition
            n_in, n_out = int(in_cluster.sum()), int(in_condition.sum() - in_cluster.sum())
            if n_in < min_cells or n_out < min_cells:
                self.logger.warning(
                    "Cluster %s: condition %s has %d cluster and %d other cells; skipped",
                    cluster,
                    condition,
                    n_in,
                    n_out,
                )
                continue

            sub = adata[in_condition].copy()
            sub.obs[_GROUP_COL] = pd.Categorical(
                np.where(in_cluster[in_condition], "in", "out"), categories=["in", "out"]
            )
            self._rank(sub, groupby=_GROUP_COL, groups=["in"], key_added="markers_conserved")
            df = self._apply_thresholds(self._tidy(sub, "in", key="markers_conserved"))
            per_condition[condition] = df.set_index("gene").add_prefix(f"{condition}_")

        if not per_condition:
            raise ValueError(
                f"Cluster {cluster}: no condition in '{grouping_key}' has "
                f">= {min_cells} cells in and out of the cluster"
            )

        conserved = pd.concat(list(per_condition.values()), axis=1, join="inner")
        p_cols = [f"{c}_p_val" for c in per_condition]
        pvals = conserved[p_cols].to_numpy(dtype=float)
        if len(conserved):
            combined = combine_pvalues(pvals, method="tippett", axis=1).pvalue
            conserved["max_pval"] = pvals.max(axis=1)
            conserved["minimump_p_val"] = combined
            conserved["minimump_p_val_adj"] = multipletests(combined, method="fdr_bh")[1]
        else:
            for col in ("max_pval", "minimump_p_val", "minimump_p_val_adj"):
                conserved[col] = pd.Series(dtype=float)

        conserved = conserved.sort_values("minimump_p_val", kind="mergesort")
        conserved.index.name = "gene"
        self.logger.info(
            "Cluster %s: %d conserved markers over %s",
            cluster,
            len(conserved),
            ", ".join(per_condition),
        )
        return conserved.reset_index()

    @staticmethod
    def _ordered_conditions(values: pd.Series) -> List[str]:
        if hasattr(values, "cat"):
            present = set(values.astype(str))
            return [str(c) for c in values.cat.categories if str(c) in present]
        return sorted(values.astype(str).unique())

    def get_conserved(
        self,
        adata: Any,  # AnnData
        cluster: str,
        annotations: Optional[pd.DataFrame] = None,
        cluster_key: Optional[str] = None,
        grouping_key: Optional[str] = None,
    ) -> pd.DataFrame:
        """Conserved markers of one cluster with gene descriptions.

        Runs :meth:`find_conserved_markers`, left-joins the gene
        annotation description by symbol and prepends ``cluster_id``.
        """
        conserved = self.find_conserved_markers(
            adata, cluster, cluster_key=cluster_key, grouping_key=grouping_key
        )
        annotated = annotate_markers(conserved, annotations, gene_col="gene")
        annotated.insert(0, "cluster_id", str(cluster))
        return annotated

    def conserved_markers_for_clusters(
        self,
        adata: Any,  # AnnData
        clusters: Optional[Sequence[str]] = None,
        annotations: Optional[pd.DataFrame] = None,
        cluster_key: Optional[str] = None,
    ) -> MarkerResult:
        """:meth:`get_conserved` over several clusters, concatenated.

        Clusters without a result (too few cells per condition) are
        logged and skipped.
        """
        cluster_key = cluster_key or self.config.clustering.cluster_key
        if clusters is None:
            clusters = self._ordered_clusters(self._cluster_labels(adata, cluster_key))
        clusters = [str(c) for c in clusters]

        start = time.time()
        result = MarkerResult(n_clusters=len(clusters))
        tables = []
        for cluster in clusters:
            try:
                df = self.get_conserved(
                    adata, cluster, annotations=annotations, cluster_key=cluster_key
                )
            except (KeyError, ValueError) as e:
                self.logger.warning("Conserved markers for cluster %s skipped: %s", cluster, e)
                result.skipped_clusters.append(cluster)
                continue
            result.markers_per_cluster[cluster] = len(df)
            tables.append(df)

        result.table = pd.concat(tables, ignore_index=True) if tables else pd.DataFrame()
        result.elapsed_seconds = time.time() - start
        self.logger.info(
            "Conserved markers: %d clusters done, %d skipped",
            len(tables),
            len(result.skipped_clusters),
        )
        return result
