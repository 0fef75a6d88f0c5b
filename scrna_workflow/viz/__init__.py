"""Visualization module for scrna-workflow.

QC distributions (Stage B) and embedding / marker figures (Stages C-G).
Requires matplotlib and seaborn.
"""

from .style import (
    PHASE_COLORS,
    SAMPLE_COLORS,
    save_figure,
    set_style,
)
from .qc_plots import (
    generate_qc_figures,
    plot_cell_counts,
    plot_metric_density,
    plot_umi_vs_genes,
)
from .embedding_plots import (
    generate_embedding_figures,
    plot_cluster_composition,
    plot_feature_umap,
    plot_marker_violin,
    plot_pca_by_phase,
    plot_umap,
    plot_umap_split,
)

__all__ = [
    "PHASE_COLORS",
    "SAMPLE_COLORS",
    "save_figure",
    "set_style",
    "generate_qc_figures",
    "plot_cell_counts",
    "plot_metric_density",
    "plot_umi_vs_genes",
    "generate_embedding_figures",
    "plot_cluster_composition",
    "plot_feature_umap",
    "plot_marker_violin",
    "plot_pca_by_phase",
    "plot_umap",
    "plot_umap_split",
]
