"""Embedding and marker figures (Stages C-G).

PCA colored by cell-cycle phase, UMAPs colored by cluster, sample or
cell type, marker feature plots and violins.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Union
import logging

import numpy as np

from .style import PHASE_COLORS, categories_of, grid_shape, sample_palette, save_figure, set_style

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _present_genes(adata, genes: Sequence[str]) -> List[str]:
    names = adata.raw.var_names if adata.raw is not None else adata.var_names
    present = [g for g in genes if g in names]
    missing = [g for g in genes if g not in names]
    if missing:
        logger.warning("Genes not found, skipped in plots: %s", missing)
    return present


def plot_pca_by_phase(
    adata,
    output_path: PathLike,
    basis: str = "X_pca_cc",
    dpi: int = 200,
) -> Optional[Path]:
    """First two PCs colored by phase, one panel per phase."""
    import matplotlib.pyplot as plt

    if basis not in adata.obsm or "phase" not in adata.obs.columns:
        logger.warning("%s or phase missing; skipping phase PCA plot", basis)
        return None

    set_style()
    coords = np.asarray(adata.obsm[basis])[:, :2]
    phases = categories_of(adata.obs["phase"])
    phase_values = adata.obs["phase"].astype(str).to_numpy()

    fig, axes = plt.subplots(1, len(phases), figsize=(4 * len(phases), 4), squeeze=False)
    for ax, phase in zip(axes[0], phases):
        mask = phase_values == phase
        ax.scatter(coords[~mask, 0], coords[~mask, 1], s=2, c="#dddddd", linewidths=0)
        ax.scatter(
            coords[mask, 0],
            coords[mask, 1],
            s=2,
            c=PHASE_COLORS.get(phase, "#34495e"),
            linewidths=0,
        )
        ax.set_title(f"{phase} ({int(mask.sum()):,})")
        ax.set_xlabel("PC1")
        ax.set_ylabel("PC2")
    return save_figure(fig, output_path, dpi=dpi)


def plot_umap(
    adata,
    color: str,
    output_path: PathLike,
    legend_on_data: bool = False,
    dpi: int = 200,
) -> Optional[Path]:
    """UMAP colored by an obs column."""
    import scanpy as sc

    if "X_umap" not in adata.obsm:
        logger.warning("X_umap not found, skipping UMAP plot")
        return None
    if color not in adata.obs.columns:
        logger.warning("Column '%s' missing; skipping UMAP plot", color)
        return None

    set_style()
    fig = sc.pl.umap(
        adata,
        color=color,
        legend_loc="on data" if legend_on_data else "right margin",
        frameon=False,
        show=False,
        return_fig=True,
    )
    return save_figure(fig, output_path, dpi=dpi)


def plot_umap_split(
    adata,
    color: str,
    output_path: PathLike,
    split_by: str = "sample",
    dpi: int = 200,
) -> Optional[Path]:
    """UMAP colored by ``color`` with one panel per ``split_by`` value."""
    import matplotlib.pyplot as plt

    if "X_umap" not in adata.obsm:
        logger.warning("X_umap not found, skipping split UMAP plot")
        return None
    for col in (color, split_by):
        if col not in adata.obs.columns:
            logger.warning("Column '%s' missing; skipping split UMAP plot", col)
            return None

    set_style()
    coords = np.asarray(adata.obsm["X_umap"])
    groups = categories_of(adata.obs[color])
    cmap = plt.get_cmap("tab20")
    colors = {g: cmap(i % 20) for i, g in enumerate(groups)}
    values = adata.obs[color].astype(str).to_numpy()
    splits = adata.obs[split_by].astype(str).to_numpy()

    panels = categories_of(adata.obs[split_by])
    fig, axes = plt.subplots(1, len(panels), figsize=(5 * len(panels), 5), squeeze=False)
    for ax, panel in zip(axes[0], panels):
        in_panel = splits == panel
        ax.scatter(coords[~in_panel, 0], coords[~in_panel, 1], s=1, c="#eeeeee", linewidths=0)
        for group in groups:
            mask = in_panel & (values == group)
            if mask.any():
                ax.scatter(coords[mask, 0], coords[mask, 1], s=1, color=colors[group],
                           label=group, linewidths=0)
        ax.set_title(panel)
        ax.set_xticks([])
        ax.set_yticks([])
    handles, labels = axes[0][-1].get_legend_handles_labels()
    if handles:
        fig.legend(handles, labels, loc="center right", markerscale=6, fontsize=7)
    return save_figure(fig, output_path, dpi=dpi)


def plot_feature_umap(
    adata,
    features: Sequence[str],
    output_path: PathLike,
    ncols: int = 3,
    dpi: int = 200,
) -> Optional[Path]:
    """UMAP colored by gene expression or numeric obs columns."""
    import scanpy as sc

    if "X_umap" not in adata.obsm:
        logger.warning("X_umap not found, skipping feature plot")
        return None

    obs_features = [f for f in features if f in adata.obs.columns]
    genes = _present_genes(adata, [f for f in features if f not in adata.obs.columns])
    keys = obs_features + genes
    if not keys:
        return None

    set_style()
    fig = sc.pl.umap(
        adata,
        color=keys,
        use_raw=adata.raw is not None and bool(genes),
        ncols=grid_shape(len(keys), ncols)[1],
        vmin="p1",
        vmax="p99",
        cmap="Reds",
        frameon=False,
        show=False,
        return_fig=True,
    )
    return save_figure(fig, output_path, dpi=dpi)


def plot_marker_violin(
    adata,
    genes: Sequence[str],
    output_path: PathLike,
    groupby: str = "cluster",
    dpi: int = 200,
) -> Optional[Path]:
    """Stacked violins of marker expression per group."""
    import scanpy as sc

    if groupby not in adata.obs.columns:
        logger.warning("Column '%s' missing; skipping violin plot", groupby)
        return None
    genes = _present_genes(adata, genes)
    if not genes:
        return None

    set_style()
    plot = sc.pl.stacked_violin(
        adata,
        var_names=genes,
        groupby=groupby,
        use_raw=adata.raw is not None,
        show=False,
        return_fig=True,
    )
    plot.make_figure()
    return save_figure(plot.fig, output_path, dpi=dpi)


def plot_cluster_composition(
    adata,
    output_path: PathLike,
    cluster_key: str = "cluster",
    sample_key: str = "sample",
    dpi: int = 200,
) -> Optional[Path]:
    """Stacked bars of sample fractions per cluster."""
    import matplotlib.pyplot as plt
    import pandas as pd

    for col in (cluster_key, sample_key):
        if col not in adata.obs.columns:
            logger.warning("Column '%s' missing; skipping composition plot", col)
            return None

    set_style()
    table = pd.crosstab(adata.obs[cluster_key], adata.obs[sample_key], normalize="index")
    samples = [str(c) for c in table.columns]
    palette = sample_palette(samples)

    fig, ax = plt.subplots(figsize=(max(5, 0.4 * len(table)), 4))
    bottom = np.zeros(len(table))
    for col, sample in zip(table.columns, samples):
        ax.bar(table.index.astype(str), table[col].values, bottom=bottom,
               color=palette[sample], label=sample)
        bottom += table[col].values
    ax.set_xlabel(cluster_key)
    ax.set_ylabel("Fraction of cells")
    ax.legend(title=sample_key, bbox_to_anchor=(1.01, 1), loc="upper left")
    return save_figure(fig, output_path, dpi=dpi)


def generate_embedding_figures(
    adata,
    output_dir: PathLike,
    cluster_key: str = "cluster",
    sample_key: str = "sample",
    label_key: Optional[str] = None,
    marker_genes: Optional[Sequence[str]] = None,
    suffix: str = "",
    dpi: int = 200,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """Generate embedding, cluster and marker figures.

    Figures whose inputs are missing are skipped; failures are logged
    as warnings.

    Returns
    -------
    List[Path]
        Generated figures
    """
    log = logger or logging.getLogger(__name__)
    output_dir = Path(output_dir)
    qc_features = [
        c for c in ("nUMI", "nGene", "mitoRatio", "S_score", "G2M_score")
        if c in adata.obs.columns
    ]

    jobs = [
        ("pca_by_phase", lambda p: plot_pca_by_phase(adata, p, dpi=dpi)),
        ("umap_by_sample", lambda p: plot_umap(adata, sample_key, p, dpi=dpi)),
        (
            "umap_by_cluster",
            lambda p: plot_umap(adata, cluster_key, p, legend_on_data=True, dpi=dpi),
        ),
        (
            "umap_cluster_by_sample",
            lambda p: plot_umap_split(adata, cluster_key, p, split_by=sample_key, dpi=dpi),
        ),
        ("umap_qc_metrics", lambda p: plot_feature_umap(adata, qc_features, p, dpi=dpi)),
        (
            "cluster_composition",
            lambda p: plot_cluster_composition(adata, p, cluster_key, sample_key, dpi=dpi),
        ),
    ]
    if label_key:
        jobs.append(
            (
                "umap_by_cell_type",
                lambda p: plot_umap(adata, label_key, p, legend_on_data=True, dpi=dpi),
            )
        )
    if marker_genes:
        jobs.append(
            ("umap_markers", lambda p: plot_feature_umap(adata, marker_genes, p, dpi=dpi))
        )
        jobs.append(
            (
                "violin_markers",
                lambda p: plot_marker_violin(
                    adata, marker_genes, p, groupby=label_key or cluster_key, dpi=dpi
                ),
            )
        )

    generated = []
    for name, build in jobs:
        path = output_dir / f"{name}{suffix}.png"
        try:
            result = build(path)
        except Exception as e:
            import matplotlib.pyplot as plt

            plt.close("all")
            log.warning("Figure %s failed: %s", path.name, e)
            continue
        if result is not None:
            log.info("Generated: %s", result.name)
            generated.append(result)
    return generated
