"""QC figures (Stage B).

Distributions of per-cell QC metrics by sample, with the configured
filter thresholds drawn as vertical lines.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union
import logging

import numpy as np
import pandas as pd

from .style import THRESHOLD_COLOR, categories_of, grid_shape, sample_palette, save_figure, set_style

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# metric -> (x label, log scale)
METRIC_AXES = {
    "nUMI": ("UMIs per cell", True),
    "nGene": ("Genes detected per cell", True),
    "log10GenesPerUMI": ("log10 genes per UMI (novelty)", False),
    "mitoRatio": ("Mitochondrial ratio", False),
}


def plot_cell_counts(
    obs: pd.DataFrame,
    output_path: PathLike,
    sample_key: str = "sample",
    dpi: int = 200,
) -> Optional[Path]:
    """Bar plot of cells per sample."""
    import matplotlib.pyplot as plt

    if sample_key not in obs.columns:
        logger.warning("Column '%s' missing; skipping cell count plot", sample_key)
        return None

    set_style()
    samples = categories_of(obs[sample_key])
    counts = obs[sample_key].astype(str).value_counts().reindex(samples, fill_value=0)
    colors = sample_palette(samples)

    fig, ax = plt.subplots(figsize=(4, 4))
    ax.bar(samples, counts.values, color=[colors[s] for s in samples])
    for i, value in enumerate(counts.values):
        ax.text(i, value, f"{value:,}", ha="center", va="bottom", fontsize=8)
    ax.set_xlabel("Sample")
    ax.set_ylabel("Cells")
    ax.set_title("Number of cells")
    return save_figure(fig, output_path, dpi=dpi)


def plot_metric_density(
    obs: pd.DataFrame,
    metric: str,
    output_path: PathLike,
    threshold: Optional[float] = None,
    sample_key: str = "sample",
    dpi: int = 200,
) -> Optional[Path]:
    """Density of one QC metric per sample with an optional threshold line."""
    import matplotlib.pyplot as plt
    import seaborn as sns

    if metric not in obs.columns:
        logger.warning("Metric '%s' missing; skipping density plot", metric)
        return None

    set_style()
    label, log_scale = METRIC_AXES.get(metric, (metric, False))
    data = obs[[metric, sample_key]].copy()
    data[sample_key] = data[sample_key].astype(str)
    data = data[np.isfinite(data[metric].to_numpy(dtype=float))]
    if log_scale:
        data = data[data[metric] > 0]
    if data.empty:
        logger.warning("No finite values for '%s'; skipping density plot", metric)
        return None

    samples = categories_of(obs[sample_key])
    fig, ax = plt.subplots(figsize=(6, 4))
    sns.kdeplot(
        data=data,
        x=metric,
        hue=sample_key,
        hue_order=[s for s in samples if s in set(data[sample_key])],
        palette=sample_palette(samples),
        fill=True,
        alpha=0.2,
        log_scale=log_scale,
        common_norm=False,
        warn_singular=False,
        ax=ax,
    )
    if threshold is not None:
        ax.axvline(threshold, color=THRESHOLD_COLOR, linestyle="--", linewidth=1)
    ax.set_xlabel(label)
    ax.set_ylabel("Cell density")
    ax.set_title(label)
    return save_figure(fig, output_path, dpi=dpi)


def plot_umi_vs_genes(
    obs: pd.DataFrame,
    output_path: PathLike,
    min_umi: Optional[float] = None,
    min_genes: Optional[float] = None,
    sample_key: str = "sample",
    dpi: int = 200,
) -> Optional[Path]:
    """nUMI vs nGene per sample, colored by mitochondrial ratio (log-log)."""
    import matplotlib.pyplot as plt

    required = ["nUMI", "nGene", "mitoRatio", sample_key]
    if any(c not in obs.columns for c in required):
        logger.warning("QC metrics missing; skipping nUMI vs nGene plot")
        return None

    set_style()
    samples = categories_of(obs[sample_key])
    nrows, ncols = grid_shape(len(samples), ncols=len(samples))
    fig, axes = plt.subplots(
        nrows, ncols, figsize=(4.5 * ncols, 4 * nrows), squeeze=False, sharex=True, sharey=True
    )

    vmax = max(float(np.nan_to_num(obs["mitoRatio"].max(skipna=True))), 1e-6)
    scatter = None
    for ax, sample in zip(axes.flat, samples):
        sub = obs[(obs[sample_key].astype(str) == sample) & (obs["nUMI"] > 0) & (obs["nGene"] > 0)]
        sub = sub.sort_values("mitoRatio")
        scatter = ax.scatter(
            sub["nUMI"],
            sub["nGene"],
            c=sub["mitoRatio"],
            cmap="viridis",
            vmin=0,
            vmax=vmax,
            s=4,
            linewidths=0,
        )
        ax.set_xscale("log")
        ax.set_yscale("log")
        if min_umi is not None:
            ax.axvline(min_umi, color=THRESHOLD_COLOR, linestyle="--", linewidth=1)
        if min_genes is not None:
            ax.axhline(min_genes, color=THRESHOLD_COLOR, linestyle="--", linewidth=1)
        ax.set_title(sample)
        ax.set_xlabel("nUMI")
        ax.set_ylabel("nGene")
    for ax in list(axes.flat)[len(samples):]:
        ax.set_visible(False)

    if scatter is not None:
        fig.colorbar(scatter, ax=axes.ravel().tolist(), label="mitoRatio")
    return save_figure(fig, output_path, dpi=dpi)


def generate_qc_figures(
    obs: pd.DataFrame,
    output_dir: PathLike,
    thresholds: Optional[Dict[str, float]] = None,
    sample_key: str = "sample",
    suffix: str = "",
    dpi: int = 200,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """Generate all QC figures for a metrics table.

    Parameters
    ----------
    obs : pd.DataFrame
        Per-cell metrics (adata.obs)
    output_dir : PathLike
        Figure directory
    thresholds : Dict[str, float], optional
        Threshold per metric name (nUMI, nGene, log10GenesPerUMI, mitoRatio)
    sample_key : str
        Sample column
    suffix : str
        File name suffix (e.g. "_post_filter")
    dpi : int
        Figure resolution
    logger : logging.Logger, optional
        Logger instance

    Returns
    -------
    List[Path]
        Generated figures; failed figures are logged and skipped
    """
    log = logger or logging.getLogger(__name__)
    output_dir = Path(output_dir)
    thresholds = thresholds or {}

    jobs = [
        ("cells_per_sample", lambda p: plot_cell_counts(obs, p, sample_key, dpi)),
        (
            "umi_vs_genes",
            lambda p: plot_umi_vs_genes(
                obs, p, thresholds.get("nUMI"), thresholds.get("nGene"), sample_key, dpi
            ),
        ),
    ]
    for metric in METRIC_AXES:
        jobs.append(
            (
                f"density_{metric}",
                lambda p, m=metric: plot_metric_density(
                    obs, m, p, thresholds.get(m), sample_key, dpi
                ),
            )
        )

    generated = []
    for name, build in jobs:
        path = output_dir / f"qc_{name}{suffix}.png"
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
