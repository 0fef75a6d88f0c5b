"""Cell and gene quality control (Stage B).

Computes per-cell QC metrics (UMIs, detected genes, novelty score and
mitochondrial ratio) and removes low-quality cells and rarely detected
genes with fixed thresholds.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .config import QCConfig
from ...utils.stats import mad_bounds, median_mad


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "low_umi",
    "low_genes",
    "low_novelty",
    "high_mito",
]

QC_METRICS = ["nUMI", "nGene", "log10GenesPerUMI", "mitoRatio"]


@dataclass
class QCResult:
    """Result from cell and gene QC.

    Attributes
    ----------
    cells_total : int
        Total cells before filtering
    cells_removed : int
        Number of cells removed
    removal_fraction : float
        Fraction of cells removed
    reason_counts : Dict[str, int]
        Failing cells per reason (a cell can fail several)
    genes_total : int
        Total genes before filtering
    genes_removed : int
        Number of genes removed
    removed_by_sample : Dict[str, int]
        Removed cells per sample
    adata : AnnData
        Filtered object
    """

    cells_total: int = 0
    cells_removed: int = 0
    removal_fraction: float = 0.0
    reason_counts: Dict[str, int] = field(default_factory=dict)
    genes_total: int = 0
    genes_removed: int = 0
    removed_by_sample: Dict[str, int] = field(default_factory=dict)
    adata: Any = None  # AnnData

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
            "genes_total": self.genes_total,
            "genes_removed": self.genes_removed,
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result


def _counts_matrix(adata, layer: Optional[str] = "counts"):
    """Raw counts from the given layer, falling back to X."""
    if layer is not None and layer in adata.layers:
        return adata.layers[layer]
    return adata.X


def _safe_ratio(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Elementwise ratio with NaN where the denominator is not positive."""
    num = np.asarray(numerator, dtype=float)
    den = np.asarray(denominator, dtype=float)
    out = np.full(num.shape, np.nan)
    mask = den > 0
    out[mask] = num[mask] / den[mask]
    return out


class CellQC:
    """Cell and gene quality control.

    Parameters
    ----------
    config : QCConfig
        QC configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.preprocessing import CellQC, QCConfig
    >>> qc = CellQC(QCConfig(max_mito_ratio=0.15))
    >>> result = qc.run(merged_adata)
    >>> filtered = result.adata
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.logger = logger or logging.getLogger(__name__)

    def compute_qc_metrics(self, adata, layer: Optional[str] = "counts") -> pd.DataFrame:
        """Add per-cell QC metrics to adata.obs.

        Adds ``nUMI``, ``nGene``, ``log10GenesPerUMI``, ``mitoRatio`` and
        ``cells`` (barcode). Also marks mitochondrial genes in
        ``var["mt"]``.

        Parameters
        ----------
        adata : AnnData
            Object with raw counts in ``layer`` or X
        layer : str, optional
            Layer holding raw counts

        Returns
        -------
        pd.DataFrame
            The QC metric columns (same index as adata.obs)
        """
        counts = _counts_matrix(adata, layer)
        prefix = self.config.mito_prefix
        # Case-sensitive: human MT- and mouse mt- need their own prefix
        mt_mask = np.asarray(adata.var_names.str.startswith(prefix), dtype=bool)
        adata.var["mt"] = mt_mask

        n_umi = np.asarray(counts.sum(axis=1), dtype=float).ravel()
        if sp.issparse(counts):
            n_gene = np.asarray(counts.getnnz(axis=1), dtype=float).ravel()
        else:
            n_gene = np.asarray((counts > 0).sum(axis=1), dtype=float).ravel()
        mt_counts = np.asarray(counts[:, mt_mask].sum(axis=1), dtype=float).ravel()

        # log10(1) is 0, so the novelty score is undefined at one UMI or fewer
        novelty = np.full(n_umi.shape, np.nan)
        valid = (n_umi > 1) & (n_gene > 0)
        novelty[valid] = np.log10(n_gene[valid]) / np.log10(n_umi[valid])

        adata.obs["cells"] = adata.obs_names.astype(str)
        adata.obs["nUMI"] = n_umi
        adata.obs["nGene"] = n_gene
        adata.obs["log10GenesPerUMI"] = novelty
        adata.obs["mitoRatio"] = _safe_ratio(mt_counts, n_umi)

        self.logger.info(
            "QC metrics for %d cells (%d mitochondrial genes, prefix %r)",
            adata.n_obs,
            int(mt_mask.sum()),
            prefix,
        )
        if not mt_mask.any():
            self.logger.warning(
                "No genes start with %r; mitoRatio is zero for all cells", prefix
            )

        return adata.obs[["cells"] + QC_METRICS].copy()

    def flag_cells(
        self,
        obs: pd.DataFrame,
        min_umi: Optional[int] = None,
        min_genes: Optional[int] = None,
        min_novelty: Optional[float] = None,
        max_mito_ratio: Optional[float] = None,
    ) -> pd.DataFrame:
        """Boolean failure flags per cell, one column per reason.

        A missing (NaN) metric counts as a failure.
        """
        cfg = self.config
        min_umi = min_umi if min_umi is not None else cfg.min_umi
        min_genes = min_genes if min_genes is not None else cfg.min_genes
        min_novelty = min_novelty if min_novelty is not None else cfg.min_novelty
        max_mito_ratio = (
            max_mito_ratio if max_mito_ratio is not None else cfg.max_mito_ratio
        )

        missing = [c for c in QC_METRICS if c not in obs.columns]
        if missing:
            raise KeyError(
                f"QC metrics missing from obs: {missing}. Run compute_qc_metrics first."
            )

        reasons = pd.DataFrame(index=obs.index)
        reasons["low_umi"] = ~(obs["nUMI"] >= min_umi)
        reasons["low_genes"] = ~(obs["nGene"] >= min_genes)
        reasons["low_novelty"] = ~(obs["log10GenesPerUMI"] > min_novelty)
        reasons["high_mito"] = ~(obs["mitoRatio"] < max_mito_ratio)
        return reasons

    def filter_cells(
        self,
        adata,
        min_umi: Optional[int] = None,
        min_genes: Optional[int] = None,
        min_novelty: Optional[float] = None,
        max_mito_ratio: Optional[float] = None,
    ) -> Tuple[Any, pd.DataFrame]:
        """Keep cells passing all four thresholds.

        Parameters
        ----------
        adata : AnnData
            Object with QC metrics in obs
        min_umi, min_genes : int, optional
            Inclusive lower bounds on nUMI and nGene
        min_novelty : float, optional
            Exclusive lower bound on log10GenesPerUMI
        max_mito_ratio : float, optional
            Exclusive upper bound on mitoRatio

        Returns
        -------
        Tuple[AnnData, pd.DataFrame]
            (filtered copy, per-cell failure flags for all input cells)

        Raises
        ------
        ValueError
            If no cell passes the thresholds
        """
        reasons = self.flag_cells(
            adata.obs,
            min_umi=min_umi,
            min_genes=min_genes,
            min_novelty=min_novelty,
            max_mito_ratio=max_mito_ratio,
        )
        keep = ~reasons.any(axis=1)
        n_keep = int(keep.sum())
        if n_keep == 0:
            counts = reasons.sum().to_dict()
            raise ValueError(
                f"QC thresholds remove all {adata.n_obs} cells (failures per reason: {counts})"
            )

        self.logger.info(
            "Cell filter: kept %d / %d cells", n_keep, adata.n_obs
        )
        return adata[keep.values].copy(), reasons

    def filter_genes(
        self, adata, min_cells: Optional[int] = None, layer: Optional[str] = "counts"
    ):
        """Keep genes with non-zero counts in at least ``min_cells`` cells.

        Returns
        -------
        AnnData
            Filtered copy with ``var["n_cells"]``
        """
        min_cells = min_cells if min_cells is not None else self.config.min_cells_per_gene
        counts = _counts_matrix(adata, layer)
        if sp.issparse(counts):
            n_cells = np.asarray(counts.getnnz(axis=0)).ravel()
        else:
            n_cells = np.asarray((counts > 0).sum(axis=0)).ravel()

        keep = n_cells >= min_cells
        filtered = adata[:, keep].copy()
        filtered.var["n_cells"] = n_cells[keep]

        self.logger.info(
            "Gene filter: kept %d / %d genes (detected in >= %d cells)",
            int(keep.sum()),
            adata.n_vars,
            min_cells,
        )
        return filtered

    def run(self, adata, sample_key: str = "sample") -> QCResult:
        """Compute metrics, then filter cells and genes.

        Parameters
        ----------
        adata : AnnData
            Merged raw-count object
        sample_key : str
            obs column used for per-sample removal counts

        Returns
        -------
        QCResult
            Filtering summary with the filtered object
        """
        result = QCResult()
        self.compute_qc_metrics(adata)

        result.cells_total = adata.n_obs
        result.genes_total = adata.n_vars

        filtered, reasons = self.filter_cells(adata)
        result.reason_counts = {
            reason: int(reasons[reason].sum()) for reason in REASON_COLUMNS
        }
        result.cells_removed = result.cells_total - filtered.n_obs
        result.removal_fraction = (
            result.cells_removed / result.cells_total if result.cells_total > 0 else 0.0
        )
        if sample_key in adata.obs.columns:
            removed = reasons.any(axis=1)
            result.removed_by_sample = (
                removed.groupby(adata.obs[sample_key].astype(str)).sum().astype(int).to_dict()
            )

        filtered = self.filter_genes(filtered)
        result.genes_removed = result.genes_total - filtered.n_vars
        result.adata = filtered

        self.logger.info(
            "QC removed %d cells (%.1f%%) and %d genes",
            result.cells_removed,
            100 * result.removal_fraction,
            result.genes_removed,
        )
        return result

    def suggest_thresholds(self, adata, n_mads: float = 3.0) -> pd.DataFrame:
        """Data-driven threshold suggestions for the four QC metrics.

        Bounds are median +/- ``n_mads`` scaled MADs; count metrics are
        evaluated on a log10 scale. The table is a diagnostic for picking
        the fixed thresholds and is not applied automatically.

        Returns
        -------
        pd.DataFrame
            Columns: metric, median, mad, lower, upper, configured
        """
        cfg = self.config
        configured = {
            "nUMI": cfg.min_umi,
            "nGene": cfg.min_genes,
            "log10GenesPerUMI": cfg.min_novelty,
            "mitoRatio": cfg.max_mito_ratio,
        }
        records: List[Dict[str, Any]] = []
        for metric in QC_METRICS:
            if metric not in adata.obs.columns:
                continue
            values = adata.obs[metric].to_numpy(dtype=float)
            log_scale = metric in ("nUMI", "nGene")
            median, mad = median_mad(values)
            lower, upper = mad_bounds(values, n_mads=n_mads, log10=log_scale)
            records.append(
                {
                    "metric": metric,
                    "median": median,
                    "mad": mad,
                    "lower": lower,
                    "upper": upper,
                    "configured": configured[metric],
                }
            )
        return pd.DataFrame(records)

    def qc_summary_by_sample(self, adata, sample_key: str = "sample") -> pd.DataFrame:
        """Cells and median QC metrics per sample."""
        if sample_key not in adata.obs.columns:
            raise KeyError(f"Sample column '{sample_key}' not found in adata.obs")

        metrics = [m for m in QC_METRICS if m in adata.obs.columns]
        grouped = adata.obs.groupby(sample_key, observed=True)
        summary = grouped[metrics].median().add_prefix("median_")
        summary.insert(0, "n_cells", grouped.size())
        return summary.reset_index()
