"""Normalization and variance stabilization (Stage C).

Two representations are produced from the filtered raw counts:

- a library-size normalized, log-transformed matrix over all genes
  (``layers["lognorm"]``, later frozen into ``adata.raw``), used for
  cell-cycle scoring, differential expression and plots;
- a variance-stabilized matrix over the highly variable genes
  (analytic Pearson residuals, an SCTransform analogue) with unwanted
  covariates regressed out, used for PCA and integration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import numpy as np
import scipy.sparse as sp

from .config import NormalizationConfig

VALID_METHODS = ("pearson_residuals", "log")


@dataclass
class NormalizationResult:
    """Result from normalization.

    Attributes
    ----------
    method : str
        Variance stabilization method used
    n_hvg : int
        Number of highly variable genes kept
    regressed : List[str]
        Covariates regressed out
    hvg : List[str]
        Highly variable gene names
    adata : AnnData
        Object restricted to highly variable genes, full-gene log data in .raw
    """

    method: str = ""
    n_hvg: int = 0
    regressed: List[str] = field(default_factory=list)
    hvg: List[str] = field(default_factory=list)
    adata: Any = None  # AnnData

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "method": self.method,
            "n_hvg": self.n_hvg,
            "regressed": list(self.regressed),
        }


class Normalizer:
    """Normalizer for raw UMI counts.

    Parameters
    ----------
    config : NormalizationConfig
        Normalization configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.preprocessing import Normalizer
    >>> normalizer = Normalizer()
    >>> normalizer.log_normalize(adata)
    >>> result = normalizer.variance_stabilize(adata, batch_key="sample")
    >>> hvg_adata = result.adata
    """

    def __init__(
        self,
        config: Optional[NormalizationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NormalizationConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.method not in VALID_METHODS:
            raise ValueError(
                f"Unknown normalization method: {self.config.method}. "
                f"Choose from {VALID_METHODS}"
            )
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Normalization requires scanpy. Install with: pip install scanpy"
            )

    def log_normalize(
        self,
        adata,
        target_sum: Optional[float] = None,
        counts_layer: str = "counts",
    ) -> None:
        """Library-size normalize and log1p transform raw counts.

        The result is written to ``layers["lognorm"]`` and X. Raw counts
        are taken from ``counts_layer`` (copied from X when absent).

        Parameters
        ----------
        adata : AnnData
            Filtered raw-count object (modified in place)
        target_sum : float, optional
            Counts per cell after normalization
        counts_layer : str
            Layer holding raw counts
        """
        import scanpy as sc

        target_sum = target_sum if target_sum is not None else self.config.target_sum

        if counts_layer not in adata.layers:
            adata.layers[counts_layer] = adata.X.copy()

        normalized = sc.pp.normalize_total(
            adata, target_sum=target_sum, layer=counts_layer, inplace=False
        )["X"]
        if sp.issparse(normalized):
            lognorm = normalized.log1p()
        else:
            lognorm = np.log1p(normalized)

        adata.layers["lognorm"] = lognorm
        adata.X = lognorm.copy()
        adata.uns["log1p"] = {"base": None}

        self.logger.info(
            "Log-normalized %d cells to %.0f counts per cell", adata.n_obs, target_sum
        )

    def select_highly_variable(self, adata, batch_key: Optional[str] = None) -> List[str]:
        """Flag highly variable genes in ``var["highly_variable"]``.

        Pearson residual mode ranks genes on raw counts; log mode uses the
        Seurat dispersion method on log-normalized data. With ``batch_key``
        the ranking is combined across conditions.

        Returns
        -------
        List[str]
            Highly variable gene names
        """
        import scanpy as sc

        cfg = self.config
        n_top = min(cfg.n_top_genes, adata.n_vars)
        if batch_key is not None and batch_key not in adata.obs.columns:
            raise KeyError(f"Batch column '{batch_key}' not found in adata.obs")

        if cfg.method == "pearson_residuals":
            sc.experimental.pp.highly_variable_genes(
                adata,
                flavor="pearson_residuals",
                n_top_genes=n_top,
                batch_key=batch_key,
                theta=cfg.theta,
                clip=cfg.clip,
                layer="counts",
            )
        else:
            sc.pp.highly_variable_genes(
                adata,
                flavor="seurat",
                n_top_genes=n_top,
                batch_key=batch_key,
                layer="lognorm",
            )

        hvg = adata.var_names[adata.var["highly_variable"].to_numpy(dtype=bool)].tolist()
        self.logger.info("Selected %d highly variable genes", len(hvg))
        return hvg

    def variance_stabilize(
        self,
        adata,
        batch_key: Optional[str] = None,
        regress_out: Optional[List[str]] = None,
    ) -> NormalizationResult:
        """Variance-stabilize the highly variable genes.

        Freezes the full-gene log-normalized matrix into ``adata.raw`` and
        returns a copy restricted to highly variable genes whose X holds
        Pearson residuals (or scaled log values) with ``regress_out``
        covariates removed.

        Parameters
        ----------
        adata : AnnData
            Object after :meth:`log_normalize`
        batch_key : str, optional
            Condition column for batch-aware gene selection
        regress_out : List[str], optional
            obs columns to regress out (default from config)

        Returns
        -------
        NormalizationResult
            Result holding the stabilized object
        """
        import scanpy as sc

        cfg = self.config
        regress_out = list(regress_out if regress_out is not None else cfg.regress_out)

        if "lognorm" not in adata.layers:
            raise KeyError("layers['lognorm'] missing; run log_normalize first")
        missing = [c for c in regress_out if c not in adata.obs.columns]
        if missing:
            raise KeyError(f"Covariates to regress out not found in adata.obs: {missing}")

        hvg = self.select_highly_variable(adata, batch_key=batch_key)
        if not hvg:
            raise ValueError("No highly variable genes selected")

        adata.X = adata.layers["lognorm"].copy()
        adata.raw = adata
        stabilized = adata[:, hvg].copy()

        if cfg.method == "pearson_residuals":
            stabilized.X = stabilized.layers["counts"].copy()
            sc.experimental.pp.normalize_pearson_residuals(
                stabilized, theta=cfg.theta, clip=cfg.clip
            )
        else:
            stabilized.X = stabilized.layers["lognorm"].copy()

        if regress_out:
            self.logger.info("Regressing out %s", ", ".join(regress_out))
            sc.pp.regress_out(stabilized, keys=regress_out)

        if cfg.method == "log":
            sc.pp.scale(stabilized, max_value=cfg.scale_max)

        stabilized.uns["normalization"] = {
            "method": cfg.method,
            "n_top_genes": len(hvg),
            "regressed": regress_out,
        }

        result = NormalizationResult(
            method=cfg.method,
            n_hvg=len(hvg),
            regressed=regress_out,
            hvg=hvg,
            adata=stabilized,
        )
        self.logger.info(
            "Variance stabilization (%s): %d cells x %d genes",
            cfg.method,
            stabilized.n_obs,
            stabilized.n_vars,
        )
        return result

    def run(self, adata, batch_key: Optional[str] = None) -> NormalizationResult:
        """Log-normalize, then variance-stabilize.

        Parameters
        ----------
        adata : AnnData
            Filtered raw-count object
        batch_key : str, optional
            Condition column

        Returns
        -------
        NormalizationResult
            Result holding the stabilized object
        """
        self.log_normalize(adata)
        return self.variance_stabilize(adata, batch_key=batch_key)
