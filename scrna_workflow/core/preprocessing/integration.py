"""Condition integration (Stage D).

Computes PCA on the variance-stabilized genes and aligns the two
conditions with Harmony. A precomputed clustered object can stand in
for the whole integration step when it cannot be run locally.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging

import numpy as np
import pandas as pd

from .config import IntegrationConfig
from ...utils.stats import shannon_entropy

PathLike = Union[str, Path]

VALID_METHODS = ("harmony", "none")


@dataclass
class IntegrationResult:
    """Result from integration.

    Attributes
    ----------
    rep_key : str
        obsm key of the representation to build neighbors on
    method : str
        Integration method used ("harmony", "none" or "fallback")
    n_pcs : int
        Number of principal components
    used_fallback : bool
        Whether the precomputed object was loaded instead
    batch_mixing : float
        Mean normalized neighbourhood condition entropy (0-1)
    adata : AnnData
        Integrated object
    """

    rep_key: str = "X_pca"
    method: str = ""
    n_pcs: int = 0
    used_fallback: bool = False
    batch_mixing: float = float("nan")
    adata: Any = None  # AnnData

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "rep_key": self.rep_key,
            "method": self.method,
            "n_pcs": self.n_pcs,
            "used_fallback": self.used_fallback,
            "batch_mixing": None if np.isnan(self.batch_mixing) else round(self.batch_mixing, 4),
        }


class IntegrationEngine:
    """PCA and condition integration.

    Parameters
    ----------
    config : IntegrationConfig
        Integration configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.preprocessing import IntegrationEngine
    >>> engine = IntegrationEngine()
    >>> result = engine.run(stabilized_adata)
    >>> result.rep_key
    'X_pca_harmony'
    """

    def __init__(
        self,
        config: Optional[IntegrationConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or IntegrationConfig()
        self.logger = logger or logging.getLogger(__name__)
        if self.config.method not in VALID_METHODS:
            raise ValueError(
                f"Unknown integration method: {self.config.method}. "
                f"Choose from {VALID_METHODS}"
            )
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Integration requires scanpy. Install with: pip install scanpy"
            )
        if self.config.method == "harmony" and not self.config.prefer_fallback:
            try:
                import harmonypy
            except ImportError:
                raise RuntimeError(
                    "Harmony integration requires harmonypy. "
                    "Install with: pip install harmonypy"
                )

    def run_pca(self, adata, n_pcs: Optional[int] = None) -> int:
        """PCA on the stabilized matrix (X), stored in ``obsm["X_pca"]``.

        Returns
        -------
        int
            Number of components computed
        """
        import scanpy as sc

        n_pcs = n_pcs if n_pcs is not None else self.config.n_pcs
        n_comps = max(1, min(n_pcs, adata.n_obs - 1, adata.n_vars - 1))
        if n_comps < n_pcs:
            self.logger.warning(
                "Requested %d PCs but data supports %d", n_pcs, n_comps
            )

        sc.tl.pca(adata, n_comps=n_comps, random_state=self.config.random_seed)
        variance = adata.uns["pca"]["variance_ratio"]
        self.logger.info(
            "PCA: %d components, %.1f%% variance explained",
            n_comps,
            100 * float(np.sum(variance)),
        )
        return n_comps

    def integrate(self, adata, batch_key: Optional[str] = None) -> str:
        """Align conditions on the PCA embedding.

        Parameters
        ----------
        adata : AnnData
            Object with ``obsm["X_pca"]``
        batch_key : str, optional
            Condition column (default from config)

        Returns
        -------
        str
            obsm key of the integrated representation
        """
        batch_key = batch_key or self.config.batch_key
        if "X_pca" not in adata.obsm:
            raise KeyError("obsm['X_pca'] missing; run run_pca first")
        if batch_key not in adata.obs.columns:
            raise KeyError(f"Batch column '{batch_key}' not found in adata.obs")

        if self.config.method == "none":
            self.logger.info("Integration disabled; using X_pca")
            return "X_pca"

        n_batches = adata.obs[batch_key].nunique()
        if n_batches < 2:
            self.logger.warning(
                "Only %d value in '%s'; skipping Harmony", n_batches, batch_key
            )
            return "X_pca"

        import harmonypy

        self.logger.info("Running Harmony over '%s' (%d conditions)", batch_key, n_batches)
        harmony_out = harmonypy.run_harmony(
            adata.obsm["X_pca"],
            adata.obs,
            batch_key,
            max_iter_harmony=self.config.max_iter,
            random_state=self.config.random_seed,
        )
        adata.obsm["X_pca_harmony"] = self._orient_cells_by_pcs(
            harmony_out.Z_corr, adata.n_obs
        )
        return "X_pca_harmony"

    @staticmethod
    def _orient_cells_by_pcs(Z, n_obs: int) -> np.ndarray:
        """Return the corrected embedding as cells x PCs.

        harmonypy releases before 2.0 return ``Z_corr`` as PCs x cells,
        later ones as cells x PCs.
        """
        Z = np.asarray(Z, dtype=float)
        if Z.ndim != 2 or n_obs not in Z.shape:
            raise ValueError(
                f"Harmony returned shape {Z.shape}; expected {n_obs} cells on one axis"
            )
        return Z.T if Z.shape[0] != n_obs else Z

    def batch_mixing_score(
        self,
        adata,
        rep: str = "X_pca_harmony",
        batch_key: Optional[str] = None,
        n_neighbors: int = 30,
    ) -> float:
        """Mean neighbourhood condition entropy, normalized to 0-1.

        For each cell the condition labels of its nearest neighbours in
        ``rep`` are counted and their entropy is divided by log(number of
        conditions). Values near 1 mean well-mixed conditions.
        """
        from sklearn.neighbors import NearestNeighbors

        batch_key = batch_key or self.config.batch_key
        if rep not in adata.obsm:
            raise KeyError(f"Representation '{rep}' not found in adata.obsm")

        labels = pd.Categorical(adata.obs[batch_key])
        n_batches = len(labels.categories)
        if n_batches < 2 or adata.n_obs < 2:
            return float("nan")

        k = min(n_neighbors, adata.n_obs - 1)
        nn = NearestNeighbors(n_neighbors=k).fit(np.asarray(adata.obsm[rep]))
        # Query without X excludes each cell from its own neighbours
        _, idx = nn.kneighbors()
        codes = labels.codes

        max_entropy = np.log(n_batches)
        entropies = [
            shannon_entropy(np.bincount(codes[row], minlength=n_batches)) / max_entropy
            for row in idx
        ]
        return float(np.mean(entropies))

    def load_fallback(self, path: Optional[PathLike] = None):
        """Read a precomputed clustered object.

        Raises
        ------
        FileNotFoundError
            If no path is configured or the file does not exist
        """
        import anndata as ad

        path = path or self.config.fallback_path
        if path is None:
            raise FileNotFoundError("No precomputed fallback object configured")
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Precomputed object not found: {path}")

        self.logger.info("Loading precomputed clustered object from %s", path)
        return ad.read_h5ad(path)

    def _use_fallback(self, result: IntegrationResult) -> IntegrationResult:
        fallback = self.load_fallback()
        for key in ("X_pca_harmony", "X_integrated", "X_pca"):
            if key in fallback.obsm:
                break
        else:
            raise KeyError(
                "Precomputed object has no PCA or integrated embedding in obsm"
            )
        result.adata = fallback
        result.used_fallback = True
        result.method = "fallback"
        result.rep_key = key
        result.n_pcs = fallback.obsm[key].shape[1]
        return result

    def run(self, adata, batch_key: Optional[str] = None) -> IntegrationResult:
        """PCA, integration and mixing diagnostic.

        Falls back to the precomputed object when ``prefer_fallback`` is
        set, or when integration runs out of memory and a fallback path
        is configured.
        """
        cfg = self.config
        batch_key = batch_key or cfg.batch_key
        result = IntegrationResult(method=cfg.method)

        if cfg.prefer_fallback:
            return self._use_fallback(result)

        try:
            result.n_pcs = self.run_pca(adata)
            result.rep_key = self.integrate(adata, batch_key=batch_key)
        except MemoryError:
            if cfg.fallback_path is None:
                raise
            self.logger.warning(
                "Integration ran out of memory; loading precomputed object"
            )
            return self._use_fallback(result)

        if result.rep_key == "X_pca":
            result.method = "none"
        result.batch_mixing = self.batch_mixing_score(
            adata, rep=result.rep_key, batch_key=batch_key
        )
        result.adata = adata
        self.logger.info(
            "Integration done (%s, rep=%s, mixing=%.3f)",
            result.method,
            result.rep_key,
            result.batch_mixing,
        )
        return result
