"""Sample merging (Stage A).

Concatenates per-sample count matrices into a single AnnData object
with sample-prefixed barcodes and the sample label in obs.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd
import scipy.sparse as sp

from .config import LoaderConfig
from .loader import LoadResult


@dataclass
class MergeResult:
    """Result from merging samples.

    Attributes
    ----------
    adata : AnnData
        Merged AnnData object (raw counts in X and layers["counts"])
    n_cells : int
        Total number of cells
    n_samples : int
        Number of samples merged
    n_genes : int
        Number of genes in the union of all samples
    sample_sizes : dict
        Cells per sample
    """

    adata: Any = None  # AnnData
    n_cells: int = 0
    n_samples: int = 0
    n_genes: int = 0
    sample_sizes: dict = field(default_factory=dict)


class DataMerger:
    """Merges per-sample AnnData objects into one object.

    Parameters
    ----------
    config : LoaderConfig
        Loader configuration (sample key and barcode separator)
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.preprocessing import DataMerger
    >>> merger = DataMerger()
    >>> result = merger.merge_samples([ctrl_result, stim_result])
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or LoaderConfig()
        self.logger = logger or logging.getLogger(__name__)
        self._check_dependencies()

    def _check_dependencies(self) -> None:
        """Check for required dependencies."""
        try:
            import anndata
        except ImportError:
            raise RuntimeError(
                "Data merging requires anndata. "
                "Install with: pip install anndata"
            )

    def merge_samples(self, results: Sequence[LoadResult]) -> MergeResult:
        """Merge loaded samples into a single AnnData object.

        Parameters
        ----------
        results : Sequence[LoadResult]
            Loaded samples in the order they should appear

        Returns
        -------
        MergeResult
            Merged result with AnnData object

        Raises
        ------
        ValueError
            If no samples are given or sample ids are not unique
        """
        import anndata as ad

        if not results:
            raise ValueError("No samples to merge")

        sample_ids = [r.sample_id for r in results]
        if len(set(sample_ids)) != len(sample_ids):
            raise ValueError(f"Sample identifiers must be unique: {sample_ids}")

        sample_key = self.config.sample_key
        sep = self.config.barcode_sep
        parts: List[Any] = []
        for res in results:
            part = res.adata.copy()
            part.obs[sample_key] = res.sample_id
            part.obs_names = [f"{res.sample_id}{sep}{bc}" for bc in part.obs_names]
            parts.append(part)

        # Outer join keeps genes detected in any sample; missing entries are zero
        adata = ad.concat(parts, axis=0, join="outer", fill_value=0)
        adata.obs[sample_key] = pd.Categorical(
            adata.obs[sample_key].astype(str), categories=sample_ids
        )

        if not sp.issparse(adata.X):
            adata.X = sp.csr_matrix(adata.X)
        adata.X = adata.X.astype(np.float32)
        adata.layers["counts"] = adata.X.copy()

        result = MergeResult(adata=adata)
        result.n_cells = adata.n_obs
        result.n_samples = len(sample_ids)
        result.n_genes = adata.n_vars
        result.sample_sizes = adata.obs[sample_key].value_counts().to_dict()

        self.logger.info(
            "Merged %d samples: %d cells x %d genes",
            result.n_samples,
            result.n_cells,
            result.n_genes,
        )
        return result
