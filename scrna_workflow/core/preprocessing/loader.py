"""Data loader for preprocessing pipeline (Stage A).

Reads Cell Ranger style market-matrix directories (one per sample)
into raw-count AnnData objects with basic consistency checks.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
import logging

import numpy as np

from .config import LoaderConfig

PathLike = Union[str, Path]

# File names per layout that sc.read_10x_mtx reads: Cell Ranger 2
# (uncompressed, genes.tsv) or Cell Ranger 3+ (gzipped, features.tsv.gz)
LAYOUTS = {
    "legacy": {"matrix": "matrix.mtx", "features": "genes.tsv", "barcodes": "barcodes.tsv"},
    "v3": {"matrix": "matrix.mtx.gz", "features": "features.tsv.gz", "barcodes": "barcodes.tsv.gz"},
}


@dataclass
class LoadResult:
    """Result from loading a single sample.

    Attributes
    ----------
    sample_id : str
        Sample identifier (condition label)
    adata : AnnData
        Cell-by-gene raw count matrix
    n_cells : int
        Number of barcodes
    n_genes : int
        Number of features
    issues : List[str]
        List of any issues found
    status : str
        'OK' or 'CHECK'
    """

    sample_id: str
    adata: Any = None  # AnnData
    n_cells: int = 0
    n_genes: int = 0
    issues: List[str] = field(default_factory=list)
    status: str = "OK"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "sample_id": self.sample_id,
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "status": self.status,
            "issues": ";".join(self.issues) if self.issues else "",
        }


class DataLoader:
    """Loader for per-sample 10x market-matrix directories.

    Parameters
    ----------
    config : LoaderConfig
        Loader configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.preprocessing import DataLoader, LoaderConfig
    >>> loader = DataLoader(LoaderConfig())
    >>> result = loader.load_sample("data/ctrl_raw_feature_bc_matrix", "ctrl")
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
            import scanpy
        except ImportError:
            raise RuntimeError(
                "Loading requires scanpy. Install with: pip install scanpy"
            )

    @staticmethod
    def detect_layout(matrix_dir: PathLike) -> str:
        """Name of the 10x layout in a directory ("legacy" or "v3").

        A plain ``genes.tsv`` marks the legacy layout; anything else is
        read as gzipped v3, as scanpy does.
        """
        if (Path(matrix_dir) / LAYOUTS["legacy"]["features"]).is_file():
            return "legacy"
        return "v3"

    @classmethod
    def find_matrix_files(cls, matrix_dir: PathLike) -> Dict[str, Optional[Path]]:
        """Locate matrix, feature and barcode files of the detected layout.

        Returns
        -------
        Dict[str, Optional[Path]]
            Keys "matrix", "features", "barcodes"; None where not found
        """
        matrix_dir = Path(matrix_dir)
        names = LAYOUTS[cls.detect_layout(matrix_dir)]
        return {
            kind: (matrix_dir / name if (matrix_dir / name).is_file() else None)
            for kind, name in names.items()
        }

    def load_sample(self, matrix_dir: PathLike, sample_id: str) -> LoadResult:
        """Load and validate a single sample.

        Parameters
        ----------
        matrix_dir : PathLike
            Directory with matrix, features/genes and barcodes files
        sample_id : str
            Sample identifier

        Returns
        -------
        LoadResult
            Loading result with counts and validation status

        Raises
        ------
        FileNotFoundError
            If the directory or one of its required files is missing
        """
        import scanpy as sc

        matrix_dir = Path(matrix_dir)
        if not matrix_dir.is_dir():
            raise FileNotFoundError(f"Matrix directory not found: {matrix_dir}")

        layout = self.detect_layout(matrix_dir)
        files = self.find_matrix_files(matrix_dir)
        missing = [LAYOUTS[layout][kind] for kind, path in files.items() if path is None]
        if missing:
            raise FileNotFoundError(
                f"Matrix directory {matrix_dir} is missing {', '.join(missing)} "
                f"for the {layout} 10x layout (expected "
                f"{', '.join(LAYOUTS['legacy'].values())} or "
                f"{', '.join(LAYOUTS['v3'].values())})"
            )

        result = LoadResult(sample_id=sample_id)
        self.logger.info("Loading sample %s from %s", sample_id, matrix_dir)

        adata = sc.read_10x_mtx(
            matrix_dir,
            var_names=self.config.var_names,
            make_unique=self.config.make_unique,
            cache=False,
        )

        result.n_cells = adata.n_obs
        result.n_genes = adata.n_vars

        n_dups = int(adata.obs_names.duplicated().sum())
        if n_dups > 0:
            result.issues.append(f"duplicate_barcodes:{n_dups}")
            adata.obs_names_make_unique()

        if adata.n_obs == 0:
            result.issues.append("no_cells")

        if adata.n_vars == 0:
            result.issues.append("no_genes")

        counts_per_cell = np.asarray(adata.X.sum(axis=1)).ravel()
        n_empty = int((counts_per_cell == 0).sum())
        if n_empty > 0:
            # Removed later by QC thresholds
            self.logger.info("%s: %d barcodes without counts", sample_id, n_empty)

        adata.obs[self.config.sample_key] = sample_id
        result.adata = adata
        result.status = "OK" if not result.issues else "CHECK"

        self.logger.info(
            "Loaded %s: %d barcodes x %d genes (status=%s)",
            sample_id,
            result.n_cells,
            result.n_genes,
            result.status,
        )
        return result

    def load_samples(self, samples: Mapping[str, PathLike]) -> List[LoadResult]:
        """Load several samples in the given order.

        Parameters
        ----------
        samples : Mapping[str, PathLike]
            Map of sample_id to matrix directory

        Returns
        -------
        List[LoadResult]
            One result per sample

        Raises
        ------
        ValueError
            If no samples are given
        """
        if not samples:
            raise ValueError("No samples configured; provide at least one matrix directory")

        return [
            self.load_sample(matrix_dir, sample_id)
            for sample_id, matrix_dir in samples.items()
        ]
