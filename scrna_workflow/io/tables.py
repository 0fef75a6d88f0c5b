"""Table and object I/O for the workflow.

Reads the gene annotation table and writes result tables and AnnData
checkpoints into the results directory.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Union

import pandas as pd

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

GENE_ANNOTATION_REQUIRED = ["gene_name"]
GENE_ANNOTATION_OPTIONAL = ["description", "gene_id", "gene_biotype"]


def ensure_output_dir(path: PathLike) -> Path:
    """Create directory ``path`` if needed and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def load_gene_annotations(path: PathLike) -> pd.DataFrame:
    """Load the gene annotation table.

    Parameters
    ----------
    path : PathLike
        CSV with a ``gene_name`` column and optionally ``description``,
        ``gene_id`` and ``gene_biotype`` (other columns are kept).

    Returns
    -------
    pd.DataFrame
        Annotation table with string gene symbols

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If ``gene_name`` is missing.
    """
    csv_path = Path(path)
    if not csv_path.is_file():
        raise FileNotFoundError(f"Gene annotation table not found: {csv_path}")

    df = pd.read_csv(csv_path)
    missing = [c for c in GENE_ANNOTATION_REQUIRED if c not in df.columns]
    if missing:
        raise ValueError(f"Gene annotation table {csv_path} missing columns: {missing}")

    df = df.dropna(subset=["gene_name"]).copy()
    df["gene_name"] = df["gene_name"].astype(str)

    n_dup = int(df["gene_name"].duplicated().sum())
    logger.info(
        "Loaded %d gene annotations from %s (%d duplicated symbols)",
        len(df),
        csv_path,
        n_dup,
    )
    return df


def id_to_symbol_map(annotations: pd.DataFrame) -> Dict[str, str]:
    """Map ``gene_id`` to ``gene_name`` (first symbol per id)."""
    if "gene_id" not in annotations.columns:
        raise KeyError("Gene annotation table has no 'gene_id' column")
    pairs = annotations[["gene_id", "gene_name"]].dropna().drop_duplicates("gene_id")
    return dict(zip(pairs["gene_id"].astype(str), pairs["gene_name"].astype(str)))


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write ``df`` as CSV, creating parent directories."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=index)
    return out


def write_h5ad(adata, path: PathLike) -> Path:
    """Write an AnnData checkpoint, creating parent directories."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    adata.write_h5ad(out)
    logger.info("Wrote %s (%d cells x %d genes)", out, adata.n_obs, adata.n_vars)
    return out


def read_h5ad(path: PathLike):
    """Read an AnnData checkpoint."""
    import anndata as ad

    src = Path(path)
    if not src.is_file():
        raise FileNotFoundError(f"Checkpoint not found: {src}")
    return ad.read_h5ad(src)
