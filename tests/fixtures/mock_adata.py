"""Mock count data generators for testing.

Provides small two-condition (ctrl/stim) UMI count matrices with known
cell types, cell-cycle programs and low-quality cells, plus writers for
10x style matrix directories and annotation tables.
"""

from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from scrna_workflow.core.preprocessing.cell_cycle import G2M_GENES, S_GENES

MITO_GENES = ["MT-CO1", "MT-ND1", "MT-ATP6"]

CELL_TYPE_MARKERS: Dict[str, List[str]] = {
    "monocyte": ["CD14", "LYZ", "S100A8", "S100A9", "FCN1"],
    "t_cell": ["CD3D", "CD3E", "IL7R", "CCR7", "LTB"],
    "b_cell": ["MS4A1", "CD79A", "CD79B", "BANK1", "HLA-DQA1"],
}

INTERFERON_GENES = ["ISG15", "IFI6"]

CELL_TYPE_CLUSTERS = {"monocyte": "0", "t_cell": "1", "b_cell": "2"}


def mock_gene_symbols(n_background: int = 150) -> List[str]:
    """Gene symbols in the column order used by :func:`create_counts_adata`."""
    genes = list(MITO_GENES) + S_GENES[:12] + G2M_GENES[:12]
    for markers in CELL_TYPE_MARKERS.values():
        genes.extend(markers)
    genes.extend(INTERFERON_GENES)
    genes.extend(f"GENE{i}" for i in range(n_background))
    return genes


def create_counts_adata(
    n_cells_per_sample: int = 120,
    n_background: int = 150,
    n_low_count: int = 8,
    n_high_mito: int = 6,
    samples: Optional[List[str]] = None,
    seed: int = 42,
) -> "AnnData":
    """Create a merged raw-count AnnData for two conditions.

    Each sample holds ``n_cells_per_sample`` healthy cells split over
    three cell types, followed by ``n_low_count`` cells with few UMIs and
    ``n_high_mito`` cells dominated by mitochondrial reads. Interferon
    genes are induced in the second sample.

    Parameters
    ----------
    n_cells_per_sample : int
        Healthy cells per sample
    n_background : int
        Genes without cell-type structure
    n_low_count : int
        Cells per sample with about a tenth of the usual counts
    n_high_mito : int
        Cells per sample with a high mitochondrial ratio
    samples : List[str], optional
        Sample ids (default: ctrl, stim)
    seed : int
        Random seed for reproducibility

    Returns
    -------
    AnnData
        Counts in X (csr, float32) and ``layers["counts"]``; obs has
        ``sample``, ``barcode``, ``true_type`` and ``cycle_program``
    """
    import anndata as ad
    import scipy.sparse as sp

    np.random.seed(seed)
    samples = samples or ["ctrl", "stim"]
    genes = mock_gene_symbols(n_background)
    gene_idx = {g: i for i, g in enumerate(genes)}
    types = list(CELL_TYPE_MARKERS)

    base_rate = np.random.gamma(shape=2.0, scale=0.5, size=len(genes))
    for g in MITO_GENES:
        base_rate[gene_idx[g]] = 1.0
    for g in S_GENES[:12] + G2M_GENES[:12]:
        base_rate[gene_idx[g]] = 0.5
    for markers in CELL_TYPE_MARKERS.values():
        for g in markers:
            base_rate[gene_idx[g]] = 0.2

    blocks = []
    obs_records = []
    for s_idx, sample in enumerate(samples):
        n_total = n_cells_per_sample + n_low_count + n_high_mito
        rates = np.tile(base_rate, (n_total, 1))

        cell_types = np.array(
            [types[i % len(types)] for i in range(n_cells_per_sample)]
            + ["low_quality"] * (n_low_count + n_high_mito)
        )
        for cell_type, markers in CELL_TYPE_MARKERS.items():
            mask = cell_types == cell_type
            for g in markers:
                rates[mask, gene_idx[g]] = 8.0

        # Thirds of healthy cells carry S and G2/M programs
        cycle = np.arange(n_total) % 3
        healthy = np.arange(n_total) < n_cells_per_sample
        for g in S_GENES[:12]:
            rates[healthy & (cycle == 1), gene_idx[g]] *= 6
        for g in G2M_GENES[:12]:
            rates[healthy & (cycle == 2), gene_idx[g]] *= 6

        if s_idx == 1:
            for g in INTERFERON_GENES:
                rates[:, gene_idx[g]] *= 10

        low = slice(n_cells_per_sample, n_cells_per_sample + n_low_count)
        rates[low] *= 0.1
        mito = slice(n_cells_per_sample + n_low_count, n_total)
        for g in MITO_GENES:
            rates[mito, gene_idx[g]] = 40.0

        blocks.append(np.random.poisson(rates))
        for i in range(n_total):
            barcode = f"{'ACGT'[i % 4]}{'ACGT'[(i // 4) % 4]}AC{i:05d}-1"
            obs_records.append(
                {
                    "cell": f"{sample}_{barcode}",
                    "sample": sample,
                    "barcode": barcode,
                    "true_type": cell_types[i],
                    "cycle_program": ("none", "S", "G2M")[cycle[i]] if healthy[i] else "none",
                }
            )

    counts = np.vstack(blocks)
    obs = pd.DataFrame(obs_records).set_index("cell")
    obs.index.name = None
    obs["sample"] = pd.Categorical(obs["sample"], categories=samples)

    var = pd.DataFrame(
        {"gene_ids": [f"ENSG{i:011d}" for i in range(len(genes))]},
        index=pd.Index(genes),
    )

    X = sp.csr_matrix(counts.astype(np.float32))
    adata = ad.AnnData(X=X, obs=obs, var=var)
    adata.layers["counts"] = X.copy()
    return adata


def write_10x_dir(
    adata, path: Path, sample: str, sample_key: str = "sample", v3: bool = False
) -> Path:
    """Write one sample of ``adata`` as a 10x matrix directory.

    The legacy layout is ``matrix.mtx`` (genes x cells), ``genes.tsv``
    (id, symbol) and ``barcodes.tsv``. With ``v3=True`` the files are
    gzipped and ``features.tsv.gz`` gains a feature type column.
    """
    import gzip
    import shutil

    import scipy.io
    import scipy.sparse as sp

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    subset = adata[(adata.obs[sample_key].astype(str) == sample).to_numpy()]

    counts = subset.layers["counts"] if "counts" in subset.layers else subset.X
    counts = sp.csr_matrix(counts).astype(np.int64)
    scipy.io.mmwrite(str(path / "matrix.mtx"), sp.coo_matrix(counts.T))

    genes = pd.DataFrame({"id": subset.var["gene_ids"].values, "name": subset.var_names})
    barcodes = pd.Series(subset.obs["barcode"].values)
    if not v3:
        genes.to_csv(path / "genes.tsv", sep="\t", header=False, index=False)
        barcodes.to_csv(path / "barcodes.tsv", sep="\t", header=False, index=False)
        return path

    with open(path / "matrix.mtx", "rb") as src, gzip.open(path / "matrix.mtx.gz", "wb") as dst:
        shutil.copyfileobj(src, dst)
    (path / "matrix.mtx").unlink()
    genes["type"] = "Gene Expression"
    genes.to_csv(path / "features.tsv.gz", sep="\t", header=False, index=False)
    barcodes.to_csv(path / "barcodes.tsv.gz", sep="\t", header=False, index=False)
    return path


def create_clustered_adata(
    n_cells_per_sample: int = 120,
    n_pcs: int = 10,
    seed: int = 42,
) -> "AnnData":
    """Create a clustered, log-normalized object.

    Healthy cells of :func:`create_counts_adata` are log-normalized to
    10,000 counts per cell with the result also in ``adata.raw``. The
    ``cluster`` column follows the simulated cell type and the
    ``X_pca_harmony`` and ``X_umap`` embeddings separate the types.
    """
    import scipy.sparse as sp

    adata = create_counts_adata(
        n_cells_per_sample=n_cells_per_sample, n_low_count=0, n_high_mito=0, seed=seed
    )
    counts = adata.layers["counts"].toarray()
    n_umi = counts.sum(axis=1)
    lognorm = np.log1p(counts / n_umi[:, None] * 1e4).astype(np.float32)

    adata.X = sp.csr_matrix(lognorm)
    adata.layers["lognorm"] = adata.X.copy()
    adata.raw = adata

    np.random.seed(seed + 1)
    clusters = adata.obs["true_type"].map(CELL_TYPE_CLUSTERS).astype(str)
    adata.obs["cluster"] = pd.Categorical(clusters, categories=["0", "1", "2"])

    centers = np.random.normal(0, 6, size=(3, n_pcs))
    codes = adata.obs["cluster"].cat.codes.to_numpy()
    adata.obsm["X_pca_harmony"] = (
        centers[codes] + np.random.normal(0, 1, size=(adata.n_obs, n_pcs))
    ).astype(np.float32)
    adata.obsm["X_pca"] = adata.obsm["X_pca_harmony"].copy()
    adata.obsm["X_umap"] = adata.obsm["X_pca_harmony"][:, :2].copy()

    mito = adata.var_names.str.startswith("MT-")
    adata.obs["nUMI"] = n_umi.astype(float)
    adata.obs["nGene"] = (counts > 0).sum(axis=1).astype(float)
    adata.obs["mitoRatio"] = counts[:, mito].sum(axis=1) / n_umi
    adata.obs["phase"] = pd.Categorical(
        np.array(["G1", "S", "G2M"])[np.arange(adata.n_obs) % 3]
    )
    adata.uns["integration"] = {
        "rep_key": "X_pca_harmony",
        "method": "harmony",
        "used_fallback": False,
    }
    return adata


def write_gene_annotations(path: Path, genes: List[str], with_ids: bool = True) -> Path:
    """Write a gene annotation CSV for ``genes``.

    The first gene is listed twice (a second Ensembl id for the same
    symbol) as in real annotation tables.
    """
    records = [
        {
            "gene_id": f"ENSG{i:011d}",
            "gene_name": gene,
            "description": f"{gene} description",
            "gene_biotype": "protein_coding",
        }
        for i, gene in enumerate(genes)
    ]
    if genes:
        records.append(
            {
                "gene_id": "ENSG99999999999",
                "gene_name": genes[0],
                "description": f"{genes[0]} alternative locus",
                "gene_biotype": "protein_coding",
            }
        )
    table = pd.DataFrame(records)
    if not with_ids:
        table = table.drop(columns=["gene_id"])
    path = Path(path)
    table.to_csv(path, index=False)
    return path


def write_cell_cycle_csv(path: Path, use_ids: bool = False, n_background: int = 150) -> Path:
    """Write a phase/gene cell-cycle list for the mock genes.

    With ``use_ids`` genes are given as the Ensembl ids assigned by
    :func:`create_counts_adata`.
    """
    symbols = mock_gene_symbols(n_background)
    ids = {g: f"ENSG{i:011d}" for i, g in enumerate(symbols)}
    rows = [("S", g) for g in S_GENES[:12]] + [("G2/M", g) for g in G2M_GENES[:12]]
    table = pd.DataFrame(rows, columns=["phase", "gene"])
    if use_ids:
        table["gene"] = table["gene"].map(ids)
    path = Path(path)
    table.to_csv(path, index=False)
    return path
