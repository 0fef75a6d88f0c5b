"""Cell-cycle scoring (Stage C).

Scores S and G2/M programs on log-normalized expression and assigns a
phase per cell. Gene lists are read from a phase/gene CSV or taken from
the bundled Tirosh et al. (2016) lists.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import logging

import numpy as np
import pandas as pd

from .config import CellCycleConfig

PathLike = Union[str, Path]

S_GENES = [
    "MCM5", "PCNA", "TYMS", "FEN1", "MCM2", "MCM4", "RRM1", "UNG", "GINS2",
    "MCM6", "CDCA7", "DTL", "PRIM1", "UHRF1", "MLF1IP", "HELLS", "RFC2",
    "RPA2", "NASP", "RAD51AP1", "GMNN", "WDR76", "SLBP", "CCNE2", "UBR7",
    "POLD3", "MSH2", "ATAD2", "RAD51", "RRM2", "CDC45", "CDC6", "EXO1",
    "TIPIN", "DSCC1", "BLM", "CASP8AP2", "USP1", "CLSPN", "POLA1", "CHAF1B",
    "BRIP1", "E2F8",
]

G2M_GENES = [
    "HMGB2", "CDK1", "NUSAP1", "UBE2C", "BIRC5", "TPX2", "TOP2A", "NDC80",
    "CKS2", "NUF2", "CKS1B", "MKI67", "TMPO", "CENPF", "TACC3", "FAM64A",
    "SMC4", "CCNB2", "CKAP2L", "CKAP2", "AURKB", "BUB1", "KIF11", "ANP32E",
    "TUBB4B", "GTSE1", "KIF20B", "HJURP", "CDCA3", "HN1", "CDC20", "TTK",
    "CDC25C", "KIF2C", "RANGAP1", "NCAPD2", "DLGAP5", "CDCA2", "CDCA8",
    "ECT2", "KIF23", "HMMR", "AURKA", "PSRC1", "ANLN", "LBR", "CKAP5",
    "CENPE", "CTCF", "NEK2", "G2E3", "GAS2L3", "CBX5", "CENPA",
]


@dataclass
class CellCycleResult:
    """Result from cell-cycle scoring.

    Attributes
    ----------
    n_s_genes : int
        S-phase genes found in the data
    n_g2m_genes : int
        G2/M-phase genes found in the data
    missing_genes : List[str]
        Listed genes absent from the data
    phase_counts : Dict[str, int]
        Cells per assigned phase
    """

    n_s_genes: int = 0
    n_g2m_genes: int = 0
    missing_genes: List[str] = field(default_factory=list)
    phase_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_s_genes": self.n_s_genes,
            "n_g2m_genes": self.n_g2m_genes,
            "n_missing_genes": len(self.missing_genes),
            "phase_counts": dict(self.phase_counts),
        }


def _lognorm_view(adata):
    """AnnData sharing obs names and genes with X set to log-normalized values."""
    import anndata as ad

    X = adata.layers["lognorm"] if "lognorm" in adata.layers else adata.X
    return ad.AnnData(
        X=X.copy(),
        obs=pd.DataFrame(index=adata.obs_names.copy()),
        var=pd.DataFrame(index=adata.var_names.copy()),
    )


class CellCycleScorer:
    """Cell-cycle phase scoring.

    Parameters
    ----------
    config : CellCycleConfig
        Cell-cycle configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from scrna_workflow.core.preprocessing import CellCycleScorer
    >>> scorer = CellCycleScorer()
    >>> s_genes, g2m_genes = scorer.default_gene_lists()
    >>> result = scorer.score(adata, s_genes, g2m_genes)
    """

    def __init__(
        self,
        config: Optional[CellCycleConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CellCycleConfig()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def default_gene_lists() -> Tuple[List[str], List[str]]:
        """Bundled human S and G2/M gene symbols (Tirosh et al. 2016)."""
        return list(S_GENES), list(G2M_GENES)

    def load_gene_lists(
        self,
        path: PathLike,
        id_to_symbol: Optional[Dict[str, str]] = None,
    ) -> Tuple[List[str], List[str]]:
        """Read S and G2/M gene lists from a phase/gene CSV.

        Parameters
        ----------
        path : PathLike
            CSV with the configured phase and gene columns
        id_to_symbol : Dict[str, str], optional
            Mapping applied to gene identifiers (e.g. Ensembl id to
            symbol from the gene annotation table); unmapped ids are
            dropped

        Returns
        -------
        Tuple[List[str], List[str]]
            (s_genes, g2m_genes)
        """
        cfg = self.config
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Cell-cycle gene list not found: {path}")

        table = pd.read_csv(path)
        missing = [c for c in (cfg.phase_col, cfg.gene_col) if c not in table.columns]
        if missing:
            raise KeyError(f"Cell-cycle gene list {path} is missing columns {missing}")

        genes = table[cfg.gene_col].astype(str)
        if id_to_symbol is not None:
            genes = genes.map(id_to_symbol)
            n_unmapped = int(genes.isna().sum())
            if n_unmapped:
                self.logger.warning(
                    "%d cell-cycle gene ids have no symbol in the annotation table",
                    n_unmapped,
                )
        table = table.assign(_gene=genes).dropna(subset=["_gene"])

        phase = table[cfg.phase_col].astype(str)
        s_genes = table.loc[phase == cfg.s_label, "_gene"].drop_duplicates().tolist()
        g2m_genes = table.loc[phase == cfg.g2m_label, "_gene"].drop_duplicates().tolist()

        if not s_genes or not g2m_genes:
            raise ValueError(
                f"Cell-cycle gene list {path} needs genes labelled "
                f"'{cfg.s_label}' and '{cfg.g2m_label}' in column '{cfg.phase_col}'"
            )

        self.logger.info(
            "Loaded %d S and %d G2/M genes from %s", len(s_genes), len(g2m_genes), path
        )
        return s_genes, g2m_genes

    def score(
        self,
        adata,
        s_genes: Optional[List[str]] = None,
        g2m_genes: Optional[List[str]] = None,
    ) -> CellCycleResult:
        """Add ``S_score``, ``G2M_score`` and ``phase`` to adata.obs.

        Parameters
        ----------
        adata : AnnData
            Object with log-normalized values in ``layers["lognorm"]``
        s_genes, g2m_genes : List[str], optional
            Gene symbols (bundled lists if None)

        Returns
        -------
        CellCycleResult
            Scoring summary

        Raises
        ------
        ValueError
            If no gene of either list is present in the data
        """
        import scanpy as sc

        if s_genes is None or g2m_genes is None:
            default_s, default_g2m = self.default_gene_lists()
            s_genes = s_genes if s_genes is not None else default_s
            g2m_genes = g2m_genes if g2m_genes is not None else default_g2m

        present = set(adata.var_names)
        s_found = [g for g in s_genes if g in present]
        g2m_found = [g for g in g2m_genes if g in present]
        missing = [g for g in list(s_genes) + list(g2m_genes) if g not in present]

        if missing:
            self.logger.warning(
                "%d cell-cycle genes not found in data and ignored", len(missing)
            )
        if not s_found or not g2m_found:
            raise ValueError(
                f"Cell-cycle scoring needs S and G2/M genes in the data "
                f"(found {len(s_found)} S, {len(g2m_found)} G2/M)"
            )

        scored = _lognorm_view(adata)
        sc.tl.score_genes_cell_cycle(
            scored,
            s_genes=s_found,
            g2m_genes=g2m_found,
            random_state=self.config.random_seed,
        )
        for col in ("S_score", "G2M_score", "phase"):
            adata.obs[col] = scored.obs[col].values
        adata.obs["phase"] = adata.obs["phase"].astype("category")

        result = CellCycleResult(
            n_s_genes=len(s_found),
            n_g2m_genes=len(g2m_found),
            missing_genes=missing,
            phase_counts={
                str(k): int(v) for k, v in adata.obs["phase"].value_counts().items()
            },
        )
        self.logger.info("Cell-cycle phases: %s", result.phase_counts)
        return result

    def phase_pca(self, adata, n_pcs: Optional[int] = None, n_top_genes: int = 2000) -> np.ndarray:
        """PCA of scaled log-normalized data for checking phase effects.

        The embedding is stored in ``obsm["X_pca_cc"]`` so it can be
        colored by ``phase``.

        Returns
        -------
        np.ndarray
            Cells x components embedding
        """
        import scanpy as sc

        n_pcs = n_pcs if n_pcs is not None else self.config.n_pcs
        tmp = _lognorm_view(adata)
        sc.pp.highly_variable_genes(
            tmp, flavor="seurat", n_top_genes=min(n_top_genes, tmp.n_vars)
        )
        tmp = tmp[:, tmp.var["highly_variable"].to_numpy(dtype=bool)].copy()
        sc.pp.scale(tmp, max_value=10)

        n_comps = max(1, min(n_pcs, tmp.n_obs - 1, tmp.n_vars - 1))
        sc.tl.pca(tmp, n_comps=n_comps, random_state=self.config.random_seed)

        adata.obsm["X_pca_cc"] = tmp.obsm["X_pca"]
        self.logger.info("Cell-cycle check PCA with %d components", n_comps)
        return tmp.obsm["X_pca"]
