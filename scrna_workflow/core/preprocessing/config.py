"""Configuration classes for preprocessing stages.

All preprocessing parameters are configurable via YAML so the same
workflow can be pointed at other two-condition experiments.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class LoaderConfig:
    """Configuration for data loading (Stage A).

    Attributes
    ----------
    sample_key : str
        obs column receiving the sample (condition) label
    var_names : str
        Feature column to use as var_names ("gene_symbols" or "gene_ids")
    barcode_sep : str
        Separator between sample prefix and barcode in merged cell names
    make_unique : bool
        Make duplicated gene symbols unique after loading
    """

    sample_key: str = "sample"
    var_names: str = "gene_symbols"
    barcode_sep: str = "_"
    make_unique: bool = True


@dataclass
class QCConfig:
    """Configuration for cell and gene QC (Stage B).

    Attributes
    ----------
    min_umi : int
        Minimum UMI count per cell (inclusive)
    min_genes : int
        Minimum detected genes per cell (inclusive)
    min_novelty : float
        Cells must have log10GenesPerUMI strictly above this value
    max_mito_ratio : float
        Cells must have mitoRatio strictly below this value
    min_cells_per_gene : int
        Genes must be detected in at least this many cells
    mito_prefix : str
        Gene symbol prefix marking mitochondrial genes
    """

    min_umi: int = 500
    min_genes: int = 250
    min_novelty: float = 0.80
    max_mito_ratio: float = 0.20
    min_cells_per_gene: int = 10
    mito_prefix: str = "MT-"


@dataclass
class NormalizationConfig:
    """Configuration for normalization and variance stabilization (Stage C).

    Attributes
    ----------
    method : str
        "pearson_residuals" (SCTransform-like) or "log"
    target_sum : float
        Library size used for log normalization
    n_top_genes : int
        Number of highly variable genes kept for integration
    regress_out : List[str]
        obs columns regressed out of the stabilized matrix
    theta : float
        Negative binomial overdispersion for Pearson residuals
    clip : float, optional
        Residual clipping value (None uses sqrt(n_cells))
    scale_max : float
        Clipping value used when scaling in "log" mode
    """

    method: str = "pearson_residuals"
    target_sum: float = 1e4
    n_top_genes: int = 3000
    regress_out: List[str] = field(default_factory=lambda: ["mitoRatio"])
    theta: float = 100.0
    clip: Optional[float] = None
    scale_max: float = 10.0


@dataclass
class CellCycleConfig:
    """Configuration for cell-cycle scoring (Stage C).

    Attributes
    ----------
    gene_list_path : str, optional
        CSV with phase and gene columns. Bundled lists are used if None.
    phase_col : str
        Column holding the phase label
    gene_col : str
        Column holding the gene identifier
    s_label : str
        Phase label marking S-phase genes
    g2m_label : str
        Phase label marking G2/M-phase genes
    n_pcs : int
        Components for the phase PCA check
    random_seed : int
        Random seed for scoring and PCA
    """

    gene_list_path: Optional[str] = None
    phase_col: str = "phase"
    gene_col: str = "gene"
    s_label: str = "S"
    g2m_label: str = "G2/M"
    n_pcs: int = 20
    random_seed: int = 0


@dataclass
class IntegrationConfig:
    """Configuration for condition integration (Stage D).

    Attributes
    ----------
    method : str
        "harmony" or "none"
    batch_key : str
        obs column identifying the condition to integrate over
    n_pcs : int
        Number of principal components computed before integration
    max_iter : int
        Maximum Harmony iterations
    random_seed : int
        Random seed for PCA and Harmony
    fallback_path : str, optional
        Precomputed clustered .h5ad used when integration cannot run
    prefer_fallback : bool
        Load fallback_path without attempting integration
    """

    method: str = "harmony"
    batch_key: str = "sample"
    n_pcs: int = 50
    max_iter: int = 20
    random_seed: int = 0
    fallback_path: Optional[str] = None
    prefer_fallback: bool = False


@dataclass
class PreprocessingConfig:
    """Master configuration for stages A-D.

    Attributes
    ----------
    loader : LoaderConfig
        Stage A configuration
    qc : QCConfig
        Stage B configuration
    normalization : NormalizationConfig
        Stage C configuration
    cell_cycle : CellCycleConfig
        Stage C cell-cycle configuration
    integration : IntegrationConfig
        Stage D configuration
    """

    loader: LoaderConfig = field(default_factory=LoaderConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    cell_cycle: CellCycleConfig = field(default_factory=CellCycleConfig)
    integration: IntegrationConfig = field(default_factory=IntegrationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingConfig":
        """Build configuration from a (possibly partial) dictionary."""
        return cls(
            loader=LoaderConfig(**data.get("loader", {})),
            qc=QCConfig(**data.get("qc", {})),
            normalization=NormalizationConfig(**data.get("normalization", {})),
            cell_cycle=CellCycleConfig(**data.get("cell_cycle", {})),
            integration=IntegrationConfig(**data.get("integration", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested preprocessing section
        if "preprocessing" in data:
            data = data["preprocessing"] or {}

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "loader": {
                "sample_key": self.loader.sample_key,
                "var_names": self.loader.var_names,
                "barcode_sep": self.loader.barcode_sep,
                "make_unique": self.loader.make_unique,
            },
            "qc": {
                "min_umi": self.qc.min_umi,
                "min_genes": self.qc.min_genes,
                "min_novelty": self.qc.min_novelty,
                "max_mito_ratio": self.qc.max_mito_ratio,
                "min_cells_per_gene": self.qc.min_cells_per_gene,
                "mito_prefix": self.qc.mito_prefix,
            },
            "normalization": {
                "method": self.normalization.method,
                "target_sum": self.normalization.target_sum,
                "n_top_genes": self.normalization.n_top_genes,
                "regress_out": list(self.normalization.regress_out),
                "theta": self.normalization.theta,
                "clip": self.normalization.clip,
                "scale_max": self.normalization.scale_max,
            },
            "cell_cycle": {
                "gene_list_path": self.cell_cycle.gene_list_path,
                "phase_col": self.cell_cycle.phase_col,
                "gene_col": self.cell_cycle.gene_col,
                "s_label": self.cell_cycle.s_label,
                "g2m_label": self.cell_cycle.g2m_label,
                "n_pcs": self.cell_cycle.n_pcs,
                "random_seed": self.cell_cycle.random_seed,
            },
            "integration": {
                "method": self.integration.method,
                "batch_key": self.integration.batch_key,
                "n_pcs": self.integration.n_pcs,
                "max_iter": self.integration.max_iter,
                "random_seed": self.integration.random_seed,
                "fallback_path": self.integration.fallback_path,
                "prefer_fallback": self.integration.prefer_fallback,
            },
        }
