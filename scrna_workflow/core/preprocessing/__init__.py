"""Preprocessing module: loading, QC, normalization and integration.

Pipeline Stages
---------------
- Stage A (Loader/Merge): Read 10x matrices per condition and merge
- Stage B (QC): Per-cell metrics, cell and gene filtering
- Stage C (Normalization/Cell cycle): Log normalization, cell-cycle
  scoring, Pearson residual variance stabilization
- Stage D (Integration): PCA and Harmony integration of conditions

Example Usage
-------------
>>> from scrna_workflow.core.preprocessing import (
...     DataLoader, DataMerger, CellQC, Normalizer,
...     CellCycleScorer, IntegrationEngine,
... )
>>> loaded = DataLoader().load_samples({"ctrl": ctrl_dir, "stim": stim_dir})
>>> merged = DataMerger().merge_samples(loaded).adata
>>> qc_result = CellQC().run(merged)
"""

# Configuration classes
from .config import (
    LoaderConfig,
    QCConfig,
    NormalizationConfig,
    CellCycleConfig,
    IntegrationConfig,
    PreprocessingConfig,
)

# Stage A: Loading and merging
from .loader import (
    DataLoader,
    LoadResult,
)
from .merge import (
    DataMerger,
    MergeResult,
)

# Stage B: QC
from .qc import (
    CellQC,
    QCResult,
    QC_METRICS,
    REASON_COLUMNS,
)

# Stage C: Normalization and cell cycle
from .normalization import (
    Normalizer,
    NormalizationResult,
)
from .cell_cycle import (
    CellCycleScorer,
    CellCycleResult,
    S_GENES,
    G2M_GENES,
)

# Stage D: Integration
from .integration import (
    IntegrationEngine,
    IntegrationResult,
)

__all__ = [
    # Config
    "LoaderConfig",
    "QCConfig",
    "NormalizationConfig",
    "CellCycleConfig",
    "IntegrationConfig",
    "PreprocessingConfig",
    # Stage A
    "DataLoader",
    "LoadResult",
    "DataMerger",
    "MergeResult",
    # Stage B
    "CellQC",
    "QCResult",
    "QC_METRICS",
    "REASON_COLUMNS",
    # Stage C
    "Normalizer",
    "NormalizationResult",
    "CellCycleScorer",
    "CellCycleResult",
    "S_GENES",
    "G2M_GENES",
    # Stage D
    "IntegrationEngine",
    "IntegrationResult",
]
