"""Test fixtures for scrna-workflow.

Provides mock data generators and test utilities.
"""

from .mock_adata import (
    CELL_TYPE_CLUSTERS,
    CELL_TYPE_MARKERS,
    INTERFERON_GENES,
    MITO_GENES,
    create_clustered_adata,
    create_counts_adata,
    mock_gene_symbols,
    write_10x_dir,
    write_cell_cycle_csv,
    write_gene_annotations,
)

__all__ = [
    "CELL_TYPE_CLUSTERS",
    "CELL_TYPE_MARKERS",
    "INTERFERON_GENES",
    "MITO_GENES",
    "create_clustered_adata",
    "create_counts_adata",
    "mock_gene_symbols",
    "write_10x_dir",
    "write_cell_cycle_csv",
    "write_gene_annotations",
]
