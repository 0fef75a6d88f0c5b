"""Pytest configuration and shared fixtures for scrna-workflow tests."""

import sys
from pathlib import Path

import matplotlib
import pytest

# Figures are written to files only
matplotlib.use("Agg")

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Import mock data generators
from tests.fixtures import (
    create_clustered_adata,
    create_counts_adata,
    mock_gene_symbols,
    write_10x_dir,
    write_cell_cycle_csv,
    write_gene_annotations,
)


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def counts_adata():
    """Merged ctrl/stim raw counts including low-quality cells."""
    return create_counts_adata()


@pytest.fixture
def clustered_adata():
    """Log-normalized object with three clusters and an integrated embedding."""
    return create_clustered_adata()


# ============================================================================
# File Fixtures
# ============================================================================


@pytest.fixture
def tmp_output_dir(tmp_path: Path) -> Path:
    """Create a temporary output directory for tests."""
    output_dir = tmp_path / "results"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def sample_dirs(tmp_path: Path) -> dict:
    """Legacy 10x matrix directories for ctrl and stim."""
    adata = create_counts_adata()
    return {
        sample: str(write_10x_dir(adata, tmp_path / "data" / f"{sample}_raw_feature_bc_matrix", sample))
        for sample in ("ctrl", "stim")
    }


@pytest.fixture
def gene_annotation_csv(tmp_path: Path) -> Path:
    """Gene annotation table covering the mock genes."""
    return write_gene_annotations(tmp_path / "annotation.csv", mock_gene_symbols())


@pytest.fixture
def cell_cycle_csv(tmp_path: Path) -> Path:
    """Cell-cycle list with gene symbols."""
    return write_cell_cycle_csv(tmp_path / "cycle.csv")


@pytest.fixture
def cell_cycle_ids_csv(tmp_path: Path) -> Path:
    """Cell-cycle list with Ensembl ids."""
    return write_cell_cycle_csv(tmp_path / "cycle_ids.csv", use_ids=True)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def small_workflow_dict(tmp_path: Path, sample_dirs) -> dict:
    """Workflow settings sized for the mock data."""
    return {
        "samples": sample_dirs,
        "results_dir": str(tmp_path / "results"),
        "log_dir": str(tmp_path / "logs"),
        "make_figures": False,
        "preprocessing": {
            "qc": {
                "min_umi": 100,
                "min_genes": 50,
                "min_novelty": 0.5,
                "max_mito_ratio": 0.2,
                "min_cells_per_gene": 3,
            },
            "normalization": {"n_top_genes": 100},
            "cell_cycle": {"n_pcs": 5},
            "integration": {"method": "none", "n_pcs": 10},
        },
        "clustering_stage": {
            "clustering": {
                "n_pcs": 10,
                "neighbors_k": 10,
                "resolutions": [0.3, 0.8],
                "active_resolution": 0.3,
            },
            "annotation": {"labels": {"0": "Monocytes", "1": "T cells"}},
            "marker_genes": ["CD14", "CD3D", "MS4A1"],
        },
    }


@pytest.fixture
def workflow_config_file(tmp_path: Path, small_workflow_dict) -> Path:
    """Workflow YAML with a nested ``workflow`` section."""
    import yaml

    path = tmp_path / "workflow.yaml"
    with open(path, "w") as f:
        yaml.safe_dump({"workflow": small_workflow_dict}, f)
    return path
