"""End-to-end workflow runs on the mock two-condition data."""

import pytest
import pandas as pd

from scrna_workflow.io.logging import read_json_log
from scrna_workflow.io.tables import read_h5ad
from scrna_workflow.workflow import STAGES, WorkflowConfig, WorkflowLogger, WorkflowRunner


@pytest.fixture
def workflow(small_workflow_dict, tmp_path):
    config = WorkflowConfig.from_dict(small_workflow_dict)
    logger = WorkflowLogger(str(tmp_path / "logs"))
    logger.setup(console=False)
    yield config, logger
    logger.close()


class TestWorkflowRun:
    """Tests for full and resumed workflow runs."""

    def test_full_run(self, workflow):
        """Test that every stage writes its checkpoint and tables."""
        config, logger = workflow
        runner = WorkflowRunner(config, logger)
        assert runner.run() == 0

        results = config.results_path
        for stage in STAGES:
            assert (results / f"{stage}.h5ad").is_file()
        tables = results / "tables"
        for name in (
            "qc_suggested_thresholds.csv",
            "highly_variable_genes.csv",
            "resolution_summary.csv",
            "cells_per_cluster_by_sample.csv",
            "markers_all.csv",
            "cell_type_counts.csv",
        ):
            assert (tables / name).is_file(), name

        records = read_json_log(runner.summary_file)
        assert [r["stage"] for r in records] == STAGES
        assert records[0]["n_cells"] == 268
        assert records[1]["cells_removed"] == 28
        assert records[1]["n_cells"] == 240

        final = read_h5ad(results / "annotate.h5ad")
        assert "cell_type" in final.obs.columns
        assert "leiden_res_0.3" in final.obs.columns
        assert "leiden_res_0.8" in final.obs.columns
        assert "X_umap" in final.obsm
        assert final.raw is not None
        assert final.uns["integration"]["rep_key"] == "X_pca"
        assert "Monocytes" in set(final.obs["cell_type"])

        markers = pd.read_csv(tables / "markers_all.csv")
        assert {"cluster_id", "gene", "avg_log2FC", "p_val_adj"} <= set(markers.columns)

        # A second run skips completed stages
        rerun = WorkflowRunner(config, logger)
        assert rerun.run() == 0
        assert len(read_json_log(runner.summary_file)) == len(STAGES)

    def test_custom_cluster_key(self, small_workflow_dict, tmp_path):
        """Test that a renamed cluster column flows through to annotation."""
        small_workflow_dict["clustering_stage"]["clustering"]["cluster_key"] = "leiden"
        config = WorkflowConfig.from_dict(small_workflow_dict)
        logger = WorkflowLogger(str(tmp_path / "logs"))
        logger.setup(console=False)
        try:
            assert WorkflowRunner(config, logger).run() == 0
        finally:
            logger.close()

        final = read_h5ad(config.results_path / "annotate.h5ad")
        assert "leiden" in final.obs.columns
        assert "cluster" not in final.obs.columns
        assert "Monocytes" in set(final.obs["cell_type"])
        markers = pd.read_csv(config.results_path / "tables" / "markers_all.csv")
        assert set(markers["cluster_id"].astype(str)) <= set(final.obs["leiden"].astype(str))

    def test_resume(self, workflow):
        """Test stopping after QC and resuming from the checkpoint."""
        config, logger = workflow
        runner = WorkflowRunner(config, logger)
        assert runner.run(end_stage="qc") == 0
        assert runner.completed_stages == ["load", "qc"]
        assert not runner.checkpoint_path("normalize").exists()

        resumed = WorkflowRunner(config, logger)
        assert resumed.get_resume_stage() == "normalize"
        assert resumed.run(start_stage="normalize", end_stage="integrate") == 0
        assert resumed.completed_stages == ["load", "qc", "normalize", "integrate"]

        stages = [r["stage"] for r in read_json_log(resumed.summary_file)]
        assert stages == ["load", "qc", "normalize", "integrate"]

    def test_force_reruns(self, workflow):
        """Test that force reruns completed stages."""
        config, logger = workflow
        runner = WorkflowRunner(config, logger)
        assert runner.run(end_stage="load") == 0
        assert runner.run(end_stage="load", force=True) == 0
        assert len(read_json_log(runner.summary_file)) == 2
