"""Unit tests for workflow configuration, logging and the stage runner."""

import argparse
import json
from pathlib import Path

import pytest

from scrna_workflow.workflow import (
    STAGES,
    WorkflowConfig,
    WorkflowLogger,
    WorkflowRunner,
    setup_logging,
)
from scrna_workflow.workflow.stage_cli import build_config, load_labels, parse_samples


@pytest.fixture
def quiet_logger(tmp_path):
    logger = WorkflowLogger(str(tmp_path / "logs"), log_level="DEBUG")
    logger.setup(console=False)
    yield logger
    logger.close()


class TestWorkflowConfig:
    """Tests for WorkflowConfig."""

    def test_default_values(self):
        """Test default workflow config."""
        config = WorkflowConfig.default()
        assert list(config.samples) == ["ctrl", "stim"]
        assert config.results_dir == "results"
        assert config.make_figures is True
        assert config.figures_path == Path("results") / "figures"
        assert config.preprocessing.integration.method == "harmony"

    def test_paths_propagate(self):
        """Test that top-level paths fill unset stage settings."""
        config = WorkflowConfig(cell_cycle_path="cycle.csv", fallback_path="integrated.h5ad")
        assert config.preprocessing.cell_cycle.gene_list_path == "cycle.csv"
        assert config.preprocessing.integration.fallback_path == "integrated.h5ad"

    def test_from_yaml_nested(self, workflow_config_file, small_workflow_dict):
        """Test loading a nested workflow section."""
        config = WorkflowConfig.from_yaml(workflow_config_file)
        assert config.samples == small_workflow_dict["samples"]
        assert config.make_figures is False
        assert config.preprocessing.qc.min_umi == 100
        assert config.preprocessing.integration.method == "none"
        assert config.clustering_stage.clustering.resolutions == [0.3, 0.8]
        assert config.clustering_stage.annotation.labels["1"] == "T cells"

    def test_example_config(self):
        """Test that the bundled example config loads."""
        path = Path(__file__).resolve().parents[2] / "configs" / "workflow.yaml"
        config = WorkflowConfig.from_yaml(path)
        assert list(config.samples) == ["ctrl", "stim"]
        assert config.preprocessing.integration.fallback_path == "data/integrated_seurat.h5ad"
        assert config.clustering_stage.annotation.labels["10"] == "Plasmacytoid dendritic cells"

    def test_from_yaml_missing(self, tmp_path):
        """Test error for a missing config file."""
        with pytest.raises(FileNotFoundError):
            WorkflowConfig.from_yaml(tmp_path / "missing.yaml")

    def test_yaml_round_trip(self, small_workflow_dict, tmp_path):
        """Test that to_yaml output loads back to the same config."""
        config = WorkflowConfig.from_dict(small_workflow_dict)
        path = config.to_yaml(tmp_path / "out" / "workflow.yaml")
        assert WorkflowConfig.from_yaml(path) == config

    def test_validate(self, small_workflow_dict, tmp_path):
        """Test validation of input paths."""
        config = WorkflowConfig.from_dict(small_workflow_dict)
        assert config.validate() == (True, [])

        config.samples["stim"] = str(tmp_path / "missing")
        config.annotation_path = str(tmp_path / "annotation.csv")
        valid, errors = config.validate()
        assert not valid
        assert len(errors) == 2
        assert "stim" in errors[0]

    def test_validate_no_samples(self):
        """Test that an empty sample table is invalid."""
        valid, errors = WorkflowConfig(samples={}).validate()
        assert not valid
        assert errors == ["No samples configured"]


class TestWorkflowLogger:
    """Tests for WorkflowLogger."""

    def test_file_logging(self, tmp_path):
        """Test that messages are written to the log file."""
        logger = WorkflowLogger(str(tmp_path), log_filename="run.log")
        logger.setup(console=False)
        logger.log_stage_start("qc", "Cell quality control")
        logger.get_child("qc").info("filtered")
        logger.close()

        text = (tmp_path / "run.log").read_text()
        assert "Starting stage qc: Cell quality control" in text
        assert "scrna_workflow.qc" in text
        assert "filtered" in text

    def test_setup_twice_no_duplicates(self, tmp_path):
        """Test that a new logger replaces existing handlers."""
        WorkflowLogger(str(tmp_path)).setup()
        logger = WorkflowLogger(str(tmp_path))
        logger.setup()
        assert len(logger.logger.handlers) == 2
        logger.close()
        assert logger.logger.handlers == []

    def test_console_only(self):
        """Test a logger without a log directory."""
        logger = setup_logging(verbose=True)
        assert logger.log_file is None
        assert len(logger.logger.handlers) == 1
        logger.close()

    def test_format_duration(self):
        """Test duration formatting."""
        assert WorkflowLogger.format_duration(45.21) == "45.2s"
        assert WorkflowLogger.format_duration(83) == "1m 23s"
        assert WorkflowLogger.format_duration(8100) == "2h 15m"


class TestWorkflowRunner:
    """Tests for runner planning and state handling."""

    def test_plan(self, small_workflow_dict, quiet_logger):
        """Test stage ranges."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        assert runner.plan() == STAGES
        assert runner.plan("normalize", "cluster") == ["normalize", "integrate", "cluster"]
        assert runner.plan(end_stage="load") == ["load"]

    def test_plan_invalid(self, small_workflow_dict, quiet_logger):
        """Test errors for unknown stages and empty ranges."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        with pytest.raises(ValueError, match="Unknown stage"):
            runner.plan("cellbender")
        with pytest.raises(ValueError, match="comes after"):
            runner.plan("cluster", "qc")

    def test_run_invalid_range(self, small_workflow_dict, quiet_logger):
        """Test a failure exit code for an invalid range."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        assert runner.run("annotate", "load") == 1

    def test_state_round_trip(self, small_workflow_dict, quiet_logger):
        """Test saving, loading and clearing completed stages."""
        config = WorkflowConfig.from_dict(small_workflow_dict)
        runner = WorkflowRunner(config, quiet_logger)
        runner.completed_stages = ["load", "qc"]
        runner.save_state()

        state = json.loads(runner.state_file.read_text())
        assert state["completed_stages"] == ["load", "qc"]
        assert "version" in state

        other = WorkflowRunner(config, quiet_logger)
        assert other.get_resume_stage() == "normalize"
        other.clear_state()
        assert not other.state_file.exists()
        assert other.get_resume_stage() is None

    def test_resume_after_last_stage(self, small_workflow_dict, quiet_logger):
        """Test that a finished workflow has no resume stage."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        runner.completed_stages = list(STAGES)
        runner.save_state()
        assert runner.get_resume_stage() is None

    def test_corrupt_state(self, small_workflow_dict, quiet_logger):
        """Test that an unreadable state file starts fresh."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        runner.state_file.parent.mkdir(parents=True, exist_ok=True)
        runner.state_file.write_text("{not json")
        runner.load_state()
        assert runner.completed_stages == []

    def test_checkpoint_path(self, small_workflow_dict, quiet_logger):
        """Test checkpoint naming."""
        config = WorkflowConfig.from_dict(small_workflow_dict)
        runner = WorkflowRunner(config, quiet_logger)
        assert runner.checkpoint_path("qc") == Path(config.results_dir) / "qc.h5ad"

    def test_run_stage_unknown(self, small_workflow_dict, quiet_logger):
        """Test error for an unknown stage."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        with pytest.raises(ValueError, match="Unknown stage"):
            runner.run_stage("doublets")

    def test_run_stage_load_with_input(self, small_workflow_dict, quiet_logger, tmp_path):
        """Test that load does not accept an input object."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        with pytest.raises(ValueError, match="10x"):
            runner.run_stage("load", input_path=tmp_path / "merged.h5ad")

    def test_missing_previous_checkpoint(self, small_workflow_dict, quiet_logger):
        """Test error when the previous stage has not run."""
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        with pytest.raises(FileNotFoundError, match="Run stage 'load' first"):
            runner.run_stage("qc")

    def test_run_reports_stage_failure(self, small_workflow_dict, quiet_logger, tmp_path):
        """Test a failure exit code when a stage raises."""
        small_workflow_dict["samples"] = {"ctrl": str(tmp_path / "missing")}
        runner = WorkflowRunner(WorkflowConfig.from_dict(small_workflow_dict), quiet_logger)
        assert runner.run(end_stage="load") == 1
        assert runner.completed_stages == []


class TestStageCli:
    """Tests for stage runner argument helpers."""

    def test_parse_samples(self):
        """Test ID=DIR parsing in order."""
        samples = parse_samples(["stim=data/stim", "ctrl=data/ctrl"])
        assert list(samples.items()) == [("stim", "data/stim"), ("ctrl", "data/ctrl")]
        assert parse_samples(None) == {}

    @pytest.mark.parametrize("values", [["ctrl"], ["=data"], ["ctrl=a", "ctrl=b"]])
    def test_parse_samples_invalid(self, values):
        """Test errors for malformed or repeated samples."""
        with pytest.raises(ValueError):
            parse_samples(values)

    def test_build_config(self, workflow_config_file, tmp_path):
        """Test command-line overrides on a config file."""
        args = argparse.Namespace(
            config=workflow_config_file,
            output=tmp_path / "out",
            skip_figures=True,
            dpi=100,
            sample=["ctrl=a", "stim=b"],
            cell_cycle=tmp_path / "cycle.csv",
            fallback=None,
            prefer_fallback=False,
            annotations=None,
        )
        config = build_config(args)

        assert config.results_dir == str(tmp_path / "out")
        assert config.make_figures is False
        assert config.dpi == 100
        assert config.samples == {"ctrl": "a", "stim": "b"}
        assert config.preprocessing.cell_cycle.gene_list_path == str(tmp_path / "cycle.csv")
        assert config.preprocessing.qc.min_umi == 100

    def test_load_labels(self, tmp_path):
        """Test flat and nested label mappings."""
        flat = tmp_path / "flat.yaml"
        flat.write_text("0: Monocytes\n1: T cells\n")
        nested = tmp_path / "nested.yaml"
        nested.write_text("labels:\n  '2': B cells\n")

        assert load_labels(flat) == {"0": "Monocytes", "1": "T cells"}
        assert load_labels(nested) == {"2": "B cells"}

    def test_load_labels_invalid(self, tmp_path):
        """Test errors for missing and non-mapping files."""
        with pytest.raises(FileNotFoundError):
            load_labels(tmp_path / "labels.yaml")
        path = tmp_path / "labels.yaml"
        path.write_text("- Monocytes\n")
        with pytest.raises(ValueError, match="not a mapping"):
            load_labels(path)
