"""Tests for the command-line interface."""

import pytest
from click.testing import CliRunner

from scrna_workflow import __version__
from scrna_workflow.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Tests for the scrna-workflow command group."""

    def test_version(self, runner):
        """Test --version output."""
        result = runner.invoke(cli, ["--version"], obj={})
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_stages(self, runner):
        """Test that every stage has a command."""
        result = runner.invoke(cli, ["--help"], obj={})
        assert result.exit_code == 0
        for command in ("load", "qc", "normalize", "integrate", "cluster", "markers", "annotate", "run"):
            assert command in result.output


class TestRunCommand:
    """Tests for the run command."""

    def test_config_required(self, runner):
        """Test that run needs a config file."""
        result = runner.invoke(cli, ["run"], obj={})
        assert result.exit_code != 0
        assert "--config" in result.output

    def test_dry_run(self, runner, workflow_config_file):
        """Test the execution plan without running stages."""
        result = runner.invoke(
            cli,
            ["run", "--config", str(workflow_config_file), "--dry-run", "--end-stage", "integrate"],
            obj={},
        )
        assert result.exit_code == 0, result.output
        assert "load -> qc -> normalize -> integrate" in result.output
        assert "qc.h5ad (pending)" in result.output
        assert "cluster" not in result.output.split("Workflow stages:")[1]

    def test_unknown_stage(self, runner, workflow_config_file):
        """Test error for an unknown stage name."""
        result = runner.invoke(
            cli, ["run", "--config", str(workflow_config_file), "--start-stage", "velocity"], obj={}
        )
        assert result.exit_code == 1
        assert "Unknown stage" in result.output

    def test_invalid_inputs(self, runner, tmp_path):
        """Test that missing sample directories fail validation."""
        import yaml

        path = tmp_path / "workflow.yaml"
        path.write_text(yaml.safe_dump({"workflow": {"samples": {"ctrl": str(tmp_path / "none")}}}))
        result = runner.invoke(cli, ["run", "--config", str(path)], obj={})
        assert result.exit_code == 1
        assert "directory not found" in result.output


class TestStageCommands:
    """Tests for single-stage commands."""

    def test_load(self, runner, sample_dirs, tmp_path, monkeypatch):
        """Test loading both conditions from the command line."""
        monkeypatch.chdir(tmp_path)
        out = tmp_path / "results"
        args = ["load", "-o", str(out)]
        for sample, path in sample_dirs.items():
            args += ["-s", f"{sample}={path}"]
        result = runner.invoke(cli, args, obj={})

        assert result.exit_code == 0, result.output
        assert "Stage load complete: 268 cells" in result.output
        assert (out / "load.h5ad").is_file()

    def test_qc_without_checkpoint(self, runner, tmp_path, monkeypatch):
        """Test a failure message when the previous checkpoint is missing."""
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(cli, ["qc", "-o", str(tmp_path / "results")], obj={})
        assert result.exit_code == 1
        assert "Stage qc failed" in result.output

    def test_load_rejects_input(self, runner, tmp_path):
        """Test that load does not take an input object."""
        path = tmp_path / "merged.h5ad"
        path.write_text("")
        result = runner.invoke(cli, ["load", "-i", str(path), "-o", str(tmp_path)], obj={})
        assert result.exit_code == 2
        assert "--sample" in result.output
