"""Unit tests for the command-line interface."""

import pytest
from click.testing import CliRunner

from mnn_integrator.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Tests for the click command group."""

    def test_version(self, runner):
        """Test the version option."""
        result = runner.invoke(cli, ["--version"], obj={})
        assert result.exit_code == 0
        assert "mnn-integrator" in result.output
        assert "1.0.0" in result.output

    @pytest.mark.parametrize(
        "command", ["preprocess", "integrate", "cluster", "run", "pipeline"]
    )
    def test_command_help(self, runner, command):
        """Test that every command documents its options."""
        result = runner.invoke(cli, [command, "--help"], obj={})
        assert result.exit_code == 0
        assert "--config" in result.output or "--input" in result.output

    def test_integrate_rejects_unknown_method(self, runner, tmp_path):
        """Test that the method choice is validated."""
        merged = tmp_path / "merged.h5ad"
        merged.write_bytes(b"")
        result = runner.invoke(
            cli,
            ["integrate", "-i", str(merged), "-o", str(tmp_path / "out"), "-m", "scvi"],
            obj={},
        )
        assert result.exit_code != 0
        assert "scvi" in result.output

    def test_pipeline_dry_run(self, runner, sample_pipeline_config):
        """Test that a dry run prints the stage commands."""
        result = runner.invoke(
            cli, ["pipeline", "--config", str(sample_pipeline_config), "--dry-run"], obj={}
        )
        assert result.exit_code == 0
        assert "preprocess -> integrate -> cluster" in result.output
        assert "-m mnn_integrator.core.integration" in result.output
        assert "preprocessing/merged.h5ad" in result.output

    def test_pipeline_invalid_dependencies(self, runner, tmp_path):
        """Test that unknown dependencies abort the pipeline."""
        import yaml

        path = tmp_path / "pipeline.yaml"
        with open(path, "w") as f:
            yaml.dump(
                {"stages": {"cluster": {"script_module": "x", "depends_on": ["integrate"]}}},
                f,
            )

        result = runner.invoke(cli, ["pipeline", "--config", str(path)], obj={})
        assert result.exit_code == 1
        assert "unknown stage" in result.output
