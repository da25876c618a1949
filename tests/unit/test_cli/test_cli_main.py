"""
Unit tests for the command-line interface.
"""

from unittest.mock import AsyncMock, Mock, patch

import pytest
import yaml
from click.testing import CliRunner

from benchmatrix.benchmark.orchestrator import RunResult
from benchmatrix.benchmark.types import BenchmarkScenario, Experiment, Trial, TrialOutcome
from benchmatrix.cli.main import cli
from benchmatrix.core.exceptions import DeviceUnavailableError
from benchmatrix.core.types import VmConfig

BASE_ARGS = ["--no-user-config", "-C", "logging.file="]


@pytest.fixture
def runner():
    """CLI runner for testing."""
    return CliRunner()


def make_trial(outcome=TrialOutcome.SUCCESS):
    experiment = Experiment(BenchmarkScenario(target="bench:work"), VmConfig(name="default"), "runtime")
    return Trial(experiment=experiment, outcome=outcome,
                 diagnostics=None if outcome == TrialOutcome.SUCCESS else "Worker crashed with exit code 1")


def mock_run(result):
    """Patch create_run so that the orchestrator returns ``result``."""
    orchestrator = Mock()
    orchestrator.run = AsyncMock(return_value=result)
    orchestrator.cancel = AsyncMock()
    experiments = [make_trial().experiment]
    return patch("benchmatrix.cli.main.create_run", return_value=(orchestrator, experiments, {"runtime": Mock()}))


class TestConfigShow:
    """Test cases for `config show`."""

    def test_yaml_with_prefix(self, runner):
        """Test that only keys under the prefix are printed."""
        result = runner.invoke(cli, BASE_ARGS + ["config", "show", "--prefix", "instrument.runtime",
                                                 "--format", "yaml"])

        assert result.exit_code == 0, result.output
        shown = yaml.safe_load(result.output)
        assert shown["instrument.runtime.class"] == "benchmatrix.instruments.runtime.RuntimeInstrument"
        assert shown["instrument.runtime.options.reps"] == "10"
        assert all(key.startswith("instrument.runtime.") for key in shown)

    def test_override_visible(self, runner):
        """Test that -C overrides reach the store."""
        result = runner.invoke(cli, BASE_ARGS + ["-C", "vm.args=-X dev", "config", "show", "--format", "yaml"])

        assert result.exit_code == 0, result.output
        assert yaml.safe_load(result.output)["vm.args"] == "-X dev"

    def test_table(self, runner):
        """Test the default table output."""
        result = runner.invoke(cli, BASE_ARGS + ["config", "show", "--prefix", "run"])

        assert result.exit_code == 0, result.output
        assert "run.maxRetries" in result.output
        assert "device.local.type" not in result.output

    def test_malformed_override_is_usage_error(self, runner):
        """Test that an override without '=' exits with a usage error."""
        result = runner.invoke(cli, ["--no-user-config", "-C", "nonsense", "config", "show"])
        assert result.exit_code == 2

    def test_missing_config_file(self, runner, temp_dir):
        """Test that a missing --config file is a usage error."""
        result = runner.invoke(cli, BASE_ARGS + ["--config", str(temp_dir / "absent.yaml"), "config", "show"])
        assert result.exit_code == 2
        assert "not found" in result.output


class TestRunCommand:
    """Test cases for `run`."""

    def test_dry_run_prints_matrix(self, runner):
        """Test that --dry-run prints the expanded matrix without running."""
        result = runner.invoke(cli, BASE_ARGS + [
            "run", "-b", "bench:work", "-p", "size=1,2", "-i", "runtime", "-i", "allocation", "--dry-run"
        ])

        assert result.exit_code == 0, result.output
        assert "bench:work[size=1]" in result.output
        assert "bench:work[size=2]" in result.output
        assert "allocation" in result.output

    def test_no_benchmarks(self, runner):
        """Test that a run without benchmarks is a usage error."""
        result = runner.invoke(cli, BASE_ARGS + ["run"])
        assert result.exit_code == 2
        assert "No benchmarks given" in result.output

    def test_unknown_instrument(self, runner):
        """Test that an unconfigured instrument exits with a usage error."""
        result = runner.invoke(cli, BASE_ARGS + ["run", "-b", "bench:work", "-i", "nosuch", "--dry-run"])
        assert result.exit_code == 2
        assert "nosuch" in result.output

    def test_device_without_type(self, runner):
        """Test that a selected device with no type key is invalid configuration."""
        result = runner.invoke(cli, BASE_ARGS + ["run", "-b", "bench:work", "-e", "nosuch", "--dry-run"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert "device.nosuch.type" in result.output

    def test_invalid_configuration(self, runner):
        """Test that malformed settings exit with status 1."""
        result = runner.invoke(cli, BASE_ARGS + ["-C", "run.timeout=soon", "run", "-b", "bench:work", "--dry-run"])
        assert result.exit_code == 1

    def test_successful_run(self, runner):
        """Test that a clean run exits with status 0."""
        run_result = RunResult(run_id="abc", trials=[make_trial()], total_experiments=1)

        with mock_run(run_result) as create_run:
            result = runner.invoke(cli, BASE_ARGS + ["run", "-b", "bench:work"])

        assert result.exit_code == 0, result.output
        assert create_run.call_args.args[1] == [BenchmarkScenario(target="bench:work")]

    def test_failed_trials(self, runner):
        """Test that permanent failures exit with status 1."""
        run_result = RunResult(run_id="abc", trials=[make_trial(TrialOutcome.FAILED)], total_experiments=1)

        with mock_run(run_result):
            result = runner.invoke(cli, BASE_ARGS + ["run", "-b", "bench:work"])

        assert result.exit_code == 1
        assert "1 of 1 experiments failed" in result.output

    def test_cancelled_run(self, runner):
        """Test that a cancelled run exits with status 130."""
        run_result = RunResult(run_id="abc", trials=[], total_experiments=1, cancelled=True)

        with mock_run(run_result):
            result = runner.invoke(cli, BASE_ARGS + ["run", "-b", "bench:work"])

        assert result.exit_code == 130

    def test_device_unavailable(self, runner, mocker):
        """Test that an unreachable device exits with status 1."""
        orchestrator = mocker.Mock()
        orchestrator.run = mocker.AsyncMock(side_effect=DeviceUnavailableError("host down"))
        mocker.patch("benchmatrix.cli.main.create_run",
                     return_value=(orchestrator, [make_trial().experiment], {}))

        result = runner.invoke(cli, BASE_ARGS + ["run", "-b", "bench:work"])

        assert result.exit_code == 1
        assert "host down" in result.output
