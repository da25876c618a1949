"""
Unit tests for result processors.
"""

import io
import json
from datetime import datetime

import pytest
from rich.console import Console

from benchmatrix.benchmark.types import BenchmarkScenario, Experiment, Measurement, Trial, TrialOutcome, TrialState
from benchmatrix.core.exceptions import InvalidConfigurationError
from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.core.types import ResultProcessorConfig, VmConfig
from benchmatrix.results import (
    ConsoleResultProcessor,
    JsonLinesResultProcessor,
    create_result_processors,
)


def make_trial(target="bench:work", outcome=TrialOutcome.SUCCESS, measurements=None, diagnostics=None):
    experiment = Experiment(
        scenario=BenchmarkScenario(target=target, parameters={"size": "10"}),
        vm_config=VmConfig(name="py311", home="/opt/py311", args=("-O",)),
        instrument_name="runtime",
    )
    if measurements is None:
        measurements = [Measurement({"elapsed_ns": "2000", "reps": "10"})] if outcome == TrialOutcome.SUCCESS else []
    return Trial(
        experiment=experiment,
        outcome=outcome,
        measurements=measurements,
        diagnostics=diagnostics,
        final_state=TrialState.SUCCEEDED if outcome == TrialOutcome.SUCCESS else TrialState.FAILED,
        started_at=datetime(2024, 1, 2, 3, 4, 5),
        duration_seconds=0.25,
    )


class TestJsonLinesResultProcessor:
    """Test cases for the JSON lines sink."""

    def test_writes_one_line_per_trial(self, temp_dir):
        """Test that every trial becomes one JSON object."""
        path = temp_dir / "out" / "trials.jsonl"
        processor = JsonLinesResultProcessor(ResultProcessorConfig(
            class_name="benchmatrix.results.jsonl.JsonLinesResultProcessor",
            options={"file": str(path)},
        ))

        processor.process_trial(make_trial())
        processor.process_trial(make_trial("bench:other", TrialOutcome.TIMEOUT, diagnostics="too slow"))
        processor.close()

        records = [json.loads(line) for line in path.read_text().splitlines()]
        assert len(records) == 2
        assert records[0]["experiment"] == {
            "benchmark": "bench:work",
            "parameters": {"size": "10"},
            "vm": "py311",
            "vm_home": "/opt/py311",
            "vm_args": ["-O"],
            "instrument": "runtime",
        }
        assert records[0]["measurements"] == [{"elapsed_ns": "2000", "reps": "10"}]
        assert records[0]["started_at"] == "2024-01-02T03:04:05"
        assert records[1]["outcome"] == "timeout"
        assert records[1]["diagnostics"] == "too slow"
        assert processor.written == 2

    def test_append_and_truncate(self, temp_dir):
        """Test that append=false starts a fresh file."""
        path = temp_dir / "trials.jsonl"
        path.write_text('{"old": true}\n')

        appending = JsonLinesResultProcessor(ResultProcessorConfig(class_name="x", options={"file": str(path)}))
        appending.process_trial(make_trial())
        appending.close()
        assert len(path.read_text().splitlines()) == 2

        truncating = JsonLinesResultProcessor(
            ResultProcessorConfig(class_name="x", options={"file": str(path), "append": "false"})
        )
        truncating.process_trial(make_trial())
        truncating.close()
        assert len(path.read_text().splitlines()) == 1

    def test_close_is_idempotent(self, temp_dir):
        """Test that closing twice is harmless."""
        processor = JsonLinesResultProcessor(
            ResultProcessorConfig(class_name="x", options={"file": str(temp_dir / "t.jsonl")})
        )
        processor.close()
        processor.close()

    def test_unwritable_path(self, temp_dir):
        """Test that an unusable path is a configuration error."""
        blocker = temp_dir / "file"
        blocker.write_text("")

        with pytest.raises(InvalidConfigurationError, match="Cannot open results file"):
            JsonLinesResultProcessor(
                ResultProcessorConfig(class_name="x", options={"file": str(blocker / "trials.jsonl")})
            )


class TestConsoleResultProcessor:
    """Test cases for the console summary sink."""

    def test_prints_table_on_close(self):
        """Test that trials are rendered once the run ends."""
        output = io.StringIO()
        processor = ConsoleResultProcessor(
            ResultProcessorConfig(class_name="x", options={"title": "Nightly"}),
            console=Console(file=output, width=200),
        )

        processor.process_trial(make_trial())
        processor.process_trial(make_trial("bench:slow", TrialOutcome.FAILED, diagnostics="Worker crashed\ntrace"))
        assert output.getvalue() == ""
        processor.close()

        rendered = output.getvalue()
        assert "Nightly" in rendered
        assert "bench:work[size=10]" in rendered
        assert "200 ns/rep" in rendered
        assert "Worker crashed" in rendered
        assert "trace" not in rendered

    def test_nothing_printed_without_trials(self):
        """Test that an empty run prints nothing."""
        output = io.StringIO()
        processor = ConsoleResultProcessor(ResultProcessorConfig(class_name="x"), console=Console(file=output))
        processor.close()
        assert output.getvalue() == ""


class TestCreateResultProcessors:
    """Test cases for the sink factory."""

    def test_none_configured(self, make_store):
        """Test that the bundled defaults configure no sinks."""
        assert create_result_processors(ConfigResolver(make_store())) == []

    def test_configured_sinks(self, make_store, temp_dir):
        """Test that configured classes are instantiated with their options."""
        store = make_store(
            "results.file.class=benchmatrix.results.jsonl.JsonLinesResultProcessor",
            f"results.file.options.file={temp_dir / 'trials.jsonl'}",
            "results.screen.class=benchmatrix.results.console.ConsoleResultProcessor",
        )

        processors = create_result_processors(ConfigResolver(store))

        assert [type(p) for p in processors] == [ConsoleResultProcessor, JsonLinesResultProcessor]
        assert processors[1].path == temp_dir / "trials.jsonl"
        for processor in processors:
            processor.close()

    def test_not_a_result_processor(self, make_store):
        """Test that a class outside the contract is rejected."""
        store = make_store("results.bad.class=benchmatrix.core.types.VmConfig")

        with pytest.raises(InvalidConfigurationError, match="not a ResultProcessor"):
            create_result_processors(ConfigResolver(store))
