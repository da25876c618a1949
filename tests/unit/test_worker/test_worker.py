"""
Unit tests for the reference worker.
"""

import sys
import textwrap

import pytest

from benchmatrix.benchmark.protocol import EventKind, parse_event
from benchmatrix.worker import load_benchmark, main, measure_allocation, measure_runtime

SAMPLE_MODULE = "sample_worker_benchmarks"

SAMPLE_SOURCE = textwrap.dedent("""
    calls = []
    retained = []


    def add(a: int, b: int = 0, scale: float = 1.0, flag: bool = False, label=""):
        calls.append((a, b, scale, flag, label))
        return a + b


    def setup():
        calls.append("setup")


    def teardown():
        calls.append("teardown")


    def noisy():
        print("chatter from the benchmark")


    def broken():
        raise ValueError("bad input")


    def hold_memory():
        retained.append(bytearray(200000))


    class Parser:
        size: int = 1

        def __init__(self):
            self.events = []

        def parse(self):
            self.events.append("parse")
            return "x" * self.size

        def prepare(self):
            self.events.append("prepare")
""")


@pytest.fixture
def sample_module(temp_dir, monkeypatch):
    """Importable module with benchmark routines."""
    (temp_dir / f"{SAMPLE_MODULE}.py").write_text(SAMPLE_SOURCE)
    monkeypatch.syspath_prepend(str(temp_dir))
    sys.modules.pop(SAMPLE_MODULE, None)
    yield SAMPLE_MODULE
    sys.modules.pop(SAMPLE_MODULE, None)


def events_from(output):
    return [event for event in (parse_event(line) for line in output.splitlines()) if event is not None]


class TestLoadBenchmark:
    """Test cases for resolving benchmark targets."""

    def test_function_parameters_coerced(self, sample_module):
        """Test that annotated parameters are converted from strings."""
        benchmark = load_benchmark(f"{sample_module}:add",
                                   {"a": "2", "b": "3", "scale": "0.5", "flag": "true", "label": "x"})

        assert benchmark.routine() == 5
        module = sys.modules[sample_module]
        assert module.calls[-1] == (2, 3, 0.5, True, "x")

    def test_function_hooks(self, sample_module):
        """Test that before/after routines are looked up on the module."""
        benchmark = load_benchmark(f"{sample_module}:add", {"a": "1"}, before=["setup"], after=["teardown"])

        benchmark.before[0]()
        benchmark.after[0]()
        assert sys.modules[sample_module].calls == ["setup", "teardown"]

    def test_class_method(self, sample_module):
        """Test that class parameters become attributes of a fresh instance."""
        benchmark = load_benchmark(f"{sample_module}:Parser.parse", {"size": "4"}, before=["prepare"])

        benchmark.before[0]()
        assert benchmark.routine() == "xxxx"
        assert benchmark.routine.__self__.events == ["prepare", "parse"]

    def test_dotted_target(self, sample_module):
        """Test that module.function is accepted without a colon."""
        benchmark = load_benchmark(f"{sample_module}.add", {"a": "7"})
        assert benchmark.routine() == 7

    @pytest.mark.parametrize("target", ["nomodule", "{m}:Parser", "{m}:add.extra"])
    def test_malformed_target(self, sample_module, target):
        """Test that targets must name a function or a method."""
        with pytest.raises(ValueError):
            load_benchmark(target.format(m=sample_module), {})

    def test_missing_module(self):
        """Test that an unknown module raises ImportError."""
        with pytest.raises(ImportError):
            load_benchmark("no_such_module_anywhere:run", {})


class TestMeasurers:
    """Test cases for the measurement loops."""

    def test_runtime_counts_calls(self):
        """Test warmup, reps and measurements."""
        calls = []

        measurements = list(measure_runtime(lambda: calls.append(1),
                                            {"warmup": "1", "reps": "3", "measurements": "2"}))

        assert len(measurements) == 2
        assert len(calls) == 9
        assert all(m["reps"] == 3 and m["elapsed_ns"] >= 0 for m in measurements)

    def test_allocation_reports_peak(self):
        """Test that retained allocations show up in peak and retained bytes."""
        kept = []

        measurements = list(measure_allocation(lambda: kept.append(bytearray(500000)), {"reps": "2"}))

        assert len(measurements) == 1
        assert measurements[0]["peak_bytes"] >= 1000000
        assert measurements[0]["retained_bytes"] >= 1000000
        assert measurements[0]["reps"] == 2


class TestWorkerMain:
    """Test cases for the worker entry point."""

    def test_reports_measurements_then_done(self, sample_module, capsys):
        """Test a successful worker run."""
        code = main(["--benchmark", f"{sample_module}:add", "--param", "a=1",
                     "--instrument-option", "measurements=3", "--instrument-option", "warmup=0"])

        events = events_from(capsys.readouterr().out)
        assert code == 0
        assert [e.kind for e in events] == [EventKind.MEASUREMENT] * 3 + [EventKind.DONE]
        assert set(events[0].measurement.values) == {"elapsed_ns", "reps"}

    def test_benchmark_output_goes_to_stderr(self, sample_module, capsys):
        """Test that prints from the benchmark do not corrupt the event stream."""
        code = main(["--benchmark", f"{sample_module}:noisy"])

        captured = capsys.readouterr()
        assert code == 0
        assert "chatter from the benchmark" in captured.err
        assert "chatter" not in captured.out
        assert events_from(captured.out)[-1].kind == EventKind.DONE

    def test_allocation_mode(self, sample_module, capsys):
        """Test the allocation measurement mode."""
        code = main(["--benchmark", f"{sample_module}:hold_memory", "--instrument", "allocation",
                     "--mode", "allocation"])

        events = events_from(capsys.readouterr().out)
        assert code == 0
        assert int(events[0].measurement.values["peak_bytes"]) >= 200000

    def test_benchmark_exception(self, sample_module, capsys):
        """Test that an exception becomes an ERROR event and exit code 1."""
        code = main(["--benchmark", f"{sample_module}:broken"])

        captured = capsys.readouterr()
        events = events_from(captured.out)
        assert code == 1
        assert events[-1].kind == EventKind.ERROR
        assert events[-1].message == "ValueError: bad input"
        assert "Traceback" in captured.err

    def test_after_runs_on_failure(self, sample_module, capsys):
        """Test that after routines run even when measuring fails."""
        main(["--benchmark", f"{sample_module}:broken", "--before", "setup", "--after", "teardown"])
        assert sys.modules[sample_module].calls == ["setup", "teardown"]

    @pytest.mark.parametrize("argv", [
        ["--mode", "runtime"],
        ["--benchmark", "m:f", "--mode", "bogus"],
        ["--benchmark", "m:f", "--param", "novalue"],
    ])
    def test_bad_arguments(self, argv, capsys):
        """Test that argument errors are reported as ERROR events."""
        code = main(argv)

        events = events_from(capsys.readouterr().out)
        assert code == 2
        assert events[-1].kind == EventKind.ERROR
        assert events[-1].message.startswith("Invalid worker arguments")
