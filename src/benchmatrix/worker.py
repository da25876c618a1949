"""
Reference Worker

Entry point launched once per trial attempt as
``python -m benchmatrix.worker``. Imports the benchmark target, applies
parameters, measures it and reports on stdout using the worker event
protocol. Anything the benchmark itself prints goes to stderr.
"""

import contextlib
import functools
import gc
import importlib
import inspect
import sys
import time
import tracemalloc
import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Mapping, Sequence

import click

from benchmatrix.benchmark.protocol import format_done, format_error, format_measurement


@dataclass
class LoadedBenchmark:
    """A benchmark routine bound to its parameters."""
    routine: Callable[[], Any]
    before: List[Callable[[], Any]] = field(default_factory=list)
    after: List[Callable[[], Any]] = field(default_factory=list)


def parse_assignments(items: Sequence[str], what: str) -> Dict[str, str]:
    values = {}
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(f"{what} must look like name=value, got '{item}'")
        values[name] = value
    return values


def load_benchmark(target: str, parameters: Mapping[str, str],
                   before: Sequence[str] = (), after: Sequence[str] = ()) -> LoadedBenchmark:
    """
    Resolve ``module:function`` or ``module:Class.method``.

    Function parameters are passed as keyword arguments; class parameters
    are set as attributes on a fresh instance. Values are converted when
    the parameter is annotated as int, float or bool. Before and after
    routines are looked up on the instance, or on the module for functions.
    """
    module_name, sep, attr_path = target.partition(":")
    if not sep:
        module_name, _, attr_path = target.rpartition(".")
    if not module_name or not attr_path:
        raise ValueError(f"Benchmark target must look like module:function or module:Class.method, got '{target}'")

    module = importlib.import_module(module_name)
    parts = attr_path.split(".")
    obj = getattr(module, parts[0])

    if inspect.isclass(obj):
        if len(parts) != 2:
            raise ValueError(f"Class benchmark '{target}' must name a method (module:Class.method)")
        instance = obj()
        for name, value in parameters.items():
            setattr(instance, name, _coerce(value, _class_annotation(obj, name)))
        routine = getattr(instance, parts[1])
        scope = instance
    else:
        if len(parts) != 1:
            raise ValueError(f"Function benchmark '{target}' must look like module:function")
        signature = inspect.signature(obj)
        kwargs = {}
        for name, value in parameters.items():
            declared = signature.parameters.get(name)
            kwargs[name] = _coerce(value, declared.annotation if declared else None)
        routine = functools.partial(obj, **kwargs)
        scope = module

    return LoadedBenchmark(
        routine=routine,
        before=[getattr(scope, name) for name in before],
        after=[getattr(scope, name) for name in after],
    )


def _class_annotation(cls: type, name: str) -> Any:
    for klass in cls.__mro__:
        annotations = klass.__dict__.get("__annotations__", {})
        if name in annotations:
            return annotations[name]
    return None


def _coerce(value: str, annotation: Any) -> Any:
    if annotation in (bool, "bool"):
        return value.strip().lower() in ("true", "yes", "1")
    if annotation in (int, "int"):
        return int(value)
    if annotation in (float, "float"):
        return float(value)
    return value


def _repeat(routine: Callable[[], Any], reps: int) -> None:
    for _ in range(reps):
        routine()


def measure_runtime(routine: Callable[[], Any], options: Mapping[str, str]) -> Iterator[Dict[str, Any]]:
    """Wall-clock time of ``reps`` calls per measurement, after warmup."""
    warmup = int(options.get("warmup", 1))
    reps = int(options.get("reps", 1))
    measurements = int(options.get("measurements", 1))

    for _ in range(warmup):
        _repeat(routine, reps)

    for _ in range(measurements):
        start = time.perf_counter_ns()
        _repeat(routine, reps)
        elapsed = time.perf_counter_ns() - start
        yield {"elapsed_ns": elapsed, "reps": reps}


def measure_allocation(routine: Callable[[], Any], options: Mapping[str, str]) -> Iterator[Dict[str, Any]]:
    """Peak and retained traced memory of ``reps`` calls per measurement."""
    reps = int(options.get("reps", 1))
    measurements = int(options.get("measurements", 1))

    tracemalloc.start()
    try:
        for _ in range(measurements):
            gc.collect()
            tracemalloc.reset_peak()
            baseline, _ = tracemalloc.get_traced_memory()
            _repeat(routine, reps)
            current, peak = tracemalloc.get_traced_memory()
            yield {
                "peak_bytes": max(0, peak - baseline),
                "retained_bytes": max(0, current - baseline),
                "reps": reps,
            }
    finally:
        tracemalloc.stop()


MEASURERS = {
    "runtime": measure_runtime,
    "allocation": measure_allocation,
}


@click.command()
@click.option('--benchmark', 'target', required=True, help='module:function or module:Class.method')
@click.option('--param', 'params', multiple=True, help='Parameter assignment name=value')
@click.option('--before', multiple=True, help='Routine run before measuring')
@click.option('--after', multiple=True, help='Routine run after measuring')
@click.option('--instrument', 'instrument_name', default='runtime', help='Instrument name')
@click.option('--mode', type=click.Choice(sorted(MEASURERS)), default='runtime', help='Measurement mode')
@click.option('--instrument-option', 'instrument_options', multiple=True, help='Instrument option name=value')
def run_worker(target, params, before, after, instrument_name, mode, instrument_options) -> int:
    """Measure one benchmark and report on stdout."""
    out = sys.stdout

    def emit(line: str) -> None:
        out.write(line + "\n")
        out.flush()

    parameters = parse_assignments(params, "--param")
    options = parse_assignments(instrument_options, "--instrument-option")

    try:
        with contextlib.redirect_stdout(sys.stderr):
            benchmark = load_benchmark(target, parameters, before, after)
            for routine in benchmark.before:
                routine()
            try:
                for values in MEASURERS[mode](benchmark.routine, options):
                    emit(format_measurement(values))
            finally:
                for routine in benchmark.after:
                    routine()
    except Exception as e:
        traceback.print_exc(file=sys.stderr)
        emit(format_error(f"{type(e).__name__}: {e}"))
        return 1

    emit(format_done())
    return 0


def main(argv: Sequence[str] = None) -> int:
    """Run the worker; argument errors are reported as ERROR events."""
    try:
        return run_worker.main(args=argv, prog_name="benchmatrix.worker", standalone_mode=False)
    except click.ClickException as e:
        sys.stdout.write(format_error(f"Invalid worker arguments: {e.format_message()}") + "\n")
        sys.stdout.flush()
        return 2


if __name__ == "__main__":
    sys.exit(main())
