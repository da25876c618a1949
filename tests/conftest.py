"""
Pytest Configuration

Global test configuration, fixtures, and fake devices for the
benchmatrix test suite.
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add src to Python path for imports
import sys
SRC_DIR = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(SRC_DIR))

from benchmatrix.benchmark.types import BenchmarkScenario, Experiment, ExperimentContext
from benchmatrix.core.config import ConfigStore, RunConfig, load_config_store
from benchmatrix.core.exceptions import TrialTransientError
from benchmatrix.core.types import InstrumentConfig, VmConfig
from benchmatrix.instruments import RuntimeInstrument


class FakeWorkerProcess:
    """Scripted stand-in for a WorkerProcess."""

    def __init__(self, lines=(), exit_code: int = 0, hang: bool = False,
                 stderr: str = "", line_delay: float = 0.0, linger: bool = False):
        self._lines = list(lines)
        self._exit_code = exit_code
        self.hang = hang
        # stdout closes but the process keeps running until terminated
        self.linger = linger
        self.stderr = stderr
        self.line_delay = line_delay
        self.returncode: Optional[int] = None
        self.terminated = False
        self.terminate_calls = 0
        self._stopped = asyncio.Event()

    async def lines(self):
        for line in self._lines:
            if self.line_delay:
                await asyncio.sleep(self.line_delay)
            yield line
        if self.hang:
            await self._stopped.wait()

    async def wait(self) -> int:
        if (self.hang or self.linger) and not self._stopped.is_set():
            await self._stopped.wait()
        if self.returncode is None:
            self.returncode = self._exit_code
        return self.returncode

    async def terminate(self, grace_seconds: float) -> None:
        self.terminate_calls += 1
        if self.returncode is None:
            self.terminated = True
            self.returncode = -15
            self._stopped.set()

    def stderr_tail(self) -> str:
        return self.stderr


class FakeDevice:
    """
    Device whose workers come from ``script(context, launch_number)``.

    The script returns a FakeWorkerProcess or raises, e.g. a
    TrialTransientError to simulate a failed launch.
    """

    def __init__(self, script: Callable, worker_slots: int = 1, concurrent_launch: bool = True):
        self.name = "fake"
        self.script = script
        self.worker_slots = worker_slots
        self.concurrent_launch = concurrent_launch
        self.commands: List[List[str]] = []
        self.processes: List[FakeWorkerProcess] = []
        self.prepared = False
        self.closed = False
        self.launches = 0

    async def prepare(self) -> None:
        self.prepared = True

    def default_vm_config(self) -> VmConfig:
        return VmConfig(name="default", home="/opt/python")

    async def new_worker_process(self, vm_config, command, context=None):
        self.launches += 1
        self.commands.append(list(command))
        process = self.script(context, self.launches)
        self.processes.append(process)
        return process

    async def close(self, grace_seconds: Optional[float] = None) -> None:
        self.closed = True


def ok_lines(count: int = 1) -> List[str]:
    """Event stream of ``count`` runtime measurements followed by DONE."""
    return [f"MEASUREMENT elapsed_ns={1000 * (i + 1)} reps=10" for i in range(count)] + ["DONE"]


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def make_store():
    """Build a store from the bundled defaults plus ``key=value`` overrides."""
    def _make(*overrides: str) -> ConfigStore:
        return load_config_store(overrides=list(overrides), include_user_config=False, environ={})
    return _make


@pytest.fixture
def run_config():
    """Fast run settings for unit tests."""
    return RunConfig(timeout_seconds=2.0, max_retries=1, max_parallel=1, terminate_grace_seconds=0.5)


@pytest.fixture
def runtime_instrument():
    """Runtime instrument expecting two measurements."""
    return RuntimeInstrument(
        "runtime",
        InstrumentConfig(
            class_name="benchmatrix.instruments.runtime.RuntimeInstrument",
            options={"measurements": "2", "reps": "10", "warmup": "0"},
        ),
    )


@pytest.fixture
def make_context(runtime_instrument):
    """Build an ExperimentContext for a target."""
    def _make(target: str = "bench.sample:work", instrument=None, index: int = 0, total: int = 1,
              vm_config: Optional[VmConfig] = None) -> ExperimentContext:
        instrument = instrument or runtime_instrument
        experiment = Experiment(
            scenario=BenchmarkScenario(target=target),
            vm_config=vm_config or VmConfig(name="default", home="/opt/python"),
            instrument_name=instrument.name,
        )
        return ExperimentContext(run_id="test-run", experiment=experiment, instrument=instrument,
                                 index=index, total=total)
    return _make


@pytest.fixture
def fake_process():
    """Factory for scripted worker processes."""
    return FakeWorkerProcess


@pytest.fixture
def fake_device():
    """Factory for scripted devices."""
    return FakeDevice


@pytest.fixture
def success_lines():
    """Factory for successful event streams."""
    return ok_lines


@pytest.fixture
def launch_failure():
    """Script raising a launch failure."""
    def _fail(context, launch_number):
        raise TrialTransientError("No such interpreter")
    return _fail
