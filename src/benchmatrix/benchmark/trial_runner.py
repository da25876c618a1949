"""
Trial Runner

Runs one experiment as an isolated worker process: builds the worker
command line, launches it on the device, parses its event stream under a
per-attempt timeout, classifies the outcome and retries transient
failures.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from benchmatrix.core.config import RunConfig
from benchmatrix.core.exceptions import ProtocolViolationError, TrialTransientError
from benchmatrix.utils.async_helpers import time_left
from benchmatrix.utils.logging import get_logger, get_trial_logger

from .protocol import EventKind, parse_event
from .types import ExperimentContext, Measurement, Trial, TrialOutcome, TrialState

logger = get_logger(__name__)

ALLOWED_TRANSITIONS = {
    TrialState.PENDING: {TrialState.LAUNCHING},
    TrialState.LAUNCHING: {TrialState.RUNNING, TrialState.CRASHED},
    TrialState.RUNNING: {TrialState.PARSING, TrialState.TIMED_OUT, TrialState.CRASHED},
    TrialState.PARSING: {TrialState.SUCCEEDED, TrialState.FAILED, TrialState.TIMED_OUT, TrialState.CRASHED},
    TrialState.TIMED_OUT: {TrialState.FAILED},
    TrialState.CRASHED: {TrialState.FAILED},
    TrialState.SUCCEEDED: set(),
    TrialState.FAILED: set(),
}


class TrialStateMachine:
    """Tracks the state of one attempt and rejects impossible transitions."""

    def __init__(self, log):
        self.state = TrialState.PENDING
        self._log = log

    def to(self, new_state: TrialState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal trial transition {self.state.value} -> {new_state.value}")
        self._log.debug(f"Trial state {self.state.value} -> {new_state.value}")
        self.state = new_state


@dataclass
class AttemptResult:
    """What one attempt produced."""
    state: TrialState
    measurements: List[Measurement] = field(default_factory=list)
    diagnostics: Optional[str] = None
    exit_code: Optional[int] = None


class _EventCollector:
    """Accumulates events from one attempt's stream."""

    def __init__(self, instrument):
        self.instrument = instrument
        self.measurements: List[Measurement] = []
        self.done = False
        self.error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.done or self.error is not None

    def accept(self, line: str) -> None:
        event = parse_event(line)
        if event is None:
            return
        if event.kind == EventKind.MEASUREMENT:
            try:
                self.instrument.validate_measurement(event.measurement.values)
            except ProtocolViolationError as e:
                e.raw_line = line
                raise
            self.measurements.append(event.measurement)
        elif event.kind == EventKind.DONE:
            self.done = True
        else:
            self.error = event.message


class TrialRunner:
    """Executes experiments on one device, one attempt at a time."""

    def __init__(self, device, run_config: RunConfig, launch_lock: Optional[asyncio.Lock] = None):
        """
        Initialize the trial runner.

        Args:
            device: Device launching the workers
            run_config: Timeout, retry and worker settings
            launch_lock: Lock serializing launches on devices that cannot
                launch concurrently
        """
        self.device = device
        self.run_config = run_config
        self.launch_lock = launch_lock

    def build_command(self, context: ExperimentContext) -> List[str]:
        """Arguments following the interpreter executable."""
        experiment = context.experiment
        return [
            *experiment.vm_config.args,
            "-m", self.run_config.worker_module,
            *experiment.scenario.worker_args(),
            *context.instrument.worker_args(),
        ]

    async def run(self, context: ExperimentContext) -> Trial:
        """
        Run the experiment, retrying crashes and timeouts.

        Only the final attempt's measurements are recorded.

        Args:
            context: Experiment to run and its place in the matrix

        Returns:
            Frozen Trial record
        """
        started_at = datetime.now()
        start = time.monotonic()
        max_attempts = 1 + self.run_config.max_retries

        attempt = 0
        while True:
            attempt += 1
            result = await self._attempt(context, attempt)
            if result.state.is_transient and attempt < max_attempts:
                logger.warning(
                    f"{context.label}: attempt {attempt} ended {result.state.value} "
                    f"({result.diagnostics}); retrying"
                )
                continue
            break

        if result.state == TrialState.SUCCEEDED:
            outcome = TrialOutcome.SUCCESS
        elif result.state == TrialState.TIMED_OUT:
            outcome = TrialOutcome.TIMEOUT
        else:
            outcome = TrialOutcome.FAILED

        if outcome != TrialOutcome.SUCCESS:
            logger.error(f"{context.label}: {outcome.value} after {attempt} attempts: {result.diagnostics}")

        return Trial(
            experiment=context.experiment,
            outcome=outcome,
            measurements=result.measurements if outcome == TrialOutcome.SUCCESS else (),
            diagnostics=result.diagnostics,
            attempts=attempt,
            final_state=result.state,
            exit_code=result.exit_code,
            started_at=started_at,
            duration_seconds=time.monotonic() - start,
        )

    async def _attempt(self, context: ExperimentContext, attempt: int) -> AttemptResult:
        log = get_trial_logger(context.run_id, context.experiment.label, attempt)
        machine = TrialStateMachine(log)
        grace = self.run_config.terminate_grace_seconds
        timeout = self.run_config.timeout_seconds

        machine.to(TrialState.LAUNCHING)
        try:
            process = await self._launch(context)
        except (TrialTransientError, OSError) as e:
            machine.to(TrialState.CRASHED)
            return AttemptResult(TrialState.CRASHED, diagnostics=f"Failed to start worker: {e}")

        machine.to(TrialState.RUNNING)
        deadline = asyncio.get_running_loop().time() + timeout
        collector = _EventCollector(context.instrument)

        try:
            try:
                await asyncio.wait_for(self._consume(process, collector, machine), timeout=time_left(deadline))
            except asyncio.TimeoutError:
                machine.to(TrialState.TIMED_OUT)
                await process.terminate(grace)
                return AttemptResult(
                    TrialState.TIMED_OUT,
                    diagnostics=_with_stderr(f"Worker exceeded the {timeout:g}s timeout", process),
                    exit_code=process.returncode,
                )
            except ProtocolViolationError as e:
                if machine.state == TrialState.RUNNING:
                    machine.to(TrialState.PARSING)
                machine.to(TrialState.FAILED)
                await process.terminate(grace)
                return AttemptResult(
                    TrialState.FAILED,
                    diagnostics=f"Protocol violation: {e.message}: {e.raw_line!r}",
                    exit_code=process.returncode,
                )

            if collector.finished:
                exit_code = await self._reap(process, min(grace, time_left(deadline)))
                return self._classify_finished(context, collector, machine, exit_code)

            # End of stream without a terminal event
            try:
                exit_code = await asyncio.wait_for(process.wait(), timeout=time_left(deadline))
            except asyncio.TimeoutError:
                machine.to(TrialState.TIMED_OUT)
                await process.terminate(grace)
                return AttemptResult(
                    TrialState.TIMED_OUT,
                    diagnostics=_with_stderr(f"Worker exceeded the {timeout:g}s timeout", process),
                    exit_code=process.returncode,
                )

            if exit_code == 0:
                machine.to(TrialState.FAILED)
                return AttemptResult(
                    TrialState.FAILED,
                    diagnostics=_with_stderr("Protocol violation: worker exited without DONE", process),
                    exit_code=exit_code,
                )

            machine.to(TrialState.CRASHED)
            return AttemptResult(
                TrialState.CRASHED,
                diagnostics=_with_stderr(f"Worker crashed with exit code {exit_code}", process),
                exit_code=exit_code,
            )
        finally:
            await process.terminate(grace)

    async def _launch(self, context: ExperimentContext):
        vm_config = context.experiment.vm_config
        command = self.build_command(context)
        if self.launch_lock is None:
            return await self.device.new_worker_process(vm_config, command, context)
        async with self.launch_lock:
            return await self.device.new_worker_process(vm_config, command, context)

    async def _consume(self, process, collector: _EventCollector, machine: TrialStateMachine) -> None:
        async for line in process.lines():
            if machine.state == TrialState.RUNNING:
                machine.to(TrialState.PARSING)
            collector.accept(line)
            if collector.finished:
                return
        if machine.state == TrialState.RUNNING:
            machine.to(TrialState.PARSING)

    async def _reap(self, process, wait_seconds: float) -> Optional[int]:
        """Give a finished worker a moment to exit, then terminate it."""
        try:
            return await asyncio.wait_for(process.wait(), timeout=wait_seconds)
        except asyncio.TimeoutError:
            await process.terminate(self.run_config.terminate_grace_seconds)
            return process.returncode

    def _classify_finished(self, context: ExperimentContext, collector: _EventCollector,
                           machine: TrialStateMachine, exit_code: Optional[int]) -> AttemptResult:
        if collector.error is not None:
            machine.to(TrialState.FAILED)
            return AttemptResult(
                TrialState.FAILED,
                diagnostics=f"Worker reported an error: {collector.error}",
                exit_code=exit_code,
            )

        expected = context.instrument.expected_measurements
        received = len(collector.measurements)
        if received < expected:
            machine.to(TrialState.FAILED)
            return AttemptResult(
                TrialState.FAILED,
                diagnostics=f"Expected {expected} measurements, received {received}",
                exit_code=exit_code,
            )

        if exit_code not in (0, None):
            logger.warning(f"{context.label}: worker sent DONE but exited with code {exit_code}")

        machine.to(TrialState.SUCCEEDED)
        return AttemptResult(TrialState.SUCCEEDED, measurements=collector.measurements, exit_code=exit_code)


def _with_stderr(message: str, process) -> str:
    tail = process.stderr_tail()
    if tail:
        return f"{message}\n--- worker stderr ---\n{tail}"
    return message
