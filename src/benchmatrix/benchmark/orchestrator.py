"""
Matrix Orchestrator

Runs an experiment matrix through a bounded pool of worker slots, records
every trial, forwards trials to result processors and supports
cancellation of the whole run.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from benchmatrix.core.config import ConfigStore, RunConfig
from benchmatrix.core.exceptions import BenchmarkExecutionError, DeviceUnavailableError
from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.utils.async_helpers import cancel_tasks, create_task_with_name
from benchmatrix.utils.loading import class_identifier
from benchmatrix.utils.logging import PerformanceTimer, get_logger

from .matrix import ExperimentMatrixBuilder
from .trial_runner import TrialRunner
from .types import BenchmarkScenario, Experiment, ExperimentContext, Trial, TrialOutcome, TrialState

logger = get_logger(__name__)


class OrchestratorState(str, Enum):
    """States of the orchestrator."""
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class MatrixProgress:
    """Progress across the experiment matrix."""
    total: int
    completed: int = 0
    failed: int = 0
    running: int = 0
    start_time: datetime = field(default_factory=datetime.now)
    estimated_completion: Optional[datetime] = None

    @property
    def finished(self) -> int:
        return self.completed + self.failed

    @property
    def completion_percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.finished / self.total) * 100.0

    @property
    def success_rate(self) -> float:
        if self.finished == 0:
            return 0.0
        return (self.completed / self.finished) * 100.0


@dataclass
class RunResult:
    """Outcome of one pass over the matrix."""
    run_id: str
    trials: List[Trial]
    total_experiments: int
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def permanent_failures(self) -> List[Trial]:
        return [trial for trial in self.trials if not trial.succeeded]

    @property
    def succeeded(self) -> bool:
        """True iff every experiment ran and none failed permanently."""
        return (not self.cancelled
                and len(self.trials) == self.total_experiments
                and not self.permanent_failures)


class Orchestrator:
    """Executes experiments on a device through a fixed pool of slots."""

    def __init__(self,
                 device,
                 run_config: RunConfig,
                 result_processors: Optional[Sequence] = None,
                 on_trial_completed: Optional[Callable[[Trial, MatrixProgress], None]] = None,
                 run_id: Optional[str] = None):
        """
        Initialize the orchestrator.

        Args:
            device: Device the experiments run on
            run_config: Timeout, retry and parallelism settings
            result_processors: Sinks receiving every completed trial
            on_trial_completed: Optional progress callback
            run_id: Identifier of the run (generated when omitted)
        """
        self.device = device
        self.run_config = run_config
        self.result_processors = list(result_processors or [])
        self.on_trial_completed = on_trial_completed
        self.run_id = run_id or uuid.uuid4().hex[:12]

        self.state = OrchestratorState.IDLE
        self.progress: Optional[MatrixProgress] = None
        self._launch_lock = None if device.concurrent_launch else asyncio.Lock()
        self._slot_tasks: List[asyncio.Task] = []
        self._trials: Dict[int, Trial] = {}
        self._cancel_requested = False
        self._sinks_closed = False

    @property
    def pool_size(self) -> int:
        return max(1, min(self.run_config.max_parallel, self.device.worker_slots))

    async def run(self, experiments: Sequence[Experiment], instruments: Mapping) -> RunResult:
        """
        Execute every experiment and close the sinks.

        Args:
            experiments: Matrix in execution order
            instruments: Instrument objects keyed by name

        Returns:
            RunResult with trials in matrix order

        Raises:
            DeviceUnavailableError: If the device cannot be prepared or
                becomes unusable during the run
        """
        if self.state != OrchestratorState.IDLE:
            raise BenchmarkExecutionError(
                f"Orchestrator is not idle (current state: {self.state.value})",
                run_id=self.run_id
            )

        missing = sorted({e.instrument_name for e in experiments} - set(instruments))
        if missing:
            self.state = OrchestratorState.STOPPED
            self._close_sinks()
            raise BenchmarkExecutionError(
                f"No instrument objects for: {', '.join(missing)}",
                run_id=self.run_id,
                current_step="setup"
            )

        self.state = OrchestratorState.RUNNING
        self.progress = MatrixProgress(total=len(experiments))
        queue: asyncio.Queue = asyncio.Queue()
        for index, experiment in enumerate(experiments):
            queue.put_nowait((index, experiment))

        logger.info(
            f"Starting run {self.run_id}: {len(experiments)} experiments on device "
            f"{self.device.name} with {self.pool_size} slots"
        )

        timer = PerformanceTimer(f"run {self.run_id}", logger)
        try:
            with timer:
                await self.device.prepare()
                self._slot_tasks = [
                    create_task_with_name(self._slot(slot, queue, instruments, len(experiments)),
                                          f"slot-{slot}")
                    for slot in range(self.pool_size)
                ]
                done, pending = await asyncio.wait(self._slot_tasks, return_when=asyncio.FIRST_EXCEPTION)
                if pending:
                    await cancel_tasks(list(pending))
                for task in done:
                    if not task.cancelled() and task.exception() is not None:
                        raise task.exception()
        finally:
            self.state = OrchestratorState.STOPPING
            await cancel_tasks([task for task in self._slot_tasks if not task.done()])
            self._close_sinks()
            await self.device.close(self.run_config.terminate_grace_seconds)
            self.state = OrchestratorState.STOPPED

        result = RunResult(
            run_id=self.run_id,
            trials=[self._trials[index] for index in sorted(self._trials)],
            total_experiments=len(experiments),
            cancelled=self._cancel_requested,
            duration_seconds=timer.duration or 0.0,
        )
        logger.info(
            f"Run {self.run_id} finished: {len(result.trials)} trials, "
            f"{len(result.permanent_failures)} permanent failures"
            f"{', cancelled' if result.cancelled else ''}"
        )
        return result

    async def cancel(self) -> None:
        """Stop the run: terminate in-flight trials and start no new ones."""
        if self.state != OrchestratorState.RUNNING:
            return
        logger.info(f"Cancelling run {self.run_id}")
        self._cancel_requested = True
        await cancel_tasks([task for task in self._slot_tasks if not task.done()])

    async def _slot(self, slot: int, queue: asyncio.Queue, instruments: Mapping, total: int) -> None:
        runner = TrialRunner(self.device, self.run_config, launch_lock=self._launch_lock)
        while not self._cancel_requested:
            try:
                index, experiment = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            context = ExperimentContext(
                run_id=self.run_id,
                experiment=experiment,
                instrument=instruments[experiment.instrument_name],
                index=index,
                total=total,
            )
            logger.debug(f"Slot {slot} running {context.label}")

            self.progress.running += 1
            try:
                trial = await runner.run(context)
            except DeviceUnavailableError:
                raise
            except Exception as e:
                logger.exception(f"{context.label}: unexpected error in trial runner")
                trial = Trial(
                    experiment=experiment,
                    outcome=TrialOutcome.FAILED,
                    diagnostics=f"Internal error: {e}",
                    final_state=TrialState.FAILED,
                    started_at=datetime.now(),
                )
            finally:
                self.progress.running -= 1

            self._record(index, trial)

    def _record(self, index: int, trial: Trial) -> None:
        self._trials[index] = trial
        if trial.succeeded:
            self.progress.completed += 1
        else:
            self.progress.failed += 1
        self._update_progress()

        for processor in self.result_processors:
            try:
                processor.process_trial(trial)
            except Exception as e:
                # Sink failures never fail the trial
                logger.error(f"Result processor {class_identifier(type(processor))} failed: {e}", exc_info=True)

        if self.on_trial_completed:
            try:
                self.on_trial_completed(trial, self.progress)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _update_progress(self) -> None:
        progress = self.progress
        if progress.finished == 0:
            return
        elapsed = datetime.now() - progress.start_time
        remaining = progress.total - progress.finished
        per_trial = elapsed / progress.finished
        progress.estimated_completion = datetime.now() + timedelta(seconds=per_trial.total_seconds() * remaining)

    def _close_sinks(self) -> None:
        if self._sinks_closed:
            return
        self._sinks_closed = True
        for processor in self.result_processors:
            try:
                processor.close()
            except Exception as e:
                logger.error(f"Failed to close result processor {class_identifier(type(processor))}: {e}",
                             exc_info=True)


def create_run(store: ConfigStore,
               scenarios: Sequence[BenchmarkScenario],
               device_name: Optional[str] = None,
               vm_names: Sequence[str] = (),
               instrument_names: Sequence[str] = (),
               result_processors: Optional[Sequence] = None,
               on_trial_completed: Optional[Callable[[Trial, MatrixProgress], None]] = None
               ) -> Tuple[Orchestrator, List[Experiment], Dict[str, object]]:
    """
    Resolve everything a run needs before any trial executes.

    Configuration problems surface here, before the device is prepared.

    Returns:
        The orchestrator, the experiment list and the instruments by name
    """
    from benchmatrix.devices import create_device
    from benchmatrix.instruments import create_instrument
    from benchmatrix.results import create_result_processors

    resolver = ConfigResolver(store)
    run_config = resolver.get_run_config()
    device = create_device(resolver.get_device_config(device_name), resolver)

    builder = ExperimentMatrixBuilder.from_names(resolver, device, scenarios, vm_names, instrument_names)
    instruments = {
        name: create_instrument(name, resolver.get_instrument_config(name))
        for name in builder.instrument_names
    }
    experiments = builder.build()

    if result_processors is None:
        result_processors = create_result_processors(resolver)

    orchestrator = Orchestrator(device, run_config, result_processors, on_trial_completed)
    return orchestrator, experiments, instruments


async def run_matrix(store: ConfigStore,
                     scenarios: Sequence[BenchmarkScenario],
                     device_name: Optional[str] = None,
                     vm_names: Sequence[str] = (),
                     instrument_names: Sequence[str] = (),
                     result_processors: Optional[Sequence] = None,
                     on_trial_completed: Optional[Callable[[Trial, MatrixProgress], None]] = None
                     ) -> RunResult:
    """Resolve, build and execute a matrix in one call."""
    orchestrator, experiments, instruments = create_run(
        store, scenarios, device_name, vm_names, instrument_names, result_processors, on_trial_completed
    )
    return await orchestrator.run(experiments, instruments)
