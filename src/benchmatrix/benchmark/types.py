"""
Benchmark Types

Type definitions for scenarios, experiments, measurements and trial
records produced by the orchestration engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from benchmatrix.core.types import VmConfig, frozen_mapping


class TrialOutcome(str, Enum):
    """Recorded outcome of a trial."""
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


class TrialState(str, Enum):
    """States of a single trial attempt."""
    PENDING = "pending"
    LAUNCHING = "launching"
    RUNNING = "running"
    PARSING = "parsing"
    TIMED_OUT = "timed_out"
    CRASHED = "crashed"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_transient(self) -> bool:
        return self in (TrialState.TIMED_OUT, TrialState.CRASHED)


@dataclass(frozen=True)
class BenchmarkScenario:
    """One benchmarked routine plus a fixed parameter assignment."""
    target: str
    parameters: Mapping = field(default_factory=dict, hash=False)
    before_experiment: Tuple[str, ...] = ()
    after_experiment: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "parameters", frozen_mapping(self.parameters))
        object.__setattr__(self, "before_experiment", tuple(self.before_experiment))
        object.__setattr__(self, "after_experiment", tuple(self.after_experiment))

    @property
    def name(self) -> str:
        if not self.parameters:
            return self.target
        assignment = ",".join(f"{key}={value}" for key, value in sorted(self.parameters.items()))
        return f"{self.target}[{assignment}]"

    def worker_args(self) -> List[str]:
        """Arguments telling the worker which routine to run and how."""
        args = ["--benchmark", self.target]
        for key, value in sorted(self.parameters.items()):
            args.extend(["--param", f"{key}={value}"])
        for routine in self.before_experiment:
            args.extend(["--before", routine])
        for routine in self.after_experiment:
            args.extend(["--after", routine])
        return args


@dataclass(frozen=True)
class Experiment:
    """A fully resolved point in the execution matrix."""
    scenario: BenchmarkScenario
    vm_config: VmConfig
    instrument_name: str

    @property
    def label(self) -> str:
        return f"{self.scenario.name} (vm={self.vm_config.name}, instrument={self.instrument_name})"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "benchmark": self.scenario.target,
            "parameters": dict(self.scenario.parameters),
            "vm": self.vm_config.name,
            "vm_home": self.vm_config.home,
            "vm_args": list(self.vm_config.args),
            "instrument": self.instrument_name,
        }


@dataclass(frozen=True)
class ExperimentContext:
    """
    Everything a trial needs to know about the experiment it is running.

    Built by the orchestrator and passed explicitly to the trial runner and
    to the device that launches the worker.
    """
    run_id: str
    experiment: Experiment
    instrument: Any
    index: int = 0
    total: int = 1

    @property
    def label(self) -> str:
        return f"[{self.index + 1}/{self.total}] {self.experiment.label}"


@dataclass(frozen=True)
class Measurement:
    """One measurement event reported by a worker."""
    values: Mapping = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "values", frozen_mapping(self.values))

    def as_float(self, key: str) -> float:
        """Numeric value of ``key``; raises KeyError or ValueError."""
        return float(self.values[key])

    def to_dict(self) -> Dict[str, str]:
        return dict(self.values)


@dataclass(frozen=True)
class Trial:
    """Recorded outcome of running one experiment, including retries."""
    experiment: Experiment
    outcome: TrialOutcome
    measurements: Tuple[Measurement, ...] = ()
    diagnostics: Optional[str] = None
    attempts: int = 1
    final_state: TrialState = TrialState.SUCCEEDED
    exit_code: Optional[int] = None
    started_at: Optional[datetime] = None
    duration_seconds: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "measurements", tuple(self.measurements))

    @property
    def succeeded(self) -> bool:
        return self.outcome == TrialOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary suitable for JSON serialization."""
        return {
            "experiment": self.experiment.to_dict(),
            "outcome": self.outcome.value,
            "measurements": [m.to_dict() for m in self.measurements],
            "diagnostics": self.diagnostics,
            "attempts": self.attempts,
            "final_state": self.final_state.value,
            "exit_code": self.exit_code,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration_seconds": round(self.duration_seconds, 6),
        }
