"""
Benchmark Module

Experiment matrix expansion, the worker event protocol, the per-trial
state machine and the orchestrator running a whole matrix.
"""

from .types import (
    BenchmarkScenario,
    Experiment,
    ExperimentContext,
    Measurement,
    Trial,
    TrialOutcome,
    TrialState,
)
from .matrix import ExperimentMatrixBuilder
from .protocol import EventKind, WorkerEvent, parse_event
from .trial_runner import TrialRunner
from .orchestrator import MatrixProgress, Orchestrator, RunResult, create_run, run_matrix

__all__ = [
    "BenchmarkScenario",
    "Experiment",
    "ExperimentContext",
    "Measurement",
    "Trial",
    "TrialOutcome",
    "TrialState",
    "ExperimentMatrixBuilder",
    "EventKind",
    "WorkerEvent",
    "parse_event",
    "TrialRunner",
    "MatrixProgress",
    "Orchestrator",
    "RunResult",
    "create_run",
    "run_matrix",
]
