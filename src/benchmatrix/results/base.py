"""
Result Processor Base Class

Contract for sinks receiving completed trials.
"""

from abc import ABC, abstractmethod
from typing import Mapping

from benchmatrix.core.types import ResultProcessorConfig


class ResultProcessor(ABC):
    """
    Receives every completed trial of a run, in completion order.

    ``process_trial`` is called synchronously before the next experiment
    starts on the same slot; ``close`` is called exactly once at run end.
    Implementations take their ResultProcessorConfig as the only
    constructor argument.
    """

    def __init__(self, config: ResultProcessorConfig):
        self.config = config

    @property
    def options(self) -> Mapping:
        return self.config.options

    @abstractmethod
    def process_trial(self, trial) -> None:
        """Handle one completed trial."""
        pass

    def close(self) -> None:
        """Release resources. Called once after the last trial."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
