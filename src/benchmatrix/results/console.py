"""
Console Result Processor

Prints a rich summary table of every trial when the run ends.
"""

from typing import List, Optional

from rich.console import Console

from benchmatrix.core.types import ResultProcessorConfig
from benchmatrix.cli.formatting import format_trials_table

from .base import ResultProcessor


class ConsoleResultProcessor(ResultProcessor):
    """Collects trials and renders them as one table on close."""

    def __init__(self, config: ResultProcessorConfig, console: Optional[Console] = None):
        super().__init__(config)
        self.console = console or Console()
        self.title = self.options.get("title") or "Trials"
        self.trials: List = []

    def process_trial(self, trial) -> None:
        self.trials.append(trial)

    def close(self) -> None:
        if self.trials:
            self.console.print(format_trials_table(self.trials, title=self.title))
