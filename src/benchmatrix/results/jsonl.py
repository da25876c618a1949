"""
JSON Lines Result Processor

Appends one JSON object per trial to a file.
"""

import json
from pathlib import Path

from benchmatrix.core.exceptions import InvalidConfigurationError
from benchmatrix.core.types import ResultProcessorConfig
from benchmatrix.utils.logging import get_logger

from .base import ResultProcessor

logger = get_logger(__name__)

DEFAULT_RESULTS_FILE = "results/trials.jsonl"


class JsonLinesResultProcessor(ResultProcessor):
    """
    Writes trials as JSON lines.

    Options:
        file: Output path (default ``results/trials.jsonl``)
        append: ``true`` to keep existing content (default), ``false`` to truncate
    """

    def __init__(self, config: ResultProcessorConfig):
        super().__init__(config)
        self.path = Path(self.options.get("file") or DEFAULT_RESULTS_FILE)
        append = self.options.get("append", "true").strip().lower() in ("true", "yes", "1")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(self.path, "a" if append else "w", encoding="utf-8")
        except OSError as e:
            raise InvalidConfigurationError(f"Cannot open results file {self.path}: {e}", key="file")
        self.written = 0

    def process_trial(self, trial) -> None:
        self._file.write(json.dumps(trial.to_dict(), default=str) + "\n")
        self._file.flush()
        self.written += 1

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.info(f"Wrote {self.written} trials to {self.path}")
