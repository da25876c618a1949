"""
Instrument Base Class

An instrument decides what a worker measures and validates the
measurements the worker reports back.
"""

from abc import ABC
from typing import List, Mapping, Tuple

from benchmatrix.core.exceptions import InvalidConfigurationError, ProtocolViolationError
from benchmatrix.core.types import InstrumentConfig


class Instrument(ABC):
    """
    Measurement strategy selected by name from ``instrument.<name>.*``.

    Subclasses set ``mode`` (passed to the worker) and ``required_keys``
    (keys every measurement from that mode must carry).
    """

    mode: str = None
    required_keys: Tuple[str, ...] = ()

    def __init__(self, name: str, config: InstrumentConfig):
        self.name = name
        self.config = config
        self.expected_measurements = self.int_option("measurements", 1, minimum=1)

    @property
    def options(self) -> Mapping:
        return self.config.options

    def worker_args(self) -> List[str]:
        """Arguments telling the worker how to measure."""
        args = ["--instrument", self.name, "--mode", self.mode]
        for key, value in sorted(self.options.items()):
            args.extend(["--instrument-option", f"{key}={value}"])
        return args

    def validate_measurement(self, values: Mapping) -> None:
        """
        Check one reported measurement.

        Raises:
            ProtocolViolationError: If a required key is missing
        """
        missing = [key for key in self.required_keys if key not in values]
        if missing:
            raise ProtocolViolationError(
                f"Measurement for instrument '{self.name}' lacks {', '.join(missing)}"
            )

    def int_option(self, key: str, default: int, minimum: int = 0) -> int:
        raw = self.options.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise InvalidConfigurationError(
                f"instrument.{self.name}.options.{key} must be an integer, got '{raw}'",
                key=f"instrument.{self.name}.options.{key}"
            )
        if value < minimum:
            raise InvalidConfigurationError(
                f"instrument.{self.name}.options.{key} must be at least {minimum}, got {value}",
                key=f"instrument.{self.name}.options.{key}"
            )
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
