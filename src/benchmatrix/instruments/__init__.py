"""
Instruments Module

Measurement strategies and the factory loading them from configuration.
"""

from benchmatrix.core.exceptions import InvalidConfigurationError
from benchmatrix.core.types import InstrumentConfig
from benchmatrix.utils.loading import load_class

from .base import Instrument
from .runtime import AllocationInstrument, RuntimeInstrument


def create_instrument(name: str, config: InstrumentConfig) -> Instrument:
    """
    Load and instantiate the instrument class named by ``config``.

    Raises:
        InvalidConfigurationError: If the class cannot be loaded or is not
            an Instrument
    """
    key = f"instrument.{name}.class"
    cls = load_class(config.class_name, key=key)
    if not issubclass(cls, Instrument):
        raise InvalidConfigurationError(f"{config.class_name} is not an Instrument", key=key)
    return cls(name, config)


__all__ = [
    "Instrument",
    "RuntimeInstrument",
    "AllocationInstrument",
    "create_instrument",
]
