"""
Typed Configuration Objects

Value types derived from the configuration store: devices, runtime
variants (Python interpreters), instruments and result processors.
"""

import sys
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .exceptions import InvalidConfigurationError

DEFAULT_EXECUTABLE = "python3"


def frozen_mapping(values: Optional[Mapping]) -> Mapping:
    """Copy ``values`` into a read-only mapping."""
    return MappingProxyType(dict(values or {}))


def ambient_home() -> str:
    """Home directory of the interpreter running the orchestrator."""
    return sys.prefix


class DeviceType(str, Enum):
    """Known device kinds."""
    LOCAL = "local"
    REMOTE = "remote"

    @classmethod
    def of(cls, value: str) -> "DeviceType":
        """Parse a configured device type, rejecting unknown kinds."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise InvalidConfigurationError(
                f"Unknown device type '{value}' (known types: {known})",
                value=value
            )


@dataclass(frozen=True)
class DeviceConfig:
    """Configuration of one execution target."""
    name: str
    type: DeviceType
    options: Mapping = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "options", frozen_mapping(self.options))


@dataclass(frozen=True)
class VmConfig:
    """Configuration of one runtime variant: an interpreter plus its flags."""
    name: str
    home: Optional[str] = None
    args: Tuple[str, ...] = ()
    options: Mapping = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "options", frozen_mapping(self.options))

    @property
    def executable_name(self) -> str:
        return self.options.get("executable", DEFAULT_EXECUTABLE)


@dataclass(frozen=True)
class InstrumentConfig:
    """Configuration of a measurement instrument."""
    class_name: str
    options: Mapping = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "options", frozen_mapping(self.options))


@dataclass(frozen=True)
class ResultProcessorConfig:
    """Configuration of a result sink."""
    class_name: str
    options: Mapping = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "options", frozen_mapping(self.options))
