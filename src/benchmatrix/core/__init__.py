"""
Core Module

Foundational components used across the application including the
configuration store, typed configuration objects and custom exceptions.
"""

from .exceptions import (
    BenchmatrixException,
    ConfigurationError,
    InvalidConfigurationError,
    UsageError,
    MissingConfigurationError,
    DeviceUnavailableError,
    TrialError,
    TrialTransientError,
    TrialPermanentError,
    ProtocolViolationError,
    BenchmarkExecutionError,
)
from .config import ConfigStore, LoggingConfig, RunConfig, load_config_store
from .types import DeviceConfig, DeviceType, VmConfig, InstrumentConfig, ResultProcessorConfig
from .resolver import ConfigResolver

__all__ = [
    "BenchmatrixException",
    "ConfigurationError",
    "InvalidConfigurationError",
    "UsageError",
    "MissingConfigurationError",
    "DeviceUnavailableError",
    "TrialError",
    "TrialTransientError",
    "TrialPermanentError",
    "ProtocolViolationError",
    "BenchmarkExecutionError",
    "ConfigStore",
    "LoggingConfig",
    "RunConfig",
    "load_config_store",
    "DeviceConfig",
    "DeviceType",
    "VmConfig",
    "InstrumentConfig",
    "ResultProcessorConfig",
    "ConfigResolver",
]
