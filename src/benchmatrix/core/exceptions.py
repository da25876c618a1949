"""
Custom Exception Classes

Application-specific exception classes for configuration, device and
trial failures throughout the benchmark orchestration engine.
"""

from typing import Optional, Any, Dict


class BenchmatrixException(Exception):
    """Base exception class for all benchmatrix errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ConfigurationError(BenchmatrixException):
    """Raised when there's an issue with configuration setup or validation."""
    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when a configuration key is present but malformed or contradictory."""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.key = key


class UsageError(BenchmatrixException):
    """Raised when the caller asked for something that cannot be satisfied.

    Usage errors usually come from the command line (a typo'd name, a
    duplicated option) rather than from a broken configuration file.
    """
    pass


class MissingConfigurationError(UsageError):
    """Raised when a user-named entity has no configuration at all."""

    def __init__(self, message: str, entity: Optional[str] = None,
                 name: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.entity = entity
        self.name = name


class DeviceUnavailableError(BenchmatrixException):
    """Raised when a device cannot be reached or prepared for work."""

    def __init__(self, message: str, device_name: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.device_name = device_name


class TrialError(BenchmatrixException):
    """Base class for failures of a single trial attempt."""

    def __init__(self, message: str, experiment: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.experiment = experiment


class TrialTransientError(TrialError):
    """Raised when a worker crashed or failed to start; the attempt may be retried."""
    pass


class TrialPermanentError(TrialError):
    """Raised when a trial failed deterministically and must not be retried."""
    pass


class ProtocolViolationError(TrialPermanentError):
    """Raised when a worker writes something outside the event stream protocol."""

    def __init__(self, message: str, raw_line: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_line = raw_line


class BenchmarkExecutionError(BenchmatrixException):
    """Raised when matrix execution encounters critical errors."""

    def __init__(self, message: str, run_id: Optional[str] = None,
                 current_step: Optional[str] = None, **kwargs):
        super().__init__(message, kwargs)
        self.run_id = run_id
        self.current_step = current_step
