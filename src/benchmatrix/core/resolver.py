"""
Configuration Resolver

Turns sub-views of the configuration store into typed configuration
objects for devices, runtime variants, instruments and result processors.
Typed objects are derived lazily and cached per name.
"""

import logging
import os
from typing import Dict, List, Optional, Set, Type

from .config import ConfigStore, LoggingConfig, RunConfig
from .exceptions import InvalidConfigurationError, MissingConfigurationError
from .tokenize import tokenize_args
from .types import (
    DeviceConfig,
    DeviceType,
    InstrumentConfig,
    ResultProcessorConfig,
    VmConfig,
)
from benchmatrix.utils.loading import class_identifier, load_class

DEFAULT_DEVICE_NAME = "local"


class ConfigResolver:
    """Resolves typed configuration objects from a ConfigStore."""

    def __init__(self, store: ConfigStore):
        """
        Initialize the resolver.

        Args:
            store: Immutable configuration store shared by the whole run
        """
        self.store = store
        self._device_configs: Dict[str, DeviceConfig] = {}
        self._vm_configs: Dict[str, VmConfig] = {}
        self._instrument_configs: Dict[str, InstrumentConfig] = {}

    # ===== DEVICES =====

    def get_device_config(self, selected_name: Optional[str] = None) -> DeviceConfig:
        """
        Resolve the configuration of the selected device.

        Args:
            selected_name: Device name chosen by the caller; when omitted
                the ``run.device`` setting is used, or ``local`` if unset

        Returns:
            DeviceConfig for the device

        Raises:
            InvalidConfigurationError: If the device has no ``type`` key or
                the type is not a known device kind
        """
        name = selected_name or self.store.get("run.device") or DEFAULT_DEVICE_NAME
        if name in self._device_configs:
            return self._device_configs[name]

        device = self.store.subgroup(f"device.{name}")
        device_type = device.get("type")
        if device_type is None:
            raise InvalidConfigurationError(
                f"Missing device type for device '{name}' (expected key device.{name}.type)",
                key=f"device.{name}.type"
            )

        config = DeviceConfig(
            name=name,
            type=DeviceType.of(device_type),
            options=device.subgroup("options"),
        )
        self._device_configs[name] = config
        return config

    def get_configured_devices(self) -> Set[str]:
        """Names of every device with a ``type`` key."""
        return {
            name for name in self.store.child_names("device")
            if f"device.{name}.type" in self.store
        }

    # ===== RUNTIME VARIANTS =====

    def global_vm_args(self) -> List[str]:
        """Arguments from ``vm.args`` applied to every runtime variant."""
        return tokenize_args(self.store.get("vm.args", ""))

    def get_vm_config(self, name: str) -> VmConfig:
        """
        Resolve a runtime variant by name.

        Global ``vm.args`` come before ``vm.<name>.args``. The home directory
        is ``vm.<name>.home`` if set, else ``<vm.baseDirectory>/<name>`` if a
        base directory is configured. Otherwise it is left unset and the
        device decides which interpreter to run.

        Args:
            name: Runtime variant name

        Returns:
            VmConfig with merged arguments
        """
        if name in self._vm_configs:
            return self._vm_configs[name]

        vm = self.store.subgroup(f"vm.{name}")
        args = self.global_vm_args() + tokenize_args(vm.get("args", ""))

        home = vm.get("home") or None
        if not home:
            base_directory = self.store.get("vm.baseDirectory")
            if base_directory:
                home = os.path.join(base_directory, name)

        config = VmConfig(name=name, home=home, args=args, options=vm.subgroup("options"))
        self._vm_configs[name] = config
        return config

    # ===== INSTRUMENTS =====

    def get_instrument_config(self, name: str) -> InstrumentConfig:
        """
        Resolve an instrument by name.

        Raises:
            MissingConfigurationError: If ``instrument.<name>.class`` is not
                set; this usually means a mistyped instrument name
        """
        if name in self._instrument_configs:
            return self._instrument_configs[name]

        instrument = self.store.subgroup(f"instrument.{name}")
        class_name = instrument.get("class")
        if not class_name:
            raise MissingConfigurationError(
                f"Instrument '{name}' is not configured (expected key instrument.{name}.class)",
                entity="instrument",
                name=name
            )

        config = InstrumentConfig(class_name=class_name, options=instrument.subgroup("options"))
        self._instrument_configs[name] = config
        return config

    def get_configured_instruments(self) -> Set[str]:
        """Names of every instrument with a ``class`` key; options alone do not count."""
        return {
            name for name in self.store.child_names("instrument")
            if self.store.get(f"instrument.{name}.class")
        }

    # ===== RESULT PROCESSORS =====

    def _result_processor_names(self) -> List[str]:
        return sorted(
            name for name in self.store.child_names("results")
            if self.store.get(f"results.{name}.class")
        )

    def get_configured_result_processors(self) -> Set[Type]:
        """
        Import every configured result processor class.

        Raises:
            InvalidConfigurationError: If a class cannot be imported or is
                not a ResultProcessor
        """
        from benchmatrix.results.base import ResultProcessor

        classes = set()
        for name in self._result_processor_names():
            key = f"results.{name}.class"
            cls = load_class(self.store[key], key=key)
            if not issubclass(cls, ResultProcessor):
                raise InvalidConfigurationError(f"{self.store[key]} is not a ResultProcessor", key=key)
            classes.add(cls)
        return classes

    def get_result_processor_config(self, processor_class: Type) -> ResultProcessorConfig:
        """
        Find the configuration whose class key names ``processor_class``.

        Raises:
            MissingConfigurationError: If no ``results.<name>.class`` names it
        """
        wanted = class_identifier(processor_class)
        for name in self._result_processor_names():
            results = self.store.subgroup(f"results.{name}")
            if results["class"].strip().replace(":", ".") == wanted:
                return ResultProcessorConfig(class_name=results["class"], options=results.subgroup("options"))

        raise MissingConfigurationError(
            f"No result processor configured for class {wanted}",
            entity="results",
            name=wanted
        )

    # ===== ENGINE SETTINGS =====

    def get_run_config(self) -> RunConfig:
        """Resolve the ``run.*`` settings, applying defaults for absent keys."""
        defaults = RunConfig()
        return RunConfig(
            timeout_seconds=self._positive_float("run.timeout", defaults.timeout_seconds),
            max_retries=self._non_negative_int("run.maxRetries", defaults.max_retries),
            max_parallel=self._positive_int("run.maxParallel", defaults.max_parallel),
            worker_module=self.store.get("run.workerModule") or defaults.worker_module,
            terminate_grace_seconds=self._positive_float("run.terminateGrace", defaults.terminate_grace_seconds),
        )

    def get_logging_config(self) -> LoggingConfig:
        """Resolve the ``logging.*`` settings, applying defaults for absent keys."""
        defaults = LoggingConfig()
        level = self._log_level("logging.level", defaults.level)
        console_level = self._log_level("logging.consoleLevel", defaults.console_level)
        log_file = self.store.get("logging.file", defaults.file)
        return LoggingConfig(
            level=level,
            console_level=console_level,
            format=self.store.get("logging.format") or defaults.format,
            file=log_file or None,
            max_size=self.store.get("logging.maxSize") or defaults.max_size,
            backup_count=self._non_negative_int("logging.backupCount", defaults.backup_count),
            json=self.store.get("logging.json", "false").strip().lower() in ("true", "yes", "1"),
        )

    def _log_level(self, key: str, default: str) -> str:
        value = (self.store.get(key) or default).strip().upper()
        if not isinstance(logging.getLevelName(value), int):
            raise InvalidConfigurationError(f"Unknown log level '{value}' for {key}", key=key)
        return value

    def _positive_int(self, key: str, default: int) -> int:
        value = self._non_negative_int(key, default)
        if value == 0:
            raise InvalidConfigurationError(f"{key} must be a positive integer", key=key)
        return value

    def _non_negative_int(self, key: str, default: int) -> int:
        raw = self.store.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise InvalidConfigurationError(f"{key} must be an integer, got '{raw}'", key=key)
        if value < 0:
            raise InvalidConfigurationError(f"{key} must not be negative, got {value}", key=key)
        return value

    def _positive_float(self, key: str, default: float) -> float:
        raw = self.store.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = float(raw)
        except ValueError:
            raise InvalidConfigurationError(f"{key} must be a number, got '{raw}'", key=key)
        if value <= 0:
            raise InvalidConfigurationError(f"{key} must be positive, got {value}", key=key)
        return value
