"""
Device Base Class

Abstract interface for execution targets that launch worker processes.
"""

from abc import ABC, abstractmethod
from typing import List, Mapping, Optional, Set

from benchmatrix.core.config import RunConfig
from benchmatrix.core.exceptions import InvalidConfigurationError
from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.core.types import DeviceConfig, DeviceType, VmConfig
from benchmatrix.utils.logging import get_logger

from .process import WorkerProcess, spawn_worker

logger = get_logger(__name__)


class Device(ABC):
    """
    An execution target able to launch worker processes.

    Devices are created once per run. ``prepare`` is awaited before the
    first trial and ``close`` after the last one.
    """

    device_type: DeviceType = None

    # Whether several workers may be launched at the same time; devices
    # that cannot handle it get their launches serialized
    concurrent_launch: bool = True

    def __init__(self, config: DeviceConfig, resolver: ConfigResolver):
        """
        Initialize the device.

        Args:
            config: Device configuration
            resolver: Resolver used for global runtime arguments
        """
        self.config = config
        self.resolver = resolver
        self.name = config.name
        self.worker_slots = self._int_option("workerSlots", 1)
        self._live: Set[WorkerProcess] = set()

    @property
    def options(self) -> Mapping:
        return self.config.options

    async def prepare(self) -> None:
        """Make the device ready for work. Local devices need nothing."""

    @abstractmethod
    def default_vm_config(self) -> VmConfig:
        """Runtime variant used when the caller names none."""
        pass

    @abstractmethod
    def executable_for(self, vm_config: VmConfig) -> str:
        """Path of the interpreter executable for ``vm_config`` on this device."""
        pass

    @abstractmethod
    async def new_worker_process(self, vm_config: VmConfig, command: List[str],
                                 context=None) -> WorkerProcess:
        """
        Launch a worker running ``command`` under ``vm_config``.

        Args:
            vm_config: Runtime variant to launch
            command: Arguments following the interpreter executable
            context: ExperimentContext of the trial, if any

        Raises:
            TrialTransientError: If the worker could not be started
            DeviceUnavailableError: If the device itself has become unusable
        """
        pass

    async def close(self, grace_seconds: Optional[float] = None) -> None:
        """Terminate any worker still alive."""
        if grace_seconds is None:
            grace_seconds = RunConfig().terminate_grace_seconds
        leftovers = list(self._live)
        if leftovers:
            logger.warning(f"Device {self.name} terminating {len(leftovers)} leftover workers")
        for process in leftovers:
            await process.terminate(grace_seconds)

    async def _spawn(self, argv: List[str], label: str, cwd: Optional[str] = None,
                     env: Optional[dict] = None, terminate_hook=None) -> WorkerProcess:
        process = await spawn_worker(argv, label, cwd=cwd, env=env,
                                     terminate_hook=terminate_hook, on_exit=self._live.discard)
        self._live.add(process)
        return process

    def _int_option(self, key: str, default: int) -> int:
        raw = self.options.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = int(raw)
        except ValueError:
            raise InvalidConfigurationError(
                f"device.{self.name}.options.{key} must be an integer, got '{raw}'",
                key=f"device.{self.name}.options.{key}"
            )
        if value < 1:
            raise InvalidConfigurationError(
                f"device.{self.name}.options.{key} must be positive, got {value}",
                key=f"device.{self.name}.options.{key}"
            )
        return value

    @staticmethod
    def _label(command: List[str], context=None) -> str:
        if context is not None:
            return context.label
        return " ".join(command[:4])
