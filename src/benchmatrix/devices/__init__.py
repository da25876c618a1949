"""
Devices Module

Execution targets that launch worker processes, and the factory selecting
the implementation for a configured device type.
"""

from typing import Dict, Type

from benchmatrix.core.resolver import ConfigResolver
from benchmatrix.core.types import DeviceConfig, DeviceType

from .base import Device
from .local import LocalDevice
from .process import WorkerProcess, spawn_worker
from .remote import RemoteDevice

DEVICE_TYPES: Dict[DeviceType, Type[Device]] = {
    DeviceType.LOCAL: LocalDevice,
    DeviceType.REMOTE: RemoteDevice,
}


def create_device(config: DeviceConfig, resolver: ConfigResolver) -> Device:
    """
    Instantiate the device implementation for ``config.type``.

    Args:
        config: Resolved device configuration
        resolver: Resolver shared by the run

    Returns:
        Device instance, not yet prepared
    """
    return DEVICE_TYPES[config.type](config, resolver)


__all__ = [
    "Device",
    "LocalDevice",
    "RemoteDevice",
    "WorkerProcess",
    "spawn_worker",
    "create_device",
    "DEVICE_TYPES",
]
