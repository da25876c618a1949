"""
Local Device

Runs workers as child processes on the machine running the orchestrator.
"""

import os
import shutil
import sys
from pathlib import Path
from typing import List

from benchmatrix.core.types import DeviceType, VmConfig, ambient_home
from benchmatrix.utils.logging import get_logger

from .base import Device
from .process import WorkerProcess

logger = get_logger(__name__)


class LocalDevice(Device):
    """Device launching workers as local subprocesses."""

    device_type = DeviceType.LOCAL
    concurrent_launch = True

    def default_vm_config(self) -> VmConfig:
        return VmConfig(
            name="default",
            home=ambient_home(),
            args=self.resolver.global_vm_args(),
        )

    def executable_for(self, vm_config: VmConfig) -> str:
        """
        Resolve the interpreter for ``vm_config``.

        The orchestrator's own interpreter is reused when the variant has no
        home, or lives in the ambient home, and names no executable of its
        own. Without a home, a named executable is looked up on PATH.
        """
        own_executable = "executable" in vm_config.options
        if not vm_config.home:
            if not own_executable:
                return sys.executable
            return shutil.which(vm_config.executable_name) or vm_config.executable_name

        home = Path(vm_config.home)
        if not own_executable and _same_path(home, Path(ambient_home())):
            return sys.executable

        bin_dir = "Scripts" if os.name == "nt" else "bin"
        return str(home / bin_dir / vm_config.executable_name)

    async def new_worker_process(self, vm_config: VmConfig, command: List[str],
                                 context=None) -> WorkerProcess:
        argv = [self.executable_for(vm_config), *command]
        env = dict(os.environ)
        env["PYTHONUNBUFFERED"] = "1"
        return await self._spawn(
            argv,
            self._label(command, context),
            cwd=self.options.get("workDir") or None,
            env=env,
        )


def _same_path(left: Path, right: Path) -> bool:
    try:
        return left.resolve() == right.resolve()
    except OSError:
        return left == right
