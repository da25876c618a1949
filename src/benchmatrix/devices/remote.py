"""
Remote Device

Runs workers on another host through a command transport (ssh by default).
The worker's event stream arrives on the transport's stdout.
"""

import asyncio
import posixpath
import shlex
import uuid
from typing import List, Tuple

from benchmatrix.core.exceptions import DeviceUnavailableError, InvalidConfigurationError
from benchmatrix.core.tokenize import tokenize_args
from benchmatrix.core.types import DeviceType, VmConfig
from benchmatrix.utils.logging import get_logger

from .base import Device
from .process import WorkerProcess

logger = get_logger(__name__)

DEFAULT_WORK_DIR = "/tmp/benchmatrix"
DEFAULT_CONNECT_TIMEOUT = 30.0


class RemoteDevice(Device):
    """
    Device launching workers on a remote host.

    Options:
        host: Remote host, as understood by the transport (required)
        transport: Command used to run remote commands (default ``ssh``)
        transportArgs: Extra arguments for the transport
        copyCommand: Command used to push artifacts (default ``scp``)
        copyArgs: Extra arguments for the copy command
        workDir: Remote working directory
        artifacts: Local paths pushed into the working directory once
        vmHome: Interpreter home on the remote host for the default variant
        connectTimeout: Seconds allowed for connection and artifact commands
    """

    device_type = DeviceType.REMOTE
    concurrent_launch = False

    def __init__(self, config, resolver):
        super().__init__(config, resolver)
        self.host = self.options.get("host", "").strip()
        if not self.host:
            raise InvalidConfigurationError(
                f"Remote device '{self.name}' needs a host (device.{self.name}.options.host)",
                key=f"device.{self.name}.options.host"
            )
        self.transport = self.options.get("transport") or "ssh"
        self.transport_args = tokenize_args(self.options.get("transportArgs", ""))
        self.copy_command = self.options.get("copyCommand") or "scp"
        self.copy_args = tokenize_args(self.options.get("copyArgs", ""))
        self.work_dir = self.options.get("workDir") or DEFAULT_WORK_DIR
        self.artifacts = tokenize_args(self.options.get("artifacts", ""))
        self.connect_timeout = self._float_option("connectTimeout", DEFAULT_CONNECT_TIMEOUT)
        self._artifacts_pushed = False
        self._artifact_lock = asyncio.Lock()

    async def prepare(self) -> None:
        """
        Check the connection and create the remote working directory.

        Raises:
            DeviceUnavailableError: If the host cannot be reached
        """
        logger.info(f"Connecting to remote device {self.name} ({self.host})")
        returncode, output = await self._run_local(self.transport_argv("true"))
        if returncode != 0:
            raise DeviceUnavailableError(
                f"Cannot reach {self.host} with {self.transport} (exit code {returncode}): {output.strip()}",
                device_name=self.name
            )

        returncode, output = await self._run_local(
            self.transport_argv(f"mkdir -p {shlex.quote(self.work_dir)}")
        )
        if returncode != 0:
            raise DeviceUnavailableError(
                f"Cannot create {self.work_dir} on {self.host}: {output.strip()}",
                device_name=self.name
            )

    def default_vm_config(self) -> VmConfig:
        return VmConfig(
            name="default",
            home=self.options.get("vmHome") or None,
            args=self.resolver.global_vm_args(),
        )

    def executable_for(self, vm_config: VmConfig) -> str:
        """Interpreter path on the remote host; variants without a home use ``vmHome``."""
        home = vm_config.home or self.options.get("vmHome")
        if not home:
            return vm_config.executable_name
        return posixpath.join(home, "bin", vm_config.executable_name)

    def transport_argv(self, remote_command: str) -> List[str]:
        return [self.transport, *self.transport_args, self.host, remote_command]

    async def new_worker_process(self, vm_config: VmConfig, command: List[str],
                                 context=None) -> WorkerProcess:
        await self._push_artifacts()

        pid_file = posixpath.join(self.work_dir, f"worker-{uuid.uuid4().hex}.pid")
        worker = " ".join(shlex.quote(arg) for arg in [self.executable_for(vm_config), *command])
        remote_command = (
            f"cd {shlex.quote(self.work_dir)} && echo $$ > {shlex.quote(pid_file)} && exec {worker}"
        )

        async def stop_remote() -> None:
            await self._run_local(self.transport_argv(
                f"kill -TERM $(cat {shlex.quote(pid_file)}) 2>/dev/null; rm -f {shlex.quote(pid_file)}"
            ))

        return await self._spawn(
            self.transport_argv(remote_command),
            self._label(command, context),
            terminate_hook=stop_remote,
        )

    async def _push_artifacts(self) -> None:
        """Copy configured artifacts to the host, once per device."""
        async with self._artifact_lock:
            if self._artifacts_pushed or not self.artifacts:
                self._artifacts_pushed = True
                return

            destination = f"{self.host}:{self.work_dir}/"
            argv = [self.copy_command, *self.copy_args, "-r", *self.artifacts, destination]
            logger.info(f"Pushing {len(self.artifacts)} artifacts to {destination}")
            returncode, output = await self._run_local(argv)
            if returncode != 0:
                raise DeviceUnavailableError(
                    f"Failed to push artifacts to {destination} (exit code {returncode}): {output.strip()}",
                    device_name=self.name
                )
            self._artifacts_pushed = True

    async def _run_local(self, argv: List[str]) -> Tuple[int, str]:
        """
        Run a short-lived helper command and collect its output.

        Raises:
            DeviceUnavailableError: If the command cannot start or times out
        """
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise DeviceUnavailableError(f"Cannot run {argv[0]}: {e}", device_name=self.name)

        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise DeviceUnavailableError(
                f"{argv[0]} did not finish within {self.connect_timeout}s",
                device_name=self.name
            )
        return process.returncode, output.decode("utf-8", errors="replace")

    def _float_option(self, key: str, default: float) -> float:
        raw = self.options.get(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError:
            raise InvalidConfigurationError(
                f"device.{self.name}.options.{key} must be a number, got '{raw}'",
                key=f"device.{self.name}.options.{key}"
            )
