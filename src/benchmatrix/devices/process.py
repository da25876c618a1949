"""
Worker Process Handle

Wraps a launched worker subprocess: line-oriented access to its stdout
event stream, bounded capture of its stderr, and idempotent termination
of its whole process group.
"""

import asyncio
import os
import signal
from collections import deque
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from benchmatrix.core.exceptions import DeviceUnavailableError, ProtocolViolationError, TrialTransientError
from benchmatrix.utils.async_helpers import create_task_with_name
from benchmatrix.utils.logging import get_logger

logger = get_logger(__name__)

# Longest single event line accepted from a worker
STREAM_LIMIT = 1024 * 1024
STDERR_TAIL_LINES = 50


class WorkerProcess:
    """Handle on one running worker process."""

    def __init__(self,
                 process: asyncio.subprocess.Process,
                 label: str,
                 terminate_hook: Optional[Callable[[], Awaitable[None]]] = None,
                 on_exit: Optional[Callable[["WorkerProcess"], None]] = None):
        """
        Initialize the handle.

        Args:
            process: The started subprocess, with piped stdout and stderr
            label: Human readable description used in log messages
            terminate_hook: Extra coroutine run when the worker is terminated
                (remote devices use it to stop the remote side)
            on_exit: Callback invoked once the process is known to be gone
        """
        self._process = process
        self.label = label
        self._terminate_hook = terminate_hook
        self._on_exit = on_exit
        self._stderr_lines: deque = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_task = create_task_with_name(self._drain_stderr(), f"stderr-{process.pid}")
        self._released = False

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def lines(self) -> AsyncIterator[str]:
        """
        Yield decoded stdout lines until end of stream.

        Raises:
            ProtocolViolationError: If a line exceeds the stream limit
        """
        stdout = self._process.stdout
        while True:
            try:
                raw = await stdout.readline()
            except ValueError:
                raise ProtocolViolationError(f"Worker wrote a line longer than {STREAM_LIMIT} bytes")
            if not raw:
                return
            yield raw.decode("utf-8", errors="replace").rstrip("\r\n")

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        returncode = await self._process.wait()
        await self._finish_stderr()
        self._release()
        return returncode

    def stderr_tail(self) -> str:
        """The last lines the worker wrote to stderr."""
        return "\n".join(self._stderr_lines)

    async def terminate(self, grace_seconds: float) -> None:
        """
        Stop the worker if it is still running. Safe to call repeatedly.

        Sends SIGTERM to the worker's process group, then SIGKILL if the
        group has not exited within ``grace_seconds``.
        """
        if self._process.returncode is not None:
            await self._finish_stderr()
            self._release()
            return

        logger.debug(f"Terminating worker {self.label} (pid {self.pid})")
        try:
            if self._terminate_hook is not None:
                try:
                    await asyncio.wait_for(self._terminate_hook(), timeout=grace_seconds)
                except (asyncio.TimeoutError, OSError, DeviceUnavailableError) as e:
                    logger.warning(f"Remote termination of {self.label} failed: {e}")

            self._signal(signal.SIGTERM)
            try:
                await asyncio.wait_for(self._process.wait(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                logger.warning(f"Worker {self.label} ignored SIGTERM for {grace_seconds}s, killing it")
                self._signal(signal.SIGKILL)
                await self._process.wait()
        except asyncio.CancelledError:
            self._signal(signal.SIGKILL)
            raise
        finally:
            if self._process.returncode is not None:
                await self._finish_stderr()
                self._release()

    def _signal(self, signum: int) -> None:
        """Deliver ``signum`` to the worker's process group."""
        if self._process.returncode is not None:
            return
        try:
            if hasattr(os, "killpg"):
                os.killpg(self._process.pid, signum)
            elif signum == signal.SIGTERM:
                self._process.terminate()
            else:
                self._process.kill()
        except (ProcessLookupError, PermissionError):
            pass

    async def _drain_stderr(self) -> None:
        stderr = self._process.stderr
        if stderr is None:
            return
        while True:
            raw = await stderr.readline()
            if not raw:
                return
            self._stderr_lines.append(raw.decode("utf-8", errors="replace").rstrip("\r\n"))

    async def _finish_stderr(self) -> None:
        if self._stderr_task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._stderr_task), timeout=1.0)
        except asyncio.TimeoutError:
            # A grandchild still holds the pipe open
            self._stderr_task.cancel()

    def _release(self) -> None:
        if not self._released:
            self._released = True
            if self._on_exit is not None:
                self._on_exit(self)


async def spawn_worker(argv: List[str],
                       label: str,
                       cwd: Optional[str] = None,
                       env: Optional[dict] = None,
                       terminate_hook: Optional[Callable[[], Awaitable[None]]] = None,
                       on_exit: Optional[Callable[[WorkerProcess], None]] = None) -> WorkerProcess:
    """
    Start ``argv`` in its own session with piped stdout and stderr.

    Raises:
        TrialTransientError: If the process could not be started
    """
    logger.debug(f"Launching worker {label}: {' '.join(argv)}")
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=env,
            limit=STREAM_LIMIT,
            start_new_session=True,
        )
    except OSError as e:
        raise TrialTransientError(f"Failed to start worker {argv[0]}: {e}", experiment=label)

    return WorkerProcess(process, label, terminate_hook=terminate_hook, on_exit=on_exit)
