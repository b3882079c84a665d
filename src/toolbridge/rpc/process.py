"""Child process supervision for stdio tool servers.

ProcessSupervisor owns one server process: spawning it with piped
standard streams, pumping stdout and stderr lines, writing request lines
to stdin, detecting unexpected exit, and terminating the whole process
tree on stop.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

import psutil

from toolbridge.observability import get_logger
from toolbridge.rpc.errors import (
    ProcessExitedError,
    ProcessStoppedError,
    RpcError,
    ServerUnavailableError,
)

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from toolbridge.config import ServerConfig

# Maximum length of one stdout line (one JSON-RPC message)
STREAM_LIMIT = 16 * 1024 * 1024

# Seconds to wait for children that survive their parent's termination
CHILD_KILL_TIMEOUT = 1.0

EXIT_MESSAGE = "MCP server process exited unexpectedly."
STOPPED_MESSAGE = "MCP server process was stopped."

LineHandler = Callable[[str], None]
ExitHandler = Callable[[RpcError], None]


class ServerProcessState(Enum):
    """Lifecycle states of a supervised server process."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CRASHED = "crashed"


class ProcessSupervisor:
    """Own one tool server process and its standard streams.

    State transitions made by ``start`` and ``stop`` are serialized by a
    lock. Crash detection only records the new state and notifies
    ``on_exit``; it never waits for that lock, so pending requests fail as
    soon as the exit is observed.

    Attributes:
        config: Server command line and RPC timing.
        on_stdout_line: Called with every non-blank stdout line.
        on_exit: Called with the error pending requests must fail with,
            when the process is stopped or exits on its own.
    """

    def __init__(
        self,
        config: ServerConfig,
        on_stdout_line: LineHandler | None = None,
        on_exit: ExitHandler | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        if not config.command:
            raise ValueError("server command must not be empty")
        self.config = config
        self.on_stdout_line = on_stdout_line
        self.on_exit = on_exit
        self._log = (logger or get_logger(__name__)).bind(server=config.name)
        self._lock = asyncio.Lock()
        self._state = ServerProcessState.NOT_STARTED
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def state(self) -> ServerProcessState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def is_running(self) -> bool:
        """Whether the process is up and accepting requests."""
        return (
            self._state is ServerProcessState.RUNNING
            and self._process is not None
            and self._process.returncode is None
        )

    async def start(self) -> bool:
        """Spawn the server and wait for it to settle.

        A no-op success when already running. Failures are logged, never
        raised.

        Returns:
            True if the process is running after the startup delay.
        """
        async with self._lock:
            if self.is_running:
                return True
            if self._process is not None:
                # Leftovers of a crashed run.
                await self._release()

            self._state = ServerProcessState.STARTING
            command = [self.config.command, *self.config.args]
            self._log.info("server_starting", command=command)

            env = {**os.environ, **self.config.env} if self.config.env else None
            try:
                process = await asyncio.create_subprocess_exec(
                    *command,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.config.cwd,
                    env=env,
                    limit=STREAM_LIMIT,
                )
            except (OSError, ValueError) as e:
                self._log.error("server_spawn_failed", command=command, error=str(e))
                self._state = ServerProcessState.CRASHED
                return False

            self._process = process
            if process.stdout is None or process.stderr is None:
                self._log.error("server_streams_unavailable")
                await self._release()
                self._state = ServerProcessState.CRASHED
                return False
            self._tasks = [
                asyncio.create_task(self._pump_stdout(process.stdout)),
                asyncio.create_task(self._pump_stderr(process.stderr)),
                asyncio.create_task(self._watch(process)),
            ]

            await asyncio.sleep(self.config.rpc.startup_delay)

            if process.returncode is not None:
                self._log.error("server_exited_during_startup", returncode=process.returncode)
                await self._release()
                self._state = ServerProcessState.CRASHED
                return False

            self._state = ServerProcessState.RUNNING
            self._log.info("server_started", pid=process.pid)
            return True

    async def stop(self) -> None:
        """Stop the server. Safe to call repeatedly and in any state."""
        async with self._lock:
            if self._process is None:
                if self._state is not ServerProcessState.NOT_STARTED:
                    self._state = ServerProcessState.STOPPED
                return

            self._state = ServerProcessState.STOPPING
            self._notify_exit(ProcessStoppedError(STOPPED_MESSAGE))
            await self._release()
            self._state = ServerProcessState.STOPPED
            self._log.info("server_stopped")

    async def write_line(self, line: str) -> None:
        """Write one message line to the server's stdin.

        Raises:
            ServerUnavailableError: If the process is not running or its
                stdin is closed.
        """
        process = self._process
        if not self.is_running or process is None or process.stdin is None:
            raise ServerUnavailableError("MCP server is not running")
        if not line.endswith("\n"):
            line += "\n"
        try:
            process.stdin.write(line.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ServerUnavailableError(f"Could not write to MCP server: {e}") from e

    async def _pump_stdout(self, stream: asyncio.StreamReader) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError as e:
                self._log.error("server_stdout_line_too_long", error=str(e))
                return
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line.strip():
                continue
            if self.on_stdout_line is None:
                self._log.debug("server_stdout", line=line)
                continue
            try:
                self.on_stdout_line(line)
            except Exception:
                self._log.exception("server_stdout_handler_failed", line=line[:200])

    async def _pump_stderr(self, stream: asyncio.StreamReader) -> None:
        markers = self.config.rpc.info_markers
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            if any(marker in line for marker in markers):
                self._log.info("server_stderr", line=line)
            else:
                self._log.warning("server_stderr", line=line)

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        if process is not self._process:
            return
        if self._state in (
            ServerProcessState.STOPPING,
            ServerProcessState.STOPPED,
            ServerProcessState.STARTING,
        ):
            # stop() and start() handle exits they cause or observe.
            return
        self._log.warning("server_exited_unexpectedly", returncode=returncode)
        self._state = ServerProcessState.CRASHED
        self._notify_exit(ProcessExitedError(EXIT_MESSAGE))

    def _notify_exit(self, error: RpcError) -> None:
        if self.on_exit is not None:
            self.on_exit(error)

    async def _release(self) -> None:
        """Close stdin, terminate the process tree and reap the pump tasks."""
        process = self._process
        if process is None:
            return

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
            with contextlib.suppress(BrokenPipeError, ConnectionResetError):
                await process.stdin.wait_closed()

        if process.returncode is None:
            await self._terminate_tree(process)

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
        await asyncio.gather(
            *(t for t in self._tasks if t is not current), return_exceptions=True
        )
        self._tasks = []
        self._process = None

    async def _terminate_tree(self, process: asyncio.subprocess.Process) -> None:
        try:
            children = psutil.Process(process.pid).children(recursive=True)
        except psutil.Error:
            children = []

        for child in children:
            with contextlib.suppress(psutil.Error):
                child.terminate()
        with contextlib.suppress(ProcessLookupError):
            process.terminate()

        try:
            await asyncio.wait_for(process.wait(), timeout=self.config.rpc.stop_timeout)
        except TimeoutError:
            self._log.warning("server_terminate_timeout", timeout=self.config.rpc.stop_timeout)
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(process.wait(), timeout=CHILD_KILL_TIMEOUT)

        if children:
            _, alive = await asyncio.to_thread(
                psutil.wait_procs, children, timeout=CHILD_KILL_TIMEOUT
            )
            for child in alive:
                with contextlib.suppress(psutil.Error):
                    child.kill()
