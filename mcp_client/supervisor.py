"""
Process Supervisor

Start-to-stop lifecycle of one MCP Tool Process per control request.

DESIGN RULES:
- The credential reaches the child through its environment only
- stdout feeds the codec; stderr is diagnostics only
- Exit is logged exactly once per process
- terminate() is idempotent and always ends with the process reaped
"""

import asyncio
import os
import signal
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Set

from mcp_client.codec import (
    CodecEvent,
    DecodeErrorEvent,
    LineCodec,
    MessageEvent,
)
from observability.emitter import SessionLogger
from observability.log_entry import SYSTEM_SESSION_ID, StoreType, utcnow
from observability.sink import SessionLogSink
from schemas.errors import SpawnError, SpawnTimeout, WorkerExited


DEFAULT_WORKER_COMMAND = (sys.executable, "-m", "lifx_mcp")

Launcher = Callable[..., Awaitable[Any]]


class OutputListener(Protocol):
    """Anything that wants to observe a worker's decoded output."""

    def on_event(self, event: CodecEvent) -> None: ...

    def on_exit(self, returncode: Optional[int]) -> None: ...


def describe_exit(returncode: Optional[int]) -> Dict[str, Any]:
    """Split a returncode into exit code and signal name."""
    if returncode is not None and returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return {"code": None, "signal": name}
    return {"code": returncode, "signal": None}


class WorkerHandle:
    """
    One spawned Tool Process.

    Owned by exactly one request. Never reused once terminated.
    """

    def __init__(self, process: Any, session_id: Optional[str] = None):
        self.process = process
        self.pid: Optional[int] = getattr(process, "pid", None)
        self.session_id = session_id or SYSTEM_SESSION_ID
        self.spawned_at = utcnow()
        self.codec = LineCodec()
        self.returncode: Optional[int] = None
        self.terminated = False

        self._listeners: Dict[str, OutputListener] = {}
        self._write_lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._tasks: List["asyncio.Task[Any]"] = []

    def __repr__(self) -> str:
        return f"WorkerHandle(pid={self.pid}, session={self.session_id}, alive={self.alive})"

    @property
    def alive(self) -> bool:
        return not self._closed.is_set() and getattr(self.process, "returncode", None) is None

    # --- Listener table ---

    def subscribe(self, key: str, listener: OutputListener) -> None:
        """Attach a listener under a unique key (one per correlation id)."""
        if key in self._listeners:
            raise ValueError(f"listener already registered for {key}")
        self._listeners[key] = listener

    def unsubscribe(self, key: str) -> bool:
        return self._listeners.pop(key, None) is not None

    def is_subscribed(self, key: str) -> bool:
        return key in self._listeners

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispatch(self, event: CodecEvent) -> None:
        """Deliver one decoded event to every listener."""
        for listener in list(self._listeners.values()):
            listener.on_event(event)

    # --- I/O ---

    async def send(self, data: bytes) -> None:
        """Write one frame to the worker's stdin; frames never interleave."""
        async with self._write_lock:
            if not self.alive:
                raise WorkerExited("MCP server is not running")
            stdin = self.process.stdin
            try:
                stdin.write(data)
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise WorkerExited(f"Failed to write to MCP server: {e}") from e

    async def wait_closed(self) -> Optional[int]:
        """Wait until the process has exited and its output is drained."""
        await self._closed.wait()
        return self.returncode

    def _mark_closed(self, returncode: Optional[int]) -> None:
        self.returncode = returncode
        self._closed.set()
        for listener in list(self._listeners.values()):
            listener.on_exit(returncode)


class ProcessSupervisor:
    """
    Spawns, observes and tears down Tool Processes.

    All process activity is recorded into the mcp store of the log sink,
    tagged with the owning session.
    """

    DEFAULT_SPAWN_TIMEOUT = 30.0
    DEFAULT_KILL_GRACE = 5.0
    # How long the exit watcher waits for the output pumps to drain
    DRAIN_TIMEOUT = 1.0
    READ_CHUNK = 65536
    # Longest stderr text recorded per log entry
    STDERR_LINE_MAX = 8192

    def __init__(
        self,
        log_sink: Optional[SessionLogSink] = None,
        command: Optional[Sequence[str]] = None,
        spawn_timeout: float = DEFAULT_SPAWN_TIMEOUT,
        kill_grace: float = DEFAULT_KILL_GRACE,
        log_level: str = "info",
        extra_env: Optional[Dict[str, str]] = None,
        launcher: Optional[Launcher] = None,
    ):
        """
        Initialize the supervisor.

        Args:
            log_sink: Session log sink (mcp store)
            command: Worker argv; defaults to `python -m lifx_mcp`
            spawn_timeout: Seconds to wait for the OS to confirm start
            kill_grace: Seconds between SIGTERM and SIGKILL
            log_level: LOG_LEVEL passed to the worker
            extra_env: Additional environment for the worker (e.g. LIFX_API_BASE)
            launcher: Process factory, asyncio.create_subprocess_exec by default
        """
        self._log = SessionLogger(__name__, log_sink, StoreType.MCP)
        self._command = list(command or DEFAULT_WORKER_COMMAND)
        self._spawn_timeout = spawn_timeout
        self._kill_grace = kill_grace
        self._log_level = log_level
        self._extra_env = dict(extra_env or {})
        self._launcher = launcher or asyncio.create_subprocess_exec
        self._live: Set[WorkerHandle] = set()

    @property
    def live_count(self) -> int:
        return len(self._live)

    def _build_env(self, credential: str, session_id: str) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(self._extra_env)
        env["LIFX_TOKEN"] = credential
        env["SESSION_ID"] = session_id
        env["LOG_LEVEL"] = self._log_level
        return env

    async def spawn(self, credential: str, session_id: Optional[str] = None) -> WorkerHandle:
        """
        Launch a worker holding the credential.

        Raises:
            SpawnTimeout: The OS did not confirm start in time
            SpawnError: The OS refused to start the worker
        """
        owner = session_id or SYSTEM_SESSION_ID
        env = self._build_env(credential, owner)

        try:
            # On timeout wait_for cancels the launch, which reaps a half-started child
            process = await asyncio.wait_for(
                self._launcher(
                    *self._command,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                ),
                timeout=self._spawn_timeout,
            )
        except asyncio.TimeoutError:
            self._log.error(
                "MCP server spawn timeout",
                session_id=owner,
                timeout_s=self._spawn_timeout,
            )
            raise SpawnTimeout(f"MCP server spawn timeout after {self._spawn_timeout}s")
        except OSError as e:
            self._log.error(
                "MCP server spawn error",
                session_id=owner,
                error=str(e),
            )
            raise SpawnError(f"MCP server failed to start: {e.strerror or e}") from e

        handle = WorkerHandle(process, owner)
        self._attach(handle)
        self._log.debug("MCP server spawned successfully", session_id=owner, pid=handle.pid)
        return handle

    def _attach(self, handle: WorkerHandle) -> None:
        self._live.add(handle)
        stdout_task = asyncio.create_task(self._pump_stdout(handle))
        stderr_task = asyncio.create_task(self._pump_stderr(handle))
        exit_task = asyncio.create_task(self._watch_exit(handle, [stdout_task, stderr_task]))
        handle._tasks.extend([stdout_task, stderr_task, exit_task])

    # --- Observers ---

    async def _pump_stdout(self, handle: WorkerHandle) -> None:
        stream = handle.process.stdout
        while True:
            chunk = await stream.read(self.READ_CHUNK)
            if not chunk:
                break
            for event in handle.codec.feed(chunk):
                self._on_event(handle, event)
        for event in handle.codec.flush():
            self._on_event(handle, event)

    def _on_event(self, handle: WorkerHandle, event: CodecEvent) -> None:
        meta = {"pid": handle.pid, "session_id": handle.session_id}
        if isinstance(event, MessageEvent):
            self._log.info("MCP stdout", output=event.raw, **meta)
        elif isinstance(event, DecodeErrorEvent):
            self._log.warning("MCP stdout decode error", output=event.raw, error=event.error, **meta)
        else:
            self._log.warning("MCP protocol error", output=event.raw, error=event.reason, **meta)
        handle.dispatch(event)

    async def _pump_stderr(self, handle: WorkerHandle) -> None:
        # Chunked reads keep the pipe drained whatever the line length
        stream = handle.process.stderr
        pending = b""
        while True:
            chunk = await stream.read(self.READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            if len(pending) > self.STDERR_LINE_MAX:
                lines.append(pending)
                pending = b""
            for line in lines:
                self._log_stderr(handle, line)
        self._log_stderr(handle, pending)

    def _log_stderr(self, handle: WorkerHandle, line: bytes) -> None:
        text = line[: self.STDERR_LINE_MAX].decode("utf-8", errors="replace").strip()
        if text:
            self._log.warning("MCP stderr", error=text, pid=handle.pid, session_id=handle.session_id)

    async def _watch_exit(self, handle: WorkerHandle, pumps: List["asyncio.Task[Any]"]) -> None:
        returncode: Optional[int] = None
        try:
            returncode = await handle.process.wait()
            await asyncio.wait(pumps, timeout=self.DRAIN_TIMEOUT)
        finally:
            self._live.discard(handle)
            exit_info = describe_exit(returncode)
            message = f"MCP server exited with code {exit_info['code']}, signal {exit_info['signal']}"
            meta = dict(exit_info, pid=handle.pid, session_id=handle.session_id)
            if returncode == 0:
                self._log.debug(message, **meta)
            else:
                self._log.warning(message, **meta)
            handle._mark_closed(returncode)

    # --- Teardown ---

    async def terminate(self, handle: Optional[WorkerHandle]) -> None:
        """
        Stop a worker: SIGTERM, then SIGKILL after the grace period.

        Safe to call on None, on an exited worker, or twice.
        """
        if handle is None or handle.terminated:
            return
        handle.terminated = True

        process = handle.process
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            else:
                self._log.debug("MCP process cleanup initiated", pid=handle.pid, session_id=handle.session_id)

            try:
                await asyncio.wait_for(asyncio.shield(handle.wait_closed()), timeout=self._kill_grace)
            except asyncio.TimeoutError:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                self._log.warning("Force killed MCP process", pid=handle.pid, session_id=handle.session_id)

        try:
            await asyncio.wait_for(asyncio.shield(handle.wait_closed()), timeout=self._kill_grace + self.DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            # Exit watcher is stuck; cancelling it still logs the exit and closes the handle
            self._log.error("MCP process did not exit after kill", pid=handle.pid, session_id=handle.session_id)
            for task in handle._tasks:
                task.cancel()
            await asyncio.gather(*handle._tasks, return_exceptions=True)
        for task in handle._tasks:
            if not task.done():
                task.cancel()
        stdin = getattr(process, "stdin", None)
        if stdin is not None and not stdin.is_closing():
            stdin.close()

    async def terminate_all(self) -> int:
        """Tear down every live worker (server shutdown). Returns how many."""
        handles = list(self._live)
        if handles:
            self._log.info("Cleaning up all active MCP processes", count=len(handles))
        await asyncio.gather(*(self.terminate(h) for h in handles), return_exceptions=True)
        return len(handles)
