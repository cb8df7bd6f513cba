"""Low-level owner of one claude CLI subprocess.

``Launcher`` starts the CLI, hands back parsed stdout events one at a time
and supervises the process lifecycle (``NotStarted -> Running -> Exited``)::

    async with Launcher() as launcher:
        await launcher.start("Explain recursion", LaunchOptions(model="sonnet"))
        while (msg := await launcher.read_message()) is not None:
            print(extract_text(msg))
        await launcher.wait()

For a push-based, multi-consumer API see ``claudestream.session.Session``.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
import threading
import time
from collections import deque
from contextlib import AsyncExitStack
from pathlib import Path
from types import TracebackType

import anyio
import msgspec
from anyio.abc import ByteReceiveStream, Process, TaskGroup

from .errors import (
    AlreadyStartedError,
    CLINotFoundError,
    ExitError,
    LineTooLongError,
    NotStartedError,
    ParseError,
    StartError,
)
from .extract import extract_text, get_tool_call
from .hooks import (
    Hooks,
    invoke_error,
    invoke_exit,
    invoke_message,
    invoke_metrics,
    invoke_start,
    invoke_text,
    invoke_tool_call,
)
from .logging import get_logger, log_pipeline
from .metrics import metrics_from_message
from .options import LaunchOptions, build_args, build_env, mcp_config_payload
from .schemas.stream import ResultMessage, StreamMessage, message_type, parse_stream_line
from .settings import get_settings
from .utils.streams import LineReader, drain_stderr
from .utils.subprocess import (
    interrupt_process,
    kill_process,
    shutdown_process,
    spawn_process,
)

logger = get_logger(__name__)

STDERR_TAIL_LINES = 200
STDERR_FLUSH_SECONDS = 1.0


def cli_available(binary: str | None = None) -> bool:
    return shutil.which(binary or get_settings().binary) is not None


async def cli_version(binary: str | None = None) -> str:
    name = binary or get_settings().binary
    path = shutil.which(name)
    if path is None:
        raise CLINotFoundError(name)
    result = await anyio.run_process([path, "--version"])
    return result.stdout.decode("utf-8", errors="replace").strip()


class Launcher:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stack: AsyncExitStack | None = None
        self._tg: TaskGroup | None = None
        self._proc: Process | None = None
        self._reader: LineReader | None = None
        self._hooks: Hooks | None = None
        self._temp_files: list[Path] = []
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        self._stderr_lines = 0
        self._stderr_scope: anyio.CancelScope | None = None
        self._stderr_done: anyio.Event | None = None
        self._done: anyio.Event | None = None
        self._start_time = 0.0
        self._deadline: float | None = None
        self._timed_out = False
        self._starting = False
        self._started = False
        self._finishing = False
        self._exit_code: int | None = None
        self._exit_error: ExitError | None = None
        self._line_seq = 0

    async def __aenter__(self) -> Launcher:
        self._ensure_events()
        stack = AsyncExitStack()
        await stack.__aenter__()
        try:
            self._tg = await stack.enter_async_context(anyio.create_task_group())
            stack.push_async_callback(self.aclose)
        except BaseException:
            await stack.__aexit__(None, None, None)
            raise
        self._stack = stack
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool | None:
        stack, self._stack = self._stack, None
        self._tg = None
        if stack is None:
            return None
        return await stack.__aexit__(exc_type, exc, tb)

    def _ensure_events(self) -> None:
        if self._done is None:
            self._done = anyio.Event()
        if self._stderr_done is None:
            self._stderr_done = anyio.Event()

    @property
    def done(self) -> anyio.Event:
        """Set exactly once, when ``wait`` has completed."""
        self._ensure_events()
        assert self._done is not None
        return self._done

    @property
    def running(self) -> bool:
        with self._lock:
            if not self._started or self._proc is None:
                return False
            return not (self._done is not None and self._done.is_set())

    @property
    def pid(self) -> int:
        with self._lock:
            if self._proc is None:
                raise NotStartedError()
            return self._proc.pid

    @property
    def exit_code(self) -> int | None:
        with self._lock:
            return self._exit_code

    @property
    def stderr_text(self) -> str:
        """The last ``STDERR_TAIL_LINES`` lines of stderr.

        When earlier lines were discarded the text starts with a
        ``[N earlier stderr lines truncated]`` marker.
        """
        with self._lock:
            tail = "\n".join(self._stderr_tail).strip()
            dropped = self._stderr_lines - len(self._stderr_tail)
        if dropped > 0:
            return f"[{dropped} earlier stderr lines truncated]\n{tail}"
        return tail

    async def start(self, prompt: str, options: LaunchOptions | None = None) -> None:
        """Spawn the CLI with ``prompt`` as the final positional argument.

        Raises ``AlreadyStartedError`` on a second call, ``CLINotFoundError``
        when the binary is not on ``PATH`` and ``StartError`` when the
        arguments, pipes or process cannot be set up.
        """
        options = options or LaunchOptions()
        with self._lock:
            if self._started or self._starting:
                raise AlreadyStartedError()
            if self._tg is None:
                raise RuntimeError("use 'async with Launcher()' before calling start()")
            self._starting = True
        try:
            await self._start(prompt, options)
        finally:
            with self._lock:
                self._starting = False

    async def _start(self, prompt: str, options: LaunchOptions) -> None:
        binary = shutil.which(options.binary)
        if binary is None:
            logger.warning("launcher.binary.missing", binary=options.binary)
            raise CLINotFoundError(options.binary)

        mcp_config_file: str | None = None
        if options.mcp_servers:
            try:
                mcp_config_file = str(self._write_temp_config(options))
            except (OSError, msgspec.EncodeError) as exc:
                self._cleanup_temp_files()
                raise StartError(exc) from exc

        try:
            args = build_args(prompt, options, mcp_config_file)
        except (ValueError, TypeError, msgspec.EncodeError) as exc:
            self._cleanup_temp_files()
            raise StartError(exc) from exc

        cmd = [binary, *args]
        env = build_env(options)
        self._ensure_events()
        start_time = time.monotonic()
        try:
            proc = await spawn_process(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                cwd=options.work_dir,
            )
        except OSError as exc:
            self._cleanup_temp_files()
            logger.warning("subprocess.spawn.failed", cmd=cmd[0], error=str(exc))
            raise StartError(exc) from exc

        if proc.stdout is None or proc.stderr is None:
            kill_process(proc)
            self._cleanup_temp_files()
            raise StartError(RuntimeError("claude failed to open subprocess pipes"))

        with self._lock:
            self._proc = proc
            self._hooks = options.hooks
            self._start_time = start_time
            self._reader = LineReader(proc.stdout, max_bytes=options.max_line_bytes)
            if options.timeout is not None and options.timeout > 0:
                self._deadline = anyio.current_time() + options.timeout
            self._started = True

        logger.info(
            "subprocess.spawn",
            cmd=cmd[0],
            args=args[:-1],
            prompt_len=len(prompt),
            pid=proc.pid,
            cwd=options.work_dir,
            timeout=options.timeout,
        )
        invoke_start(self._hooks, proc.pid)

        assert self._tg is not None
        self._tg.start_soon(self._drain_stderr, proc.stderr)

    def _write_temp_config(self, options: LaunchOptions) -> Path:
        payload = mcp_config_payload(options.mcp_servers)
        fd, name = tempfile.mkstemp(prefix="claude-mcp-", suffix=".json")
        path = Path(name)
        with self._lock:
            self._temp_files.append(path)
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
        os.chmod(path, 0o600)
        return path

    def _cleanup_temp_files(self) -> None:
        with self._lock:
            paths, self._temp_files = self._temp_files, []
        for path in paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("launcher.tempfile.cleanup_failed", path=str(path), error=str(exc))

    async def _drain_stderr(self, stream: ByteReceiveStream) -> None:
        assert self._stderr_done is not None
        try:
            with anyio.CancelScope() as scope:
                self._stderr_scope = scope
                lines = await drain_stderr(
                    stream, self._stderr_tail, logger=logger, tag="claude"
                )
            with self._lock:
                self._stderr_lines = lines
        except anyio.ClosedResourceError:
            log_pipeline(logger, "subprocess.stderr.closed", pid=self.pid)
        finally:
            self._stderr_done.set()

    async def read_message(self) -> StreamMessage | None:
        """Return the next event from stdout, or ``None`` at end of stream.

        Blank lines are skipped. A malformed line raises ``ParseError``
        (and fires ``on_error``); the caller may keep reading afterwards.
        """
        reader = self._reader
        if reader is None:
            raise NotStartedError()
        while True:
            try:
                raw = await self._readline(reader)
            except LineTooLongError as exc:
                logger.warning("jsonl.line_too_long", pid=self.pid, limit=exc.limit)
                invoke_error(self._hooks, exc)
                raise
            if raw is None:
                log_pipeline(logger, "jsonl.eof", pid=self.pid, lines=self._line_seq)
                return None
            line = raw.strip()
            if not line:
                continue
            self._line_seq += 1
            try:
                msg = parse_stream_line(line)
            except ParseError as exc:
                log_pipeline(
                    logger,
                    "jsonl.parse.error",
                    pid=self.pid,
                    jsonl_seq=self._line_seq,
                    error=str(exc.cause),
                )
                invoke_error(self._hooks, exc)
                raise
            log_pipeline(
                logger,
                "jsonl.message",
                pid=self.pid,
                jsonl_seq=self._line_seq,
                type=message_type(msg),
            )
            self._dispatch_hooks(msg)
            return msg

    async def _readline(self, reader: LineReader) -> bytes | None:
        if self._deadline is None or self._timed_out:
            return await reader.readline()
        with anyio.move_on_at(self._deadline):
            return await reader.readline()
        self._expire()
        return await reader.readline()

    def _dispatch_hooks(self, msg: StreamMessage) -> None:
        hooks = self._hooks
        if hooks is None:
            return
        invoke_message(hooks, msg)
        text = extract_text(msg)
        if text:
            invoke_text(hooks, text)
        name, tool_input = get_tool_call(msg)
        if name:
            invoke_tool_call(hooks, name, tool_input)
        if isinstance(msg, ResultMessage):
            invoke_metrics(hooks, metrics_from_message(msg))

    def _expire(self) -> None:
        if self._timed_out:
            return
        self._timed_out = True
        proc = self._proc
        if proc is None:
            return
        logger.warning("subprocess.timeout", pid=proc.pid)
        kill_process(proc)

    async def wait(self) -> None:
        """Block until the process exits.

        Safe to call more than once: later calls return the same outcome.
        Raises ``ExitError`` when the exit code is non-zero.
        """
        if self._proc is None:
            raise NotStartedError()
        await self._finish()
        if self._exit_error is not None:
            raise self._exit_error

    async def _finish(self) -> None:
        proc = self._proc
        assert proc is not None and self._done is not None
        if self._finishing:
            await self._done.wait()
            return
        self._finishing = True
        try:
            code = await self._wait_process(proc)
            assert self._stderr_done is not None
            with anyio.move_on_after(STDERR_FLUSH_SECONDS):
                await self._stderr_done.wait()
        except BaseException:
            self._finishing = False
            raise

        self._cleanup_temp_files()
        duration = time.monotonic() - self._start_time
        stderr = self.stderr_text
        with self._lock:
            self._exit_code = code
            if code != 0:
                self._exit_error = ExitError(code, stderr)
        self._done.set()

        logger.info(
            "subprocess.exit",
            pid=proc.pid,
            rc=code,
            duration=round(duration, 3),
            timed_out=self._timed_out,
        )
        invoke_exit(self._hooks, code, duration)

    async def _wait_process(self, proc: Process) -> int:
        if self._deadline is not None and not self._timed_out:
            with anyio.move_on_at(self._deadline):
                return await proc.wait()
            self._expire()
        return await proc.wait()

    def interrupt(self) -> None:
        """Send SIGINT (Ctrl-C) and return; call ``wait`` afterwards."""
        proc = self._proc
        if proc is None:
            raise NotStartedError()
        logger.info("subprocess.interrupt", pid=proc.pid)
        interrupt_process(proc)

    def kill(self) -> None:
        """Send SIGKILL and return; call ``wait`` afterwards."""
        proc = self._proc
        if proc is None:
            raise NotStartedError()
        logger.info("subprocess.kill", pid=proc.pid)
        kill_process(proc)

    async def shutdown(self, *, grace: float | None = None) -> None:
        """SIGTERM, then SIGKILL after ``grace`` seconds. Pipes stay open."""
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        if grace is None:
            grace = get_settings().shutdown_grace_seconds
        logger.info("subprocess.shutdown", pid=proc.pid, grace=grace)
        await shutdown_process(proc, grace=grace)

    async def aclose(self) -> None:
        proc = self._proc
        if proc is None:
            return
        with anyio.CancelScope(shield=True):
            await self.shutdown()
            await self._finish()
            if self._stderr_scope is not None:
                self._stderr_scope.cancel()
            await proc.aclose()
