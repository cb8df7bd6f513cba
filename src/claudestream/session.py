"""Push-based, multi-consumer wrapper around a ``Launcher``.

A ``Session`` runs two tasks per run: a reader that pulls events from the
launcher and fans them out to the ``messages``, ``text`` and ``errors``
streams, and a waiter that records the process outcome. Every send is
non-blocking: when a stream's buffer is full the item is dropped (a dropped
message is reported on ``errors`` on a best-effort basis). A slow or absent
consumer therefore never stalls the CLI's stdout pipe; delivery is
at-most-once under overload.

    async with Session(SessionConfig(options=LaunchOptions(model="sonnet"))) as session:
        await session.run("Explain this codebase")
        async for msg in session.messages:
            print(extract_text(msg))
        await session.wait()
"""

from __future__ import annotations

import threading
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field, replace
from types import TracebackType
from typing import Any

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from .errors import (
    AlreadyStartedError,
    BufferFullError,
    ExitError,
    LineTooLongError,
    NotStartedError,
    ParseError,
    SessionClosedError,
    SessionExitError,
    SessionTimeoutError,
)
from .extract import extract_text
from .launcher import Launcher
from .logging import get_logger, log_pipeline
from .metrics import merge_init, metrics_from_message
from .model import Result, SessionMetrics
from .options import LaunchOptions
from .schemas.stream import (
    AssistantMessage,
    ResultMessage,
    StreamMessage,
    SystemMessage,
    message_type,
)
from .settings import get_settings

logger = get_logger(__name__)


def _default_channel_buffer() -> int:
    return get_settings().channel_buffer


def _default_error_buffer() -> int:
    return get_settings().error_buffer


@dataclass(slots=True)
class SessionConfig:
    id: str = ""
    options: LaunchOptions = field(default_factory=LaunchOptions)
    channel_buffer: int = field(default_factory=_default_channel_buffer)
    error_buffer: int = field(default_factory=_default_error_buffer)


class Session:
    def __init__(self, config: SessionConfig | None = None) -> None:
        self.config = config or SessionConfig()
        self.id = self.config.id or f"session-{time.time_ns()}"
        buffer = self.config.channel_buffer
        if buffer <= 0:
            buffer = _default_channel_buffer()
        error_buffer = self.config.error_buffer
        if error_buffer <= 0:
            error_buffer = _default_error_buffer()

        self._message_send: MemoryObjectSendStream[StreamMessage]
        self.messages: MemoryObjectReceiveStream[StreamMessage]
        self._message_send, self.messages = anyio.create_memory_object_stream[
            StreamMessage
        ](max_buffer_size=buffer)
        self._text_send: MemoryObjectSendStream[str]
        self.text: MemoryObjectReceiveStream[str]
        self._text_send, self.text = anyio.create_memory_object_stream[str](
            max_buffer_size=buffer
        )
        self._error_send: MemoryObjectSendStream[Exception]
        self.errors: MemoryObjectReceiveStream[Exception]
        self._error_send, self.errors = anyio.create_memory_object_stream[Exception](
            max_buffer_size=error_buffer
        )

        self._launcher = Launcher()
        self._stack: AsyncExitStack | None = None
        self._tg: TaskGroup | None = None
        self._done: anyio.Event | None = None

        self._lock = threading.Lock()
        self._running = False
        self._closed = False
        self._err: ExitError | None = None
        self._metrics = SessionMetrics()
        self._init: SystemMessage | None = None
        self._dropped = 0

    async def __aenter__(self) -> Session:
        self._ensure_done()
        stack = AsyncExitStack()
        await stack.__aenter__()
        try:
            await stack.enter_async_context(self._launcher)
            self._tg = await stack.enter_async_context(anyio.create_task_group())
            stack.push_async_callback(self._stop_process)
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
        if stack is None:
            return None
        try:
            return await stack.__aexit__(exc_type, exc, tb)
        finally:
            self._tg = None
            self._close()

    async def _stop_process(self) -> None:
        if self._launcher.running:
            await self._launcher.shutdown()

    def _ensure_done(self) -> anyio.Event:
        if self._done is None:
            self._done = anyio.Event()
        return self._done

    @property
    def launcher(self) -> Launcher:
        return self._launcher

    @property
    def done(self) -> anyio.Event:
        """Set once every stream is closed and the exit outcome is final."""
        return self._ensure_done()

    @property
    def err(self) -> ExitError | None:
        with self._lock:
            return self._err

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def current_metrics(self) -> SessionMetrics:
        """Latest metrics snapshot; cost and token counts stay zero until a result event."""
        with self._lock:
            return self._metrics

    async def run(self, prompt: str) -> None:
        """Start the CLI and the reader/waiter tasks, then return immediately.

        A session runs once; create a new one for another prompt.
        """
        with self._lock:
            if self._closed:
                raise SessionClosedError()
            if self._running:
                raise AlreadyStartedError("session")
            self._running = True
        tg = self._tg
        if tg is None:
            with self._lock:
                self._running = False
            raise RuntimeError("use 'async with Session()' before calling run()")

        try:
            await self._launcher.start(prompt, self.config.options)
        except BaseException:
            self._close()
            raise
        logger.info("session.run", session_id=self.id, pid=self._launcher.pid)
        tg.start_soon(self._supervise)

    async def _supervise(self) -> None:
        try:
            async with anyio.create_task_group() as tg:
                tg.start_soon(self._read_loop)
                tg.start_soon(self._wait_loop)
        finally:
            self._close()

    async def _read_loop(self) -> None:
        launcher = self._launcher
        while True:
            try:
                msg = await launcher.read_message()
            except (ParseError, LineTooLongError) as exc:
                self._send_error(exc)
                continue
            except (anyio.BrokenResourceError, OSError) as exc:
                logger.warning("session.read.failed", session_id=self.id, error=str(exc))
                self._send_error(exc)
                break
            if msg is None:
                break

            self._send_message(msg)
            # result events repeat the assistant text, so only assistant text is forwarded
            if isinstance(msg, AssistantMessage):
                text = extract_text(msg)
                if text:
                    self._send_text(text)

            if isinstance(msg, ResultMessage):
                self._record_result(msg)
            elif isinstance(msg, SystemMessage) and msg.subtype == "init":
                self._record_init(msg)

    async def _wait_loop(self) -> None:
        try:
            await self._launcher.wait()
        except ExitError as exc:
            logger.info("session.exit.error", session_id=self.id, code=exc.code)
            with self._lock:
                self._err = exc

    def _record_result(self, msg: ResultMessage) -> None:
        metrics = metrics_from_message(msg)
        with self._lock:
            if self._init is not None:
                metrics = merge_init(metrics, self._init)
            self._metrics = metrics
        logger.info(
            "session.result",
            session_id=self.id,
            ok=not msg.is_error,
            turns=msg.num_turns,
            total_cost_usd=msg.total_cost_usd,
        )

    def _record_init(self, msg: SystemMessage) -> None:
        if not msg.session_id:
            return
        with self._lock:
            self._init = msg
            self._metrics = replace(
                self._metrics, session_id=msg.session_id, model=msg.model
            )

    def _send_message(self, msg: StreamMessage) -> None:
        try:
            self._message_send.send_nowait(msg)
        except anyio.WouldBlock:
            with self._lock:
                self._dropped += 1
                dropped = self._dropped
            if dropped == 1:
                logger.warning("session.drop", session_id=self.id, channel="messages")
            log_pipeline(
                logger,
                "session.drop.message",
                session_id=self.id,
                type=message_type(msg),
                dropped=dropped,
            )
            self._send_error(BufferFullError("message"))
        except anyio.BrokenResourceError:
            log_pipeline(logger, "session.drop.no_consumer", session_id=self.id, channel="messages")

    def _send_text(self, text: str) -> None:
        try:
            self._text_send.send_nowait(text)
        except (anyio.WouldBlock, anyio.BrokenResourceError):
            log_pipeline(logger, "session.drop.text", session_id=self.id, length=len(text))

    def _send_error(self, error: Exception) -> None:
        try:
            self._error_send.send_nowait(error)
        except (anyio.WouldBlock, anyio.BrokenResourceError):
            log_pipeline(logger, "session.drop.error", session_id=self.id, error=str(error))

    def _close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._message_send.close()
        self._text_send.close()
        self._error_send.close()
        self._ensure_done().set()
        log_pipeline(logger, "session.closed", session_id=self.id)

    async def wait(self) -> None:
        """Block until the session ends; raise the exit error if there was one."""
        await self.done.wait()
        self._raise_for_exit()

    def _raise_for_exit(self) -> None:
        err = self.err
        if err is not None:
            raise err

    def _raise_for_exit_with(self, partial: Any) -> None:
        err = self.err
        if err is not None:
            raise SessionExitError(err.code, err.stderr, partial) from err

    def _require_running(self) -> None:
        with self._lock:
            if not self._running:
                raise NotStartedError("session")

    def interrupt(self) -> None:
        self._require_running()
        self._launcher.interrupt()

    def kill(self) -> None:
        self._require_running()
        self._launcher.kill()

    def _abort(self) -> None:
        logger.info("session.abort", session_id=self.id, pid=self._launcher.pid)
        self._launcher.kill()

    async def collect_all(self, prompt: str, *, timeout: float | None = None) -> str:
        """Run ``prompt`` and return the concatenated assistant text.

        Only the text stream is read, so the messages stream is closed once
        the run starts. On timeout the process is killed and
        ``SessionTimeoutError`` carries the text collected so far; a non-zero
        exit raises ``SessionExitError`` carrying the full text.
        """
        await self.run(prompt)
        self.messages.close()
        parts: list[str] = []
        try:
            with anyio.fail_after(timeout):
                async for text in self.text:
                    parts.append(text)
                await self.done.wait()
        except TimeoutError:
            self._abort()
            raise SessionTimeoutError("".join(parts)) from None
        except anyio.get_cancelled_exc_class():
            self._abort()
            raise
        text = "".join(parts)
        self._raise_for_exit_with(text)
        return text

    async def collect_messages(
        self, prompt: str, *, timeout: float | None = None
    ) -> list[StreamMessage]:
        await self.run(prompt)
        self.text.close()
        messages: list[StreamMessage] = []
        try:
            with anyio.fail_after(timeout):
                async for msg in self.messages:
                    messages.append(msg)
                await self.done.wait()
        except TimeoutError:
            self._abort()
            raise SessionTimeoutError(messages) from None
        except anyio.get_cancelled_exc_class():
            self._abort()
            raise
        self._raise_for_exit_with(messages)
        return messages

    async def run_and_collect(
        self, prompt: str, *, timeout: float | None = None
    ) -> Result:
        """Run ``prompt`` and build a ``Result`` with text, messages and metrics.

        Non-fatal errors still buffered when the run ends are attached to
        ``Result.errors``. On a non-zero exit the finished ``Result`` rides on
        ``SessionExitError.partial``.
        """
        await self.run(prompt)
        self.text.close()
        result = Result()
        parts: list[str] = []
        started = time.monotonic()
        try:
            with anyio.fail_after(timeout):
                async for msg in self.messages:
                    _accumulate(result, parts, msg)
                await self.done.wait()
        except TimeoutError:
            self._abort()
            self._finalize(result, parts, started)
            raise SessionTimeoutError(result) from None
        except anyio.get_cancelled_exc_class():
            self._abort()
            raise
        self._finalize(result, parts, started)
        self._raise_for_exit_with(result)
        return result

    def _finalize(self, result: Result, parts: list[str], started: float) -> None:
        result.duration = time.monotonic() - started
        result.text = "".join(parts)
        result.metrics = self.current_metrics()
        while True:
            try:
                result.errors.append(self.errors.receive_nowait())
            except (anyio.WouldBlock, anyio.EndOfStream, anyio.ClosedResourceError):
                break


def _accumulate(result: Result, parts: list[str], msg: StreamMessage) -> None:
    result.messages.append(msg)
    if isinstance(msg, AssistantMessage):
        text = extract_text(msg)
        if text:
            parts.append(text)
    elif isinstance(msg, ResultMessage):
        result.total_cost_usd = msg.total_cost_usd
        result.cost_usd = msg.cost_usd
        result.num_turns = msg.num_turns
        result.usage = msg.usage
        result.structured_output = msg.structured_output
        if msg.session_id:
            result.session_id = msg.session_id
        if msg.model:
            result.model = msg.model
        if msg.duration_api_ms > 0:
            result.duration_api = msg.duration_api_ms / 1000
    elif isinstance(msg, SystemMessage) and msg.subtype == "init":
        if msg.session_id:
            result.session_id = msg.session_id
        if msg.model:
            result.model = msg.model
