"""Optional observability callbacks.

Hooks run inline on whichever task produced the event: the caller of
``Launcher.start`` for ``on_start``, the reader for message, text, tool-call,
metrics and error hooks, and the waiter for ``on_exit``. They share the
critical path with message delivery, so keep them short and never block in
them. Exceptions raised by a hook propagate to that task.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .model import SessionMetrics
from .schemas.stream import StreamMessage


@dataclass(slots=True)
class Hooks:
    on_start: Callable[[int], None] | None = None
    on_message: Callable[[StreamMessage], None] | None = None
    on_text: Callable[[str], None] | None = None
    on_tool_call: Callable[[str, dict[str, Any] | None], None] | None = None
    on_metrics: Callable[[SessionMetrics], None] | None = None
    on_error: Callable[[Exception], None] | None = None
    on_exit: Callable[[int, float], None] | None = None


def invoke_start(hooks: Hooks | None, pid: int) -> None:
    if hooks is not None and hooks.on_start is not None:
        hooks.on_start(pid)


def invoke_message(hooks: Hooks | None, msg: StreamMessage) -> None:
    if hooks is not None and hooks.on_message is not None:
        hooks.on_message(msg)


def invoke_text(hooks: Hooks | None, text: str) -> None:
    if hooks is not None and hooks.on_text is not None:
        hooks.on_text(text)


def invoke_tool_call(
    hooks: Hooks | None, name: str, tool_input: dict[str, Any] | None
) -> None:
    if hooks is not None and hooks.on_tool_call is not None:
        hooks.on_tool_call(name, tool_input)


def invoke_metrics(hooks: Hooks | None, metrics: SessionMetrics) -> None:
    if hooks is not None and hooks.on_metrics is not None:
        hooks.on_metrics(metrics)


def invoke_error(hooks: Hooks | None, error: Exception) -> None:
    if hooks is not None and hooks.on_error is not None:
        hooks.on_error(error)


def invoke_exit(hooks: Hooks | None, code: int, duration: float) -> None:
    if hooks is not None and hooks.on_exit is not None:
        hooks.on_exit(code, duration)
