"""Domain types derived from the message stream (metrics, results, todos)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .schemas.stream import StreamMessage, Usage


@dataclass(frozen=True, slots=True)
class SessionMetrics:
    cost_usd: float = 0.0
    total_cost_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    num_turns: int = 0
    duration_ms: int = 0
    duration_api_ms: int = 0
    model: str = ""
    session_id: str = ""
    is_error: bool = False
    subtype: str = ""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class TodoItem:
    content: str
    status: str
    id: str = ""
    active_form: str = ""
    priority: str = ""


@dataclass(slots=True)
class Result:
    """Aggregate returned by ``Session.run_and_collect``.

    ``duration`` is wall time measured by the caller side in seconds;
    ``duration_api`` comes from the result message.
    """

    text: str = ""
    messages: list[StreamMessage] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    total_cost_usd: float = 0.0
    cost_usd: float = 0.0
    duration: float = 0.0
    duration_api: float = 0.0
    model: str = ""
    session_id: str = ""
    num_turns: int = 0
    usage: Usage | None = None
    structured_output: Any = None
    metrics: SessionMetrics = field(default_factory=SessionMetrics)
