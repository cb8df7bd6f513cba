from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace

from .errors import ParseError
from .model import SessionMetrics
from .schemas.stream import ResultMessage, StreamMessage, SystemMessage, parse_stream_line


def metrics_from_message(msg: ResultMessage) -> SessionMetrics:
    usage = msg.usage
    return SessionMetrics(
        cost_usd=msg.cost_usd,
        total_cost_usd=msg.total_cost_usd,
        input_tokens=usage.input_tokens if usage else 0,
        output_tokens=usage.output_tokens if usage else 0,
        cache_creation_input_tokens=usage.cache_creation_input_tokens if usage else 0,
        cache_read_input_tokens=usage.cache_read_input_tokens if usage else 0,
        num_turns=msg.num_turns,
        duration_ms=msg.duration_ms,
        duration_api_ms=msg.duration_api_ms,
        model=msg.model,
        session_id=msg.session_id,
        is_error=msg.is_error,
        subtype=msg.subtype,
    )


def merge_init(metrics: SessionMetrics, init: SystemMessage) -> SessionMetrics:
    """Fill model and session id from the init event where still empty."""
    return replace(
        metrics,
        model=metrics.model or init.model,
        session_id=metrics.session_id or init.session_id,
    )


def _parse_quiet(line: str) -> StreamMessage | None:
    line = line.strip()
    if not line.startswith("{"):
        return None
    try:
        return parse_stream_line(line)
    except ParseError:
        return None


def metrics_from_output(output: str | Iterable[str]) -> SessionMetrics:
    """Recover metrics from a captured stream-json transcript.

    The last result event supplies cost, turns and tokens; the first init
    event supplies the model, which result events do not repeat.
    """
    if isinstance(output, str):
        lines = output.splitlines()
    else:
        lines = list(output)

    metrics = SessionMetrics()
    for line in reversed(lines):
        msg = _parse_quiet(line)
        if isinstance(msg, ResultMessage):
            metrics = metrics_from_message(msg)
            break

    for line in lines:
        msg = _parse_quiet(line)
        if isinstance(msg, SystemMessage) and msg.subtype == "init":
            if msg.model:
                metrics = replace(metrics, model=msg.model)
            if not metrics.session_id and msg.session_id:
                metrics = replace(metrics, session_id=msg.session_id)
            break

    return metrics
