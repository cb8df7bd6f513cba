"""Msgspec models and decoder for claude stream-json output.

Each line the CLI prints with ``--output-format stream-json --verbose`` is one
of the tagged structs below. Fields are optional with zero-value defaults and
unknown keys are ignored, so newer CLI releases keep decoding.
"""

from __future__ import annotations

from typing import Any

import msgspec

from ..errors import ParseError


class TextBlock(
    msgspec.Struct,
    tag="text",
    tag_field="type",
    forbid_unknown_fields=False,
    omit_defaults=True,
    frozen=True,
):
    text: str = ""


class ThinkingBlock(
    msgspec.Struct,
    tag="thinking",
    tag_field="type",
    forbid_unknown_fields=False,
    omit_defaults=True,
    frozen=True,
):
    thinking: str = ""
    signature: str = ""


class ToolUseBlock(
    msgspec.Struct,
    tag="tool_use",
    tag_field="type",
    forbid_unknown_fields=False,
    omit_defaults=True,
    frozen=True,
):
    id: str = ""
    name: str = ""
    input: dict[str, Any] = msgspec.field(default_factory=dict)

    @property
    def is_tool_use(self) -> bool:
        return bool(self.name)


class ToolResultBlock(
    msgspec.Struct,
    tag="tool_result",
    tag_field="type",
    forbid_unknown_fields=False,
    omit_defaults=True,
    frozen=True,
):
    tool_use_id: str = ""
    content: str | list[dict[str, Any]] | None = None
    is_error: bool | None = None


type ContentBlock = TextBlock | ThinkingBlock | ToolUseBlock | ToolResultBlock


class UnknownBlock(msgspec.Struct, frozen=True):
    """A content block whose ``type`` this package does not model.

    ``raw`` is the block exactly as the CLI sent it.
    """

    type: str = ""
    raw: dict[str, Any] = msgspec.field(default_factory=dict)


def _to_block(raw: dict[str, Any]) -> ContentBlock | UnknownBlock:
    try:
        return msgspec.convert(raw, ContentBlock)
    except msgspec.ValidationError:
        kind = raw.get("type")
        return UnknownBlock(type=kind if isinstance(kind, str) else "", raw=raw)


class Usage(msgspec.Struct, forbid_unknown_fields=False, omit_defaults=True, frozen=True):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class MessageContent(
    msgspec.Struct, forbid_unknown_fields=False, omit_defaults=True, frozen=True
):
    role: str = ""
    content: str | list[dict[str, Any]] = msgspec.field(default_factory=list)
    id: str | None = None
    model: str | None = None
    stop_reason: str | None = None
    usage: Usage | None = None

    @property
    def blocks(self) -> list[ContentBlock | UnknownBlock]:
        """Content as typed blocks. A plain string becomes one ``TextBlock``."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)] if self.content else []
        return [_to_block(raw) for raw in self.content]


class _Envelope(
    msgspec.Struct, forbid_unknown_fields=False, omit_defaults=True, frozen=True
):
    session_id: str = ""
    uuid: str = ""
    text: str = ""


class SystemMessage(_Envelope, tag="system", tag_field="type"):
    subtype: str = ""
    model: str = ""
    cwd: str = ""
    tools: list[str] = msgspec.field(default_factory=list)
    mcp_servers: list[Any] = msgspec.field(default_factory=list)
    permission_mode: str = msgspec.field(default="", name="permissionMode")
    api_key_source: str = msgspec.field(default="", name="apiKeySource")
    output_style: str = ""


class AssistantMessage(_Envelope, tag="assistant", tag_field="type"):
    message: MessageContent | None = None
    parent_tool_use_id: str | None = None


class UserMessage(_Envelope, tag="user", tag_field="type"):
    message: MessageContent | None = None
    parent_tool_use_id: str | None = None


class ResultMessage(_Envelope, tag="result", tag_field="type"):
    subtype: str = ""
    result: str = ""
    is_error: bool = False
    num_turns: int = 0
    duration_ms: int = 0
    duration_api_ms: int = 0
    total_cost_usd: float = 0.0
    cost_usd: float = 0.0
    usage: Usage | None = None
    model_usage: dict[str, Any] | None = msgspec.field(default=None, name="modelUsage")
    structured_output: Any = None
    model: str = ""
    permission_denials: list[dict[str, Any]] = msgspec.field(default_factory=list)


class ErrorMessage(_Envelope, tag="error", tag_field="type"):
    error: Any = None
    message: str = ""


class StreamEventMessage(_Envelope, tag="stream_event", tag_field="type"):
    event: dict[str, Any] = msgspec.field(default_factory=dict)
    parent_tool_use_id: str | None = None


type StreamMessage = (
    SystemMessage
    | AssistantMessage
    | UserMessage
    | ResultMessage
    | ErrorMessage
    | StreamEventMessage
)


STREAM_JSON_SCHEMA = msgspec.json.schema(StreamMessage)

_DECODER = msgspec.json.Decoder(StreamMessage)
_ENCODER = msgspec.json.Encoder()


def decode_stream_json_line(line: str | bytes) -> StreamMessage:
    return _DECODER.decode(line)


def parse_stream_line(line: str | bytes) -> StreamMessage:
    """Decode one stdout line, wrapping decoder failures in ``ParseError``."""
    try:
        return _DECODER.decode(line)
    except msgspec.DecodeError as exc:
        if isinstance(line, bytes):
            text = line.decode("utf-8", errors="replace")
        else:
            text = line
        raise ParseError(text, exc) from exc


def encode_stream_message(msg: StreamMessage) -> bytes:
    return _ENCODER.encode(msg)


def message_type(msg: StreamMessage | None) -> str:
    if msg is None:
        return ""
    return str(type(msg).__struct_config__.tag)
