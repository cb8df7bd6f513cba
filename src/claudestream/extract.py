"""Helpers that pull text, reasoning and tool calls out of stream messages.

All functions accept ``None`` and messages of any variant; they return an
empty value when there is nothing to extract.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .model import TodoItem
from .schemas.stream import (
    AssistantMessage,
    ContentBlock,
    ErrorMessage,
    ResultMessage,
    StreamMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolUseBlock,
    UnknownBlock,
    Usage,
    UserMessage,
)

FILE_TOOLS = frozenset({"Read", "Write", "Edit"})
SEARCH_TOOLS = frozenset({"Glob", "Grep"})


def _blocks(msg: StreamMessage | None) -> list[ContentBlock | UnknownBlock]:
    if not isinstance(msg, (AssistantMessage, UserMessage)) or msg.message is None:
        return []
    return msg.message.blocks


def _tool_uses(msg: StreamMessage | None) -> list[ToolUseBlock]:
    return [
        block
        for block in _blocks(msg)
        if isinstance(block, ToolUseBlock) and block.is_tool_use
    ]


def _get_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def extract_text(msg: StreamMessage | None) -> str:
    """First text found: direct ``text``, then a text block, then ``result``."""
    if msg is None:
        return ""
    if msg.text:
        return msg.text
    for block in _blocks(msg):
        if isinstance(block, TextBlock) and block.text:
            return block.text
    if isinstance(msg, ResultMessage) and msg.result:
        return msg.result
    return ""


def extract_all_text(msg: StreamMessage | None) -> str:
    if msg is None:
        return ""
    parts: list[str] = []
    if msg.text:
        parts.append(msg.text)
    parts.extend(
        block.text
        for block in _blocks(msg)
        if isinstance(block, TextBlock) and block.text
    )
    if isinstance(msg, ResultMessage) and msg.result:
        parts.append(msg.result)
    return "\n".join(parts)


def extract_thinking(msg: StreamMessage | None) -> str:
    for block in _blocks(msg):
        if isinstance(block, ThinkingBlock) and block.thinking:
            return block.thinking
    return ""


def extract_all_thinking(msg: StreamMessage | None) -> str:
    return "\n".join(
        block.thinking
        for block in _blocks(msg)
        if isinstance(block, ThinkingBlock) and block.thinking
    )


def get_tool_name(msg: StreamMessage | None) -> str:
    name, _ = get_tool_call(msg)
    return name


def get_tool_call(msg: StreamMessage | None) -> tuple[str, dict[str, Any] | None]:
    for block in _tool_uses(msg):
        return block.name, block.input
    return "", None


def get_all_tool_calls(msg: StreamMessage | None) -> list[ToolUseBlock]:
    """Every tool_use block in source order (parallel tool calls)."""
    return _tool_uses(msg)


def extract_bash_command(msg: StreamMessage | None) -> str:
    for block in _tool_uses(msg):
        if block.name != "Bash":
            continue
        command = block.input.get("command")
        if isinstance(command, str):
            return command
    return ""


def extract_file_access(msg: StreamMessage | None) -> str:
    for block in _tool_uses(msg):
        if block.name not in FILE_TOOLS:
            continue
        path = block.input.get("file_path")
        if isinstance(path, str):
            return path
    return ""


def extract_all_file_access(msg: StreamMessage | None) -> list[str]:
    paths: list[str] = []
    for block in _tool_uses(msg):
        if block.name in FILE_TOOLS:
            key = "file_path"
        elif block.name in SEARCH_TOOLS:
            key = "path"
        else:
            continue
        value = block.input.get(key)
        if isinstance(value, str):
            paths.append(value)
    return paths


def extract_todos(msg: StreamMessage | None) -> list[TodoItem]:
    """Todo items from the first TodoWrite call.

    Entries without string ``content`` and ``status`` are skipped.
    """
    for block in _tool_uses(msg):
        if block.name != "TodoWrite":
            continue
        raw_todos = block.input.get("todos")
        if not isinstance(raw_todos, list):
            continue
        todos: list[TodoItem] = []
        for raw in raw_todos:
            if not isinstance(raw, dict):
                continue
            content = raw.get("content")
            status = raw.get("status")
            if not isinstance(content, str) or not isinstance(status, str):
                continue
            todos.append(
                TodoItem(
                    content=content,
                    status=status,
                    id=_get_str(raw, "id"),
                    active_form=_get_str(raw, "activeForm"),
                    priority=_get_str(raw, "priority"),
                )
            )
        return todos
    return []


def extract_structured_output(msg: StreamMessage | None) -> Any:
    if not isinstance(msg, ResultMessage):
        return None
    return msg.structured_output


def extract_usage(msg: StreamMessage | None) -> Usage | None:
    if not isinstance(msg, ResultMessage):
        return None
    return msg.usage


def total_tokens(usage: Usage | None) -> int:
    if usage is None:
        return 0
    return usage.total_tokens


def extract_init_tools(msg: StreamMessage | None) -> list[str]:
    if not is_init(msg):
        return []
    assert isinstance(msg, SystemMessage)
    return list(msg.tools)


def extract_init_permission_mode(msg: StreamMessage | None) -> str:
    if not is_init(msg):
        return ""
    assert isinstance(msg, SystemMessage)
    return msg.permission_mode


def is_result(msg: StreamMessage | None) -> bool:
    return isinstance(msg, ResultMessage)


def is_error(msg: StreamMessage | None) -> bool:
    return isinstance(msg, ErrorMessage)


def is_assistant(msg: StreamMessage | None) -> bool:
    return isinstance(msg, AssistantMessage)


def is_system(msg: StreamMessage | None) -> bool:
    return isinstance(msg, SystemMessage)


def is_init(msg: StreamMessage | None) -> bool:
    return isinstance(msg, SystemMessage) and msg.subtype == "init"


def is_user(msg: StreamMessage | None) -> bool:
    return isinstance(msg, UserMessage)
