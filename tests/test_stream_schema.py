import json

import pytest

from claudestream.errors import ParseError
from claudestream.extract import extract_text, get_all_tool_calls
from claudestream.schemas.stream import (
    AssistantMessage,
    ErrorMessage,
    ResultMessage,
    StreamEventMessage,
    SystemMessage,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UnknownBlock,
    UserMessage,
    encode_stream_message,
    message_type,
    parse_stream_line,
)
from tests.factories import load_fixture_lines


def test_success_fixture_decodes(success_lines: list[str]) -> None:
    messages = [parse_stream_line(line) for line in success_lines]

    assert [message_type(msg) for msg in messages] == [
        "system",
        "assistant",
        "assistant",
        "user",
        "assistant",
        "user",
        "assistant",
        "user",
        "assistant",
        "result",
    ]
    assert all(msg.session_id == "sess-1" for msg in messages)


def test_init_fields_use_cli_spelling(success_lines: list[str]) -> None:
    init = parse_stream_line(success_lines[0])

    assert isinstance(init, SystemMessage)
    assert init.subtype == "init"
    assert init.model == "claude-sonnet-4-5"
    assert init.permission_mode == "default"
    assert init.api_key_source == "none"
    assert "TodoWrite" in init.tools


def test_content_blocks_are_typed(success_lines: list[str]) -> None:
    first = parse_stream_line(success_lines[1])
    assert isinstance(first, AssistantMessage)
    assert first.message is not None
    thinking, text = first.message.blocks
    assert isinstance(thinking, ThinkingBlock)
    assert thinking.signature == "sig"
    assert isinstance(text, TextBlock)
    assert first.message.usage is not None
    assert first.message.usage.output_tokens == 5

    tool = parse_stream_line(success_lines[2])
    assert isinstance(tool, AssistantMessage)
    assert tool.message is not None
    block = tool.message.blocks[0]
    assert isinstance(block, ToolUseBlock)
    assert block.is_tool_use
    assert block.input["command"] == "ls"

    results = parse_stream_line(success_lines[5])
    assert isinstance(results, UserMessage)
    assert results.message is not None
    first_result, second_result = results.message.blocks
    assert isinstance(first_result, ToolResultBlock)
    assert first_result.content == [{"type": "text", "text": "ok"}]
    assert isinstance(second_result, ToolResultBlock)
    assert second_result.content == "src/app.py:3: # TODO"


def test_result_fields(success_lines: list[str]) -> None:
    result = parse_stream_line(success_lines[-1])

    assert isinstance(result, ResultMessage)
    assert result.subtype == "success"
    assert result.is_error is False
    assert result.num_turns == 3
    assert result.total_cost_usd == pytest.approx(0.0123)
    assert result.usage is not None
    assert result.usage.total_tokens == 1500
    assert result.model_usage is not None
    assert "claude-sonnet-4-5" in result.model_usage
    assert result.model == ""


def test_string_content_is_a_single_text_block() -> None:
    msg = parse_stream_line(
        '{"type":"user","message":{"role":"user","content":"hello"}}'
    )

    assert isinstance(msg, UserMessage)
    assert msg.message is not None
    assert msg.message.blocks == [TextBlock(text="hello")]


def test_unknown_block_types_keep_the_line() -> None:
    msg = parse_stream_line(
        '{"type":"assistant","message":{"role":"assistant","content":['
        '{"type":"redacted_thinking","data":"abc"},'
        '{"type":"text","text":"hello"}]}}'
    )

    assert isinstance(msg, AssistantMessage)
    assert msg.message is not None
    unknown, text = msg.message.blocks
    assert isinstance(unknown, UnknownBlock)
    assert unknown.type == "redacted_thinking"
    assert unknown.raw == {"type": "redacted_thinking", "data": "abc"}
    assert text == TextBlock(text="hello")
    assert extract_text(msg) == "hello"
    assert get_all_tool_calls(msg) == []


def test_malformed_known_block_becomes_unknown() -> None:
    msg = parse_stream_line(
        '{"type":"assistant","message":{"content":[{"type":"tool_use","input":"oops"}]}}'
    )

    assert isinstance(msg, AssistantMessage)
    assert msg.message is not None
    (block,) = msg.message.blocks
    assert isinstance(block, UnknownBlock)
    assert block.type == "tool_use"


def test_unknown_fields_are_ignored() -> None:
    msg = parse_stream_line('{"type":"result","subtype":"success","brand_new":{"x":1}}')

    assert isinstance(msg, ResultMessage)
    assert msg.subtype == "success"


def test_error_and_stream_event_variants() -> None:
    error = parse_stream_line('{"type":"error","error":{"type":"overloaded"},"message":"busy"}')
    assert isinstance(error, ErrorMessage)
    assert error.error == {"type": "overloaded"}
    assert error.message == "busy"

    event = parse_stream_line(
        '{"type":"stream_event","event":{"type":"content_block_delta"},"parent_tool_use_id":"toolu_1"}'
    )
    assert isinstance(event, StreamEventMessage)
    assert event.event["type"] == "content_block_delta"
    assert event.parent_tool_use_id == "toolu_1"


@pytest.mark.parametrize(
    "line",
    [
        "not json",
        "{}",
        '{"type":"mystery"}',
        '{"type":"result","num_turns":"three"}',
    ],
)
def test_invalid_lines_raise_parse_error(line: str) -> None:
    with pytest.raises(ParseError) as excinfo:
        parse_stream_line(line)

    assert excinfo.value.line == line
    assert excinfo.value.cause is not None


def test_parse_error_message_truncates_line() -> None:
    line = "x" * 300

    with pytest.raises(ParseError) as excinfo:
        parse_stream_line(line)

    message = str(excinfo.value)
    assert message.startswith("claude: parse error: ")
    assert ("x" * 100 + "...") in message
    assert ("x" * 101) not in message
    assert excinfo.value.line == line


def test_encode_keeps_cli_field_names(success_lines: list[str]) -> None:
    encoded = encode_stream_message(parse_stream_line(success_lines[0]))

    assert b'"permissionMode":"default"' in encoded
    assert b'"type":"system"' in encoded


@pytest.mark.parametrize(
    "line",
    load_fixture_lines("claude_stream_success.jsonl"),
    ids=lambda line: json.loads(line)["type"],
)
def test_encoded_message_decodes_to_the_same_value(line: str) -> None:
    msg = parse_stream_line(line)

    assert parse_stream_line(encode_stream_message(msg)) == msg


def test_message_type_of_none() -> None:
    assert message_type(None) == ""
