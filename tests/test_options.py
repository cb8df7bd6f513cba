import json

import pytest

from claudestream.options import (
    REQUIRED_ARGS,
    AgentDefinition,
    LaunchOptions,
    McpServer,
    PermissionMode,
    build_args,
    build_env,
    mcp_config_payload,
)


def _flag_value(args: list[str], flag: str) -> str:
    return args[args.index(flag) + 1]


def test_defaults_force_stream_json() -> None:
    args = build_args("hello", LaunchOptions())

    assert args == [*REQUIRED_ARGS, "--", "hello"]


def test_prompt_is_last_even_when_it_looks_like_a_flag() -> None:
    args = build_args("--help me", LaunchOptions(additional_args=["--foo"]))

    assert args[-3:] == ["--foo", "--", "--help me"]


def test_permission_mode_takes_precedence() -> None:
    args = build_args(
        "p",
        LaunchOptions(permission_mode=PermissionMode.ACCEPT_EDITS, skip_permissions=True),
    )

    assert _flag_value(args, "--permission-mode") == "acceptEdits"
    assert "--dangerously-skip-permissions" not in args

    skipped = build_args("p", LaunchOptions(skip_permissions=True))
    assert "--dangerously-skip-permissions" in skipped


def test_repeated_and_joined_flags() -> None:
    args = build_args(
        "p",
        LaunchOptions(
            allowed_tools=["Read", "Bash(git:*)"],
            disallowed_tools=["Write"],
            betas=["a", "b"],
            tools=["Read", "Grep"],
            setting_sources=["user", "project"],
            add_dirs=["/x", "/y"],
            plugin_dirs=["/plugins"],
        ),
    )

    allowed = [args[i + 1] for i, arg in enumerate(args) if arg == "--allowedTools"]
    assert allowed == ["Read", "Bash(git:*)"]
    assert _flag_value(args, "--disallowedTools") == "Write"
    assert _flag_value(args, "--betas") == "a,b"
    assert _flag_value(args, "--tools") == "Read,Grep"
    assert _flag_value(args, "--setting-sources") == "user,project"
    assert args.count("--add-dir") == 2
    assert _flag_value(args, "--plugin-dir") == "/plugins"


def test_model_budget_and_turns() -> None:
    args = build_args(
        "p",
        LaunchOptions(model="sonnet", fallback_model="haiku", max_budget_usd=1.5, max_turns=4),
    )

    assert _flag_value(args, "--model") == "sonnet"
    assert _flag_value(args, "--fallback-model") == "haiku"
    assert _flag_value(args, "--max-budget-usd") == "1.50"
    assert _flag_value(args, "--max-turns") == "4"

    zero = build_args("p", LaunchOptions(max_budget_usd=0, max_turns=0))
    assert "--max-budget-usd" not in zero
    assert "--max-turns" not in zero


def test_system_prompt_text_wins_over_file() -> None:
    args = build_args(
        "p",
        LaunchOptions(
            system_prompt="be brief",
            system_prompt_file="/prompt.md",
            append_system_prompt="and kind",
        ),
    )

    assert _flag_value(args, "--system-prompt") == "be brief"
    assert "--system-prompt-file" not in args
    assert _flag_value(args, "--append-system-prompt") == "and kind"


def test_session_flags() -> None:
    args = build_args(
        "p",
        LaunchOptions(
            resume="abc",
            continue_session=True,
            fork_session=True,
            session_id="0000-1111",
            no_session_persistence=True,
        ),
    )

    assert _flag_value(args, "--resume") == "abc"
    assert "--continue" in args
    assert "--fork-session" in args
    assert _flag_value(args, "--session-id") == "0000-1111"
    assert "--no-session-persistence" in args


def test_json_valued_flags() -> None:
    args = build_args(
        "p",
        LaunchOptions(
            agents={"reviewer": AgentDefinition(description="Reviews", prompt="Review it")},
            json_schema={"type": "object"},
        ),
    )

    assert json.loads(_flag_value(args, "--agents")) == {
        "reviewer": {"description": "Reviews", "prompt": "Review it"}
    }
    assert json.loads(_flag_value(args, "--json-schema")) == {"type": "object"}


def test_mcp_and_chrome_flags() -> None:
    args = build_args(
        "p",
        LaunchOptions(strict_mcp=True, chrome=False, debug="api"),
        mcp_config_file="/tmp/mcp.json",
    )

    assert _flag_value(args, "--mcp-config") == "/tmp/mcp.json"
    assert "--strict-mcp-config" in args
    assert "--no-chrome" in args
    assert _flag_value(args, "--debug") == "api"
    assert "--chrome" in build_args("p", LaunchOptions(chrome=True))
    assert "--no-chrome" not in build_args("p", LaunchOptions())


@pytest.mark.parametrize(
    "extra",
    [["--output-format", "json"], ["--output-format=text"], ["-p"], ["--print"]],
)
def test_output_format_cannot_be_overridden(extra: list[str]) -> None:
    with pytest.raises(ValueError, match="cannot be overridden"):
        build_args("p", LaunchOptions(additional_args=extra))


def test_mcp_config_payload() -> None:
    payload = mcp_config_payload(
        {"files": McpServer(command="mcp-files", args=["--root", "/repo"])}
    )

    assert json.loads(payload) == {
        "mcpServers": {"files": {"command": "mcp-files", "args": ["--root", "/repo"]}}
    }


def test_build_env() -> None:
    env = build_env(
        LaunchOptions(api_key="sk-test", max_thinking_tokens=2048, env={"FOO": "bar"}),
        base={"PATH": "/bin", "FOO": "old"},
    )

    assert env == {
        "PATH": "/bin",
        "FOO": "bar",
        "ANTHROPIC_API_KEY": "sk-test",
        "MAX_THINKING_TOKENS": "2048",
    }
    assert build_env(LaunchOptions(), base={}) == {}


def test_options_defaults_come_from_settings(monkeypatch) -> None:
    from claudestream.settings import reset_settings

    monkeypatch.setenv("CLAUDESTREAM__BINARY", "/opt/claude")
    reset_settings()

    assert LaunchOptions().binary == "/opt/claude"
