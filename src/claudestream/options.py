"""Launch configuration and its mapping to claude CLI flags."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import msgspec

from .hooks import Hooks
from .settings import get_settings

# The reader depends on this output shape; callers cannot change it.
REQUIRED_ARGS: tuple[str, ...] = ("--print", "--output-format", "stream-json", "--verbose")
RESERVED_FLAGS = frozenset({"--output-format", "--print", "-p"})


class PermissionMode(StrEnum):
    DEFAULT = "default"
    ACCEPT_EDITS = "acceptEdits"
    PLAN = "plan"
    BYPASS = "bypassPermissions"


class AgentDefinition(msgspec.Struct, omit_defaults=True):
    description: str
    prompt: str
    tools: list[str] | None = None
    model: str | None = None


class McpServer(msgspec.Struct, omit_defaults=True):
    command: str | None = None
    args: list[str] | None = None
    env: dict[str, str] | None = None
    type: str | None = None
    url: str | None = None
    headers: dict[str, str] | None = None


def _default_binary() -> str:
    return get_settings().binary


def _default_max_line_bytes() -> int:
    return get_settings().max_line_bytes


@dataclass(slots=True)
class LaunchOptions:
    # permissions
    permission_mode: PermissionMode | str | None = None
    skip_permissions: bool = False
    allow_dangerously_skip_permissions: bool = False
    allowed_tools: list[str] = field(default_factory=list)
    disallowed_tools: list[str] = field(default_factory=list)
    permission_prompt_tool: str | None = None
    # model & budget
    model: str | None = None
    fallback_model: str | None = None
    max_budget_usd: float | None = None
    betas: list[str] = field(default_factory=list)
    # system prompt
    system_prompt: str | None = None
    system_prompt_file: str | None = None
    append_system_prompt: str | None = None
    append_system_prompt_file: str | None = None
    # session management
    resume: str | None = None
    continue_session: bool = False
    fork_session: bool = False
    session_id: str | None = None
    no_session_persistence: bool = False
    max_turns: int | None = None
    # tools & agents
    tools: list[str] = field(default_factory=list)
    agents: dict[str, AgentDefinition] = field(default_factory=dict)
    disable_slash_commands: bool = False
    # input/output
    json_schema: Mapping[str, Any] | None = None
    include_partial_messages: bool = False
    input_format: str | None = None
    # configuration
    setting_sources: list[str] = field(default_factory=list)
    settings: str | None = None
    plugin_dirs: list[str] = field(default_factory=list)
    add_dirs: list[str] = field(default_factory=list)
    mcp_servers: dict[str, McpServer] = field(default_factory=dict)
    strict_mcp: bool = False
    # debug
    debug: str | None = None
    chrome: bool | None = None
    additional_args: list[str] = field(default_factory=list)
    # process
    api_key: str | None = None
    max_thinking_tokens: int | None = None
    env: dict[str, str] = field(default_factory=dict)
    work_dir: str | None = None
    timeout: float | None = None
    binary: str = field(default_factory=_default_binary)
    max_line_bytes: int = field(default_factory=_default_max_line_bytes)
    hooks: Hooks | None = None


def _json_arg(value: Any) -> str:
    return msgspec.json.encode(value).decode()


def mcp_config_payload(servers: Mapping[str, McpServer]) -> bytes:
    return msgspec.json.encode({"mcpServers": dict(servers)})


def _check_reserved(additional_args: list[str]) -> None:
    for arg in additional_args:
        flag = arg.split("=", 1)[0]
        if flag in RESERVED_FLAGS:
            raise ValueError(
                f"{flag} is always set to stream-json output and cannot be overridden"
            )


def build_args(
    prompt: str,
    options: LaunchOptions,
    mcp_config_file: str | None = None,
) -> list[str]:
    _check_reserved(options.additional_args)
    args: list[str] = list(REQUIRED_ARGS)

    if options.permission_mode:
        args.extend(["--permission-mode", str(options.permission_mode)])
    elif options.skip_permissions:
        args.append("--dangerously-skip-permissions")
    if options.allow_dangerously_skip_permissions:
        args.append("--allow-dangerously-skip-permissions")
    for tool in options.allowed_tools:
        args.extend(["--allowedTools", tool])
    for tool in options.disallowed_tools:
        args.extend(["--disallowedTools", tool])
    if options.permission_prompt_tool:
        args.extend(["--permission-prompt-tool", options.permission_prompt_tool])

    if options.model:
        args.extend(["--model", options.model])
    if options.fallback_model:
        args.extend(["--fallback-model", options.fallback_model])
    if options.max_budget_usd is not None and options.max_budget_usd > 0:
        args.extend(["--max-budget-usd", f"{options.max_budget_usd:.2f}"])
    if options.betas:
        args.extend(["--betas", ",".join(options.betas)])

    if options.system_prompt:
        args.extend(["--system-prompt", options.system_prompt])
    elif options.system_prompt_file:
        args.extend(["--system-prompt-file", options.system_prompt_file])
    if options.append_system_prompt:
        args.extend(["--append-system-prompt", options.append_system_prompt])
    if options.append_system_prompt_file:
        args.extend(["--append-system-prompt-file", options.append_system_prompt_file])

    if options.resume:
        args.extend(["--resume", options.resume])
    if options.continue_session:
        args.append("--continue")
    if options.fork_session:
        args.append("--fork-session")
    if options.session_id:
        args.extend(["--session-id", options.session_id])
    if options.no_session_persistence:
        args.append("--no-session-persistence")
    if options.max_turns is not None and options.max_turns > 0:
        args.extend(["--max-turns", str(options.max_turns)])

    if options.tools:
        args.extend(["--tools", ",".join(options.tools)])
    if options.agents:
        args.extend(["--agents", _json_arg(options.agents)])
    if options.disable_slash_commands:
        args.append("--disable-slash-commands")

    if options.json_schema is not None:
        args.extend(["--json-schema", _json_arg(dict(options.json_schema))])
    if options.include_partial_messages:
        args.append("--include-partial-messages")
    if options.input_format:
        args.extend(["--input-format", options.input_format])

    if options.setting_sources:
        args.extend(["--setting-sources", ",".join(options.setting_sources)])
    if options.settings:
        args.extend(["--settings", options.settings])
    for directory in options.plugin_dirs:
        args.extend(["--plugin-dir", directory])
    for directory in options.add_dirs:
        args.extend(["--add-dir", directory])

    if mcp_config_file:
        args.extend(["--mcp-config", mcp_config_file])
    if options.strict_mcp:
        args.append("--strict-mcp-config")

    if options.debug:
        args.extend(["--debug", options.debug])
    if options.chrome is not None:
        args.append("--chrome" if options.chrome else "--no-chrome")

    args.extend(options.additional_args)
    args.append("--")
    args.append(prompt)
    return args


def build_env(
    options: LaunchOptions, base: Mapping[str, str] | None = None
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    if options.api_key:
        env["ANTHROPIC_API_KEY"] = options.api_key
    if options.max_thinking_tokens is not None and options.max_thinking_tokens > 0:
        env["MAX_THINKING_TOKENS"] = str(options.max_thinking_tokens)
    env.update(options.env)
    return env
