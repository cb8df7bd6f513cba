"""Run the claude CLI as a subprocess and consume its stream-json output."""

from .errors import (
    AlreadyStartedError,
    BufferFullError,
    ClaudeStreamError,
    CLINotFoundError,
    ExitError,
    LineTooLongError,
    NotStartedError,
    ParseError,
    SessionClosedError,
    SessionExitError,
    SessionTimeoutError,
    StartError,
)
from .hooks import Hooks
from .launcher import Launcher, cli_available, cli_version
from .metrics import metrics_from_message, metrics_from_output
from .model import Result, SessionMetrics, TodoItem
from .options import AgentDefinition, LaunchOptions, McpServer, PermissionMode
from .schemas.stream import StreamMessage, parse_stream_line
from .session import Session, SessionConfig

__version__ = "0.2.0"

__all__ = [
    "AgentDefinition",
    "AlreadyStartedError",
    "BufferFullError",
    "CLINotFoundError",
    "ClaudeStreamError",
    "ExitError",
    "Hooks",
    "LaunchOptions",
    "Launcher",
    "LineTooLongError",
    "McpServer",
    "NotStartedError",
    "ParseError",
    "PermissionMode",
    "Result",
    "Session",
    "SessionClosedError",
    "SessionConfig",
    "SessionExitError",
    "SessionMetrics",
    "SessionTimeoutError",
    "StartError",
    "StreamMessage",
    "TodoItem",
    "cli_available",
    "cli_version",
    "metrics_from_message",
    "metrics_from_output",
    "parse_stream_line",
]
