"""Exception types raised by the launcher and session."""

from __future__ import annotations

from typing import Any

PARSE_ERROR_LINE_LIMIT = 100


class ClaudeStreamError(RuntimeError):
    pass


class CLINotFoundError(ClaudeStreamError):
    def __init__(self, binary: str = "claude") -> None:
        self.binary = binary
        super().__init__(f"claude: CLI not found in PATH ({binary!r})")


class AlreadyStartedError(ClaudeStreamError):
    def __init__(self, what: str = "launcher") -> None:
        super().__init__(f"claude: {what} already started")


class NotStartedError(ClaudeStreamError):
    def __init__(self, what: str = "launcher") -> None:
        super().__init__(f"claude: {what} not started")


class SessionClosedError(ClaudeStreamError):
    def __init__(self) -> None:
        super().__init__("claude: session is closed")


class SessionTimeoutError(ClaudeStreamError):
    """Raised by the collect helpers when their timeout expires.

    ``partial`` holds whatever had been collected when the process was
    killed: a string, a list of messages or a ``Result`` depending on the
    helper.
    """

    def __init__(self, partial: Any = None) -> None:
        self.partial = partial
        super().__init__("claude: session timeout exceeded")


class StartError(ClaudeStreamError):
    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"claude: start failed: {cause}")
        self.__cause__ = cause


class ParseError(ClaudeStreamError):
    def __init__(self, line: str, cause: BaseException | None = None) -> None:
        self.line = line
        self.cause = cause
        truncated = line
        if len(truncated) > PARSE_ERROR_LINE_LIMIT:
            truncated = truncated[:PARSE_ERROR_LINE_LIMIT] + "..."
        super().__init__(f"claude: parse error: {cause} (line: {truncated})")
        self.__cause__ = cause


class LineTooLongError(ClaudeStreamError):
    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"claude: stdout line exceeds {limit} bytes; skipped")


class ExitError(ClaudeStreamError):
    """Non-zero exit. ``stderr`` is the captured tail, see ``Launcher.stderr_text``."""

    def __init__(self, code: int, stderr: str = "") -> None:
        self.code = code
        self.stderr = stderr
        if stderr:
            message = f"claude: exit code {code}: {stderr}"
        else:
            message = f"claude: exit code {code}"
        super().__init__(message)


class BufferFullError(ClaudeStreamError):
    def __init__(self, channel: str = "message") -> None:
        self.channel = channel
        super().__init__(f"claude: {channel} channel buffer full, dropping message")


class SessionExitError(ExitError):
    """Non-zero exit seen by a session collect helper.

    ``partial`` holds everything the helper gathered before the exit, in the
    same shape as ``SessionTimeoutError.partial``. The launcher's own
    ``ExitError`` is chained as ``__cause__``.
    """

    def __init__(self, code: int, stderr: str = "", partial: Any = None) -> None:
        super().__init__(code, stderr)
        self.partial = partial
