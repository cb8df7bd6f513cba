from __future__ import annotations

from collections import deque
from typing import Any

from anyio import DelimiterNotFound, IncompleteRead
from anyio.abc import ByteReceiveStream
from anyio.streams.buffered import BufferedByteReceiveStream

from ..errors import LineTooLongError
from ..logging import log_pipeline


class LineReader:
    """Newline-delimited reader over a byte stream.

    The buffer starts empty and grows with the line being read, up to
    ``max_bytes``. A longer line raises ``LineTooLongError`` once and the
    reader resumes after that line's newline.
    """

    def __init__(self, stream: ByteReceiveStream, *, max_bytes: int) -> None:
        self._buffered = BufferedByteReceiveStream(stream)
        self._max_bytes = max_bytes
        self._eof = False

    @property
    def at_eof(self) -> bool:
        return self._eof

    async def readline(self) -> bytes | None:
        """Return the next line without its newline, ``None`` at end of stream."""
        if self._eof:
            return None
        try:
            line = await self._buffered.receive_until(b"\n", self._max_bytes)
        except IncompleteRead:
            self._eof = True
            tail = self._buffered.buffer
            return tail or None
        except DelimiterNotFound:
            await self._skip_rest_of_line()
            raise LineTooLongError(self._max_bytes) from None
        # a long line can arrive whole in one chunk
        if len(line) > self._max_bytes:
            raise LineTooLongError(self._max_bytes)
        return line

    async def _skip_rest_of_line(self) -> None:
        while True:
            while self._buffered.buffer:
                await self._buffered.receive()
            try:
                await self._buffered.receive_until(b"\n", self._max_bytes)
                return
            except DelimiterNotFound:
                continue
            except IncompleteRead:
                self._eof = True
                return


async def drain_stderr(
    stream: ByteReceiveStream,
    sink: deque[str],
    *,
    logger: Any,
    tag: str,
) -> int:
    """Keep the tail of stderr in ``sink`` and return the total line count.

    stderr is never parsed as events.
    """
    reader = LineReader(stream, max_bytes=1024 * 1024)
    count = 0
    while True:
        try:
            raw = await reader.readline()
        except LineTooLongError:
            count += 1
            sink.append("<stderr line truncated>")
            continue
        if raw is None:
            return count
        count += 1
        line = raw.decode("utf-8", errors="replace").rstrip("\r")
        sink.append(line)
        log_pipeline(logger, "subprocess.stderr", tag=tag, line=line)
