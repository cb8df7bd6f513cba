from __future__ import annotations

import os
import signal
from collections.abc import Sequence
from typing import Any

import anyio
from anyio.abc import Process

from ..logging import get_logger

logger = get_logger(__name__)


async def spawn_process(cmd: Sequence[str], **kwargs: Any) -> Process:
    """Start ``cmd`` in its own process group so signals reach its children."""
    if os.name == "posix":
        kwargs.setdefault("start_new_session", True)
    return await anyio.open_process(cmd, **kwargs)


async def wait_for_process(proc: Process, timeout: float) -> bool:
    with anyio.move_on_after(timeout) as scope:
        await proc.wait()
    return scope.cancel_called


def signal_process(proc: Process, sig: signal.Signals) -> None:
    if proc.returncode is not None:
        return
    if os.name == "posix" and proc.pid is not None:
        try:
            os.killpg(proc.pid, sig)
            return
        except ProcessLookupError:
            return
        except OSError as e:
            logger.debug(
                "subprocess.signal.failed",
                signal=sig.name,
                error=str(e),
                error_type=e.__class__.__name__,
                pid=proc.pid,
            )
    try:
        proc.send_signal(sig)
    except ProcessLookupError:
        return


def interrupt_process(proc: Process) -> None:
    signal_process(proc, signal.SIGINT)


def terminate_process(proc: Process) -> None:
    if proc.returncode is not None:
        return
    if os.name != "posix":
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        return
    signal_process(proc, signal.SIGTERM)


def kill_process(proc: Process) -> None:
    if proc.returncode is not None:
        return
    if os.name != "posix":
        try:
            proc.kill()
        except ProcessLookupError:
            return
        return
    signal_process(proc, signal.SIGKILL)


async def shutdown_process(proc: Process, *, grace: float = 2.0) -> None:
    """SIGTERM, then SIGKILL if the process outlives ``grace`` seconds."""
    if proc.returncode is not None:
        return
    with anyio.CancelScope(shield=True):
        terminate_process(proc)
        timed_out = await wait_for_process(proc, timeout=grace)
        if timed_out:
            logger.info("subprocess.shutdown.kill", pid=proc.pid, grace=grace)
            kill_process(proc)
            await proc.wait()
