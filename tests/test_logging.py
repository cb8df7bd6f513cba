from collections.abc import Iterator

import pytest
import structlog
from structlog.testing import capture_logs

from claudestream.logging import get_logger, log_pipeline, setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


def test_pipeline_events_are_debug_unless_traced(monkeypatch) -> None:
    monkeypatch.delenv("CLAUDESTREAM_TRACE_PIPELINE", raising=False)
    setup_logging(debug=True)
    logger = get_logger("claudestream.test")

    with capture_logs() as logs:
        log_pipeline(logger, "jsonl.message", jsonl_seq=1)
        monkeypatch.setenv("CLAUDESTREAM_TRACE_PIPELINE", "yes")
        log_pipeline(logger, "jsonl.message", jsonl_seq=2)

    assert [(entry["event"], entry["log_level"], entry["jsonl_seq"]) for entry in logs] == [
        ("jsonl.message", "debug", 1),
        ("jsonl.message", "info", 2),
    ]


def test_setup_logging_json(capsys) -> None:
    setup_logging(json_logs=True)
    get_logger("claudestream.test").info("subprocess.spawn", pid=7)

    err = capsys.readouterr().err
    assert '"event": "subprocess.spawn"' in err
    assert '"pid": 7' in err
