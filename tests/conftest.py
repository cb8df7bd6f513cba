from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from claudestream.settings import reset_settings
from tests.factories import load_fixture_lines, replay_body, write_fake_claude


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def success_lines() -> list[str]:
    return load_fixture_lines("claude_stream_success.jsonl")


@pytest.fixture
def fake_claude(tmp_path: Path) -> Callable[..., Path]:
    def _factory(body: str | None = None, **replay: object) -> Path:
        if body is None:
            lines = replay.pop("lines", [])
            body = replay_body(lines, **replay)  # type: ignore[arg-type]
        return write_fake_claude(tmp_path, body)

    return _factory
