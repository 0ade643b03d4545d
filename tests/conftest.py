"""Pytest configuration and shared fixtures for prometheus_chat tests."""

import pytest

import prometheus_chat.io.logging_setup


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Point config, data and log directories at a per-test temp dir."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("PROMETHEUS_DATA_DIR", str(tmp_path / "conversations"))
    monkeypatch.setenv("PROMETHEUS_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("PROMETHEUS_LOG_FILE", raising=False)
    monkeypatch.delenv("PROMETHEUS_LOG_LEVEL", raising=False)
    monkeypatch.delenv("PROMETHEUS_LOG_STDERR_LEVEL", raising=False)
    monkeypatch.delenv("PROMETHEUS_OLLAMA_URL", raising=False)
    # rich treats these as "stdout is a terminal"
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    monkeypatch.delenv("TTY_COMPATIBLE", raising=False)
    yield tmp_path
    prometheus_chat.io.logging_setup.reset()


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClient:
    """Stands in for OllamaClient: replays scripted token lists.

    Each entry in `replies` is a list of tokens, or an exception instance to
    raise after the tokens that precede it in a tuple (tokens, exc).
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: list[tuple[str, list[dict]]] = []

    def stream_chat(self, model, messages, options=None):
        self.calls.append((model, [dict(m) for m in messages]))
        reply = self.replies.pop(0)
        if isinstance(reply, tuple):
            tokens, exc = reply
        else:
            tokens, exc = reply, None
        for token in tokens:
            yield token
        if exc is not None:
            raise exc


@pytest.fixture
def clock():
    return FakeClock()
