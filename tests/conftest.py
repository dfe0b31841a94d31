"""pytest configuration and shared fakes for Quazaar tests."""

import asyncio
import json

import pytest

from quazaar.lib import config as qconfig
from quazaar.lib.commands import CommandExecutor
from quazaar.lib.errors import SourceUnavailable


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeTransport:
    """Stands in for an aiohttp WebSocketResponse on the send side."""

    def __init__(self, fail: bool = False, stall: bool = False):
        self.fail = fail
        self.stall = stall
        self.sent: list[dict] = []
        self.closed = False
        self.close_calls = 0

    async def send_str(self, data: str):
        if self.stall:
            await asyncio.Event().wait()
        if self.fail or self.closed:
            raise ConnectionResetError("connection lost")
        self.sent.append(json.loads(data))

    async def close(self):
        self.close_calls += 1
        self.closed = True


class FakeExecutor(CommandExecutor):
    """Records every action instead of running it."""

    def __init__(self, output: str = "", error: Exception | None = None):
        self.output = output
        self.error = error
        self.actions = []

    async def execute(self, action):
        self.actions.append(action)
        if self.error is not None:
            raise self.error
        return self.output


class FakeRunner:
    """Replays canned tool output keyed by argv."""

    def __init__(self, outputs: dict | None = None):
        self.outputs = {tuple(k): v for k, v in (outputs or {}).items()}
        self.calls: list[tuple] = []

    async def __call__(self, argv, timeout=None):
        argv = tuple(argv)
        self.calls.append(argv)
        if argv not in self.outputs:
            raise SourceUnavailable(f"{argv[0]}: not found")
        out = self.outputs[argv]
        if isinstance(out, Exception):
            raise out
        return out


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def clean_config(monkeypatch, tmp_path):
    """Point the loader at an empty temp dir and drop any cached config."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for var in ("QUAZAAR_CONFIG", "QUAZAAR_HOST", "QUAZAAR_PORT"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(qconfig, "_config", None)
    monkeypatch.setattr(qconfig, "_search_paths", lambda: [
        p for p in [qconfig.os.environ.get("QUAZAAR_CONFIG")] if p
    ] + [str(tmp_path / "config.json")])
    yield tmp_path
    qconfig._config = None
