from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Must be set before anything builds the cached Settings instance.
os.environ.setdefault("TELNYX_API_KEY", "KEY_test")
os.environ.setdefault("PUBLIC_BASE_URL", "https://relay.example.com")
os.environ.setdefault("STREAM_START_DELAY_SECONDS", "0")
os.environ.setdefault("TELEPHONY_KEEPALIVE_SECONDS", "0")
os.environ.setdefault("REALTIME_GREETING", "")


class FakeCallControl:
    def __init__(self) -> None:
        self.actions: list[tuple[str, str]] = []

    async def answer(self, call_control_id: str) -> None:
        self.actions.append(("answer", call_control_id))

    async def start_streaming(self, call_control_id: str) -> None:
        self.actions.append(("streaming_start", call_control_id))

    async def hangup(self, call_control_id: str) -> None:
        self.actions.append(("hangup", call_control_id))


@pytest.fixture(scope="session")
def app():
    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def call_control() -> FakeCallControl:
    return FakeCallControl()


@pytest.fixture()
def client(app, call_control):
    # Never talk to the real provider from tests.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_call_control] = lambda: call_control

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
