"""Shared fixtures for the reportd test suite.

All tests use temporary directories and in-memory fakes.
Nothing touches ~/.reportd/, a bridge, Drive or an AI backend.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add project root to path so imports work
_root = Path(__file__).parent.parent
sys.path.insert(0, str(_root))

from storage import StorageItem  # noqa: E402


class FakeStorage:
    """Dict-backed storage: {(scope_id, name): item_id}."""

    def __init__(self, items=None):
        self.items = dict(items or {})
        self.calls = []
        self.error = None

    async def find(self, scope_id, name):
        self.calls.append((scope_id, name))
        if self.error:
            raise self.error
        item_id = self.items.get((scope_id, name))
        return StorageItem(id=item_id, name=name) if item_id else None

    def public_url(self, item):
        return f"https://files.example/{item.id}"

    async def close(self):
        pass


class FakeProvider:
    """AI provider returning a canned completion, or raising."""

    def __init__(self, reply="AI says hi", error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, text):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


class FakeStore:
    """In-memory credential store."""

    def __init__(self, session=None):
        self.session = session
        self.saved = []
        self.cleared = 0

    def load(self):
        return self.session

    def save(self, session):
        self.saved.append(session)
        self.session = session

    def clear(self):
        self.cleared += 1
        self.session = None


class ScriptedChannel:
    """Channel replaying one scripted event list per connect().

    A script entry that is an Exception is raised from connect().
    """

    def __init__(self, sessions):
        self.sessions = list(sessions)
        self.connects = []
        self.sent = []
        self.disconnects = 0
        self._current = []

    async def connect(self, session):
        self.connects.append(session)
        script = self.sessions.pop(0)
        if isinstance(script, Exception):
            raise script
        self._current = script

    async def events(self):
        for event in self._current:
            yield event

    async def send(self, target, message):
        self.sent.append((target, message))

    async def disconnect(self):
        self.disconnects += 1


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def scripted_channel():
    """Factory: scripted_channel([[events...], ConnectionError(), ...])."""
    return ScriptedChannel


@pytest.fixture
def minimal_toml_data():
    """Minimal valid config data (as parsed dict, not raw TOML)."""
    return {
        "bot": {"name": "TestBot"},
        "channel": {
            "type": "whatsapp",
            "whatsapp": {
                "bridge_url": "ws://127.0.0.1:3001",
                "token_env": "REPORTD_BRIDGE_TOKEN",
            },
        },
        "connection": {
            "retry_delay": 7,
            "rejected_cooldown": 1800,
        },
        "storage": {
            "type": "gdrive",
            "folder_id": "folder-123",
            "credentials_env": "GOOGLE_DRIVE_KEY",
        },
        "ai": {
            "provider": "openai-compat",
            "model": "gemini-1.5-flash",
            "base_url": "https://generativelanguage.googleapis.com/v1beta/openai/",
            "api_key_env": "GEMINI_API_KEY",
            "cooldown_seconds": 5,
        },
        "http": {"enabled": False},
    }


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep hosting-platform env vars from leaking into config tests."""
    for var in ("PORT", "REPORTD_FOLDER_ID", "REPLIT_APP_URL", "REPORTD_SELF_PING_URL"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def make_provider():
    """Factory: make_provider(reply=..., error=..., delay=...)."""
    return FakeProvider
