"""Shared test fixtures for vc-status tests."""

import asyncio
import os
from unittest.mock import AsyncMock

import pytest

from vc_status.auth import TokenManager, TokenPair
from vc_status.credential_store import CredentialStore
from vc_status.ipc.notifications import Notifier
from vc_status.ipc.transport import ConnectionClosed


@pytest.fixture(autouse=True)
def isolate_home_directory(tmp_path, monkeypatch):
    """
    Redirect Path.home() and os.path.expanduser() to a temporary directory.

    Credential store paths are redirected too, so no test can touch the real
    ~/.vc-status directory.
    """
    fake_home = tmp_path / "home"
    fake_home.mkdir()

    monkeypatch.setattr("pathlib.Path.home", lambda: fake_home)

    original_expanduser = os.path.expanduser

    def mock_expanduser(path):
        if path.startswith("~"):
            return str(fake_home) + path[1:]
        return original_expanduser(path)

    monkeypatch.setattr("os.path.expanduser", mock_expanduser)

    token_dir = fake_home / ".vc-status"
    monkeypatch.setattr("vc_status.credential_store.TOKEN_DIR", token_dir)
    monkeypatch.setattr("vc_status.credential_store.TOKEN_FILE", token_dir / "refresh_token")
    monkeypatch.setattr(
        "vc_status.credential_store.MIGRATED_TOKEN_FILE", token_dir / "refresh_token.migrated"
    )
    monkeypatch.setattr("vc_status.credential_store._cached_store", None)
    monkeypatch.setattr("vc_status.client._client", None)

    yield fake_home


class MemoryStore(CredentialStore):
    """In-memory credential store."""

    name = "memory"

    def __init__(self, token=None):
        self.token = token
        self.fail_load = False
        self.fail_save = False

    def save(self, token: str) -> None:
        if self.fail_save:
            raise OSError("disk full")
        self.token = token

    def load(self):
        if self.fail_load:
            raise OSError("permission denied")
        return self.token

    def clear(self) -> bool:
        existed = self.token is not None
        self.token = None
        return existed


class FakeConnection:
    """Scripted in-memory Connection.

    Sent messages are recorded in `sent`. Incoming messages are queued with
    push(); a `responder` callable may answer each sent message immediately.
    Closing queues a ConnectionClosed so a pending receive() fails the way a
    real socket does.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.sent = []
        self.connected = False
        self.closed = False
        self.connect_error = None
        self.send_error = None
        self._incoming = asyncio.Queue()

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        self.closed = False

    async def send(self, message: dict) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(message)
        if self.responder is not None:
            reply = self.responder(message)
            if reply is not None:
                self.push(reply)

    async def receive(self) -> dict:
        item = await self._incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self.push(ConnectionClosed("closed"))

    def push(self, item) -> None:
        self._incoming.put_nowait(item)

    def commands(self, cmd: str) -> list:
        return [m for m in self.sent if m.get("cmd") == cmd]


def reply_with(replies: dict):
    """Responder answering each command name with the given data."""

    def respond(message):
        cmd = message.get("cmd")
        if cmd not in replies:
            return None
        data = replies[cmd]
        return {
            "cmd": cmd,
            "nonce": message.get("nonce"),
            "evt": None,
            "data": data(message) if callable(data) else data,
        }

    return respond


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def token_manager(memory_store):
    """TokenManager with an in-memory store and mocked token endpoint."""
    manager = TokenManager("client-id", "client-secret", store=memory_store)
    manager.exchange_code = AsyncMock(return_value=TokenPair("access-new", "refresh-new"))
    manager.refresh = AsyncMock(return_value=TokenPair("access-refreshed", "refresh-rotated"))
    return manager


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def notifications(notifier):
    """List of (name, payload) tuples emitted by the notifier."""
    received = []
    notifier.add_listener(lambda n: received.append((n.name.value, n.payload)))
    return received
