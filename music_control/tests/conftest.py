"""Shared pytest fixtures for the music control test suite.

Sockets are replaced by ``MockWebSocket``, which records every frame sent
to it and serves queued inbound frames, so no network is needed.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Optional

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from music_control.config import Settings
from music_control.connection import PeerConnection, Role
from music_control.keys import generate_key
from music_control.registry import SessionRegistry
from music_control.router import MessageRouter

_CLOSED = object()


class MockWebSocket:
    """Mock WebSocket connection for testing."""

    def __init__(self, incoming: Iterable[Any] = (), remote_address=("127.0.0.1", 50000)):
        self.remote_address = remote_address
        self.request = None
        self.sent_messages: list = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.fail_sends = False
        self._incoming: asyncio.Queue = asyncio.Queue()
        for item in incoming:
            self.feed(item)

    def feed(self, item: Any) -> None:
        """Queue an inbound frame. Dicts are JSON-encoded; exceptions are raised by recv()."""
        self._incoming.put_nowait(json.dumps(item) if isinstance(item, dict) else item)

    def disconnect(self) -> None:
        """Simulate the peer closing the socket."""
        self._incoming.put_nowait(_CLOSED)

    async def recv(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            self._incoming.put_nowait(_CLOSED)
            raise ConnectionClosedOK(None, None)
        if isinstance(item, BaseException):
            raise item
        return item

    async def send(self, message):
        if self.fail_sends or self.closed:
            raise ConnectionClosedError(None, None)
        self.sent_messages.append(message)

    async def close(self, code=1000, reason=""):
        self.closed = True
        self.close_code = code
        self.close_reason = reason
        self.disconnect()

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return await self.recv()
        except ConnectionClosedOK:
            raise StopAsyncIteration

    @property
    def sent_json(self) -> list:
        return [json.loads(m) for m in self.sent_messages]

    def sent_of_type(self, msg_type: str) -> list:
        return [m for m in self.sent_json if m.get("type") == msg_type]


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class KeySequence:
    """Key factory that hands out the given keys in order, then random ones."""

    def __init__(self, *keys: str):
        self._keys = list(keys)

    def __call__(self) -> str:
        return self._keys.pop(0) if self._keys else generate_key()


async def eventually(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry(clock: FakeClock) -> SessionRegistry:
    return SessionRegistry(clock=clock)


@pytest.fixture()
def router(registry: SessionRegistry) -> MessageRouter:
    return MessageRouter(registry)


@pytest.fixture()
def make_ws() -> Callable[..., MockWebSocket]:
    def _make(*incoming: Any, remote_address=("127.0.0.1", 50000)) -> MockWebSocket:
        return MockWebSocket(incoming, remote_address=remote_address)

    return _make


@pytest.fixture()
def make_peer(make_ws) -> Callable[..., PeerConnection]:
    def _make(role: Optional[Role] = None, ws: Optional[MockWebSocket] = None) -> PeerConnection:
        peer = PeerConnection(ws or make_ws(), send_timeout=1.0)
        if role is not None:
            peer.assign_role(role)
        return peer

    return _make


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        admission_timeout_seconds=0.2,
        connect_rate_limit_per_minute=0,
        ping_interval_seconds=None,
        ping_timeout_seconds=None,
        send_timeout_seconds=1.0,
    )
