"""Tests for the connection handshake."""

import json

import pytest
from websockets.exceptions import ConnectionClosedError

from conftest import KeySequence
from music_control.admission import (
    CLOSE_CANNOT_ACCEPT,
    CLOSE_PROTOCOL_ERROR,
    Admission,
    admit,
)
from music_control.connection import PeerConnection, Role
from music_control.messages import RepeatMode
from music_control.registry import SessionRegistry
from music_control.router import MessageRouter

pytestmark = pytest.mark.asyncio


def peer(ws) -> PeerConnection:
    return PeerConnection(ws, send_timeout=1.0)


class TestPrimaryAdmission:
    async def test_new_primary_gets_generated_key(self, clock, make_ws):
        registry = SessionRegistry(clock=clock, key_factory=KeySequence("K7M2XZ"))
        ws = make_ws({"type": "primary_connect"})
        conn = peer(ws)

        admission = await admit(conn, registry, MessageRouter(registry), timeout=1.0)

        assert admission == Admission(key="K7M2XZ", role=Role.PRIMARY)
        assert conn.role is Role.PRIMARY
        assert ws.sent_json == [{"type": "primary_connect_response", "key": "K7M2XZ", "success": True}]
        assert registry.primary_of("K7M2XZ") is conn

    async def test_requested_key_is_normalised(self, registry, router, make_ws):
        ws = make_ws({"type": "primary_connect", "existingKey": "  k7m2xz "})

        admission = await admit(peer(ws), registry, router, timeout=1.0)

        assert admission.key == "K7M2XZ"
        assert ws.sent_json[0]["key"] == "K7M2XZ"

    async def test_blank_key_is_treated_as_missing(self, clock, make_ws):
        registry = SessionRegistry(clock=clock, key_factory=KeySequence("GEN234"))
        ws = make_ws({"type": "primary_connect", "existingKey": "   "})

        admission = await admit(peer(ws), registry, MessageRouter(registry), timeout=1.0)

        assert admission.key == "GEN234"

    async def test_second_primary_on_live_key_gets_new_key(self, clock, make_ws):
        registry = SessionRegistry(clock=clock, key_factory=KeySequence("AAAAAA", "BBBBBB"))
        router = MessageRouter(registry)
        first = peer(make_ws({"type": "primary_connect"}))
        await admit(first, registry, router, timeout=1.0)

        ws = make_ws({"type": "primary_connect", "existingKey": "AAAAAA"})
        admission = await admit(peer(ws), registry, router, timeout=1.0)

        assert admission.key == "BBBBBB"
        assert ws.sent_json == [{"type": "primary_connect_response", "key": "BBBBBB", "success": True}]
        assert registry.primary_of("AAAAAA") is first
        assert first.websocket.closed is False

    async def test_primary_gets_no_catch_up(self, registry, router, make_ws):
        await registry.create_or_attach_primary("ABC234", peer(make_ws()))
        await registry.update_state("ABC234", current_track=None, shuffle=True)
        await registry.detach_connection(registry.primary_of("ABC234"))

        ws = make_ws({"type": "primary_connect", "existingKey": "ABC234"})
        await admit(peer(ws), registry, router, timeout=1.0)

        assert [m["type"] for m in ws.sent_json] == ["primary_connect_response"]


class TestObserverAdmission:
    async def test_valid_key_gets_catch_up(self, registry, router, make_ws):
        primary = peer(make_ws())
        await registry.create_or_attach_primary("ABC234", primary)
        await registry.update_state("ABC234", repeat_mode=RepeatMode.ALL)
        ws = make_ws({"type": "observer_connect", "key": "abc234"})
        conn = peer(ws)

        admission = await admit(conn, registry, router, timeout=1.0)

        assert admission == Admission(key="ABC234", role=Role.OBSERVER)
        assert conn.role is Role.OBSERVER
        assert conn in registry.observers_of("ABC234")
        assert [m["type"] for m in ws.sent_json] == ["playlist_update", "playback_mode_update"]
        assert ws.sent_json[1]["repeatMode"] == "ALL"

    async def test_unknown_key_closes_with_cannot_accept(self, registry, router, make_ws):
        ws = make_ws({"type": "observer_connect", "key": "NOPE22"})

        assert await admit(peer(ws), registry, router, timeout=1.0) is None

        assert ws.close_code == CLOSE_CANNOT_ACCEPT
        assert ws.close_reason == "Invalid key"
        assert ws.sent_messages == []
        assert len(registry) == 0

    async def test_key_without_primary_is_rejected(self, registry, router, make_ws):
        primary = peer(make_ws())
        await registry.create_or_attach_primary("ABC234", primary)
        await registry.detach_connection(primary)
        ws = make_ws({"type": "observer_connect", "key": "ABC234"})

        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert ws.close_code == CLOSE_CANNOT_ACCEPT

    async def test_blank_key_is_rejected(self, registry, router, make_ws):
        ws = make_ws({"type": "observer_connect", "key": "  "})
        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert ws.close_code == CLOSE_CANNOT_ACCEPT


class TestAdmissionFailures:
    async def test_timeout(self, registry, router, make_ws):
        ws = make_ws()

        assert await admit(peer(ws), registry, router, timeout=0.05) is None

        assert ws.close_code == CLOSE_CANNOT_ACCEPT
        assert ws.close_reason == "Connection timeout"

    async def test_invalid_json(self, registry, router, make_ws):
        ws = make_ws("{not json")
        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert ws.close_code == CLOSE_PROTOCOL_ERROR
        assert ws.close_reason == "Invalid initial message"

    async def test_binary_frame(self, registry, router, make_ws):
        ws = make_ws(json.dumps({"type": "primary_connect"}).encode())
        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert ws.close_code == CLOSE_PROTOCOL_ERROR
        assert len(registry) == 0

    @pytest.mark.parametrize(
        "first",
        [
            {"type": "request_current_state"},
            {"type": "playback_command", "action": "PLAY"},
            {"type": "position_update", "position": 0},
            {"type": "error", "message": "hi"},
        ],
    )
    async def test_non_connect_first_message(self, registry, router, make_ws, first):
        ws = make_ws(first)
        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert ws.close_code == CLOSE_PROTOCOL_ERROR
        assert ws.sent_messages == []

    async def test_peer_closes_before_handshake(self, registry, router, make_ws):
        ws = make_ws()
        ws.disconnect()

        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert ws.close_code is None

    async def test_abnormal_close_before_handshake(self, registry, router, make_ws):
        ws = make_ws(ConnectionClosedError(None, None))
        assert await admit(peer(ws), registry, router, timeout=1.0) is None
        assert len(registry) == 0

    async def test_failed_admission_leaves_connection_roleless(self, registry, router, make_ws):
        conn = peer(make_ws("nope"))
        await admit(conn, registry, router, timeout=1.0)
        assert conn.role is None
