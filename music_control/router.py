"""
Message router - per-message policy for admitted connections.

Each role has an allow-list covering every message kind. Disallowed or
undecodable messages get a soft error reply; the connection stays open.

    primary updates   -> merge into session state, broadcast to observers
    observer commands -> forward unmodified to the primary
    state request     -> catch-up sequence back to the requester
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from music_control.connection import DeliveryResult, PeerConnection, Role
from music_control.messages import (
    ErrorCode,
    ErrorMessage,
    MessageDecodeError,
    MessageType,
    PlaybackModeUpdate,
    PlaybackStateUpdate,
    PlaylistUpdate,
    PositionUpdate,
    VolumeUpdate,
    WireModel,
    decode_message,
    encode_message,
    message_type,
)
from music_control.registry import SessionRegistry

logger = logging.getLogger(__name__)

INVALID_FORMAT_ERROR = "Invalid message format"
INVALID_ROLE_ERROR = "Invalid message type for this connection"
PROCESSING_ERROR = "Failed to process message"

_OBSERVER_COMMANDS = frozenset(
    {
        MessageType.PLAYBACK_COMMAND,
        MessageType.SEEK_COMMAND,
        MessageType.PLAYLIST_MOVE_COMMAND,
        MessageType.PLAYLIST_REMOVE_COMMAND,
        MessageType.SHUFFLE_COMMAND,
        MessageType.REPEAT_COMMAND,
        MessageType.VOLUME_COMMAND,
    }
)

# Every MessageType must appear in both tables (checked below).
PRIMARY_ALLOWED: Dict[MessageType, bool] = {
    MessageType.PRIMARY_CONNECT: True,
    MessageType.PRIMARY_CONNECT_RESPONSE: True,
    MessageType.OBSERVER_CONNECT: False,
    MessageType.PLAYBACK_STATE_UPDATE: True,
    MessageType.PLAYLIST_UPDATE: True,
    MessageType.PLAYBACK_MODE_UPDATE: True,
    MessageType.POSITION_UPDATE: True,
    MessageType.VOLUME_UPDATE: True,
    MessageType.PLAYBACK_COMMAND: False,
    MessageType.SEEK_COMMAND: False,
    MessageType.PLAYLIST_MOVE_COMMAND: False,
    MessageType.PLAYLIST_REMOVE_COMMAND: False,
    MessageType.SHUFFLE_COMMAND: False,
    MessageType.REPEAT_COMMAND: False,
    MessageType.VOLUME_COMMAND: False,
    MessageType.REQUEST_CURRENT_STATE: False,
    MessageType.ERROR: True,
}

OBSERVER_ALLOWED: Dict[MessageType, bool] = {
    MessageType.PRIMARY_CONNECT: False,
    MessageType.PRIMARY_CONNECT_RESPONSE: True,
    MessageType.OBSERVER_CONNECT: True,
    MessageType.PLAYBACK_STATE_UPDATE: False,
    MessageType.PLAYLIST_UPDATE: False,
    MessageType.PLAYBACK_MODE_UPDATE: False,
    MessageType.POSITION_UPDATE: False,
    MessageType.VOLUME_UPDATE: False,
    MessageType.PLAYBACK_COMMAND: True,
    MessageType.SEEK_COMMAND: True,
    MessageType.PLAYLIST_MOVE_COMMAND: True,
    MessageType.PLAYLIST_REMOVE_COMMAND: True,
    MessageType.SHUFFLE_COMMAND: True,
    MessageType.REPEAT_COMMAND: True,
    MessageType.VOLUME_COMMAND: True,
    MessageType.REQUEST_CURRENT_STATE: True,
    MessageType.ERROR: True,
}

ROLE_TABLES: Dict[Role, Dict[MessageType, bool]] = {
    Role.PRIMARY: PRIMARY_ALLOWED,
    Role.OBSERVER: OBSERVER_ALLOWED,
}


def _check_role_tables() -> None:
    for role, table in ROLE_TABLES.items():
        missing = set(MessageType) - set(table)
        if missing:
            names = ", ".join(sorted(m.value for m in missing))
            raise RuntimeError(f"{role.value} allow-list is missing: {names}")


_check_role_tables()


def is_allowed(role: Role, kind: MessageType) -> bool:
    return ROLE_TABLES[role][kind]


def state_fields(message: WireModel) -> Optional[dict]:
    """Return the ``PlayerState`` fields a primary update replaces."""
    if isinstance(message, PlaybackStateUpdate):
        return {
            "is_playing": message.is_playing,
            "current_position": message.current_position,
            "current_track": message.track,
        }
    if isinstance(message, PlaylistUpdate):
        return {"playlist": list(message.tracks), "current_index": message.current_index}
    if isinstance(message, PlaybackModeUpdate):
        return {"shuffle": message.shuffle, "repeat_mode": message.repeat_mode}
    if isinstance(message, PositionUpdate):
        return {"current_position": message.position}
    if isinstance(message, VolumeUpdate):
        return {"volume": message.volume}
    return None


class MessageRouter:
    """Validates and dispatches steady-state messages for admitted connections."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self.messages_routed = 0
        self.messages_rejected = 0

    async def handle_text(self, connection: PeerConnection, key: str, text: str) -> None:
        """Handle one inbound text frame. Never raises for bad input."""
        try:
            message = decode_message(text)
        except MessageDecodeError as e:
            logger.error(f"Failed to parse message from {connection!r}: {e}")
            self.messages_rejected += 1
            await self.send_error(connection, INVALID_FORMAT_ERROR)
            return

        kind = message_type(message)
        if not is_allowed(connection.role, kind):
            logger.warning(f"Invalid message type for {connection!r}: {kind.value}")
            self.messages_rejected += 1
            await self.send_error(connection, INVALID_ROLE_ERROR)
            return

        if not self.registry.is_attached(key, connection):
            # Session expired (and possibly re-created under the same key)
            logger.warning(f"Dropping {kind.value} from {connection!r}: not attached to session {key}")
            self.messages_rejected += 1
            return

        try:
            if connection.role is Role.PRIMARY:
                await self.handle_primary_message(key, message)
            else:
                await self.handle_observer_message(connection, key, message)
            self.messages_routed += 1
        except Exception as e:
            logger.error(f"Error processing {kind.value} from {connection!r}: {e}", exc_info=True)
            await self.send_error(connection, PROCESSING_ERROR)

    async def handle_primary_message(self, key: str, message: WireModel) -> None:
        fields = state_fields(message)
        if fields is None:
            return
        if await self.registry.update_state(key, **fields) is None:
            return
        await self.broadcast_to_observers(key, message)

    async def handle_observer_message(
        self, connection: PeerConnection, key: str, message: WireModel
    ) -> None:
        kind = message_type(message)
        if kind in _OBSERVER_COMMANDS:
            await self.forward_to_primary(key, message)
        elif kind is MessageType.REQUEST_CURRENT_STATE:
            await self.send_catch_up(connection, key)

    # ------------------------------------------------------------------
    # Delivery (best-effort, at-most-once)
    # ------------------------------------------------------------------

    async def broadcast_to_observers(self, key: str, message: WireModel) -> List[DeliveryResult]:
        """Send one encoding of ``message`` to every observer of ``key``.

        Failed observers stay attached; only a transport close detaches them.
        """
        observers = self.registry.observers_of(key)
        if not observers:
            return []
        text = encode_message(message)
        results = await asyncio.gather(*(observer.send(text) for observer in observers))
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning(f"Broadcast on session {key}: {failed}/{len(results)} observer(s) failed")
        return list(results)

    async def forward_to_primary(self, key: str, message: WireModel) -> DeliveryResult:
        primary = self.registry.primary_of(key)
        if primary is None:
            logger.debug(f"No primary on session {key}; dropped {message_type(message).value}")
            return DeliveryResult.FAILED
        return await primary.send_message(message)

    async def send_catch_up(self, connection: PeerConnection, key: str) -> List[DeliveryResult]:
        """Send the current state snapshot to ``connection``.

        Order: playback state (only when a track is loaded), playlist, mode.
        """
        session = self.registry.get(key)
        if session is None:
            return []
        state = session.state

        messages: List[WireModel] = []
        if state.current_track is not None:
            messages.append(
                PlaybackStateUpdate(
                    is_playing=state.is_playing,
                    current_position=state.current_position,
                    track=state.current_track,
                )
            )
        messages.append(PlaylistUpdate(tracks=list(state.playlist), current_index=state.current_index))
        messages.append(PlaybackModeUpdate(shuffle=state.shuffle, repeat_mode=state.repeat_mode))

        results = []
        for message in messages:
            results.append(await connection.send_message(message))
        if not all(r.ok for r in results):
            logger.warning(f"Failed to send initial state to {connection!r} on session {key}")
        return results

    async def send_error(self, connection: PeerConnection, text: str) -> DeliveryResult:
        return await connection.send_message(ErrorMessage(code=ErrorCode.INVALID_COMMAND, message=text))
