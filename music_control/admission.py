"""
Connection admission - the one-shot handshake on a new socket.

The first frame must be ``primary_connect`` or ``observer_connect`` and must
arrive within the admission timeout. Any failure closes the socket with a
distinguishing close code and leaves the registry untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from websockets.exceptions import ConnectionClosed

from music_control.connection import PeerConnection, Role
from music_control.keys import normalise_key
from music_control.messages import (
    MessageDecodeError,
    ObserverConnect,
    PrimaryConnect,
    PrimaryConnectResponse,
    decode_message,
)
from music_control.registry import SessionRegistry
from music_control.router import MessageRouter

logger = logging.getLogger(__name__)

# RFC 6455 close codes
CLOSE_NORMAL = 1000
CLOSE_PROTOCOL_ERROR = 1002
CLOSE_CANNOT_ACCEPT = 1003
CLOSE_INTERNAL_ERROR = 1011

ADMISSION_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class Admission:
    """Result of a successful handshake."""

    key: str
    role: Role


async def admit(
    connection: PeerConnection,
    registry: SessionRegistry,
    router: MessageRouter,
    timeout: float = ADMISSION_TIMEOUT_SECONDS,
) -> Optional[Admission]:
    """Read and act on the first frame of ``connection``.

    Returns the admission on success. On failure the socket has already
    been closed and ``None`` is returned.
    """
    try:
        raw = await asyncio.wait_for(connection.websocket.recv(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{connection!r} timed out waiting for initial message")
        await connection.close(CLOSE_CANNOT_ACCEPT, "Connection timeout")
        return None
    except ConnectionClosed as e:
        logger.info(f"{connection!r} closed before handshake: {e}")
        return None

    if not isinstance(raw, str):
        logger.error(f"{connection!r} sent a binary initial frame")
        await connection.close(CLOSE_PROTOCOL_ERROR, "Invalid initial message")
        return None

    try:
        message = decode_message(raw)
    except MessageDecodeError as e:
        logger.error(f"Error during initial connection from {connection!r}: {e}")
        await connection.close(CLOSE_PROTOCOL_ERROR, "Invalid initial message")
        return None

    if isinstance(message, PrimaryConnect):
        return await _admit_primary(connection, registry, message)
    if isinstance(message, ObserverConnect):
        return await _admit_observer(connection, registry, router, message)

    logger.warning(f"{connection!r} sent {message.type} as initial message")
    await connection.close(CLOSE_PROTOCOL_ERROR, "Invalid initial message")
    return None


async def _admit_primary(
    connection: PeerConnection, registry: SessionRegistry, message: PrimaryConnect
) -> Optional[Admission]:
    requested = normalise_key(message.existing_key)
    key, accepted = await registry.create_or_attach_primary(requested, connection)
    await connection.send_message(PrimaryConnectResponse(key=key, success=accepted))
    if not accepted:
        await connection.close(CLOSE_CANNOT_ACCEPT, "Connection rejected")
        return None

    connection.assign_role(Role.PRIMARY)
    logger.info(f"[PRIMARY CONNECT] {connection!r} on session {key}")
    return Admission(key=key, role=Role.PRIMARY)


async def _admit_observer(
    connection: PeerConnection,
    registry: SessionRegistry,
    router: MessageRouter,
    message: ObserverConnect,
) -> Optional[Admission]:
    key = normalise_key(message.key)
    if key is None or not await registry.attach_observer(key, connection):
        await connection.close(CLOSE_CANNOT_ACCEPT, "Invalid key")
        return None

    connection.assign_role(Role.OBSERVER)
    logger.info(f"[OBSERVER CONNECT] {connection!r} on session {key}")
    await router.send_catch_up(connection, key)
    return Admission(key=key, role=Role.OBSERVER)
