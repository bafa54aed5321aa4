"""A single client WebSocket as seen by the relay."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from typing import Any, Optional

from music_control.messages import WireModel, encode_message

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    PRIMARY = "primary"
    OBSERVER = "observer"


class DeliveryResult(enum.Enum):
    """Outcome of a best-effort, at-most-once send. Callers may ignore it."""

    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is DeliveryResult.DELIVERED


class PeerConnection:
    """Wraps a client socket with its role and a per-socket send lock.

    The socket may be written to concurrently by its own receive loop (error
    replies) and by other connections' broadcasts; the lock keeps each frame
    whole.
    """

    def __init__(self, websocket: Any, send_timeout: Optional[float] = 10.0):
        self.websocket = websocket
        self.send_timeout = send_timeout
        self.connected_at = time.time()
        self._role: Optional[Role] = None
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        role = self._role.value if self._role else "pending"
        return f"<PeerConnection {self.remote_address} role={role}>"

    @property
    def role(self) -> Optional[Role]:
        return self._role

    def assign_role(self, role: Role) -> None:
        """Set the role. A connection's role is fixed once assigned."""
        if self._role is not None:
            raise RuntimeError(f"Role already assigned ({self._role.value}) for {self!r}")
        self._role = role

    @property
    def remote_address(self) -> str:
        address = getattr(self.websocket, "remote_address", None)
        if isinstance(address, (tuple, list)) and address:
            return f"{address[0]}:{address[1]}" if len(address) > 1 else str(address[0])
        return str(address) if address else "unknown"

    async def send(self, text: str) -> DeliveryResult:
        """Send a text frame. Failures are logged and reported, never raised."""
        async with self._send_lock:
            try:
                if self.send_timeout is None:
                    await self.websocket.send(text)
                else:
                    await asyncio.wait_for(self.websocket.send(text), timeout=self.send_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Failed to send to {self!r}: {type(e).__name__}: {e}")
                return DeliveryResult.FAILED
        return DeliveryResult.DELIVERED

    async def send_message(self, message: WireModel) -> DeliveryResult:
        return await self.send(encode_message(message))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        """Close the socket, logging (not raising) any failure."""
        try:
            await self.websocket.close(code, reason)
        except Exception as e:
            logger.error(f"Error during connection closure for {self!r}: {e}")
