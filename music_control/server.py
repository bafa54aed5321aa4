"""
Music Control Server - pairs a media player app with its remote controllers.

One player app (the primary) and any number of remotes (observers) share a
short pairing key. The player pushes playback state, which is stored and
broadcast to the remotes; remotes send commands, which are forwarded to the
player.

Usage:
    music-control-server --port 8080

Architecture:
    Player app --(state updates)--> Server --(broadcast)--> Remote 1..N
    Player app <--(commands)------- Server <--(commands)--- Remote 1..N
"""

from __future__ import annotations

import asyncio
import logging
import time
from http import HTTPStatus
from typing import Any, Optional

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from music_control.admission import CLOSE_INTERNAL_ERROR, admit
from music_control.config import Settings, get_settings
from music_control.connection import PeerConnection
from music_control.lifecycle import LifecycleManager
from music_control.metrics import start_metrics_server
from music_control.rate_limiter import InMemoryRateLimiter
from music_control.registry import SessionRegistry
from music_control.router import MessageRouter

logger = logging.getLogger(__name__)

# Prune idle rate-limit buckets once this many addresses are tracked
_RATE_LIMIT_PRUNE_THRESHOLD = 10_000


class MusicControlServer:
    """
    WebSocket relay between player apps and remote controllers.

    Responsibilities:
    - Accept WebSocket connections on a single path
    - Run the admission handshake and assign each socket a role
    - Route steady-state messages through the MessageRouter
    - Detach sockets from the registry when they close
    - Sweep expired sessions periodically
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[SessionRegistry] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = (
            registry
            if registry is not None
            else SessionRegistry(ttl_seconds=self.settings.session_ttl_seconds)
        )
        self.router = MessageRouter(self.registry)
        self.lifecycle = LifecycleManager(
            self.registry, interval_seconds=self.settings.sweep_interval_seconds
        )

        limit = self.settings.connect_rate_limit_per_minute
        self.rate_limiter: Optional[InMemoryRateLimiter] = (
            InMemoryRateLimiter(max_requests=limit, window_seconds=60) if limit > 0 else None
        )

        # Connection health metrics
        self._start_time = time.time()
        self._connections_total = 0
        self._connections_active = 0
        self._connections_rate_limited = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Per-connection handling
    # ------------------------------------------------------------------

    def _client_address(self, websocket: Any, request: Any = None) -> str:
        if request is None:
            request = getattr(websocket, "request", None)
        if self.settings.trust_forwarded_headers:
            forwarded = request.headers.get("X-Forwarded-For") if request is not None else None
            if forwarded:
                return forwarded.split(",")[0].strip()
        address = getattr(websocket, "remote_address", None)
        if isinstance(address, (tuple, list)) and address:
            return str(address[0])
        return "unknown"

    def _check_rate_limit(self, address: str) -> bool:
        if self.rate_limiter is None:
            return True
        if len(self.rate_limiter) > _RATE_LIMIT_PRUNE_THRESHOLD:
            self.rate_limiter.prune()
        return self.rate_limiter.check(address)

    async def handle_connection(self, websocket: Any) -> None:
        """Serve one client socket from handshake to close."""
        connection = PeerConnection(websocket, send_timeout=self.settings.send_timeout_seconds)

        self._connections_total += 1
        self._connections_active += 1
        try:
            admission = await admit(
                connection,
                self.registry,
                self.router,
                timeout=self.settings.admission_timeout_seconds,
            )
            if admission is None:
                return

            try:
                async for raw in websocket:
                    if not isinstance(raw, str):
                        logger.warning(f"Ignoring binary frame from {connection!r}")
                        continue
                    await self.router.handle_text(connection, admission.key, raw)
                logger.info(f"{connection!r} on session {admission.key} closed normally")
            except ConnectionClosed as e:
                logger.info(f"{connection!r} on session {admission.key} connection closed: {e}")
            except Exception as e:
                logger.error(f"Error handling connection {connection!r}: {e}", exc_info=True)
                await connection.close(CLOSE_INTERNAL_ERROR, "Internal server error")
        finally:
            self._connections_active -= 1
            await self.lifecycle.detach(connection)

    def get_health_stats(self) -> dict:
        stats = self.registry.stats()
        return {
            "uptime_seconds": round(time.time() - self._start_time, 2),
            "sessions": stats["sessions"],
            "primaries": stats["primaries"],
            "observers": stats["observers"],
            "connections_total": self._connections_total,
            "connections_active": self._connections_active,
            "connections_rate_limited": self._connections_rate_limited,
            "messages_routed": self.router.messages_routed,
            "messages_rejected": self.router.messages_rejected,
            "sessions_expired": self.lifecycle.sessions_expired,
        }

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    def _process_request(self, connection, request):
        """Answer the upgrade request with an HTTP error instead of upgrading.

        404 for any path but the configured one, 429 once the client address
        is over its connection-attempt limit.
        """
        path = request.path.split("?", 1)[0]
        if path != self.settings.ws_path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")

        address = self._client_address(connection, request)
        if not self._check_rate_limit(address):
            self._connections_rate_limited += 1
            logger.warning(f"Rate limit exceeded for {address}; refusing upgrade")
            return connection.respond(HTTPStatus.TOO_MANY_REQUESTS, "Too Many Requests\n")
        return None

    async def run(self) -> None:
        """Start serving and block until ``stop()`` is called."""
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        settings = self.settings

        self.lifecycle.start()
        metrics_server = None
        try:
            async with serve(
                self.handle_connection,
                settings.host,
                settings.port,
                process_request=self._process_request,
                ping_interval=settings.ping_interval_seconds,
                ping_timeout=settings.ping_timeout_seconds,
                max_size=settings.max_message_size,
            ):
                logger.info(
                    f"Music control WebSocket: ws://{settings.host}:{settings.port}{settings.ws_path}"
                )
                if settings.metrics_port is not None:
                    metrics_server = await start_metrics_server(
                        self, settings.metrics_port, settings.host
                    )
                await self._stop_event.wait()
                logger.info("Shutting down music control server")
        finally:
            if metrics_server:
                metrics_server.close()
                await metrics_server.wait_closed()
            await self.lifecycle.stop()

    def stop(self) -> None:
        """Stop the server. Safe to call from a signal handler."""
        if self._loop is not None and self._stop_event is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)
