"""
Session registry - maps pairing keys to sessions.

A session binds at most one primary connection (the player app) to any
number of observer connections (remotes). Sessions outlive their sockets:
a disconnect only detaches the socket, and a session is removed only by the
expiry sweep.

Key policy for a primary connect:
    no key requested            -> new generated key, new session
    key held by a live primary  -> new generated key, independent session
                                   (the first primary is never evicted)
    key tracked, no primary     -> reattach, stored state kept
    key not tracked             -> new session under exactly that key
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple
from weakref import WeakSet

from music_control.connection import PeerConnection
from music_control.keys import generate_key
from music_control.messages import PlayerState

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 365 * 24 * 60 * 60


@dataclass
class Session:
    """A pairing session and its attached sockets."""

    key: str
    created_at: float
    expires_at: float
    last_active: float
    primary: Optional[PeerConnection] = None
    # Membership only: the connection's own handler owns the socket.
    observers: WeakSet[PeerConnection] = field(default_factory=WeakSet)
    state: PlayerState = field(default_factory=PlayerState)

    @property
    def has_primary(self) -> bool:
        return self.primary is not None

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class SessionRegistry:
    """
    Owns every session and the set of server-generated keys.

    Mutating operations are serialised by a single lock and never await I/O
    while holding it. Read helpers return snapshots.
    """

    def __init__(
        self,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        key_factory: Callable[[], str] = generate_key,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._key_factory = key_factory
        self._sessions: Dict[str, Session] = {}
        self._generated_keys: Set[str] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    # ------------------------------------------------------------------
    # Internal helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _generate_unique_key(self) -> str:
        # Client-chosen keys are never in _generated_keys, so the session map
        # is checked too; a tracked key is never handed out twice.
        while True:
            key = self._key_factory()
            if key in self._generated_keys or key in self._sessions:
                continue
            self._generated_keys.add(key)
            return key

    def _create_session(self, key: str, connection: PeerConnection) -> Session:
        now = self._clock()
        session = Session(
            key=key,
            created_at=now,
            expires_at=now + self.ttl_seconds,
            last_active=now,
            primary=connection,
        )
        self._sessions[key] = session
        return session

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def create_or_attach_primary(
        self, requested_key: Optional[str], connection: PeerConnection
    ) -> Tuple[str, bool]:
        """Bind ``connection`` as a session primary.

        Returns ``(assigned_key, accepted)``. The assigned key differs from
        the requested one when that key already has a live primary.
        """
        async with self._lock:
            if not requested_key:
                key = self._generate_unique_key()
                self._create_session(key, connection)
                logger.info(f"Created session {key} for {connection!r}")
                return key, True

            session = self._sessions.get(requested_key)
            if session is None:
                self._create_session(requested_key, connection)
                logger.info(f"Created session {requested_key} (client key) for {connection!r}")
                return requested_key, True

            if session.has_primary:
                key = self._generate_unique_key()
                self._create_session(key, connection)
                logger.info(
                    f"Session {requested_key} already has a primary; "
                    f"issued new session {key} for {connection!r}"
                )
                return key, True

            session.primary = connection
            session.last_active = self._clock()
            logger.info(f"Primary reattached to session {requested_key}: {connection!r}")
            return requested_key, True

    async def attach_observer(self, key: str, connection: PeerConnection) -> bool:
        """Add ``connection`` to a session's observers.

        Rejected unless the session exists and has a live primary.
        """
        async with self._lock:
            session = self._sessions.get(key)
            if session is None:
                logger.warning(f"Observer rejected: unknown session {key}")
                return False
            if not session.has_primary:
                logger.warning(f"Observer rejected: session {key} has no primary")
                return False
            session.observers.add(connection)
            logger.info(
                f"Observer attached to session {key}: {connection!r} "
                f"({len(session.observers)} observer(s))"
            )
            return True

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def update_state(self, key: str, **fields) -> Optional[PlayerState]:
        """Replace the named fields of a session's state; others are kept."""
        async with self._lock:
            session = self._sessions.get(key)
            if session is None:
                return None
            session.state = session.state.model_copy(update=fields)
            session.last_active = self._clock()
            return session.state

    def get(self, key: str) -> Optional[Session]:
        return self._sessions.get(key)

    def is_attached(self, key: str, connection: PeerConnection) -> bool:
        """True if ``connection`` is the primary or an observer of session ``key``."""
        session = self._sessions.get(key)
        if session is None:
            return False
        return session.primary is connection or connection in session.observers

    def primary_of(self, key: str) -> Optional[PeerConnection]:
        session = self._sessions.get(key)
        return session.primary if session else None

    def observers_of(self, key: str) -> List[PeerConnection]:
        session = self._sessions.get(key)
        return list(session.observers) if session else []

    def stats(self) -> dict:
        sessions = list(self._sessions.values())
        return {
            "sessions": len(sessions),
            "primaries": sum(1 for s in sessions if s.has_primary),
            "observers": sum(len(s.observers) for s in sessions),
        }

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def detach_connection(self, connection: PeerConnection) -> List[str]:
        """Detach ``connection`` from every session it belongs to.

        Idempotent and safe for connections that were never admitted.
        Sessions themselves are kept. Returns the affected keys.
        """
        affected = []
        async with self._lock:
            for key, session in self._sessions.items():
                if session.primary is connection:
                    session.primary = None
                    affected.append(key)
                if connection in session.observers:
                    session.observers.discard(connection)
                    affected.append(key)
        if affected:
            logger.debug(f"Detached {connection!r} from {len(affected)} session(s)")
        return affected

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        """Remove expired sessions and release their keys. Returns removed keys."""
        async with self._lock:
            if now is None:
                now = self._clock()
            expired = [key for key, session in self._sessions.items() if session.is_expired(now)]
            for key in expired:
                del self._sessions[key]
                self._generated_keys.discard(key)
        if expired:
            logger.info(f"Swept {len(expired)} expired session(s)")
        return expired
