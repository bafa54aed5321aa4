"""Pairing-key generation.

Keys are short, human-typeable and case-insensitive. Uniqueness is enforced
by the session registry, not here.
"""

from __future__ import annotations

import secrets

# 32 unambiguous characters (no 0/O/1/I)
SAFE_CHARS: str = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"

KEY_LENGTH: int = 6


def generate_key(length: int = KEY_LENGTH) -> str:
    """Generate a single pairing key (not collision-checked)."""
    return "".join(secrets.choice(SAFE_CHARS) for _ in range(length))


def normalise_key(raw: str | None) -> str | None:
    """Normalise user input to uppercase, stripping whitespace.

    Returns ``None`` for a missing or blank key.
    """
    if raw is None:
        return None
    key = raw.strip().upper()
    return key or None
