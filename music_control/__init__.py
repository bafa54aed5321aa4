"""
Music Control Server - pairing and relay for remote media-player control.

A player app connects as the primary and receives a short pairing key;
remote controllers connect as observers with that key. The server stores
the player's state, broadcasts updates to the remotes and forwards their
commands back to the player.
"""

from .config import Settings, get_settings
from .connection import DeliveryResult, PeerConnection, Role
from .messages import PlayerState, RepeatMode, Track, decode_message, encode_message
from .registry import Session, SessionRegistry
from .router import MessageRouter
from .server import MusicControlServer

__version__ = "1.0.0"

__all__ = [
    "MusicControlServer",
    "SessionRegistry",
    "Session",
    "MessageRouter",
    "PeerConnection",
    "DeliveryResult",
    "Role",
    "PlayerState",
    "RepeatMode",
    "Track",
    "Settings",
    "decode_message",
    "encode_message",
    "get_settings",
]
