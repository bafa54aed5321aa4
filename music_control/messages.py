"""Wire messages exchanged between the player app, remotes and the server.

Every frame is a JSON object whose ``type`` field selects one message kind.
Field names on the wire are camelCase; snake_case names are accepted too.
Unknown fields are ignored and every field is emitted on encode, including
ones left at their default value.
"""

from __future__ import annotations

import enum
import json
from typing import Annotated, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel


class MessageType(str, enum.Enum):
    """Discriminator values for every message kind."""

    PRIMARY_CONNECT = "primary_connect"
    PRIMARY_CONNECT_RESPONSE = "primary_connect_response"
    OBSERVER_CONNECT = "observer_connect"

    # Player app -> remotes
    PLAYBACK_STATE_UPDATE = "playback_state_update"
    PLAYLIST_UPDATE = "playlist_update"
    PLAYBACK_MODE_UPDATE = "playback_mode_update"
    POSITION_UPDATE = "position_update"
    VOLUME_UPDATE = "volume_update"

    # Remotes -> player app
    PLAYBACK_COMMAND = "playback_command"
    SEEK_COMMAND = "seek_command"
    PLAYLIST_MOVE_COMMAND = "playlist_move_command"
    PLAYLIST_REMOVE_COMMAND = "playlist_remove_command"
    SHUFFLE_COMMAND = "shuffle_command"
    REPEAT_COMMAND = "repeat_command"
    VOLUME_COMMAND = "volume_command"
    REQUEST_CURRENT_STATE = "request_current_state"

    ERROR = "error"


class RepeatMode(str, enum.Enum):
    OFF = "OFF"
    ONE = "ONE"
    ALL = "ALL"


class PlaybackAction(str, enum.Enum):
    PLAY = "PLAY"
    PAUSE = "PAUSE"
    TOGGLE = "TOGGLE"
    NEXT = "NEXT"
    PREVIOUS = "PREVIOUS"


class ErrorCode(str, enum.Enum):
    INVALID_COMMAND = "INVALID_COMMAND"


class MessageDecodeError(ValueError):
    """Raised when a frame cannot be decoded into a known message kind."""


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Shared value types
# ---------------------------------------------------------------------------


class Track(WireModel):
    id: str
    title: str
    artist: str = ""
    album: str = ""
    duration: int = 0  # milliseconds
    artwork_url: str | None = None


class PlayerState(WireModel):
    """Snapshot of the player's playback state.

    Frozen: a session swaps in a new snapshot via ``model_copy(update=...)``
    so readers never observe a half-applied update.
    """

    model_config = ConfigDict(frozen=True)

    is_playing: bool = False
    current_position: int = 0  # milliseconds
    current_track: Track | None = None
    playlist: list[Track] = Field(default_factory=list)
    current_index: int = 0
    shuffle: bool = False
    repeat_mode: RepeatMode = RepeatMode.OFF
    volume: float = 1.0


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class PrimaryConnect(WireModel):
    type: Literal["primary_connect"] = "primary_connect"
    existing_key: str | None = None


class PrimaryConnectResponse(WireModel):
    type: Literal["primary_connect_response"] = "primary_connect_response"
    key: str
    success: bool


class ObserverConnect(WireModel):
    type: Literal["observer_connect"] = "observer_connect"
    key: str


# ---------------------------------------------------------------------------
# Player app updates
# ---------------------------------------------------------------------------


class PlaybackStateUpdate(WireModel):
    type: Literal["playback_state_update"] = "playback_state_update"
    is_playing: bool
    current_position: int
    track: Track | None = None


class PlaylistUpdate(WireModel):
    type: Literal["playlist_update"] = "playlist_update"
    tracks: list[Track] = Field(default_factory=list)
    current_index: int = 0


class PlaybackModeUpdate(WireModel):
    type: Literal["playback_mode_update"] = "playback_mode_update"
    shuffle: bool = False
    repeat_mode: RepeatMode = RepeatMode.OFF


class PositionUpdate(WireModel):
    type: Literal["position_update"] = "position_update"
    position: int


class VolumeUpdate(WireModel):
    type: Literal["volume_update"] = "volume_update"
    volume: float


# ---------------------------------------------------------------------------
# Remote commands
# ---------------------------------------------------------------------------


class PlaybackCommand(WireModel):
    type: Literal["playback_command"] = "playback_command"
    action: PlaybackAction


class SeekCommand(WireModel):
    type: Literal["seek_command"] = "seek_command"
    position: int


class PlaylistMoveCommand(WireModel):
    type: Literal["playlist_move_command"] = "playlist_move_command"
    from_index: int
    to_index: int


class PlaylistRemoveCommand(WireModel):
    type: Literal["playlist_remove_command"] = "playlist_remove_command"
    index: int


class ShuffleCommand(WireModel):
    type: Literal["shuffle_command"] = "shuffle_command"
    enabled: bool


class RepeatCommand(WireModel):
    type: Literal["repeat_command"] = "repeat_command"
    mode: RepeatMode


class VolumeCommand(WireModel):
    type: Literal["volume_command"] = "volume_command"
    volume: float


class RequestCurrentState(WireModel):
    type: Literal["request_current_state"] = "request_current_state"


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    code: ErrorCode = ErrorCode.INVALID_COMMAND
    message: str = ""


Message = Annotated[
    Union[
        PrimaryConnect,
        PrimaryConnectResponse,
        ObserverConnect,
        PlaybackStateUpdate,
        PlaylistUpdate,
        PlaybackModeUpdate,
        PositionUpdate,
        VolumeUpdate,
        PlaybackCommand,
        SeekCommand,
        PlaylistMoveCommand,
        PlaylistRemoveCommand,
        ShuffleCommand,
        RepeatCommand,
        VolumeCommand,
        RequestCurrentState,
        ErrorMessage,
    ],
    Field(discriminator="type"),
]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)

MESSAGE_MODELS: dict[MessageType, type[WireModel]] = {
    MessageType(model.model_fields["type"].default): model for model in get_args(get_args(Message)[0])
}

if set(MESSAGE_MODELS) != set(MessageType):
    raise RuntimeError(
        f"Message union out of sync with MessageType: {set(MessageType) ^ set(MESSAGE_MODELS)}"
    )


def message_type(message: WireModel) -> MessageType:
    """Return the ``MessageType`` of a decoded message."""
    return MessageType(message.type)


def _normalise_type(value: object) -> object:
    if not isinstance(value, str):
        return value
    return value.strip().lower().replace("-", "_")


def decode_message(raw: str | bytes) -> Message:
    """Decode a text frame into a message model.

    Raises ``MessageDecodeError`` for invalid JSON, a non-object payload, an
    unknown ``type`` or fields that fail validation.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageDecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MessageDecodeError(f"Expected a JSON object, got {type(data).__name__}")
    if "type" not in data:
        raise MessageDecodeError("Missing 'type' field")

    data["type"] = _normalise_type(data["type"])
    try:
        return _MESSAGE_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise MessageDecodeError(f"Invalid {data['type']!r} message: {e.error_count()} error(s)") from e


def encode_message(message: WireModel) -> str:
    """Encode a message to its JSON text form, defaults included."""
    return message.model_dump_json(by_alias=True)
