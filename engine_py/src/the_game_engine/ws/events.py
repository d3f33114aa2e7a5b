"""
WebSocket event models and validation.
"""

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from ..constants import now_ms


class EventType(str, Enum):
    """Inbound event types."""
    CREATE_ROOM = "create_room"
    JOIN_ROOM = "join_room"
    GAME_ACTION = "game_action"
    CHAT_MESSAGE = "chat_message"
    LEAVE_ROOM = "leave_room"
    SELECT_STARTING_PLAYER = "select_starting_player"
    PING = "ping"


class GameActionType(str, Enum):
    PLAY_CARD = "play_card"
    END_TURN = "end_turn"
    UNDO_MOVE = "undo_move"


# Inbound event models
class BaseEvent(BaseModel):
    """Base event model; the wire format is camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class CreateRoomEvent(BaseEvent):
    """Create room event."""
    type: Literal["create_room"]
    player_id: str = Field(..., min_length=1, max_length=64)
    player_name: str = Field(..., min_length=1, max_length=30)


class JoinRoomEvent(BaseEvent):
    """Join or rejoin room event."""
    type: Literal["join_room"]
    room_id: str = Field(..., min_length=1, max_length=16)
    player_id: str = Field(..., min_length=1, max_length=64)
    player_name: str = Field(..., min_length=1, max_length=30)


class GameAction(BaseEvent):
    """A move inside a game_action event."""
    type: GameActionType
    card_id: Optional[str] = None
    pile_id: Optional[str] = None

    @model_validator(mode="after")
    def require_card_and_pile(self):
        if self.type == GameActionType.PLAY_CARD and (not self.card_id or not self.pile_id):
            raise ValueError("play_card requires cardId and pileId")
        return self


class GameActionEvent(BaseEvent):
    """Game action event."""
    type: Literal["game_action"]
    action: GameAction


class ChatBody(BaseEvent):
    """Client part of a chat message; id, author and time are stamped by the server."""
    message: str = Field(..., min_length=1, max_length=500)
    is_hint: bool = False


class ChatEvent(BaseEvent):
    """Chat message event."""
    type: Literal["chat_message"]
    message: ChatBody


class LeaveRoomEvent(BaseEvent):
    """Leave room event."""
    type: Literal["leave_room"]


class SelectStartingPlayerEvent(BaseEvent):
    """Select starting player event; an empty id picks automatically."""
    type: Literal["select_starting_player"]
    starting_player_id: Optional[str] = None


class PingEvent(BaseEvent):
    """Keep-alive event."""
    type: Literal["ping"]


# Union type for all inbound events
InboundEvent = Annotated[
    Union[
        CreateRoomEvent,
        JoinRoomEvent,
        GameActionEvent,
        ChatEvent,
        LeaveRoomEvent,
        SelectStartingPlayerEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


# Outbound event models
class OutboundEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    timestamp: int = Field(default_factory=now_ms)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class RoomCreatedEvent(OutboundEvent):
    type: Literal["room_created"] = "room_created"
    room_id: str
    player_id: str
    players: List[Dict[str, Any]]


class RoomJoinedEvent(OutboundEvent):
    type: Literal["room_joined"] = "room_joined"
    room_id: str
    player_id: str
    players: List[Dict[str, Any]]


class PlayerJoinedEvent(OutboundEvent):
    type: Literal["player_joined"] = "player_joined"
    player: Dict[str, Any]


class PlayerLeftEvent(OutboundEvent):
    type: Literal["player_left"] = "player_left"
    player_id: str


class PlayerDisconnectedEvent(OutboundEvent):
    type: Literal["player_disconnected"] = "player_disconnected"
    player_id: str
    player_name: str


class PlayerReconnectedEvent(OutboundEvent):
    type: Literal["player_reconnected"] = "player_reconnected"
    player_id: str
    player_name: str


class GameStateUpdateEvent(OutboundEvent):
    type: Literal["game_state_update"] = "game_state_update"
    game_state: Dict[str, Any]
    chat_messages: List[Dict[str, Any]]


class ChatBroadcastEvent(OutboundEvent):
    type: Literal["chat_message"] = "chat_message"
    message: Dict[str, Any]


class GameErrorEvent(OutboundEvent):
    """Rule violation, sent to the acting player only."""
    type: Literal["game_error"] = "game_error"
    code: str
    error: str


class ErrorEvent(OutboundEvent):
    """Protocol or lookup error."""
    type: Literal["error"] = "error"
    code: str
    error: str


class PongEvent(OutboundEvent):
    type: Literal["pong"] = "pong"


def parse_inbound_event(data: Any) -> InboundEvent:
    """
    Parse raw event data into the matching event model.

    Args:
        data: Decoded JSON from the WebSocket

    Returns:
        Parsed event model

    Raises:
        ValueError: If the event type is unknown or the data is malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")

    event_type = data.get("type")
    if not event_type:
        raise ValueError("Missing event type")

    try:
        EventType(event_type)
    except ValueError:
        raise ValueError(f"Unknown message type: {event_type}")

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'][1:]) or 'message'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValueError(f"Invalid {event_type} message: {problems}")


def create_error_event(code: str, message: str) -> ErrorEvent:
    """Create an error event."""
    return ErrorEvent(code=code, error=message)


def create_game_error_event(code: str, message: str) -> GameErrorEvent:
    """Create a game error event."""
    return GameErrorEvent(code=code, error=message)


def create_game_state_event(game_state: Dict[str, Any], chat_messages: List[Dict[str, Any]]) -> GameStateUpdateEvent:
    """Create a full state event."""
    return GameStateUpdateEvent(game_state=game_state, chat_messages=chat_messages)
