"""
Binds WebSocket connections to (player, room) pairs and drives the game.

Handlers for one connection run in receipt order. Any ``await`` (storage or
socket writes) lets other connections' handlers run, so rooms are looked up
again after persisting rather than trusted from before the suspension.
"""

import logging
import random
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional

import orjson
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.websockets import WebSocketState

from ..constants import (
    ALL_SECTIONS, SECTION_CHAT, SECTION_GAME_STATE, SECTION_METADATA, STATUS_LOST, STATUS_WON,
    now_ms
)
from ..engine import (
    deal_game, end_turn, play_card, select_starting_player, set_player_connected, undo_last_move
)
from ..errors import (
    ALREADY_STARTED, GAME_NOT_ACTIVE, INTERNAL_ERROR, INVALID_MESSAGE, NO_PLAYERS, NOT_IN_ROOM,
    ROOM_FULL, ROOM_NOT_FOUND, GameError, InvalidGameStatus, RoomError, raise_room_error
)
from ..models import ChatMessage, Room, RoomPlayer
from ..rules import RuleConfig, default_rules
from ..serialization import (
    create_client_game_state, get_public_room_info, serialize_chat_message, serialize_player_for_list
)
from ..store import Binding, RoomStore
from .events import (
    ChatBroadcastEvent, ChatEvent, CreateRoomEvent, GameActionEvent, GameActionType, JoinRoomEvent,
    LeaveRoomEvent, OutboundEvent, PingEvent, PlayerDisconnectedEvent, PlayerJoinedEvent,
    PlayerLeftEvent, PlayerReconnectedEvent, PongEvent, RoomCreatedEvent, RoomJoinedEvent,
    SelectStartingPlayerEvent, create_error_event, create_game_error_event, create_game_state_event,
    parse_inbound_event
)

logger = logging.getLogger(__name__)

# Close code sent to a socket replaced by a newer connection of the same player
REPLACED_CLOSE_CODE = 4000


def is_open(socket: Any) -> bool:
    return (
        socket is not None
        and socket.client_state == WebSocketState.CONNECTED
        and socket.application_state == WebSocketState.CONNECTED
    )


class ConnectionCoordinator:
    """Dispatches inbound messages to the rules engine and fans out results."""

    def __init__(self, store: RoomStore, rules: RuleConfig = default_rules,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.rules = rules
        self.rng = rng

    # Connection lifecycle

    async def serve(self, websocket: WebSocket) -> None:
        """Accept a connection and process its messages until it drops."""
        await websocket.accept()
        logger.info("🔗 WebSocket connection accepted")

        try:
            while True:
                raw = await websocket.receive_text()
                await self.handle_message(websocket, raw)
        except WebSocketDisconnect:
            logger.info("🔌 WebSocket disconnected")
        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        finally:
            await self.disconnect(websocket)

    async def handle_message(self, websocket: Any, raw: str) -> None:
        try:
            event = parse_inbound_event(orjson.loads(raw))
        except orjson.JSONDecodeError:
            await self._send(websocket, create_error_event(INVALID_MESSAGE, "Invalid message format"))
            return
        except ValueError as e:
            logger.info(f"❌ Rejected message: {e}")
            await self._send(websocket, create_error_event(INVALID_MESSAGE, str(e)))
            return

        try:
            await self.dispatch(websocket, event)
        except RoomError as e:
            logger.info(f"❌ {event.type} failed: {e.message}")
            await self._send(websocket, create_error_event(e.code, e.message))
        except Exception:
            logger.exception(f"Error handling {event.type}")
            await self._send(websocket, create_error_event(INTERNAL_ERROR, "Failed to process message"))

    async def dispatch(self, websocket: Any, event) -> None:
        if isinstance(event, CreateRoomEvent):
            await self.handle_create_room(websocket, event)
        elif isinstance(event, JoinRoomEvent):
            await self.handle_join_room(websocket, event)
        elif isinstance(event, GameActionEvent):
            await self.handle_game_action(websocket, event)
        elif isinstance(event, ChatEvent):
            await self.handle_chat(websocket, event)
        elif isinstance(event, LeaveRoomEvent):
            await self.leave(websocket)
        elif isinstance(event, SelectStartingPlayerEvent):
            await self.handle_select_starting_player(websocket, event)
        elif isinstance(event, PingEvent):
            await self._send(websocket, PongEvent())
        else:
            raise ValueError(f"Unhandled event type: {type(event)}")

    async def leave(self, websocket: Any) -> None:
        """Explicit leave: the player gives up their seat."""
        await self._release(websocket, remove=True)

    async def disconnect(self, websocket: Any) -> None:
        """Connection dropped: keep the seat while a game is in progress."""
        await self._release(websocket, remove=False)

    # Handlers

    async def handle_create_room(self, websocket: Any, event: CreateRoomEvent) -> None:
        await self._leave_previous(websocket, None, event.player_id)

        player = RoomPlayer(id=event.player_id, name=event.player_name)
        room = await self.store.create_room(player)
        self._attach(room, websocket, player.id)
        logger.info(f"✅ Room {room.id} created by {player.name}")

        await self._send(websocket, RoomCreatedEvent(
            room_id=room.id,
            player_id=player.id,
            players=[serialize_player_for_list(player)],
        ))

    async def handle_join_room(self, websocket: Any, event: JoinRoomEvent) -> None:
        room_id, player_id = event.room_id, event.player_id
        logger.info(f"🎮 Player {event.player_name} ({player_id}) joining room {room_id}")

        was_resident = room_id in self.store
        room = await self.store.get(room_id)
        if room is None:
            raise_room_error(ROOM_NOT_FOUND, "Room not found")
        if was_resident and not room.connections:
            room = await self.store.hydrate(room)

        # capacity is checked before any previous seat is released
        self._check_capacity(room, player_id)
        await self._leave_previous(websocket, room_id, player_id)
        # the room may have been dropped from memory while we awaited
        room = self.store.resident(room_id) or self.store.add(room)

        rejoining = player_id in room.players
        self._check_capacity(room, player_id)

        previous = room.connections.get(player_id)
        if previous is not None and previous is not websocket:
            self.store.unbind(previous)
            await self._close(previous)

        room.players[player_id] = RoomPlayer(id=player_id, name=event.player_name)
        self._attach(room, websocket, player_id)
        room.touch()

        in_game = room.game_state is not None and room.game_state.get_player(player_id) is not None
        if in_game:
            room.game_state = set_player_connected(room.game_state, player_id, True)

        logger.info(f"✅ Player {event.player_name} {'rejoined' if rejoining else 'joined'} room {room_id}")
        await self.store.persist(room)

        await self._send(websocket, RoomJoinedEvent(
            room_id=room.id,
            player_id=player_id,
            players=[serialize_player_for_list(p) for p in room.players.values()],
        ))

        if in_game:
            await self.broadcast_to_room(room, PlayerReconnectedEvent(
                player_id=player_id, player_name=event.player_name
            ), exclude_player_id=player_id)
        if in_game or (room.game_state is not None and rejoining):
            await self._send(websocket, self._state_event(room, player_id))
        if not rejoining:
            await self.broadcast_to_room(room, PlayerJoinedEvent(
                player=serialize_player_for_list(room.players[player_id])
            ), exclude_player_id=player_id)

    async def handle_game_action(self, websocket: Any, event: GameActionEvent) -> None:
        binding = self._require_binding(websocket)
        room = self.store.resident(binding.room_id)
        if room is None or room.game_state is None:
            raise_room_error(GAME_NOT_ACTIVE, "No active game in this room")

        action = event.action
        player_id = binding.player_id
        state = room.game_state
        try:
            if action.type == GameActionType.PLAY_CARD:
                new_state = play_card(state, player_id, action.card_id, action.pile_id, self.rules)
            elif action.type == GameActionType.END_TURN:
                new_state = end_turn(state, player_id, self.rules)
            else:
                new_state = undo_last_move(state, player_id)
        except GameError as e:
            logger.info(f"❌ {action.type.value} by {player_id} in room {room.id} rejected: {e.message}")
            await self._send(websocket, create_game_error_event(e.code, e.message))
            return

        room.game_state = new_state
        room.touch()
        logger.info(f"🃏 {action.type.value} by {player_id} in room {room.id}")
        if new_state.status in (STATUS_WON, STATUS_LOST):
            logger.info(f"🏁 Game in room {room.id} finished: {new_state.status}")

        await self._commit(room, (SECTION_METADATA, SECTION_GAME_STATE), self.broadcast_game_state)

    async def handle_chat(self, websocket: Any, event: ChatEvent) -> None:
        binding = self._require_binding(websocket)
        room = self.store.resident(binding.room_id)
        if room is None:
            raise_room_error(NOT_IN_ROOM, "Not in a room")

        author = room.players.get(binding.player_id)
        message = ChatMessage(
            id=str(uuid.uuid4()),
            player_id=binding.player_id,
            player_name=author.name if author else "Unknown",
            message=event.message.message,
            timestamp=now_ms(),
            is_hint=event.message.is_hint,
        )
        room.chat_messages.append(message)
        room.chat_messages = room.chat_messages[-self.rules.chat_limit:]
        room.touch()

        outbound = ChatBroadcastEvent(message=serialize_chat_message(message))
        await self._commit(room, (SECTION_METADATA, SECTION_CHAT),
                           lambda r: self.broadcast_to_room(r, outbound))

    async def handle_select_starting_player(self, websocket: Any, event: SelectStartingPlayerEvent) -> None:
        binding = self._require_binding(websocket)
        try:
            await self.start_game(binding.room_id, event.starting_player_id or None)
        except GameError as e:
            logger.info(f"❌ Failed to select starting player for room {binding.room_id}: {e.message}")
            await self._send(websocket, create_error_event(e.code, e.message))

    # Two-phase game start (also used by the HTTP side channel)

    async def deal_cards(self, room_id: str) -> Room:
        """Deal hands to the roster; nobody has the turn until a starter is selected."""
        room = await self.store.get(room_id)
        if room is None:
            raise_room_error(ROOM_NOT_FOUND, "Room not found")
        if room.is_started:
            raise_room_error(ALREADY_STARTED, "Game already started")
        if not room.players:
            raise_room_error(NO_PLAYERS, "No players in room")

        room.game_state = deal_game(
            room.id,
            list(room.players.values()),
            rng=self.rng,
            connected=set(room.connections),
            rules=self.rules,
        )
        room.is_started = True
        room.touch()
        logger.info(f"🃏 Cards dealt for room {room.id}")

        await self._commit(room, ALL_SECTIONS, self.broadcast_game_state)
        return room

    async def start_game(self, room_id: str, starting_player_id: Optional[str] = None) -> Room:
        room = await self.store.get(room_id)
        if room is None:
            raise_room_error(ROOM_NOT_FOUND, "Room not found")
        if room.game_state is None:
            raise InvalidGameStatus("Cards have not been dealt")

        room.game_state = select_starting_player(room.game_state, starting_player_id, self.rules)
        room.touch()
        logger.info(f"🏁 Game started in room {room.id}, {room.game_state.current_player.name} goes first")

        await self._commit(room, (SECTION_METADATA, SECTION_GAME_STATE), self.broadcast_game_state)
        return room

    async def create_empty_room(self) -> Room:
        return await self.store.create_room()

    async def room_summary(self, room_id: str) -> Optional[dict]:
        room = await self.store.get(room_id)
        return get_public_room_info(room) if room else None

    # Broadcasting

    async def broadcast_to_room(self, room: Room, event: OutboundEvent,
                                exclude_player_id: Optional[str] = None) -> None:
        payload = event.to_json()

        async def send(player_id: str, socket: Any) -> bool:
            if player_id == exclude_player_id:
                return True
            return await self._send_text(socket, payload)

        await self._for_each_open_connection(room, send)

    async def broadcast_game_state(self, room: Room) -> None:
        """Send every connected player their own masked view of the game."""
        if room.game_state is None:
            return

        async def send(player_id: str, socket: Any) -> bool:
            return await self._send(socket, self._state_event(room, player_id))

        await self._for_each_open_connection(room, send)

    async def _for_each_open_connection(self, room: Room,
                                        send: Callable[[str, Any], Awaitable[bool]]) -> None:
        stale = []
        for player_id, socket in list(room.connections.items()):
            if not is_open(socket) or not await send(player_id, socket):
                stale.append((player_id, socket))

        for player_id, socket in stale:
            # only drop the entry if the player has not reconnected meanwhile
            if room.connections.get(player_id) is socket:
                del room.connections[player_id]
                logger.info(f"Pruned stale connection of {player_id} in room {room.id}")

    def _state_event(self, room: Room, player_id: str):
        return create_game_state_event(
            create_client_game_state(room.game_state, player_id),
            [serialize_chat_message(m) for m in room.chat_messages],
        )

    # Helpers

    def _attach(self, room: Room, websocket: Any, player_id: str) -> None:
        room.connections[player_id] = websocket
        self.store.bind(websocket, player_id, room.id)

    def _check_capacity(self, room: Room, player_id: str) -> None:
        if player_id not in room.players and room.is_full:
            raise_room_error(ROOM_FULL, f"Room is full ({len(room.players)}/{room.max_players})")

    def _require_binding(self, websocket: Any) -> Binding:
        binding = self.store.binding(websocket)
        if binding is None:
            raise_room_error(NOT_IN_ROOM, "Not in a room")
        return binding

    async def _commit(self, room: Room, sections: Iterable[str],
                      broadcast: Callable[[Room], Awaitable[None]]) -> None:
        await self.store.persist(room, sections)
        if self.store.resident(room.id) is not room:
            logger.info(f"Room {room.id} left memory during save, skipping broadcast")
            return
        await broadcast(room)

    async def _leave_previous(self, websocket: Any, room_id: Optional[str], player_id: str) -> None:
        """Release an earlier binding of this socket to another room or player."""
        binding = self.store.binding(websocket)
        if binding is not None and binding != Binding(player_id, room_id):
            await self.leave(websocket)

    async def _release(self, websocket: Any, remove: bool) -> None:
        binding = self.store.unbind(websocket)
        if binding is None:
            return
        room = self.store.resident(binding.room_id)
        if room is None:
            return

        player_id = binding.player_id
        current = room.connections.get(player_id)
        if current is not None and current is not websocket:
            # the player is already connected through a newer socket
            return
        room.connections.pop(player_id, None)

        member = room.players.get(player_id)
        player_name = member.name if member else "Unknown"
        room.touch()

        if not remove and room.has_active_game:
            room.game_state = set_player_connected(room.game_state, player_id, False)
            logger.info(f"🔌 Player {player_id} disconnected from room {room.id}, seat kept")
            await self.broadcast_to_room(room, PlayerDisconnectedEvent(
                player_id=player_id, player_name=player_name
            ))
        else:
            room.players.pop(player_id, None)
            if room.game_state is not None:
                room.game_state = set_player_connected(room.game_state, player_id, False)
            logger.info(f"🚪 Player {player_id} left room {room.id}")
            await self.broadcast_to_room(room, PlayerLeftEvent(player_id=player_id))

        await self.store.persist(room)

        if self.store.resident(room.id) is room and not room.connections and not room.has_active_game:
            self.store.evict(room.id)
        elif not room.connections:
            logger.info(f"🔄 Room {room.id} has no connected players but an active game, kept in memory")

    async def _send(self, socket: Any, event: OutboundEvent) -> bool:
        return await self._send_text(socket, event.to_json())

    async def _send_text(self, socket: Any, payload: str) -> bool:
        try:
            await socket.send_text(payload)
            return True
        except Exception as e:
            logger.warning(f"Error sending to socket: {e}")
            return False

    async def _close(self, socket: Any) -> None:
        if not is_open(socket):
            return
        try:
            await socket.close(code=REPLACED_CLOSE_CODE)
        except Exception as e:
            logger.debug(f"Closing replaced socket failed: {e}")
