"""
Authoritative in-memory rooms, backed by best-effort durable storage.
"""

import asyncio
import logging
import random
from typing import Any, Dict, Iterable, NamedTuple, Optional, Tuple

from .constants import (
    ALL_SECTIONS, ROOM_ID_ALPHABET, ROOM_ID_LENGTH, ROOM_IDLE_TIMEOUT, now_ms
)
from .engine import set_player_connected
from .errors import PersistenceError
from .models import Room, RoomPlayer
from .persistence import RoomPersistence
from .rules import RuleConfig, default_rules
from .serialization import room_from_record, room_to_record

logger = logging.getLogger(__name__)


class Binding(NamedTuple):
    player_id: str
    room_id: str


class RoomStore:
    """
    Owns the room-by-id and connection-by-socket indices.

    The in-memory rooms are the source of truth; the persistence backend is
    read on a cache miss and written after every state change. Storage
    failures are logged and never reach the caller.
    """

    def __init__(self, persistence: RoomPersistence, rules: RuleConfig = default_rules,
                 idle_timeout: int = ROOM_IDLE_TIMEOUT):
        self.persistence = persistence
        self.rules = rules
        self.idle_timeout_ms = idle_timeout * 1000
        self._rooms: Dict[str, Room] = {}
        self._connections: Dict[Any, Binding] = {}

    # Rooms

    def resident(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def add(self, room: Room) -> Room:
        self._rooms[room.id] = room
        return room

    def evict(self, room_id: str) -> Optional[Room]:
        """Drop a room from memory; its stored record is kept."""
        room = self._rooms.pop(room_id, None)
        if room is not None:
            logger.info(f"🧹 Room {room_id} removed from memory")
        return room

    def room_count(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    async def generate_room_id(self) -> str:
        while True:
            room_id = "".join(random.choices(ROOM_ID_ALPHABET, k=ROOM_ID_LENGTH))
            if room_id in self._rooms:
                continue
            try:
                if await self.persistence.exists(room_id):
                    continue
            except PersistenceError as e:
                logger.warning(f"Could not check stored rooms for {room_id}: {e}")
            # another handler may have taken the id while we awaited
            if room_id not in self._rooms:
                return room_id

    async def create_room(self, creator: Optional[RoomPlayer] = None, room_id: Optional[str] = None) -> Room:
        room = Room(id=room_id or await self.generate_room_id(), max_players=self.rules.max_players)
        if creator is not None:
            room.players[creator.id] = creator
        self.add(room)
        await self.persist(room)
        logger.info(f"🆕 Room {room.id} created")
        return room

    async def get(self, room_id: str) -> Optional[Room]:
        """Return the resident room, restoring it from storage on a miss."""
        room = self._rooms.get(room_id)
        if room is not None:
            return room

        restored = await self._load(room_id)
        if restored is None:
            return None

        # a concurrent lookup may have restored it first
        room = self._rooms.get(room_id)
        if room is not None:
            return room

        self._rooms[room_id] = restored
        logger.info(f"📦 Room {room_id} restored from storage")
        return restored

    async def persist(self, room: Room, sections: Iterable[str] = ALL_SECTIONS) -> bool:
        sections = frozenset(sections)
        try:
            await self.persistence.save(room.id, room_to_record(room, sections))
        except PersistenceError as e:
            logger.warning(f"Room {room.id} kept in memory only: {e}")
            return False
        return True

    async def hydrate(self, room: Room) -> Room:
        """
        Merge the stored copy of a room into the resident one.

        Stored data only replaces resident data that is not newer. Players with
        a live connection are kept even if the stored roster misses them, their
        game-state connectivity follows the live connection map, and connection
        entries for players no longer on the roster are pruned.
        """
        stored = await self._load(room.id)
        if stored is None:
            return room

        live = set(room.connections)
        players = dict(stored.players)
        for player_id in live:
            if player_id not in players and player_id in room.players:
                players[player_id] = room.players[player_id]
        room.players = players

        if stored.last_activity >= room.last_activity:
            room.game_state = stored.game_state
            room.chat_messages = stored.chat_messages
            room.is_started = stored.is_started
            room.last_activity = stored.last_activity

        if room.game_state is not None:
            for player in room.game_state.players:
                room.game_state = set_player_connected(room.game_state, player.id, player.id in live)

        for player_id in list(room.connections):
            if player_id not in room.players:
                del room.connections[player_id]

        return room

    async def _load(self, room_id: str) -> Optional[Room]:
        try:
            record = await self.persistence.load(room_id)
            if record is None:
                return None
            return room_from_record(record)
        except PersistenceError as e:
            logger.warning(f"Could not load room {room_id}: {e}")
            return None

    # Connections

    def bind(self, socket: Any, player_id: str, room_id: str) -> None:
        self._connections[socket] = Binding(player_id, room_id)

    def unbind(self, socket: Any) -> Optional[Binding]:
        return self._connections.pop(socket, None)

    def binding(self, socket: Any) -> Optional[Binding]:
        return self._connections.get(socket)

    def connection_count(self) -> int:
        return len(self._connections)

    # Expiry

    async def sweep(self, now: Optional[int] = None) -> Tuple[int, int]:
        """Remove rooms idle past the timeout from memory and from storage."""
        now = now if now is not None else now_ms()

        expired = [
            room_id for room_id, room in self._rooms.items()
            if now - room.last_activity > self.idle_timeout_ms
        ]
        for room_id in expired:
            self.evict(room_id)
        for socket, binding in list(self._connections.items()):
            if binding.room_id in expired:
                del self._connections[socket]

        cleaned_store = 0
        try:
            for room_id in await self.persistence.room_ids():
                if room_id in self._rooms:
                    continue
                record = await self.persistence.load(room_id)
                if record is not None and not self._record_expired(record, now):
                    continue
                # expired, corrupt, or an index entry whose keys already timed out
                if await self.persistence.delete(room_id):
                    cleaned_store += 1
        except PersistenceError as e:
            logger.warning(f"Stored room cleanup skipped: {e}")

        if expired or cleaned_store:
            logger.info(f"🧹 Cleanup completed: {len(expired)} from memory, {cleaned_store} from storage")
        return len(expired), cleaned_store

    def _record_expired(self, record, now: int) -> bool:
        try:
            stored = room_from_record(record)
        except PersistenceError as e:
            logger.warning(f"Dropping unreadable room record: {e}")
            return True
        return now - stored.last_activity > self.idle_timeout_ms

    async def run_cleanup(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            logger.debug("🧹 Starting cleanup check...")
            try:
                await self.sweep()
            except Exception:
                logger.exception("Room cleanup failed")

    async def health(self) -> Dict[str, Any]:
        return {
            "rooms": self.room_count(),
            "connections": self.connection_count(),
            "store": await self.persistence.health(),
        }
