"""
Durable room storage.

``RoomPersistence`` is the only contract the room store talks to; the
canonical implementation keeps each record section under its own Redis key
with a TTL. Implementations raise ``PersistenceError`` on any failure and
leave the decision to continue to the caller.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .constants import (
    ALL_SECTIONS, ROOM_TTL, SECTION_CHAT, SECTION_GAME_STATE, SECTION_METADATA, SECTION_PLAYERS
)
from .errors import PersistenceError

logger = logging.getLogger(__name__)

ACTIVE_ROOMS_KEY = "active_rooms"
SECTION_ORDER = [SECTION_METADATA, SECTION_PLAYERS, SECTION_GAME_STATE, SECTION_CHAT]

Record = Dict[str, Optional[bytes]]


class RoomPersistence(ABC):
    """Key-value storage for encoded room records."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def save(self, room_id: str, sections: Mapping[str, Optional[bytes]]) -> None:
        """Write the given sections; a ``None`` payload removes that section."""

    @abstractmethod
    async def load(self, room_id: str) -> Optional[Record]:
        """Return every stored section, or ``None`` if the room is unknown."""

    @abstractmethod
    async def exists(self, room_id: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, room_id: str) -> bool:
        ...

    @abstractmethod
    async def room_ids(self) -> List[str]:
        ...

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        ...


class RedisRoomPersistence(RoomPersistence):
    """Room records in Redis: ``room:{id}:{section}`` keys plus an index set."""

    def __init__(self, client: redis.Redis, ttl: int = ROOM_TTL, prefix: str = "room"):
        self._client = client
        self._ttl = ttl
        self._prefix = prefix
        self._connected = False

    @classmethod
    def from_url(cls, url: str, ttl: int = ROOM_TTL, connect_timeout: float = 10.0) -> "RedisRoomPersistence":
        client = redis.from_url(url, socket_connect_timeout=connect_timeout)
        return cls(client, ttl=ttl)

    @property
    def connected(self) -> bool:
        return self._connected

    def _key(self, room_id: str, section: str) -> str:
        return f"{self._prefix}:{room_id}:{section}"

    async def connect(self) -> None:
        try:
            await self._client.ping()
        except RedisError as e:
            self._connected = False
            raise PersistenceError(f"Redis unavailable: {e}") from e
        if not self._connected:
            logger.info("🔑 Redis connection established")
        self._connected = True

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis connection: {e}")
        self._connected = False

    async def _ensure_connected(self) -> None:
        # A failed call drops the flag; the next call pings before retrying.
        if not self._connected:
            await self.connect()

    async def save(self, room_id: str, sections: Mapping[str, Optional[bytes]]) -> None:
        await self._ensure_connected()
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for section in SECTION_ORDER:
                    key = self._key(room_id, section)
                    if section not in sections:
                        pipe.expire(key, self._ttl)
                    elif sections[section] is None:
                        pipe.delete(key)
                    else:
                        pipe.setex(key, self._ttl, sections[section])
                pipe.sadd(ACTIVE_ROOMS_KEY, room_id)
                await pipe.execute()
        except RedisError as e:
            self._connected = False
            raise PersistenceError(f"Failed to save room {room_id}: {e}") from e
        logger.debug(f"💾 Room {room_id} saved ({', '.join(sorted(sections))})")

    async def load(self, room_id: str) -> Optional[Record]:
        await self._ensure_connected()
        try:
            values = await self._client.mget([self._key(room_id, s) for s in SECTION_ORDER])
        except RedisError as e:
            self._connected = False
            raise PersistenceError(f"Failed to load room {room_id}: {e}") from e

        record = dict(zip(SECTION_ORDER, values))
        if record[SECTION_METADATA] is None:
            return None
        return record

    async def exists(self, room_id: str) -> bool:
        await self._ensure_connected()
        try:
            return bool(await self._client.exists(self._key(room_id, SECTION_METADATA)))
        except RedisError as e:
            self._connected = False
            raise PersistenceError(f"Failed to look up room {room_id}: {e}") from e

    async def delete(self, room_id: str) -> bool:
        await self._ensure_connected()
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(*[self._key(room_id, s) for s in ALL_SECTIONS])
                pipe.srem(ACTIVE_ROOMS_KEY, room_id)
                deleted, _ = await pipe.execute()
        except RedisError as e:
            self._connected = False
            raise PersistenceError(f"Failed to delete room {room_id}: {e}") from e
        return deleted > 0

    async def room_ids(self) -> List[str]:
        await self._ensure_connected()
        try:
            members = await self._client.smembers(ACTIVE_ROOMS_KEY)
        except RedisError as e:
            self._connected = False
            raise PersistenceError(f"Failed to list rooms: {e}") from e
        return sorted(m.decode() if isinstance(m, bytes) else m for m in members)

    async def health(self) -> Dict[str, Any]:
        try:
            await self._ensure_connected()
            room_count = await self._client.scard(ACTIVE_ROOMS_KEY)
        except (PersistenceError, RedisError) as e:
            self._connected = False
            return {"connected": False, "roomCount": 0, "error": str(e)}
        return {"connected": True, "roomCount": room_count}
