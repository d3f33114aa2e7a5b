"""
Shared fixtures: an in-memory room store backend, fake sockets and
hand-built game states.
"""

import random
from typing import Dict, List, Optional, Sequence

import orjson
import pytest
from fastapi.websockets import WebSocketState

from the_game_engine.constants import PILE_LAYOUT, STATUS_PLAYING
from the_game_engine.errors import PersistenceError
from the_game_engine.models import Card, GameState, Pile, Player
from the_game_engine.persistence import RoomPersistence
from the_game_engine.store import RoomStore
from the_game_engine.ws.coordinator import ConnectionCoordinator


class MemoryPersistence(RoomPersistence):
    """Dict-backed room storage; set ``available = False`` to simulate an outage."""

    def __init__(self):
        self.records: Dict[str, Dict[str, Optional[bytes]]] = {}
        self.available = True
        self.saves = 0

    def _check(self):
        if not self.available:
            raise PersistenceError("store unavailable")

    async def connect(self):
        self._check()

    async def close(self):
        pass

    async def save(self, room_id, sections):
        self._check()
        record = self.records.setdefault(room_id, {})
        for section, payload in sections.items():
            if payload is None:
                record.pop(section, None)
            else:
                record[section] = payload
        self.saves += 1

    async def load(self, room_id):
        self._check()
        record = self.records.get(room_id)
        if record is None or "metadata" not in record:
            return None
        return dict(record)

    async def exists(self, room_id):
        self._check()
        return room_id in self.records

    async def delete(self, room_id):
        self._check()
        return self.records.pop(room_id, None) is not None

    async def room_ids(self):
        self._check()
        return sorted(self.records)

    async def health(self):
        if not self.available:
            return {"connected": False, "roomCount": 0, "error": "store unavailable"}
        return {"connected": True, "roomCount": len(self.records)}

    def stored(self, room_id, section):
        return orjson.loads(self.records[room_id][section])


class FakeSocket:
    """Stands in for a Starlette WebSocket; records every text frame sent."""

    def __init__(self, name: str = "socket", fail_sends: bool = False):
        self.name = name
        self.fail_sends = fail_sends
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[dict] = []
        self.close_code: Optional[int] = None

    async def send_text(self, data: str):
        if self.fail_sends:
            raise RuntimeError("connection reset")
        self.sent.append(orjson.loads(data))

    async def close(self, code: int = 1000):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self):
        """Simulate the peer going away without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED

    def types(self) -> List[str]:
        return [message["type"] for message in self.sent]

    def last(self, event_type: str) -> Optional[dict]:
        for message in reversed(self.sent):
            if message["type"] == event_type:
                return message
        return None

    def __repr__(self):
        return f"FakeSocket({self.name})"


def cards(*values: int) -> tuple:
    return tuple(Card(id=f"c{value}", value=value) for value in values)


def build_state(hands: Sequence[Sequence[int]], piles: Optional[Dict[str, int]] = None,
                deck: Sequence[int] = (), current: int = 0, cards_played: int = 0,
                min_cards: int = 2, is_deck_empty: bool = False, status: str = STATUS_PLAYING) -> GameState:
    """Build a playing state from card values; players are p1, p2, ..."""
    tops = piles or {}
    players = tuple(
        Player(
            id=f"p{index + 1}",
            name=f"Player {index + 1}",
            hand=cards(*sorted(hand)),
            is_current_player=(index == current),
        )
        for index, hand in enumerate(hands)
    )
    pile_objects = tuple(
        Pile(
            id=pile_id,
            type=direction,
            start_value=1 if direction == "ascending" else 100,
            current_value=tops.get(pile_id, 1 if direction == "ascending" else 100),
        )
        for pile_id, direction in PILE_LAYOUT
    )
    return GameState(
        id="ROOM01",
        status=status,
        players=players,
        piles=pile_objects,
        deck=cards(*deck),
        current_player_id=players[current].id,
        cards_played=cards_played,
        min_cards_to_play=min_cards,
        is_deck_empty=is_deck_empty,
    )


@pytest.fixture
def persistence():
    return MemoryPersistence()


@pytest.fixture
def store(persistence):
    return RoomStore(persistence)


@pytest.fixture
def coordinator(store):
    return ConnectionCoordinator(store, rng=random.Random(42))
