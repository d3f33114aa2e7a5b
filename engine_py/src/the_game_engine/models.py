"""Game models and data structures"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from .constants import (
    ACTIVE_STATUSES, ASCENDING, MAX_PLAYERS, STATUS_PLAYING, now_ms
)

Status = Literal['waiting', 'cards_dealt', 'playing', 'won', 'lost']
Direction = Literal['ascending', 'descending']


@dataclass(frozen=True)
class Card:
    id: str
    value: int


@dataclass(frozen=True)
class Pile:
    id: str
    type: Direction
    start_value: int
    current_value: int
    cards: Tuple[Card, ...] = ()

    @property
    def is_ascending(self) -> bool:
        return self.type == ASCENDING


@dataclass(frozen=True)
class Player:
    id: str
    name: str
    hand: Tuple[Card, ...] = ()  # sorted ascending by value
    is_current_player: bool = False
    is_connected: bool = True


@dataclass(frozen=True)
class GameState:
    """Authoritative game state.

    Every rules engine operation returns a new value; the previous one stays
    valid as a snapshot. Snapshots kept in ``history`` never carry their own
    history.
    """
    id: str
    status: Status
    players: Tuple[Player, ...]
    piles: Tuple[Pile, ...]
    deck: Tuple[Card, ...]  # draws pop from the end
    current_player_id: Optional[str] = None
    cards_played: int = 0
    min_cards_to_play: int = 2
    is_deck_empty: bool = False
    history: Tuple['GameState', ...] = ()
    can_undo: bool = False
    max_players: int = MAX_PLAYERS
    created_at: int = field(default_factory=now_ms)
    last_activity: int = field(default_factory=now_ms)

    def get_player(self, player_id: Optional[str]) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def get_pile(self, pile_id: str) -> Optional[Pile]:
        for pile in self.piles:
            if pile.id == pile_id:
                return pile
        return None

    @property
    def current_player(self) -> Optional[Player]:
        return self.get_player(self.current_player_id)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_playing(self) -> bool:
        return self.status == STATUS_PLAYING

    def total_cards(self) -> int:
        """Cards across hands, deck and piles."""
        in_hands = sum(len(p.hand) for p in self.players)
        on_piles = sum(len(p.cards) for p in self.piles)
        return in_hands + len(self.deck) + on_piles


@dataclass(frozen=True)
class RoomPlayer:
    id: str
    name: str


@dataclass(frozen=True)
class ChatMessage:
    id: str
    player_id: str
    player_name: str
    message: str
    timestamp: int
    is_hint: bool = False


@dataclass
class Room:
    id: str
    game_state: Optional[GameState] = None
    players: Dict[str, RoomPlayer] = field(default_factory=dict)  # survives disconnects
    connections: Dict[str, Any] = field(default_factory=dict)  # player id -> live socket, never persisted
    chat_messages: List[ChatMessage] = field(default_factory=list)
    max_players: int = MAX_PLAYERS
    is_started: bool = False
    created_at: int = field(default_factory=now_ms)
    last_activity: int = field(default_factory=now_ms)

    def touch(self) -> None:
        self.last_activity = now_ms()

    @property
    def has_active_game(self) -> bool:
        return self.game_state is not None and self.game_state.is_active

    @property
    def is_full(self) -> bool:
        return len(self.players) >= self.max_players
