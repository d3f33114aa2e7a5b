"""
Rules engine for The Game.

Every operation takes a ``GameState`` and returns a new one built with
``dataclasses.replace``; inputs are never modified, so the previous value
can be kept as an undo snapshot or diffed by callers. Rule violations are
raised as ``GameError`` subclasses before anything is changed.
"""

import logging
import random
from dataclasses import replace
from typing import Collection, List, Optional, Sequence, Tuple

from .constants import (
    ASCENDING, CHAIN_HIGH, CHAIN_LOW, EXTREME_HIGH, EXTREME_LOW, PILE_LAYOUT,
    STATUS_CARDS_DEALT, STATUS_LOST, STATUS_PLAYING, STATUS_WON, now_ms
)
from .errors import (
    CardNotInHand, GameNotActive, InvalidGameStatus, InvalidMove, InvalidPlayerCount,
    MinimumCardsNotMet, NothingToUndo, NotYourTurn, PlayerOrPileNotFound
)
from .models import Card, GameState, Pile, Player, RoomPlayer
from .rules import RuleConfig, default_rules
from .shuffle import create_deck, deal_cards, draw_cards

logger = logging.getLogger(__name__)


def create_initial_piles(rules: RuleConfig = default_rules) -> Tuple[Pile, ...]:
    piles = []
    for pile_id, direction in PILE_LAYOUT:
        start = rules.ascending_start if direction == ASCENDING else rules.descending_start
        piles.append(Pile(id=pile_id, type=direction, start_value=start, current_value=start))
    return tuple(piles)


def get_starting_hand_size(player_count: int, rules: RuleConfig = default_rules) -> int:
    return rules.get_hand_size(player_count)


def can_play_card(card: Card, pile: Pile, rules: RuleConfig = default_rules) -> bool:
    """
    Check whether a card may go on a pile.

    Ascending piles take any higher card, descending piles any lower card.
    The only exception is the reverse jump: a card exactly ``reverse_jump``
    below an ascending pile (or above a descending one) is also legal.
    """
    if pile.is_ascending:
        return card.value > pile.current_value or card.value == pile.current_value - rules.reverse_jump
    return card.value < pile.current_value or card.value == pile.current_value + rules.reverse_jump


def has_valid_moves(player: Player, piles: Sequence[Pile], rules: RuleConfig = default_rules) -> bool:
    return any(can_play_card(card, pile, rules) for card in player.hand for pile in piles)


def determine_starting_player(players: Sequence[Player], piles: Sequence[Pile],
                              rules: RuleConfig = default_rules) -> int:
    """
    Pick the seat with the most promising opening hand.

    This is a scoring heuristic, not a search for the optimal starter:
    one point per card playable on any pile, two more per card at the very
    edge of the range (<= 3 or >= 98) and one more per card near a pile
    boundary (<= 10 or >= 90). Ties go to the lowest seat.
    """
    best_index = 0
    best_score = -1

    for index, player in enumerate(players):
        playable = sum(1 for card in player.hand if any(can_play_card(card, pile, rules) for pile in piles))
        extreme = sum(1 for card in player.hand if card.value <= EXTREME_LOW or card.value >= EXTREME_HIGH)
        chain_starters = sum(1 for card in player.hand if card.value <= CHAIN_LOW or card.value >= CHAIN_HIGH)
        score = playable + 2 * extreme + chain_starters

        if score > best_score:
            best_score = score
            best_index = index

    return best_index


def deal_game(room_id: str, roster: Sequence[RoomPlayer], rng: Optional[random.Random] = None,
              connected: Optional[Collection[str]] = None, rules: RuleConfig = default_rules) -> GameState:
    """
    Shuffle and deal a new game without choosing who starts.

    Args:
        room_id: Room the game belongs to; also the game id
        roster: Players in seating order
        rng: Optional seeded rng for a deterministic deal
        connected: Ids of players with a live connection (all if omitted)

    Returns:
        A ``cards_dealt`` state with no current player
    """
    if not rules.validate_player_count(len(roster)):
        raise InvalidPlayerCount(
            f"Need {rules.min_players}-{rules.max_players} players, got {len(roster)}"
        )

    deck = create_deck(rng, rules)
    hand_size = get_starting_hand_size(len(roster), rules)
    hands, remaining = deal_cards(deck, len(roster), hand_size)

    players = tuple(
        Player(
            id=member.id,
            name=member.name,
            hand=hand,
            is_connected=connected is None or member.id in connected,
        )
        for member, hand in zip(roster, hands)
    )
    now = now_ms()

    return GameState(
        id=room_id,
        status=STATUS_CARDS_DEALT,
        players=players,
        piles=create_initial_piles(rules),
        deck=remaining,
        min_cards_to_play=rules.min_cards_per_turn,
        max_players=rules.max_players,
        created_at=now,
        last_activity=now,
    )


def select_starting_player(state: GameState, player_id: Optional[str] = None,
                           rules: RuleConfig = default_rules) -> GameState:
    """Start play from a dealt game; an empty ``player_id`` uses the heuristic."""
    if state.status != STATUS_CARDS_DEALT:
        raise InvalidGameStatus(f"Cannot select a starting player while {state.status}")

    if player_id:
        index = _player_index(state, player_id)
        if index is None:
            raise PlayerOrPileNotFound(f"Player {player_id} is not in this game")
    else:
        index = determine_starting_player(state.players, state.piles, rules)

    players = tuple(
        replace(player, is_current_player=(i == index))
        for i, player in enumerate(state.players)
    )
    logger.info(f"Game {state.id}: {players[index].name} starts")

    return replace(
        state,
        status=STATUS_PLAYING,
        players=players,
        current_player_id=players[index].id,
        cards_played=0,
        last_activity=now_ms(),
    )


def initialize_game(room_id: str, roster: Sequence[RoomPlayer], rng: Optional[random.Random] = None,
                    connected: Optional[Collection[str]] = None, rules: RuleConfig = default_rules) -> GameState:
    """Deal a game and let the heuristic choose the starting player."""
    return select_starting_player(deal_game(room_id, roster, rng, connected, rules), None, rules)


def play_card(state: GameState, player_id: str, card_id: str, pile_id: str,
              rules: RuleConfig = default_rules) -> GameState:
    player = state.get_player(player_id)
    pile = state.get_pile(pile_id)

    if player is None or pile is None:
        raise PlayerOrPileNotFound(f"Unknown player {player_id} or pile {pile_id}")
    if not state.is_playing:
        raise GameNotActive(f"Game is {state.status}")
    if player_id != state.current_player_id:
        raise NotYourTurn("Not your turn")

    card = next((c for c in player.hand if c.id == card_id), None)
    if card is None:
        raise CardNotInHand(f"Card {card_id} is not in your hand")
    if not can_play_card(card, pile, rules):
        raise InvalidMove(f"Cannot play {card.value} on {pile.id} at {pile.current_value}")

    new_player = replace(player, hand=tuple(c for c in player.hand if c.id != card_id))
    new_pile = replace(pile, current_value=card.value, cards=pile.cards + (card,))
    deck_emptied = not state.deck and not state.is_deck_empty

    return replace(
        state,
        players=_swap(state.players, new_player),
        piles=_swap(state.piles, new_pile),
        cards_played=state.cards_played + 1,
        is_deck_empty=state.is_deck_empty or deck_emptied,
        min_cards_to_play=rules.min_cards_deck_empty if deck_emptied else state.min_cards_to_play,
        history=_push_history(state, rules),
        can_undo=True,
        last_activity=now_ms(),
    )


def end_turn(state: GameState, player_id: Optional[str] = None,
             rules: RuleConfig = default_rules) -> GameState:
    """
    Finish the current player's turn.

    Refills the hand while the deck lasts, passes the turn to the next seat
    and drops the undo history. Loss is only detected here: a player may play
    into a position they cannot continue from and the game is lost when the
    next player turns out to have no legal card.
    """
    if not state.is_playing:
        raise GameNotActive(f"Game is {state.status}")
    if player_id is not None and player_id != state.current_player_id:
        raise NotYourTurn("Not your turn")
    if state.cards_played < state.min_cards_to_play:
        raise MinimumCardsNotMet(
            f"Must play at least {state.min_cards_to_play} cards, played {state.cards_played}"
        )

    players: List[Player] = list(state.players)
    index = _player_index(state, state.current_player_id)
    current = players[index]
    deck = state.deck

    if not state.is_deck_empty and deck:
        hand, deck = draw_cards(current.hand, deck, get_starting_hand_size(len(players), rules))
        current = replace(current, hand=hand)

    next_index = (index + 1) % len(players)
    players[index] = replace(current, is_current_player=False)
    players[next_index] = replace(players[next_index], is_current_player=True)
    deck_emptied = not deck and not state.is_deck_empty

    new_state = replace(
        state,
        players=tuple(players),
        deck=deck,
        current_player_id=players[next_index].id,
        cards_played=0,
        is_deck_empty=state.is_deck_empty or deck_emptied,
        min_cards_to_play=rules.min_cards_deck_empty if deck_emptied else state.min_cards_to_play,
        history=(),
        can_undo=False,
        last_activity=now_ms(),
    )
    return replace(new_state, status=check_game_status(new_state, rules))


def undo_last_move(state: GameState, player_id: Optional[str] = None) -> GameState:
    if not state.can_undo or not state.history:
        raise NothingToUndo("Nothing to undo")
    if player_id is not None and player_id != state.current_player_id:
        raise NotYourTurn("Not your turn")

    previous = state.history[-1]
    remaining = state.history[:-1]

    # Connectivity is not part of the move being undone
    connected = {p.id: p.is_connected for p in state.players}
    players = tuple(
        replace(p, is_connected=connected.get(p.id, p.is_connected)) for p in previous.players
    )

    return replace(
        previous,
        players=players,
        history=remaining,
        can_undo=bool(remaining),
        last_activity=now_ms(),
    )


def check_game_status(state: GameState, rules: RuleConfig = default_rules) -> str:
    if not state.deck and all(not p.hand for p in state.players):
        return STATUS_WON

    current = state.current_player
    if current is not None and not has_valid_moves(current, state.piles, rules):
        return STATUS_LOST

    return STATUS_PLAYING


def set_player_connected(state: GameState, player_id: str, connected: bool) -> GameState:
    player = state.get_player(player_id)
    if player is None or player.is_connected == connected:
        return state
    return replace(state, players=_swap(state.players, replace(player, is_connected=connected)))


def _player_index(state: GameState, player_id: Optional[str]) -> Optional[int]:
    for index, player in enumerate(state.players):
        if player.id == player_id:
            return index
    return None


def _swap(items, new_item):
    """Replace the element sharing ``new_item.id``."""
    return tuple(new_item if item.id == new_item.id else item for item in items)


def _push_history(state: GameState, rules: RuleConfig) -> Tuple[GameState, ...]:
    snapshot = replace(state, history=(), can_undo=False)
    return (state.history + (snapshot,))[-rules.history_limit:]
