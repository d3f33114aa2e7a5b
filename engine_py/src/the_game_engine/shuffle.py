"""
Card shuffling and dealing utilities.
"""

import random
import uuid
from typing import List, Optional, Sequence, Tuple

from .models import Card
from .rules import RuleConfig, default_rules


def create_deck(rng: Optional[random.Random] = None, rules: RuleConfig = default_rules) -> List[Card]:
    """Create a shuffled deck with one card for every value in the rule range."""
    deck = [
        Card(id=str(uuid.uuid4()), value=value)
        for value in range(rules.min_card_value, rules.max_card_value + 1)
    ]
    return shuffle_deck(deck, rng)


def shuffle_deck(deck: Sequence[Card], rng: Optional[random.Random] = None) -> List[Card]:
    """
    Shuffle a deck, deterministically if an rng is provided.

    ``random.shuffle`` is a Fisher-Yates shuffle: walking from the last index
    down to 1, each position is swapped with a uniformly chosen index in
    ``[0, i]``.

    Args:
        deck: Cards to shuffle
        rng: Optional seeded ``random.Random`` for deterministic shuffling

    Returns:
        Shuffled copy of the deck
    """
    deck_copy = list(deck)

    if rng is not None:
        rng.shuffle(deck_copy)
    else:
        # Use system random
        random.shuffle(deck_copy)

    return deck_copy


def sort_hand(cards) -> Tuple[Card, ...]:
    return tuple(sorted(cards, key=lambda card: card.value))


def deal_cards(deck: Sequence[Card], player_count: int, hand_size: int) -> Tuple[List[Tuple[Card, ...]], Tuple[Card, ...]]:
    """
    Deal hands by popping cards off the end of the deck.

    Each player is filled to ``hand_size`` in seating order before the next
    one is dealt.

    Args:
        deck: Shuffled deck; the last card is the top
        player_count: Number of hands to deal
        hand_size: Target size of every hand

    Returns:
        Sorted hands in seating order and the remaining deck
    """
    remaining = list(deck)
    hands = []

    for _ in range(player_count):
        hand = []
        while len(hand) < hand_size and remaining:
            hand.append(remaining.pop())
        hands.append(sort_hand(hand))

    return hands, tuple(remaining)


def draw_cards(hand: Sequence[Card], deck: Sequence[Card], hand_size: int) -> Tuple[Tuple[Card, ...], Tuple[Card, ...]]:
    """Refill a hand up to ``hand_size`` while the deck lasts."""
    new_hand = list(hand)
    remaining = list(deck)
    while len(new_hand) < hand_size and remaining:
        new_hand.append(remaining.pop())
    return sort_hand(new_hand), tuple(remaining)
