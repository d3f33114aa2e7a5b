"""Game constants and utilities"""

import time

# Game status values
STATUS_WAITING = 'waiting'
STATUS_CARDS_DEALT = 'cards_dealt'
STATUS_PLAYING = 'playing'
STATUS_WON = 'won'
STATUS_LOST = 'lost'

ACTIVE_STATUSES = (STATUS_CARDS_DEALT, STATUS_PLAYING)

# Pile directions
ASCENDING = 'ascending'
DESCENDING = 'descending'

PILE_LAYOUT = [
    ('ascending-1', ASCENDING),
    ('ascending-2', ASCENDING),
    ('descending-1', DESCENDING),
    ('descending-2', DESCENDING),
]

# Starting-player heuristic bands
EXTREME_LOW = 3
EXTREME_HIGH = 98
CHAIN_LOW = 10
CHAIN_HIGH = 90

# Rooms
ROOM_ID_LENGTH = 6
ROOM_ID_ALPHABET = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'
MAX_PLAYERS = 5

# Persisted record sections
SECTION_METADATA = 'metadata'
SECTION_PLAYERS = 'players'
SECTION_GAME_STATE = 'game_state'
SECTION_CHAT = 'chat'
ALL_SECTIONS = frozenset({SECTION_METADATA, SECTION_PLAYERS, SECTION_GAME_STATE, SECTION_CHAT})

# Lifetimes (seconds)
ROOM_TTL = 4 * 60 * 60
ROOM_IDLE_TIMEOUT = 2 * 60 * 60
CLEANUP_INTERVAL = 10 * 60


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
