"""
Card and room constants for Palace.

This module is the single source of truth for rank ordering and the
power cards. Room limits and deal sizes come from config.py and can be
customized via environment variables.

Rank ordering (numeric value):
    - 2-10: Face value
    - Jack: 11, Queen: 12, King: 13, Ace: 14

Power cards:
    - 2: Wild. Never playable alone; lifts any companions past the pile.
    - 7: Turn pointer steps back one seat, then the next advance skips.
    - 8: Next player is skipped.
    - 10: Clears the pile out of play. Always playable on its own.
"""

from config import config


# =============================================================================
# Rank Values - Single Source of Truth
# =============================================================================

RANK_NUMERIC_VALUES: dict[str, int] = {
    '2': 2,
    '3': 3,
    '4': 4,
    '5': 5,
    '6': 6,
    '7': 7,
    '8': 8,
    '9': 9,
    '10': 10,
    'J': 11,
    'Q': 12,
    'K': 13,
    'A': 14,
}

WILD_VALUE: int = 2
REVERSE_VALUE: int = 7
SKIP_VALUE: int = 8
CLEAR_VALUE: int = 10

# Values that ignore the pile when played solo (2 is still barred from solo play)
BYPASS_VALUES: frozenset[int] = frozenset({WILD_VALUE, CLEAR_VALUE})

# Pile value when the pile is empty or was just cleared/taken
EMPTY_PILE_VALUE: int = 0


# =============================================================================
# Room / Deal Constants
# =============================================================================

MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
MIN_PLAYERS = config.MIN_PLAYERS_TO_START
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
RECONNECT_GRACE_SECONDS = config.RECONNECT_GRACE_SECONDS
HAND_SIZE = config.rules.hand_size
BLIND_SIZE = config.rules.blind_size
