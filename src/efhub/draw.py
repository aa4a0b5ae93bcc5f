"""
Knockout bracket utility functions.

Provides round naming and pairing math for single-elimination brackets.
A knockout round is described by how many players are still alive in it;
an odd count leaves exactly one player with a bye into the next round.

    players alive  ->  matches played  ->  players in next round
         8                 4                     4
         5                 2 (+1 bye)            3
         3                 1 (+1 bye)            2

These functions are used by:
- Fixture generation (first knockout round)
- Knockout progression (every later round)
- Group-stage seeding into the knockout stage
"""

import math
import random
from typing import Optional, Sequence

# Round labels keyed by the number of players alive in that round.
ROUND_NAMES_BY_PLAYER_COUNT = {
    2: "Final",
    4: "Semi-Finals",
    8: "Quarter-Finals",
    16: "Round of 16",
}


def get_round_name(player_count: int, round_number: int) -> str:
    """
    Get the display label for a knockout round.

    Args:
        player_count: Players alive at the start of the round (byes included)
        round_number: 1-indexed round within the knockout stage

    Returns:
        Fixed label for 2/4/8/16 players, otherwise "Round N"

    Examples:
        >>> get_round_name(4, 1)
        'Semi-Finals'
        >>> get_round_name(2, 3)
        'Final'
        >>> get_round_name(5, 1)
        'Round 1'
    """
    return ROUND_NAMES_BY_PLAYER_COUNT.get(player_count, f"Round {round_number}")


def get_players_in_next_round(player_count: int) -> int:
    """
    Number of players alive after a round with ``player_count`` players.

    Examples:
        >>> get_players_in_next_round(8)
        4
        >>> get_players_in_next_round(5)
        3
    """
    return math.ceil(player_count / 2)


def get_round_count(player_count: int) -> int:
    """
    Number of rounds needed to reduce ``player_count`` players to one winner.

    Examples:
        >>> get_round_count(2)
        1
        >>> get_round_count(5)
        3
        >>> get_round_count(16)
        4
    """
    rounds = 0
    while player_count > 1:
        player_count = get_players_in_next_round(player_count)
        rounds += 1
    return rounds


def split_bye(
    player_ids: Sequence[int],
    rng: random.Random,
) -> tuple[list[int], Optional[int]]:
    """
    Remove one randomly chosen player when the count is odd.

    Returns:
        Tuple of (players left to pair, bye player or None)
    """
    remaining = list(player_ids)
    if len(remaining) % 2 == 0:
        return remaining, None
    bye_index = rng.randrange(len(remaining))
    bye_player = remaining.pop(bye_index)
    return remaining, bye_player


def pair_consecutive(player_ids: Sequence[int]) -> list[tuple[int, int]]:
    """
    Pair players (1st v 2nd, 3rd v 4th, ...). The count must be even.

    Examples:
        >>> pair_consecutive([7, 3, 9, 1])
        [(7, 3), (9, 1)]
    """
    if len(player_ids) % 2 != 0:
        raise ValueError("pair_consecutive needs an even number of players")
    return [(player_ids[i], player_ids[i + 1]) for i in range(0, len(player_ids), 2)]


def pair_by_seed(seeded_ids: Sequence[int]) -> list[tuple[int, int]]:
    """
    Pair the best remaining seed with the worst (1 v n, 2 v n-1, ...).

    Examples:
        >>> pair_by_seed([1, 2, 3, 4])
        [(1, 4), (2, 3)]
    """
    if len(seeded_ids) % 2 != 0:
        raise ValueError("pair_by_seed needs an even number of players")
    n = len(seeded_ids)
    return [(seeded_ids[i], seeded_ids[n - 1 - i]) for i in range(n // 2)]


def group_name(index: int) -> str:
    """
    Label for the 0-indexed group. Past Z the letters continue AA, AB, ...
    (a 128-player tournament has 32 groups).

    Examples:
        >>> group_name(0)
        'Group A'
        >>> group_name(2)
        'Group C'
        >>> group_name(27)
        'Group AB'
    """
    letters = ""
    n = index + 1
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return f"Group {letters}"
