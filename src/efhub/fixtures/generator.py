"""
Initial fixture generation.

generate() turns a format name and a participant list into an ordered list
of MatchDraft objects. Each format is a plain function registered in
FORMAT_GENERATORS; formats share only the output shape.

Formats:
- knockout: random first round only, later rounds come from progression
- league: circle-method round robin, every pair meets once
- group: groups of at most ``group_size``, round robin inside each group
- group+knockout: the group phase only; the knockout phase is seeded later
  from group results

All randomness comes from the caller's ``random.Random`` so brackets are
reproducible under a fixed seed.
"""

import itertools
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from efhub.draw import (
    get_round_name,
    group_name,
    pair_by_seed,
    pair_consecutive,
    split_bye,
)
from efhub.errors import ValidationError


@dataclass
class MatchDraft:
    """A match ready to be numbered and persisted."""

    round: str
    round_number: int
    stage: str
    player1_id: int
    player2_id: Optional[int] = None
    group_name: Optional[str] = None
    scheduled_time: Optional[datetime] = None

    @property
    def is_bye(self) -> bool:
        return self.player2_id is None

    @property
    def player_ids(self) -> list[int]:
        if self.player2_id is None:
            return [self.player1_id]
        return [self.player1_id, self.player2_id]


def build_knockout_round(
    player_ids: Sequence[int],
    round_number: int,
    rng: random.Random,
    *,
    shuffle: bool = False,
    seeded: bool = False,
) -> list[MatchDraft]:
    """
    Build one knockout round from the players still alive.

    Args:
        player_ids: Players entering the round, in bracket order
        round_number: 1-indexed knockout round
        rng: Random source for the shuffle and the bye
        shuffle: Shuffle the players before pairing (first round)
        seeded: Pair best against worst instead of consecutively
            (``player_ids`` must then be in seed order)

    Returns:
        Two-player drafts in pairing order, then the bye draft if the count
        was odd.
    """
    players = list(player_ids)
    if len(players) < 2:
        raise ValidationError("A knockout round needs at least two players")
    if shuffle:
        rng.shuffle(players)

    label = get_round_name(len(players), round_number)
    remaining, bye_player = split_bye(players, rng)
    pairs = pair_by_seed(remaining) if seeded else pair_consecutive(remaining)

    drafts = [
        MatchDraft(
            round=label,
            round_number=round_number,
            stage="knockout",
            player1_id=p1,
            player2_id=p2,
        )
        for p1, p2 in pairs
    ]
    if bye_player is not None:
        drafts.append(
            MatchDraft(round=label, round_number=round_number, stage="knockout", player1_id=bye_player)
        )
    return drafts


def _generate_knockout(participant_ids: list[int], rng: random.Random, group_size: int) -> list[MatchDraft]:
    return build_knockout_round(participant_ids, 1, rng, shuffle=True)


def _generate_league(participant_ids: list[int], rng: random.Random, group_size: int) -> list[MatchDraft]:
    """
    Circle method: fix the first slot and rotate the rest one step per round.

    An odd field gets a phantom slot; whoever meets it sits the round out.
    The first pairing swaps home/away on alternate rounds so the fixed
    player does not always play as player1.
    """
    slots: list[Optional[int]] = list(participant_ids)
    if len(slots) % 2 == 1:
        slots.append(None)
    n = len(slots)

    drafts = []
    for round_index in range(n - 1):
        round_number = round_index + 1
        for i in range(n // 2):
            home, away = slots[i], slots[n - 1 - i]
            if home is None or away is None:
                continue
            if i == 0 and round_index % 2 == 1:
                home, away = away, home
            drafts.append(
                MatchDraft(
                    round=f"Round {round_number}",
                    round_number=round_number,
                    stage="league",
                    player1_id=home,
                    player2_id=away,
                )
            )
        slots = [slots[0], slots[-1]] + slots[1:-1]
    return drafts


def assign_groups(
    participant_ids: Sequence[int],
    rng: random.Random,
    group_size: int,
) -> dict[str, list[int]]:
    """
    Shuffle participants into ``ceil(N / group_size)`` groups by index modulo
    group count. Returns group label -> player ids, in label order.
    """
    players = list(participant_ids)
    rng.shuffle(players)
    group_count = math.ceil(len(players) / group_size)
    groups: dict[str, list[int]] = {group_name(i): [] for i in range(group_count)}
    labels = list(groups)
    for index, player_id in enumerate(players):
        groups[labels[index % group_count]].append(player_id)
    return groups


def _generate_groups(participant_ids: list[int], rng: random.Random, group_size: int) -> list[MatchDraft]:
    groups = assign_groups(participant_ids, rng, group_size)
    drafts = [
        MatchDraft(
            round=label,
            round_number=1,
            stage="group",
            group_name=label,
            player1_id=p1,
            player2_id=p2,
        )
        for label, members in groups.items()
        for p1, p2 in itertools.combinations(members, 2)
    ]
    rng.shuffle(drafts)
    return drafts


FORMAT_GENERATORS: dict[str, Callable[[list[int], random.Random, int], list[MatchDraft]]] = {
    "knockout": _generate_knockout,
    "league": _generate_league,
    "group": _generate_groups,
    # Knockout phase is seeded from group results by progression.
    "group+knockout": _generate_groups,
}


def generate(
    tournament_format: str,
    participant_ids: Sequence[int],
    *,
    rng: Optional[random.Random] = None,
    group_size: int = 4,
) -> list[MatchDraft]:
    """
    Generate the initial fixtures for a tournament.

    Args:
        tournament_format: One of FORMAT_GENERATORS' keys
        participant_ids: Player ids of active participants
        rng: Random source (a fresh unseeded one if omitted)
        group_size: Maximum players per group for group formats

    Returns:
        Match drafts in numbering order

    Raises:
        ValidationError: Unknown format, fewer than two participants or
            duplicate participants
    """
    generator = FORMAT_GENERATORS.get(tournament_format)
    if generator is None:
        raise ValidationError(f"Unknown tournament format: {tournament_format!r}")

    players = list(participant_ids)
    if len(players) < 2:
        raise ValidationError("At least two participants are required to generate fixtures")
    if len(set(players)) != len(players):
        raise ValidationError("Participant list contains duplicates")
    if group_size < 2:
        raise ValidationError("group_size must be at least 2")

    return generator(players, rng or random.Random(), group_size)
