"""Unit tests for fixture generation and bracket helpers."""

import itertools
import random
from collections import Counter

import pytest

from efhub.draw import (
    get_players_in_next_round,
    get_round_count,
    get_round_name,
    group_name,
    pair_by_seed,
    split_bye,
)
from efhub.errors import ValidationError
from efhub.fixtures import build_knockout_round, generate
from efhub.fixtures.generator import assign_groups


@pytest.mark.parametrize("n", [2, 3, 5, 7, 9, 16])
def test_knockout_first_round_covers_every_player_once(n):
    players = list(range(1, n + 1))
    drafts = generate("knockout", players, rng=random.Random(n))

    seen = Counter(pid for d in drafts for pid in d.player_ids)
    assert set(seen) == set(players)
    assert all(c == 1 for c in seen.values())

    byes = [d for d in drafts if d.is_bye]
    assert len(byes) == n % 2
    assert len(drafts) == n // 2 + n % 2
    if byes:
        assert drafts[-1].is_bye
    assert {d.round_number for d in drafts} == {1}
    assert {d.stage for d in drafts} == {"knockout"}


@pytest.mark.parametrize("n", [2, 3, 5, 7, 9, 16])
def test_knockout_bracket_reaches_single_winner(n):
    rng = random.Random(7)
    alive = list(range(1, n + 1))
    round_number = 1
    while len(alive) > 1:
        drafts = build_knockout_round(alive, round_number, rng, shuffle=round_number == 1)
        # Lower id always wins.
        alive = [min(d.player_ids) for d in drafts]
        round_number += 1
    assert alive == [1]
    assert round_number - 1 == get_round_count(n)


def test_knockout_round_labels():
    assert build_knockout_round([1, 2, 3, 4], 1, random.Random(1))[0].round == "Semi-Finals"
    assert build_knockout_round([1, 2], 3, random.Random(1))[0].round == "Final"
    assert build_knockout_round(list(range(8)), 1, random.Random(1))[0].round == "Quarter-Finals"
    assert build_knockout_round(list(range(5)), 1, random.Random(1))[0].round == "Round 1"


def test_knockout_is_reproducible_under_fixed_seed():
    first = generate("knockout", list(range(1, 10)), rng=random.Random(99))
    second = generate("knockout", list(range(1, 10)), rng=random.Random(99))
    assert [d.player_ids for d in first] == [d.player_ids for d in second]


def test_seeded_knockout_pairs_best_against_worst():
    drafts = build_knockout_round([10, 20, 30, 40], 1, random.Random(0), seeded=True)
    assert [(d.player1_id, d.player2_id) for d in drafts] == [(10, 40), (20, 30)]


@pytest.mark.parametrize("n", [2, 3, 4, 5, 8])
def test_league_every_pair_meets_exactly_once(n):
    players = list(range(1, n + 1))
    drafts = generate("league", players, rng=random.Random(3))

    pairs = [frozenset(d.player_ids) for d in drafts]
    assert len(pairs) == n * (n - 1) // 2
    assert set(pairs) == {frozenset(p) for p in itertools.combinations(players, 2)}
    assert not any(d.is_bye for d in drafts)


def test_league_rounds_never_double_book_a_player():
    drafts = generate("league", list(range(1, 7)), rng=random.Random(3))
    by_round = {}
    for d in drafts:
        by_round.setdefault(d.round_number, []).extend(d.player_ids)
    assert len(by_round) == 5
    for ids in by_round.values():
        assert len(ids) == len(set(ids))
    assert all(d.round == f"Round {d.round_number}" for d in drafts)


def test_assign_groups_balances_sizes():
    groups = assign_groups(list(range(1, 11)), random.Random(5), group_size=4)
    assert list(groups) == ["Group A", "Group B", "Group C"]
    assert sorted(len(members) for members in groups.values()) == [3, 3, 4]
    assert sorted(pid for members in groups.values() for pid in members) == list(range(1, 11))


def test_group_fixtures_are_round_robin_inside_groups():
    drafts = generate("group", list(range(1, 9)), rng=random.Random(11), group_size=4)
    assert len(drafts) == 12
    members = {}
    for d in drafts:
        assert d.stage == "group"
        assert d.round == d.group_name
        members.setdefault(d.group_name, set()).update(d.player_ids)
    assert sorted(members) == ["Group A", "Group B"]
    assert all(len(m) == 4 for m in members.values())
    assert not members["Group A"] & members["Group B"]


def test_group_knockout_generates_only_group_phase():
    drafts = generate("group+knockout", list(range(1, 9)), rng=random.Random(11))
    assert {d.stage for d in drafts} == {"group"}


@pytest.mark.parametrize(
    "fmt, players",
    [
        ("swiss", [1, 2, 3]),
        ("knockout", [1]),
        ("league", []),
        ("league", [1, 2, 2]),
    ],
)
def test_generate_rejects_bad_input(fmt, players):
    with pytest.raises(ValidationError):
        generate(fmt, players, rng=random.Random(0))


def test_split_bye_only_for_odd_counts():
    remaining, bye = split_bye([1, 2, 3, 4], random.Random(0))
    assert remaining == [1, 2, 3, 4]
    assert bye is None

    remaining, bye = split_bye([1, 2, 3], random.Random(0))
    assert len(remaining) == 2
    assert bye in (1, 2, 3)
    assert bye not in remaining


def test_draw_helpers():
    assert get_round_name(16, 1) == "Round of 16"
    assert get_round_name(6, 2) == "Round 2"
    assert get_players_in_next_round(7) == 4
    assert pair_by_seed([1, 2, 3, 4, 5, 6]) == [(1, 6), (2, 5), (3, 4)]
    assert group_name(25) == "Group Z"
    assert group_name(26) == "Group AA"
