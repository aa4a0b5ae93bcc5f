"""
Fixture generation for efhub tournaments.

- generator: per-format match drafts (knockout, league, group, group+knockout)
- scheduling: time-slot assignment for drafts
"""

from efhub.fixtures.generator import MatchDraft, build_knockout_round, generate
from efhub.fixtures.scheduling import ScheduleConfig, schedule_matches

__all__ = [
    "MatchDraft",
    "build_knockout_round",
    "generate",
    "ScheduleConfig",
    "schedule_matches",
]
