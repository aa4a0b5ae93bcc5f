"""
Time-slot assignment for generated matches.

Matches are laid out in round order. Starting from the first day, each
allowed weekday (Python numbering, Monday = 0) takes up to
``matches_per_day`` matches, the first at ``daily_start_time`` and each
following one ``match_duration + break`` minutes later. Byes never get a
slot.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Optional, Sequence

from efhub.errors import ValidationError
from efhub.fixtures.generator import MatchDraft


def parse_daily_start(value: str) -> time:
    """Parse 'HH:MM' into a time, raising ValidationError when malformed."""
    try:
        hours, minutes = value.split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError):
        raise ValidationError(f"daily_start_time must be HH:MM, got {value!r}")


@dataclass
class ScheduleConfig:
    match_duration_minutes: int
    break_minutes: int
    matches_per_day: int
    daily_start_time: time
    allowed_weekdays: list[int] = field(default_factory=lambda: list(range(7)))

    def __post_init__(self) -> None:
        if self.matches_per_day < 1:
            raise ValidationError("matches_per_day must be at least 1")
        if self.match_duration_minutes < 1 or self.break_minutes < 0:
            raise ValidationError("match duration must be positive and break non-negative")
        weekdays = set(self.allowed_weekdays)
        if not weekdays or not weekdays <= set(range(7)):
            raise ValidationError("allowed_weekdays must be a non-empty subset of 0..6")

    @property
    def slot_minutes(self) -> int:
        return self.match_duration_minutes + self.break_minutes

    @classmethod
    def from_tournament(cls, tournament) -> Optional["ScheduleConfig"]:
        """Build the config from a Tournament row, or None when scheduling is off."""
        if not tournament.has_schedule:
            return None
        return cls(
            match_duration_minutes=tournament.match_duration_minutes,
            break_minutes=tournament.break_minutes,
            matches_per_day=tournament.matches_per_day,
            daily_start_time=parse_daily_start(tournament.daily_start_time),
            allowed_weekdays=list(tournament.allowed_weekdays),
        )

    def next_allowed_day(self, day: date) -> date:
        while day.weekday() not in self.allowed_weekdays:
            day += timedelta(days=1)
        return day


def schedule_matches(
    drafts: Sequence[MatchDraft],
    config: ScheduleConfig,
    start: datetime,
) -> list[MatchDraft]:
    """
    Assign scheduled_time to every non-bye draft, in round order.

    Args:
        drafts: Drafts to schedule (updated in place)
        config: Slot configuration
        start: Slots begin on this date (its time of day is ignored)

    Returns:
        The same drafts, in their original order
    """
    ordered = sorted((d for d in drafts if not d.is_bye), key=lambda d: d.round_number)

    day = config.next_allowed_day(start.date())
    used_today = 0
    for draft in ordered:
        if used_today == config.matches_per_day:
            day = config.next_allowed_day(day + timedelta(days=1))
            used_today = 0
        first_slot = datetime.combine(day, config.daily_start_time)
        draft.scheduled_time = first_slot + timedelta(minutes=used_today * config.slot_minutes)
        used_today += 1

    return list(drafts)
