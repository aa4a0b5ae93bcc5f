"""Request bodies for the JSON API."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    phone: str
    efootball_id: str = Field(min_length=3, max_length=20)
    password: str
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    phone: str
    password: str


class TournamentCreateRequest(BaseModel):
    name: str
    format: str
    capacity: int
    description: str = ""
    entry_fee: Decimal = Decimal("0")
    prize_pool: Decimal = Decimal("0")
    prize_distribution: list[dict] = Field(default_factory=list)
    rules: Optional[str] = None
    registration_start: Optional[datetime] = None
    registration_end: Optional[datetime] = None
    tournament_start: Optional[datetime] = None
    tournament_end: Optional[datetime] = None
    points_for_win: Optional[int] = None
    points_for_draw: Optional[int] = None
    points_for_loss: Optional[int] = None
    tiebreakers: Optional[list[str]] = None
    qualifiers_per_group: Optional[int] = None
    match_duration_minutes: int = 10
    break_minutes: int = 5
    matches_per_day: Optional[int] = None
    allowed_weekdays: Optional[list[int]] = None
    daily_start_time: Optional[str] = None
    status: str = "draft"


class StatusChangeRequest(BaseModel):
    status: str


class ScoreSubmission(BaseModel):
    # Left loose so the service reports non-numeric scores itself.
    score: Any
    screenshot: Optional[str] = None
    events: Optional[dict] = None


class RescheduleRequest(BaseModel):
    scheduled_time: datetime


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class WalkoverRequest(BaseModel):
    winner_id: int
    reason: Optional[str] = None


class DisputeRequest(BaseModel):
    reason: str
    description: Optional[str] = None


class DisputeResolution(BaseModel):
    decision: str
    player1_score: Optional[int] = None
    player2_score: Optional[int] = None
    resolution: Optional[str] = None


class EntryPaymentRequest(BaseModel):
    phone: str
