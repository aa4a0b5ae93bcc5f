"""
SQLAlchemy ORM models for efhub.

This module defines all database tables and their relationships.
The schema follows an aggregate-root layout: a tournament owns its
participants (embedded rows, written together with the tournament), while
matches are independent rows that reference their tournament by id and are
updated on their own.

Key design decisions:
- Participants carry tournament-scoped stats, separate from the player's
  global aggregate stats
- Matches hold two player slots; a NULL second slot is a bye
- Matches and tournaments carry an optimistic version counter so lost
  updates surface as StaleDataError instead of silently overwriting
- Leaderboard entries are keyed by (player, scope type, period)
- JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite tests)

Tables:
- players: Registered players and admins
- tournaments: Tournament configuration and lifecycle
- participants: Tournament registrations with tournament-scoped stats
- matches: All fixtures, from scheduled to completed
- match_disputes: Disputes raised against a match result
- payments: Entry fees, prize payouts and refunds
- leaderboard_entries: Global and period-scoped standings
- operation_log: Failed side effects awaiting retry or reconciliation
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from efhub.statuses import ACTIVE_PARTICIPANT_STATUSES, DEFAULT_TIEBREAKERS

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


# =============================================================================
# Player Models
# =============================================================================

class Player(Base):
    """
    Registered player (or admin) account.

    The phone number is the login handle and is stored normalised
    (2547XXXXXXXX). The efootball_id is the in-game account name and is what
    standings sort on alphabetically.

    Aggregate stats here span every tournament and are updated once per
    finalized match. Tournament-scoped stats live on Participant.
    """
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(primary_key=True)

    phone: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    efootball_id: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(10), nullable=False, default="user")  # 'user', 'player', 'admin'

    # Profile
    display_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    avatar: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Aggregate statistics (all tournaments)
    matches_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goals_for: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goals_against: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    ranking: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_players_points", "points"),
        Index("idx_players_role", "role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def __repr__(self) -> str:
        return f"<Player(id={self.id}, efootball_id='{self.efootball_id}')>"


# =============================================================================
# Tournament Models
# =============================================================================

class Tournament(Base):
    """
    Tournament configuration, lifecycle and participants.

    Formats:
    - 'knockout': single elimination, later rounds created on round completion
    - 'group': groups of up to four, round robin inside each group
    - 'group+knockout': group stage, then top qualifiers_per_group advance
    - 'league': everyone plays everyone once

    Status lifecycle: draft -> upcoming -> active -> completed, with
    'cancelled' reachable from any state before 'completed'.

    Time-schedule configuration is optional; when matches_per_day,
    daily_start_time and tournament_start are all set, generated fixtures
    get scheduled_time values.
    """
    __tablename__ = "tournaments"

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    banner: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    organizer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)

    format: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # Settings
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entry_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    prize_pool: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    # Format: [{"position": 1, "amount": 5000, "description": "Winner"}]
    prize_distribution: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    rules: Mapped[str] = mapped_column(Text, nullable=False, default="Standard eFootball rules apply")

    # Schedule window
    registration_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    registration_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tournament_start: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    tournament_end: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Leaderboard configuration
    points_for_win: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    points_for_draw: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    points_for_loss: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tiebreakers: Mapped[list] = mapped_column(
        JSONType, nullable=False, default=lambda: list(DEFAULT_TIEBREAKERS)
    )

    # group+knockout only: how many finishers per group advance
    qualifiers_per_group: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Time-schedule configuration (all optional)
    match_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    matches_per_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Python weekday numbers, Monday = 0
    allowed_weekdays: Mapped[list] = mapped_column(
        JSONType, nullable=False, default=lambda: [0, 1, 2, 3, 4, 5, 6]
    )
    daily_start_time: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)  # 'HH:MM'

    winner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    organizer: Mapped[Optional["Player"]] = relationship(foreign_keys=[organizer_id])
    winner: Mapped[Optional["Player"]] = relationship(foreign_keys=[winner_id])
    participants: Mapped[list["Participant"]] = relationship(
        back_populates="tournament",
        cascade="all, delete-orphan",
        order_by=lambda: (Participant.position, Participant.id),
    )
    matches: Mapped[list["Match"]] = relationship(
        back_populates="tournament",
        order_by=lambda: Match.match_number,
    )

    __table_args__ = (
        Index("idx_tournaments_status", "status"),
        Index("idx_tournaments_start", "tournament_start"),
        Index("idx_tournaments_organizer", "organizer_id"),
        CheckConstraint("capacity >= 2 AND capacity <= 128", name="ck_tournament_capacity"),
        CheckConstraint("participant_count <= capacity", name="ck_tournament_not_over_capacity"),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def active_participants(self) -> list["Participant"]:
        """Participants who have not been disqualified."""
        return [p for p in self.participants if p.status in ACTIVE_PARTICIPANT_STATUSES]

    @property
    def available_slots(self) -> int:
        return self.capacity - self.participant_count

    @property
    def has_schedule(self) -> bool:
        """True when generated fixtures should receive scheduled times."""
        return bool(self.matches_per_day and self.daily_start_time and self.tournament_start)

    def registration_status(self, now: Optional[datetime] = None) -> str:
        """One of 'not_started', 'ended', 'full', 'open'."""
        now = now or utc_now()
        if self.registration_start and now < self.registration_start:
            return "not_started"
        if self.registration_end and now > self.registration_end:
            return "ended"
        if self.participant_count >= self.capacity:
            return "full"
        return "open"

    def __repr__(self) -> str:
        return f"<Tournament(id={self.id}, name='{self.name}', status='{self.status}')>"


class Participant(Base):
    """
    A player's registration in one tournament.

    Stats here only count matches of this tournament and are rebuilt from
    scratch by the standings calculator. position is the current standing
    (1 = top); before any match it mirrors the seed.
    """
    __tablename__ = "participants"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(
        ForeignKey("tournaments.id", ondelete="CASCADE"), nullable=False
    )
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)

    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="registered")
    seed: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Tournament-scoped statistics
    matches_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goals_for: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    goals_against: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    tournament: Mapped["Tournament"] = relationship(back_populates="participants")
    player: Mapped["Player"] = relationship()

    __table_args__ = (
        UniqueConstraint("tournament_id", "player_id", name="uq_participant_tournament_player"),
        Index("idx_participants_player", "player_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Participant(tournament_id={self.tournament_id}, "
            f"player_id={self.player_id}, position={self.position})>"
        )


# =============================================================================
# Match Models
# =============================================================================

class Match(Base):
    """
    One fixture between two players, from scheduling to final result.

    Each player submits their own goal count into their slot. When both
    slots are confirmed, equal scores are verified automatically (a draw)
    and different scores put the match into 'disputed' for an admin.

    Match status lifecycle:
    - 'scheduled': Created by fixture generation or progression
    - 'in_progress': At least one score submitted
    - 'completed': Result verified (terminal)
    - 'disputed': Both scores in, but they disagree
    - 'cancelled': Cancelled by an admin before completion

    A match with player2_id NULL is a bye: completed on creation with
    player1 as the winner.

    Slot events format:
        {"goals": [{"minute": 12, "player": "Mbappe"}], "yellow_cards": [...],
         "red_cards": [...], "substitutions": [...]}
    """
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(primary_key=True)
    tournament_id: Mapped[int] = mapped_column(ForeignKey("tournaments.id"), nullable=False)

    # Round label ('Semi-Finals', 'Round 2', 'Group A') and ordering helpers
    round: Mapped[str] = mapped_column(String(40), nullable=False)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    stage: Mapped[str] = mapped_column(String(20), nullable=False)  # 'knockout', 'group', 'league'
    group_name: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Unique within a tournament, gapless, assigned in creation order
    match_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # ==========================================================================
    # Player slots
    # ==========================================================================

    player1_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    player1_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player1_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    player1_screenshot: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    player1_events: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    player2_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    player2_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player2_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    player2_screenshot: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    player2_events: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # ==========================================================================
    # Timing
    # ==========================================================================

    scheduled_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_start_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")

    # ==========================================================================
    # Result (populated on verification)
    # ==========================================================================

    winner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    loser_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    is_draw: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # NULL means the system confirmed it (auto-verified draw or bye)
    confirmed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Set once the finalization cascade (stats, leaderboards) has run
    stats_applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    tournament: Mapped["Tournament"] = relationship(back_populates="matches")
    player1: Mapped["Player"] = relationship(foreign_keys=[player1_id])
    player2: Mapped[Optional["Player"]] = relationship(foreign_keys=[player2_id])
    winner: Mapped[Optional["Player"]] = relationship(foreign_keys=[winner_id])
    loser: Mapped[Optional["Player"]] = relationship(foreign_keys=[loser_id])
    confirmed_by: Mapped[Optional["Player"]] = relationship(foreign_keys=[confirmed_by_id])
    disputes: Mapped[list["MatchDispute"]] = relationship(
        back_populates="match",
        cascade="all, delete-orphan",
        order_by=lambda: MatchDispute.id,
    )

    __table_args__ = (
        UniqueConstraint("tournament_id", "match_number", name="uq_match_tournament_number"),
        Index("idx_matches_player1", "player1_id"),
        Index("idx_matches_player2", "player2_id"),
        Index("idx_matches_status", "status"),
        Index("idx_matches_scheduled_time", "scheduled_time"),
        Index("idx_matches_tournament_stage_round", "tournament_id", "stage", "round_number"),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_bye(self) -> bool:
        """A bye has only one assigned player."""
        return self.player2_id is None

    @property
    def both_confirmed(self) -> bool:
        return self.player1_confirmed and self.player2_confirmed

    def slot_for(self, player_id: Optional[int]) -> Optional[str]:
        """Return 'player1' / 'player2' for a participant of this match, else None."""
        if player_id is None:
            return None
        if player_id == self.player1_id:
            return "player1"
        if self.player2_id is not None and player_id == self.player2_id:
            return "player2"
        return None

    def involves(self, player_id: Optional[int]) -> bool:
        return self.slot_for(player_id) is not None

    def result_dict(self) -> dict:
        return {
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "is_draw": self.is_draw,
            "confirmed_by_id": self.confirmed_by_id,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }

    def __repr__(self) -> str:
        return f"<Match(id={self.id}, number={self.match_number}, status='{self.status}')>"


class MatchDispute(Base):
    """
    A dispute raised against a match result.

    Status lifecycle: open -> under_review -> resolved | rejected.
    Mismatched score submissions open one automatically (reason
    'score_mismatch'); players can raise others by hand.
    """
    __tablename__ = "match_disputes"

    id: Mapped[int] = mapped_column(primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"), nullable=False)

    raised_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    resolved_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    resolution: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    match: Mapped["Match"] = relationship(back_populates="disputes")

    __table_args__ = (
        Index("idx_match_disputes_match_status", "match_id", "status"),
    )

    @property
    def is_open(self) -> bool:
        return self.status in ("open", "under_review")

    def __repr__(self) -> str:
        return f"<MatchDispute(id={self.id}, match_id={self.match_id}, status='{self.status}')>"


# =============================================================================
# Payment Models
# =============================================================================

class Payment(Base):
    """
    A mobile-money transaction.

    Entry fees start 'pending' when the STK push is sent and move to
    'completed' or 'failed' when the gateway calls back. A completed entry
    fee registers the payer in the linked tournament.
    """
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_id: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    tournament_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tournaments.id"), nullable=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)  # 'entry_fee', 'prize_payout', 'refund'
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Gateway identifiers from the STK push response
    merchant_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    checkout_request_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    request_payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    callback_payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    receipt_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    phone_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    player: Mapped["Player"] = relationship()
    tournament: Mapped[Optional["Tournament"]] = relationship()

    __table_args__ = (
        Index("idx_payments_player", "player_id"),
        Index("idx_payments_tournament", "tournament_id"),
        Index("idx_payments_status", "status"),
        Index("idx_payments_checkout", "checkout_request_id"),
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Payment(ref='{self.transaction_id}', type='{self.type}', status='{self.status}')>"


# =============================================================================
# Leaderboard Models
# =============================================================================

class LeaderboardEntry(Base):
    """
    A player's standing within one leaderboard scope.

    Scope types and their periods:
    - 'global': 'all-time'
    - 'monthly': '2026-03'
    - 'weekly': '2026-W11' (ISO week)
    - 'tournament': the tournament id as a string (tournament_id also set)

    Entries are updated incrementally per finalized match, after which the
    whole scope is re-ranked so previous_rank and rank_change stay coherent.
    """
    __tablename__ = "leaderboard_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    scope_type: Mapped[str] = mapped_column(String(20), nullable=False, default="global")
    period: Mapped[str] = mapped_column(String(20), nullable=False, default="all-time")
    tournament_id: Mapped[Optional[int]] = mapped_column(ForeignKey("tournaments.id"), nullable=True)

    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    wins: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    draws: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_matches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    win_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))

    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    previous_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rank_change: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_updated: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    player: Mapped["Player"] = relationship()

    __table_args__ = (
        UniqueConstraint("player_id", "scope_type", "period", name="uq_leaderboard_player_scope"),
        Index("idx_leaderboard_scope_points", "scope_type", "period", "points"),
    )

    @property
    def rank_trend(self) -> str:
        """'up', 'down' or 'stable' based on the last re-rank."""
        if self.rank_change == 0:
            return "stable"
        return "up" if self.rank_change > 0 else "down"

    @property
    def display_rank(self) -> str:
        if self.rank <= 0:
            return "-"
        return f"#{self.rank}"

    def __repr__(self) -> str:
        return (
            f"<LeaderboardEntry(player_id={self.player_id}, scope='{self.scope_type}:{self.period}', "
            f"rank={self.rank})>"
        )


# =============================================================================
# Operations Models
# =============================================================================

class OperationLog(Base):
    """
    Audit log for side effects that failed outside the main transaction.

    Two producers:
    - 'dispute_record': a score mismatch was saved but its dispute row was
      not; needs_retry is set and retry_pending_disputes replays it
    - 'payment_callback': a gateway callback could not be processed; kept
      for manual reconciliation
    """
    __tablename__ = "operation_log"

    id: Mapped[int] = mapped_column(primary_key=True)

    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    needs_retry: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_operation_log_op_retry", "operation", "needs_retry"),
    )

    def __repr__(self) -> str:
        return f"<OperationLog(op='{self.operation}', success={self.success})>"
