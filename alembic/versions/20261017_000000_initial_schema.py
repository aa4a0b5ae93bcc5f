"""Initial efhub schema

Revision ID: 4f1c2e9a7b30
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision: str = "4f1c2e9a7b30"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("efootball_id", sa.String(length=20), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=10), nullable=False, server_default="user"),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("location", sa.String(length=100), nullable=True),
        sa.Column("bio", sa.String(length=500), nullable=True),
        sa.Column("avatar", sa.String(length=255), nullable=True),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("draws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("goals_for", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("goals_against", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("win_rate", sa.Numeric(precision=5, scale=2), nullable=False, server_default="0"),
        sa.Column("ranking", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("phone"),
        sa.UniqueConstraint("efootball_id"),
    )
    op.create_index("idx_players_points", "players", ["points"])
    op.create_index("idx_players_role", "players", ["role"])

    op.create_table(
        "tournaments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("banner", sa.String(length=255), nullable=True),
        sa.Column("organizer_id", sa.Integer(), nullable=True),
        sa.Column("format", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("participant_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("entry_fee", sa.Numeric(precision=10, scale=2), nullable=False, server_default="0"),
        sa.Column("prize_pool", sa.Numeric(precision=12, scale=2), nullable=False, server_default="0"),
        sa.Column("prize_distribution", _json(), nullable=False),
        sa.Column("rules", sa.Text(), nullable=False),
        sa.Column("registration_start", sa.DateTime(), nullable=True),
        sa.Column("registration_end", sa.DateTime(), nullable=True),
        sa.Column("tournament_start", sa.DateTime(), nullable=True),
        sa.Column("tournament_end", sa.DateTime(), nullable=True),
        sa.Column("points_for_win", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("points_for_draw", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("points_for_loss", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tiebreakers", _json(), nullable=False),
        sa.Column("qualifiers_per_group", sa.Integer(), nullable=True),
        sa.Column("match_duration_minutes", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("matches_per_day", sa.Integer(), nullable=True),
        sa.Column("allowed_weekdays", _json(), nullable=False),
        sa.Column("daily_start_time", sa.String(length=5), nullable=True),
        sa.Column("winner_id", sa.Integer(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("capacity >= 2 AND capacity <= 128", name="ck_tournament_capacity"),
        sa.CheckConstraint("participant_count <= capacity", name="ck_tournament_not_over_capacity"),
        sa.ForeignKeyConstraint(["organizer_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["winner_id"], ["players.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_tournaments_status", "tournaments", ["status"])
    op.create_index("idx_tournaments_start", "tournaments", ["tournament_start"])
    op.create_index("idx_tournaments_organizer", "tournaments", ["organizer_id"])

    op.create_table(
        "participants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="registered"),
        sa.Column("seed", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
        sa.Column("matches_played", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("draws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("goals_for", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("goals_against", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournaments.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["player_id"], ["players.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "player_id", name="uq_participant_tournament_player"),
    )
    op.create_index("idx_participants_player", "participants", ["player_id"])

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=False),
        sa.Column("round", sa.String(length=40), nullable=False),
        sa.Column("round_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("stage", sa.String(length=20), nullable=False),
        sa.Column("group_name", sa.String(length=20), nullable=True),
        sa.Column("match_number", sa.Integer(), nullable=False),
        sa.Column("player1_id", sa.Integer(), nullable=False),
        sa.Column("player1_score", sa.Integer(), nullable=True),
        sa.Column("player1_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("player1_screenshot", sa.String(length=255), nullable=True),
        sa.Column("player1_events", _json(), nullable=True),
        sa.Column("player2_id", sa.Integer(), nullable=True),
        sa.Column("player2_score", sa.Integer(), nullable=True),
        sa.Column("player2_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("player2_screenshot", sa.String(length=255), nullable=True),
        sa.Column("player2_events", _json(), nullable=True),
        sa.Column("scheduled_time", sa.DateTime(), nullable=True),
        sa.Column("actual_start_time", sa.DateTime(), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("winner_id", sa.Integer(), nullable=True),
        sa.Column("loser_id", sa.Integer(), nullable=True),
        sa.Column("is_draw", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("confirmed_by_id", sa.Integer(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("stats_applied_at", sa.DateTime(), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournaments.id"]),
        sa.ForeignKeyConstraint(["player1_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["player2_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["winner_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["loser_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["confirmed_by_id"], ["players.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tournament_id", "match_number", name="uq_match_tournament_number"),
    )
    op.create_index("idx_matches_player1", "matches", ["player1_id"])
    op.create_index("idx_matches_player2", "matches", ["player2_id"])
    op.create_index("idx_matches_status", "matches", ["status"])
    op.create_index("idx_matches_scheduled_time", "matches", ["scheduled_time"])
    op.create_index(
        "idx_matches_tournament_stage_round", "matches", ["tournament_id", "stage", "round_number"]
    )

    op.create_table(
        "match_disputes",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("match_id", sa.Integer(), nullable=False),
        sa.Column("raised_by_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("resolved_by_id", sa.Integer(), nullable=True),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["match_id"], ["matches.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["raised_by_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["resolved_by_id"], ["players.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_match_disputes_match_status", "match_disputes", ["match_id", "status"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.String(length=120), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.Column("tournament_id", sa.Integer(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("merchant_request_id", sa.String(length=100), nullable=True),
        sa.Column("checkout_request_id", sa.String(length=100), nullable=True),
        sa.Column("request_payload", _json(), nullable=True),
        sa.Column("callback_payload", _json(), nullable=True),
        sa.Column("receipt_number", sa.String(length=50), nullable=True),
        sa.Column("phone_number", sa.String(length=20), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
        sa.ForeignKeyConstraint(["player_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournaments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("idx_payments_player", "payments", ["player_id"])
    op.create_index("idx_payments_tournament", "payments", ["tournament_id"])
    op.create_index("idx_payments_status", "payments", ["status"])
    op.create_index("idx_payments_checkout", "payments", ["checkout_request_id"])

    op.create_table(
        "leaderboard_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("player_id", sa.Integer(), nullable=False),
        sa.Column("scope_type", sa.String(length=20), nullable=False, server_default="global"),
        sa.Column("period", sa.String(length=20), nullable=False, server_default="all-time"),
        sa.Column("tournament_id", sa.Integer(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("wins", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("draws", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("losses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_matches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("win_rate", sa.Numeric(precision=5, scale=2), nullable=False, server_default="0"),
        sa.Column("rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("previous_rank", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rank_change", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["player_id"], ["players.id"]),
        sa.ForeignKeyConstraint(["tournament_id"], ["tournaments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("player_id", "scope_type", "period", name="uq_leaderboard_player_scope"),
    )
    op.create_index(
        "idx_leaderboard_scope_points", "leaderboard_entries", ["scope_type", "period", "points"]
    )

    op.create_table(
        "operation_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("operation", sa.String(length=50), nullable=False),
        sa.Column("details", _json(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("needs_retry", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_operation_log_op_retry", "operation_log", ["operation", "needs_retry"])


def downgrade() -> None:
    op.drop_index("idx_operation_log_op_retry", table_name="operation_log")
    op.drop_table("operation_log")
    op.drop_index("idx_leaderboard_scope_points", table_name="leaderboard_entries")
    op.drop_table("leaderboard_entries")
    for index in ("idx_payments_checkout", "idx_payments_status", "idx_payments_tournament", "idx_payments_player"):
        op.drop_index(index, table_name="payments")
    op.drop_table("payments")
    op.drop_index("idx_match_disputes_match_status", table_name="match_disputes")
    op.drop_table("match_disputes")
    for index in (
        "idx_matches_tournament_stage_round",
        "idx_matches_scheduled_time",
        "idx_matches_status",
        "idx_matches_player2",
        "idx_matches_player1",
    ):
        op.drop_index(index, table_name="matches")
    op.drop_table("matches")
    op.drop_index("idx_participants_player", table_name="participants")
    op.drop_table("participants")
    for index in ("idx_tournaments_organizer", "idx_tournaments_start", "idx_tournaments_status"):
        op.drop_index(index, table_name="tournaments")
    op.drop_table("tournaments")
    op.drop_index("idx_players_role", table_name="players")
    op.drop_index("idx_players_points", table_name="players")
    op.drop_table("players")
