"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates all tables for the schedule matcher:
users, availability, events, event_participants,
event_confirmations, event_state_history.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EVENT_STATUS = sa.Enum(
    "open", "matched", "pending_confirmation", "confirmed", "cancelled", "expired", "rolled_back",
    name="eventstatus",
)
DATE_MODE = sa.Enum("consecutive", "flexible", "within_period", name="datemode")
TIME_SLOT_RESTRICTION = sa.Enum("both", "daytime_only", "evening_only", name="timeslotrestriction")
CONFIRMATION_MODE = sa.Enum("creator_only", "all", "majority", "minimum_count", name="confirmationmode")
RESERVATION_STATUS = sa.Enum("open", "tentative", "confirmed", "expired", name="reservationstatus")
PARTICIPANT_PRIORITY = sa.Enum("high", "medium", "low", name="participantpriority")
CONFIRMATION_TYPE = sa.Enum("creator", "participant", name="confirmationtype")


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- availability ---
    op.create_table(
        "availability",
        sa.Column("availability_id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("date", sa.Date, nullable=False),
        sa.Column("daytime", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("evening", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "date", name="uq_availability_user_date"),
    )
    op.create_index("ix_availability_user_id", "availability", ["user_id"])
    op.create_index("ix_availability_date", "availability", ["date"])

    # --- events ---
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("min_participants", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_participants", sa.Integer, nullable=True),
        sa.Column("required_slots", sa.Integer, nullable=False, server_default="1"),
        sa.Column("date_mode", DATE_MODE, nullable=False, server_default="consecutive"),
        sa.Column("minimum_consecutive", sa.Integer, nullable=False, server_default="1"),
        sa.Column("time_slot_restriction", TIME_SLOT_RESTRICTION, nullable=False, server_default="both"),
        sa.Column("matching_policy", sa.JSON, nullable=False),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("period_start", sa.Date, nullable=True),
        sa.Column("period_end", sa.Date, nullable=True),
        sa.Column("deadline_warning_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("require_creator_confirmation", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("require_participant_confirmation", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("confirmation_mode", CONFIRMATION_MODE, nullable=False, server_default="creator_only"),
        sa.Column("minimum_confirmations", sa.Integer, nullable=True),
        sa.Column("confirmation_timeout", sa.Integer, nullable=False, server_default="60"),
        sa.Column("grace_period", sa.Integer, nullable=False, server_default="30"),
        sa.Column("confirmation_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", EVENT_STATUS, nullable=False, server_default="open"),
        sa.Column("matched_slots", sa.JSON, nullable=True),
        sa.Column("reservation_status", RESERVATION_STATUS, nullable=False, server_default="open"),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_events_creator_id", "events", ["creator_id"])
    op.create_index("ix_events_deadline", "events", ["deadline"])
    op.create_index("ix_events_status", "events", ["status"])

    # --- event_participants ---
    op.create_table(
        "event_participants",
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), primary_key=True),
        sa.Column("priority", PARTICIPANT_PRIORITY, nullable=False, server_default="medium"),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # --- event_confirmations ---
    op.create_table(
        "event_confirmations",
        sa.Column("confirmation_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("confirmation_type", CONFIRMATION_TYPE, nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("event_id", "user_id", "confirmation_type", name="uq_confirmation_event_user_type"),
    )
    op.create_index("ix_event_confirmations_event_id", "event_confirmations", ["event_id"])

    # --- event_state_history ---
    op.create_table(
        "event_state_history",
        sa.Column("history_id", sa.String(36), primary_key=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id"), nullable=False),
        sa.Column("previous_status", sa.String(32), nullable=True),
        sa.Column("new_status", sa.String(32), nullable=False),
        sa.Column("triggered_by", sa.String(36), nullable=False, server_default="system"),
        sa.Column("reason", sa.String(500), nullable=False, server_default=""),
        sa.Column("additional_data", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_event_state_history_event_id", "event_state_history", ["event_id"])


def downgrade() -> None:
    op.drop_table("event_state_history")
    op.drop_table("event_confirmations")
    op.drop_table("event_participants")
    op.drop_table("events")
    op.drop_table("availability")
    op.drop_table("users")
    for enum_type in (
        CONFIRMATION_TYPE, PARTICIPANT_PRIORITY, RESERVATION_STATUS,
        CONFIRMATION_MODE, TIME_SLOT_RESTRICTION, DATE_MODE, EVENT_STATUS,
    ):
        enum_type.drop(op.get_bind(), checkfirst=True)
