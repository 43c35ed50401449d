"""Initial schema: responder profiles, monitoring sessions, alerts, responses.

Revision ID: 001
Revises:
Create Date: 2025-06-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "responder_profiles",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_responder", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_responder_profiles_email"), "responder_profiles", ["email"], unique=True)
    op.create_index(op.f("ix_responder_profiles_last_seen_at"), "responder_profiles", ["last_seen_at"], unique=False)

    op.create_table(
        "monitoring_sessions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("anonymous_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("location_general", sa.Text(), nullable=True),
        sa.Column("location_precise", sa.Text(), nullable=True),
        sa.Column("check_ins_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("(user_id IS NULL) <> (anonymous_id IS NULL)", name="ck_monitoring_sessions_single_origin"),
        sa.ForeignKeyConstraint(["user_id"], ["responder_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_monitoring_sessions_active_user",
        "monitoring_sessions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active' AND user_id IS NOT NULL"),
        sqlite_where=sa.text("status = 'active' AND user_id IS NOT NULL"),
    )
    op.create_index(
        "uq_monitoring_sessions_active_anonymous",
        "monitoring_sessions",
        ["anonymous_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active' AND anonymous_id IS NOT NULL"),
        sqlite_where=sa.text("status = 'active' AND anonymous_id IS NOT NULL"),
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_id", sa.Uuid(), nullable=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("anonymous_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("general_location", sa.Text(), nullable=False),
        sa.Column("precise_location", sa.Text(), nullable=False),
        sa.Column("responder_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("(user_id IS NULL) <> (anonymous_id IS NULL)", name="ck_alerts_single_origin"),
        sa.CheckConstraint("responder_count >= 0", name="ck_alerts_responder_count_non_negative"),
        sa.ForeignKeyConstraint(["session_id"], ["monitoring_sessions.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["user_id"], ["responder_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_alerts_user_id"), "alerts", ["user_id"], unique=False)
    op.create_index(op.f("ix_alerts_anonymous_id"), "alerts", ["anonymous_id"], unique=False)
    op.create_index("ix_alerts_status_created", "alerts", ["status", "created_at"], unique=False)

    op.create_table(
        "responses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("alert_id", sa.Uuid(), nullable=False),
        sa.Column("responder_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="committed"),
        sa.Column("ambulance_called", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("person_okay", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("naloxone_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("additional_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["alert_id"], ["alerts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["responder_id"], ["responder_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("alert_id", "responder_id", name="uq_responses_alert_responder"),
    )
    op.create_index(op.f("ix_responses_alert_id"), "responses", ["alert_id"], unique=False)
    op.create_index(op.f("ix_responses_responder_id"), "responses", ["responder_id"], unique=False)
    op.create_index("ix_responses_status_alert", "responses", ["status", "alert_id"], unique=False)

    op.create_table(
        "response_cancellations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("alert_id", sa.Uuid(), nullable=False),
        sa.Column("responder_id", sa.Uuid(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["alert_id"], ["alerts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["responder_id"], ["responder_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_response_cancellations_alert_id"), "response_cancellations", ["alert_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_response_cancellations_alert_id"), table_name="response_cancellations")
    op.drop_table("response_cancellations")
    op.drop_index("ix_responses_status_alert", table_name="responses")
    op.drop_index(op.f("ix_responses_responder_id"), table_name="responses")
    op.drop_index(op.f("ix_responses_alert_id"), table_name="responses")
    op.drop_table("responses")
    op.drop_index("ix_alerts_status_created", table_name="alerts")
    op.drop_index(op.f("ix_alerts_anonymous_id"), table_name="alerts")
    op.drop_index(op.f("ix_alerts_user_id"), table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("uq_monitoring_sessions_active_anonymous", table_name="monitoring_sessions")
    op.drop_index("uq_monitoring_sessions_active_user", table_name="monitoring_sessions")
    op.drop_table("monitoring_sessions")
    op.drop_index(op.f("ix_responder_profiles_last_seen_at"), table_name="responder_profiles")
    op.drop_index(op.f("ix_responder_profiles_email"), table_name="responder_profiles")
    op.drop_table("responder_profiles")
