"""Create watcher, candidate, observation and decision tables

Revision ID: 0001_watcher_tables
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_watcher_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "watchers",
        sa.Column("watcher_id", sa.String(length=255), primary_key=True),
        sa.Column("watcher_name", sa.String(length=500), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("repo_url", sa.Text, nullable=False),
        sa.Column("repo_name", sa.String(length=500), nullable=False),
        sa.Column("default_branch", sa.String(length=100), nullable=False, server_default="main"),
        sa.Column(
            "status",
            sa.Enum(
                "pending_schedule", "partially_scheduled", "active", "paused",
                name="watcher_status",
            ),
            nullable=False,
            server_default="pending_schedule",
        ),
        sa.Column("total_candidates", sa.Integer, nullable=False, server_default="0"),
        sa.Column("llm_zombie_risk", sa.JSON, nullable=True),
        sa.Column("application_url", sa.Text, nullable=True),
        sa.Column("observability_urls", sa.JSON, nullable=True),
        sa.Column("stored_credential", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_watchers_user_id", "watchers", ["user_id"])
    op.create_index("ix_watchers_repo_name", "watchers", ["repo_name"])
    op.create_index("ix_watchers_status", "watchers", ["status"])

    op.create_table(
        "zombie_candidates",
        sa.Column("candidate_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "watcher_id",
            sa.String(length=255),
            sa.ForeignKey("watchers.watcher_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_signature", sa.String(length=500), nullable=False),
        sa.Column("entity_name", sa.String(length=500), nullable=True),
        sa.Column("file_path", sa.Text, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "active", "paused", "inactive",
                "pending_review", "confirmed_zombie", "killed", "healthy",
                name="candidate_status",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("zombie_score", sa.Integer, nullable=True),
        sa.Column("caller_count", sa.Integer, nullable=False, server_default="0"),
        # Schedule
        sa.Column("scan_frequency_minutes", sa.Float, nullable=True),
        sa.Column("analysis_period_hours", sa.Integer, nullable=True),
        sa.Column("next_observation_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("observation_end_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_observed_at", sa.DateTime(timezone=True), nullable=True),
        # Operator audit
        sa.Column("pause_reason", sa.Text, nullable=True),
        sa.Column("paused_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("human_action", sa.String(length=50), nullable=True),
        sa.Column("human_action_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("kill_execution_id", sa.String(length=255), nullable=True),
        sa.Column(
            "discovered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "watcher_id", "entity_type", "entity_signature", name="unique_candidate"
        ),
    )
    op.create_index("ix_zombie_candidates_watcher_id", "zombie_candidates", ["watcher_id"])
    op.create_index("ix_zombie_candidates_entity_type", "zombie_candidates", ["entity_type"])
    op.create_index("ix_zombie_candidates_status", "zombie_candidates", ["status"])
    op.create_index(
        "ix_zombie_candidates_kill_execution_id", "zombie_candidates", ["kill_execution_id"]
    )
    op.create_index(
        "ix_candidates_watcher_status", "zombie_candidates", ["watcher_id", "status"]
    )

    op.create_table(
        "observation_events",
        sa.Column("event_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "candidate_id",
            sa.Integer,
            sa.ForeignKey("zombie_candidates.candidate_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "observed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("source_type", sa.String(length=50), nullable=True),
        sa.Column("http_status", sa.Integer, nullable=True),
        sa.Column("latency_ms", sa.Float, nullable=True),
        sa.Column("traffic_detected", sa.Boolean, nullable=True),
        sa.Column("request_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_type", sa.String(length=100), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
    )
    op.create_index("ix_observation_events_candidate_id", "observation_events", ["candidate_id"])
    op.create_index("ix_observation_events_observed_at", "observation_events", ["observed_at"])

    op.create_table(
        "decision_log",
        sa.Column("decision_id", sa.String(length=36), primary_key=True),
        sa.Column("candidate_id", sa.Integer, nullable=False),
        sa.Column("watcher_id", sa.String(length=255), nullable=False),
        sa.Column("action_type", sa.String(length=50), nullable=False),
        sa.Column("action_source", sa.String(length=50), nullable=False, server_default="api"),
        sa.Column("actor_type", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("decision", sa.String(length=50), nullable=False),
        sa.Column("execution_id", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_decision_log_candidate_id", "decision_log", ["candidate_id"])
    op.create_index("ix_decision_log_watcher_id", "decision_log", ["watcher_id"])
    op.create_index("ix_decision_log_execution_id", "decision_log", ["execution_id"])
    op.create_index("ix_decision_log_created_at", "decision_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("decision_log")
    op.drop_table("observation_events")
    op.drop_table("zombie_candidates")
    op.drop_table("watchers")

    # Drop enum types (PostgreSQL only)
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        sa.Enum(name="candidate_status").drop(bind, checkfirst=True)
        sa.Enum(name="watcher_status").drop(bind, checkfirst=True)
