"""channel_sync_initial

Revision ID: 0001_channel_sync_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_channel_sync_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _jsonb():
    return postgresql.JSONB(astext_type=sa.Text())


def upgrade() -> None:
    op.create_table(
        "system_settings",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("value", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )

    op.create_table(
        "channel_requirements",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("channel_code", sa.Text(), nullable=False),
        sa.Column("channel_name", sa.Text(), nullable=False),
        sa.Column("family_code", sa.Text(), nullable=True),
        sa.Column("required_fields", _jsonb(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("recommended_fields", _jsonb(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("min_completeness_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("field_constraints", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_code", "family_code", name="uq_channel_requirements_channel_family"),
    )

    op.create_table(
        "completeness_rules",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("field", sa.Text(), nullable=False),
        sa.Column("label", sa.Text(), nullable=False),
        sa.Column("is_required", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("weight", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("category_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "channel_accounts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("channel_code", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("credentials", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("sync_direction", sa.Text(), nullable=False, server_default="PIM_TO_CHANNEL"),
        sa.Column("settings", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_code", "name", name="uq_channel_accounts_code_name"),
    )

    op.create_table(
        "channel_mappings",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("account_id", sa.UUID(), nullable=False),
        sa.Column("channel_code", sa.Text(), nullable=False),
        sa.Column("product_id", sa.Text(), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("external_id", sa.Text(), nullable=True),
        sa.Column("external_attributes", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING_SYNC"),
        sa.Column("remote_status_detail", _jsonb(), nullable=True),
        sa.Column("remote_state", _jsonb(), nullable=True),
        sa.Column("local_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("synced_local_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remote_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("synced_remote_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remote_marker", sa.Text(), nullable=True),
        sa.Column("remote_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("local_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_direction", sa.Text(), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("last_error_class", sa.Text(), nullable=True),
        sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["channel_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "product_id", "generation", name="uq_channel_mappings_account_product_gen"),
        sa.UniqueConstraint("account_id", "external_id", name="uq_channel_mappings_account_external"),
    )
    op.create_index("ix_channel_mappings_retry", "channel_mappings", ["status", "retryable", "next_retry_at"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("mapping_id", sa.UUID(), nullable=True),
        sa.Column("account_id", sa.UUID(), nullable=True),
        sa.Column("product_id", sa.Text(), nullable=True),
        sa.Column("channel_code", sa.Text(), nullable=True),
        sa.Column("operation", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("direction", sa.Text(), nullable=True),
        sa.Column("decision", sa.Text(), nullable=True),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_created", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("error_class", sa.Text(), nullable=True),
        sa.Column("retryable", sa.Boolean(), nullable=True),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column("request_payload", _jsonb(), nullable=True),
        sa.Column("response_payload", _jsonb(), nullable=True),
        sa.Column("local_snapshot", _jsonb(), nullable=True),
        sa.Column("remote_snapshot", _jsonb(), nullable=True),
        sa.Column("trigger_source", sa.Text(), nullable=True),
        sa.Column("triggered_by", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["mapping_id"], ["channel_mappings.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_logs_mapping_started", "sync_logs", ["mapping_id", "started_at"])

    op.create_table(
        "sync_conflicts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("mapping_id", sa.UUID(), nullable=False),
        sa.Column("log_id", sa.UUID(), nullable=True),
        sa.Column("local_version", sa.Integer(), nullable=False),
        sa.Column("remote_version", sa.Integer(), nullable=False),
        sa.Column("local_snapshot", _jsonb(), nullable=True),
        sa.Column("remote_snapshot", _jsonb(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("strategy", sa.Text(), nullable=False, server_default="MANUAL_REVIEW"),
        sa.Column("resolution", sa.Text(), nullable=True),
        sa.Column("resolved_by", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["mapping_id"], ["channel_mappings.id"]),
        sa.ForeignKeyConstraint(["log_id"], ["sync_logs.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_conflicts_status", "sync_conflicts", ["status"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("channel_code", sa.Text(), nullable=False),
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("external_id", sa.Text(), nullable=True),
        sa.Column("account_id", sa.UUID(), nullable=True),
        sa.Column("mapping_id", sa.UUID(), nullable=True),
        sa.Column("payload", _jsonb(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.Text(), nullable=False, server_default="RECEIVED"),
        sa.Column("result", _jsonb(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("channel_code", "event_id", name="uq_webhook_events_channel_event"),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_index("ix_sync_conflicts_status", table_name="sync_conflicts")
    op.drop_table("sync_conflicts")
    op.drop_index("ix_sync_logs_mapping_started", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_channel_mappings_retry", table_name="channel_mappings")
    op.drop_table("channel_mappings")
    op.drop_table("channel_accounts")
    op.drop_table("completeness_rules")
    op.drop_table("channel_requirements")
    op.drop_table("system_settings")
