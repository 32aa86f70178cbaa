"""Initial schema - metric definitions and snapshots.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Metric definitions table
    op.create_table(
        "metric_definitions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("granularity", sa.String(16), nullable=False, server_default="day"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit", sa.String(50), nullable=True),
        sa.Column("prefix", sa.String(16), nullable=True),
        sa.Column("suffix", sa.String(16), nullable=True),
        sa.Column("decimal_places", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("alert_threshold", sa.Numeric(28, 10), nullable=True),
        sa.Column("critical_threshold", sa.Numeric(28, 10), nullable=True),
        sa.Column("alert_webhook_url", sa.Text(), nullable=True),
        sa.Column("alert_webhook_secret", sa.String(128), nullable=True),
        sa.Column("retention_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_snapshots", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("code", name="uq_metric_definitions_code"),
    )
    op.create_index("ix_metric_definitions_active", "metric_definitions", ["is_active"])

    # Metric snapshots table
    op.create_table(
        "metric_snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "definition_id",
            sa.String(36),
            sa.ForeignKey("metric_definitions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("granularity", sa.String(16), nullable=False),
        sa.Column("dimensions", sa.Text(), nullable=False),
        sa.Column("dimensions_hash", sa.String(64), nullable=False),
        sa.Column("value", sa.Numeric(28, 10), nullable=False),
        sa.Column("formatted_value", sa.String(64), nullable=True),
        sa.Column("validated", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("definition_version", sa.Integer(), nullable=False),
        sa.Column("collection_status", sa.String(16), nullable=False),
        sa.Column("status_message", sa.String(500), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "definition_id",
            "period_start",
            "period_end",
            "dimensions_hash",
            name="uq_metric_snapshots_identity",
        ),
        sa.CheckConstraint("period_start < period_end", name="ck_metric_snapshots_period_order"),
        sa.CheckConstraint("duration_ms >= 0", name="ck_metric_snapshots_duration"),
    )
    op.create_index(
        "ix_metric_snapshots_definition_period",
        "metric_snapshots",
        ["definition_id", "period_start"],
    )


def downgrade() -> None:
    op.drop_index("ix_metric_snapshots_definition_period", table_name="metric_snapshots")
    op.drop_table("metric_snapshots")
    op.drop_index("ix_metric_definitions_active", table_name="metric_definitions")
    op.drop_table("metric_definitions")
