"""Add lower-bound and percent-change alert thresholds to metric definitions.

Revision ID: 002_alert_bounds
Revises: 001_initial
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002_alert_bounds"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    with op.batch_alter_table("metric_definitions") as batch:
        batch.add_column(sa.Column("alert_min_threshold", sa.Numeric(28, 10), nullable=True))
        batch.add_column(sa.Column("alert_change_percent", sa.Numeric(28, 10), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("metric_definitions") as batch:
        batch.drop_column("alert_change_percent")
        batch.drop_column("alert_min_threshold")
