"""Track reconciliation attempts on unattributed events.

Pending events are retried least-recently-attempted first, so events that
never resolve no longer hide newer ones behind the reconcile limit.

Revision ID: 002_unattributed_attempts
Revises: 001_initial
Create Date: 2025-02-03
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic
revision: str = "002_unattributed_attempts"
down_revision: str | None = "001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "unattributed_events",
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
    )
    op.add_column(
        "unattributed_events",
        sa.Column("last_attempted_at", sa.DateTime(timezone=True), nullable=True),
    )
    # Pending queue: WHERE resolved_at IS NULL ORDER BY last_attempted_at NULLS FIRST
    op.create_index(
        "ix_unattributed_events_pending",
        "unattributed_events",
        ["last_attempted_at", "received_at"],
        postgresql_where=sa.text("resolved_at IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("ix_unattributed_events_pending", table_name="unattributed_events")
    op.drop_column("unattributed_events", "last_attempted_at")
    op.drop_column("unattributed_events", "attempts")
