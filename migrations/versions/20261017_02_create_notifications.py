"""create notifications

Revision ID: 20261017_02
Revises: 20261017_01
Create Date: 2026-10-17 09:10:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261017_02"
down_revision: Union[str, None] = "20261017_01"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("scheduling_id", sa.String(length=36), nullable=False),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("rule_key", sa.String(length=80), nullable=False),
        sa.Column("target_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(length=500), nullable=True),
        sa.ForeignKeyConstraint(["scheduling_id"], ["schedulings.id"], ondelete="RESTRICT"),
    )
    op.create_index("ix_notifications_scheduling_id", "notifications", ["scheduling_id"], unique=False)
    op.create_index(
        "ix_notifications_rule_target_created",
        "notifications",
        ["rule_key", "target_id", "created_at"],
        unique=False,
    )
    op.create_index("ix_notifications_status_created", "notifications", ["status", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_notifications_status_created", table_name="notifications")
    op.drop_index("ix_notifications_rule_target_created", table_name="notifications")
    op.drop_index("ix_notifications_scheduling_id", table_name="notifications")
    op.drop_table("notifications")
