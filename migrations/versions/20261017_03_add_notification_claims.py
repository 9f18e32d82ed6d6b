"""add notification claims

Revision ID: 20261017_03
Revises: 20261017_02
Create Date: 2026-10-17 14:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261017_03"
down_revision: Union[str, None] = "20261017_02"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("notifications", sa.Column("claimed_by", sa.String(length=64), nullable=True))
    op.add_column("notifications", sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column("notifications", "claimed_until")
    op.drop_column("notifications", "claimed_by")
