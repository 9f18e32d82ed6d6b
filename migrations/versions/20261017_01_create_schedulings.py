"""create schedulings and scheduled services

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "schedulings",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("pet_id", sa.String(length=64), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("start_at < end_at", name="ck_schedulings_interval"),
    )
    op.create_index("ix_schedulings_customer_id", "schedulings", ["customer_id"], unique=False)
    op.create_index("ix_schedulings_pet_id", "schedulings", ["pet_id"], unique=False)
    op.create_index("ix_schedulings_start_at", "schedulings", ["start_at"], unique=False)
    op.create_index("ix_schedulings_end_at", "schedulings", ["end_at"], unique=False)
    op.create_index("ix_schedulings_status", "schedulings", ["status"], unique=False)

    op.create_table(
        "scheduled_services",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("scheduling_id", sa.String(length=36), nullable=False),
        sa.Column("service_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["scheduling_id"], ["schedulings.id"], ondelete="CASCADE"),
        sa.CheckConstraint("unit_price >= 0", name="ck_scheduled_services_price"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_scheduled_services_duration"),
    )
    op.create_index("ix_scheduled_services_scheduling_id", "scheduled_services", ["scheduling_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_scheduled_services_scheduling_id", table_name="scheduled_services")
    op.drop_table("scheduled_services")
    op.drop_index("ix_schedulings_status", table_name="schedulings")
    op.drop_index("ix_schedulings_end_at", table_name="schedulings")
    op.drop_index("ix_schedulings_start_at", table_name="schedulings")
    op.drop_index("ix_schedulings_pet_id", table_name="schedulings")
    op.drop_index("ix_schedulings_customer_id", table_name="schedulings")
    op.drop_table("schedulings")
