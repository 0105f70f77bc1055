"""scheduling tables

Revision ID: 3c1f9a2b7d40
Revises:
Create Date: 2025-11-18 09:12:04.551203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f9a2b7d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "availability_windows",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_availability_windows_day"),
        sa.UniqueConstraint("day_of_week"),
    )

    op.create_table(
        "booking_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("slug", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("buffer_after_minutes", sa.Integer(), nullable=False),
        sa.Column("max_bookings_per_day", sa.Integer(), nullable=True),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("confirmation_message", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("duration_minutes > 0", name="ck_booking_types_duration"),
        sa.CheckConstraint("buffer_after_minutes >= 0", name="ck_booking_types_buffer"),
        sa.CheckConstraint(
            "max_bookings_per_day IS NULL OR max_bookings_per_day > 0",
            name="ck_booking_types_daily_cap",
        ),
    )
    op.create_index("ix_booking_types_slug", "booking_types", ["slug"], unique=True)

    op.create_table(
        "availability_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("end_time", sa.String(length=5), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_availability_overrides_date", "availability_overrides", ["date"], unique=True)

    op.create_table(
        "slot_ledger",
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("slot_time", sa.String(length=5), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("booked", sa.Integer(), nullable=False),
        sa.CheckConstraint("capacity >= 0", name="ck_slot_ledger_capacity"),
        sa.CheckConstraint("booked >= 0 AND booked <= capacity", name="ck_slot_ledger_booked"),
        sa.PrimaryKeyConstraint("slot_date", "slot_time"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "booking_type_id",
            sa.Integer(),
            sa.ForeignKey("booking_types.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("slot_time", sa.String(length=5), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_bookings_type_date", "bookings", ["booking_type_id", "slot_date"])
    op.create_index("ix_bookings_slot", "bookings", ["slot_date", "slot_time"])


def downgrade() -> None:
    op.drop_index("ix_bookings_slot", table_name="bookings")
    op.drop_index("ix_bookings_type_date", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("slot_ledger")
    op.drop_index("ix_availability_overrides_date", table_name="availability_overrides")
    op.drop_table("availability_overrides")
    op.drop_index("ix_booking_types_slug", table_name="booking_types")
    op.drop_table("booking_types")
    op.drop_table("availability_windows")
