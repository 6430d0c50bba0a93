"""availability_settings table

Revision ID: 0001
Revises:
Create Date: 2026-10-16
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "availability_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("business_hours", sa.Text(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("blocked_dates", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("blocked_time_slots", sa.Text(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("advance_booking_days", sa.Integer(), nullable=False, server_default=sa.text("14")),
        sa.Column("slot_duration", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("buffer_time", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_slots_per_day", sa.Integer(), nullable=True),
        sa.Column("timezone", sa.Text(), nullable=False, server_default=sa.text("'America/Los_Angeles'")),
        sa.Column("created_at", sa.Text(), server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("CURRENT_TIMESTAMP")),
    )


def downgrade():
    op.drop_table("availability_settings")
