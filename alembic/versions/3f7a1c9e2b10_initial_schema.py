"""initial_schema

Revision ID: 3f7a1c9e2b10
Revises: 
Create Date: 2026-10-19 10:12:31.402117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f7a1c9e2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _schedule_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.String(), nullable=False),
        sa.Column("origin", sa.String(), nullable=False),
        sa.Column("destination", sa.String(), nullable=False),
        sa.Column("zone", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Create profile, schedule, request, notification, vehicle, favorite and contact tables."""
    op.create_table(
        "profile",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("phone", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=True),
        sa.Column("zone", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_profile_email", "profile", ["email"], unique=True)
    op.create_table(
        "driverschedule",
        *_schedule_columns(),
        sa.Column("departure_time", sa.String(), nullable=False),
        sa.Column("seats", sa.Integer(), nullable=False, server_default="4"),
        sa.ForeignKeyConstraint(["owner_id"], ["profile.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_driverschedule_owner_id", "driverschedule", ["owner_id"])
    op.create_index("ix_driverschedule_active", "driverschedule", ["active"])
    op.create_table(
        "passengerschedule",
        *_schedule_columns(),
        sa.Column("approx_time", sa.String(), nullable=False),
        sa.Column("flexibility_minutes", sa.Integer(), nullable=True, server_default="30"),
        sa.ForeignKeyConstraint(["owner_id"], ["profile.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_passengerschedule_owner_id", "passengerschedule", ["owner_id"])
    op.create_index("ix_passengerschedule_active", "passengerschedule", ["active"])
    op.create_table(
        "triprequest",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("passenger_id", sa.Integer(), nullable=False),
        sa.Column("driver_id", sa.Integer(), nullable=False),
        sa.Column("driver_schedule_id", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(), nullable=False, server_default="pending"),
        sa.Column("message", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["passenger_id"], ["profile.id"]),
        sa.ForeignKeyConstraint(["driver_id"], ["profile.id"]),
        sa.ForeignKeyConstraint(["driver_schedule_id"], ["driverschedule.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_triprequest_passenger_id", "triprequest", ["passenger_id"])
    op.create_index("ix_triprequest_driver_id", "triprequest", ["driver_id"])
    op.create_index("ix_triprequest_driver_schedule_id", "triprequest", ["driver_schedule_id"])
    op.create_index("ix_triprequest_state", "triprequest", ["state"])
    op.create_table(
        "notification",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["profile.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_user_id", "notification", ["user_id"])
    op.create_table(
        "vehicle",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("driver_id", sa.Integer(), nullable=False),
        sa.Column("plate", sa.String(), nullable=False),
        sa.Column("brand", sa.String(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("property_card_url", sa.String(), nullable=False),
        sa.Column("license_url", sa.String(), nullable=False),
        sa.Column("soat_url", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["driver_id"], ["profile.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_vehicle_driver_id", "vehicle", ["driver_id"])
    op.create_table(
        "favoritedriver",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("passenger_id", sa.Integer(), nullable=False),
        sa.Column("driver_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("passenger_id", "driver_id"),
    )
    op.create_index("ix_favoritedriver_passenger_id", "favoritedriver", ["passenger_id"])
    op.create_table(
        "contactlog",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("passenger_id", sa.Integer(), nullable=False),
        sa.Column("driver_id", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contactlog_passenger_id", "contactlog", ["passenger_id"])


def downgrade() -> None:
    """Drop all initial tables."""
    op.drop_index("ix_contactlog_passenger_id", table_name="contactlog")
    op.drop_table("contactlog")
    op.drop_index("ix_favoritedriver_passenger_id", table_name="favoritedriver")
    op.drop_table("favoritedriver")
    op.drop_index("ix_vehicle_driver_id", table_name="vehicle")
    op.drop_table("vehicle")
    op.drop_index("ix_notification_user_id", table_name="notification")
    op.drop_table("notification")
    for ix in ("state", "driver_schedule_id", "driver_id", "passenger_id"):
        op.drop_index(f"ix_triprequest_{ix}", table_name="triprequest")
    op.drop_table("triprequest")
    for table in ("passengerschedule", "driverschedule"):
        op.drop_index(f"ix_{table}_active", table_name=table)
        op.drop_index(f"ix_{table}_owner_id", table_name=table)
        op.drop_table(table)
    op.drop_index("ix_profile_email", table_name="profile")
    op.drop_table("profile")
