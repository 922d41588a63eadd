"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("telegram_id", sa.BigInteger(), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column("full_name", sa.String(200), nullable=True),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="driver"),
        sa.Column("carpark", sa.String(50), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("registration_state", sa.String(30), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_telegram_id", "users", ["telegram_id"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("session_token", sa.String(128), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_sessions_session_token", "user_sessions", ["session_token"], unique=True)

    op.create_table(
        "points",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("point_id", sa.String(50), nullable=False),
        sa.Column("point_name", sa.String(255), nullable=False),
        sa.Column("door_open_1", sa.String(100), nullable=True),
        sa.Column("door_open_2", sa.String(100), nullable=True),
        sa.Column("door_open_3", sa.String(100), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_points_point_id", "points", ["point_id"], unique=True)

    op.create_table(
        "trips",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("carpark", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_trips_carpark", "trips", ["carpark"])

    op.create_table(
        "trip_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("telegram_id", sa.BigInteger(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("telegram_message_id", sa.BigInteger(), nullable=True),
        sa.Column("response_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("response_comment", sa.Text(), nullable=True),
        sa.Column("response_at", sa.DateTime(), nullable=True),
        sa.Column("dispatcher_comment", sa.Text(), nullable=True),
        sa.Column("trip_identifier", sa.String(100), nullable=False),
        sa.Column("vehicle_number", sa.String(50), nullable=True),
        sa.Column("planned_loading_time", sa.String(50), nullable=True),
        sa.Column("driver_comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("trip_id", "phone", "trip_identifier", name="uniq_trip_message_per_phone_trip"),
    )
    op.create_index("ix_trip_messages_trip_id", "trip_messages", ["trip_id"])
    op.create_index("ix_trip_messages_phone", "trip_messages", ["phone"])
    op.create_index("ix_trip_messages_trip_status", "trip_messages", ["trip_id", "status"])

    op.create_table(
        "trip_points",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False),
        sa.Column("point_id", sa.Integer(), sa.ForeignKey("points.id"), nullable=False),
        sa.Column("point_type", sa.String(1), nullable=False),
        sa.Column("point_num", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("trip_identifier", sa.String(100), nullable=True),
        sa.Column("driver_phone", sa.String(32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_trip_points_trip_id", "trip_points", ["trip_id"])
    op.create_index("ix_trip_points_trip_identifier", "trip_points", ["trip_id", "trip_identifier"])

    op.create_table(
        "trip_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("trip_id", sa.Integer(), sa.ForeignKey("trips.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("interval_minutes", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_notification_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("trip_id", "user_id", name="uniq_subscription_per_trip_user"),
    )
    op.create_index("ix_trip_subscriptions_trip_id", "trip_subscriptions", ["trip_id"])
    op.create_index("ix_trip_subscriptions_user_id", "trip_subscriptions", ["user_id"])


def downgrade() -> None:
    op.drop_table("trip_subscriptions")
    op.drop_table("trip_points")
    op.drop_table("trip_messages")
    op.drop_table("trips")
    op.drop_table("points")
    op.drop_table("user_sessions")
    op.drop_table("users")
