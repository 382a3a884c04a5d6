"""create_delta_tables

Revision ID: 5e1c0a9b7d42
Revises:
Create Date: 2026-10-19 09:12:31.804117

Details
* upgrade -> create the trip and vehicle_positions tables written by the delta
    feed poller
* downgrade -> drop both tables
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "5e1c0a9b7d42"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "trip",
        sa.Column("trip_id", sa.Text(), nullable=False),
        sa.Column("route_id", sa.Text(), nullable=True),
        sa.Column("vehicle_id", sa.Text(), nullable=True),
        sa.Column(
            "created_on",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("trip_id"),
    )
    op.create_table(
        "vehicle_positions",
        sa.Column("pk_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("trip_id", sa.Text(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("bearing", sa.Float(), nullable=True),
        sa.Column("speed", sa.Float(), nullable=True),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column(
            "created_on",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("pk_id"),
    )
    op.create_index(
        "ix_vehicle_positions_trip_timestamp",
        "vehicle_positions",
        ["trip_id", "timestamp"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_vehicle_positions_trip_timestamp", table_name="vehicle_positions")
    op.drop_table("vehicle_positions")
    op.drop_table("trip")
