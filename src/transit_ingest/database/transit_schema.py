from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import declarative_base

TransitSqlBase: Any = declarative_base(name="Transit")


class Trip(TransitSqlBase):  # pylint: disable=too-few-public-methods
    """
    Table holding the route and vehicle associated with each realtime trip.
    The first association seen for a trip is kept.
    """

    __tablename__ = "trip"

    trip_id = sa.Column(sa.Text, primary_key=True)
    route_id = sa.Column(sa.Text, nullable=True)
    vehicle_id = sa.Column(sa.Text, nullable=True)
    created_on = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now())


class VehiclePositions(TransitSqlBase):  # pylint: disable=too-few-public-methods
    """
    Time series of vehicle positions from the delta feed. Rows are only ever
    appended.
    """

    __tablename__ = "vehicle_positions"

    pk_id = sa.Column(sa.Integer, primary_key=True, autoincrement=True)
    trip_id = sa.Column(sa.Text, nullable=False)
    latitude = sa.Column(sa.Float, nullable=False)
    longitude = sa.Column(sa.Float, nullable=False)
    bearing = sa.Column(sa.Float, nullable=True)
    speed = sa.Column(sa.Float, nullable=True)
    timestamp = sa.Column(sa.BigInteger, nullable=False)
    created_on = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now())


sa.Index(
    "ix_vehicle_positions_trip_timestamp",
    VehiclePositions.trip_id,
    VehiclePositions.timestamp,
)

# tables owned by the delta feed, static bundle loads may not replace them
DELTA_TABLE_NAMES = frozenset({Trip.__tablename__, VehiclePositions.__tablename__})
