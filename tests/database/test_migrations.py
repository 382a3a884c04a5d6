import sqlalchemy as sa

from transit_ingest.database.database_utils import DatabaseManager
from transit_ingest.ingestion.gtfs_rt_structs import DeltaBatch, DeltaRecord
from transit_ingest.runtime_utils.alembic_migration import alembic_downgrade_to_base, alembic_upgrade_to_head


def test_upgrade_and_downgrade(database_url: str) -> None:
    """
    test that migrating to head creates the delta feed tables the store
    writes to, and downgrading removes them
    """
    alembic_upgrade_to_head(database_url)

    db_manager = DatabaseManager(database_url)
    inspector = sa.inspect(db_manager.engine)
    assert inspector.has_table("trip")
    assert inspector.has_table("vehicle_positions")
    # feed ids are opaque strings of any length
    trip_columns = {column["name"]: column["type"] for column in inspector.get_columns("trip")}
    assert isinstance(trip_columns["trip_id"], sa.Text)

    batch = DeltaBatch(
        records=[
            DeltaRecord(
                trip_id="T1",
                route_id="R1",
                vehicle_id="V1",
                latitude=5.4,
                longitude=100.3,
                timestamp=1_700_000_000,
            )
        ]
    )
    assert db_manager.upsert_vehicle_positions(batch) == 1
    db_manager.dispose()

    alembic_downgrade_to_base(database_url)

    engine = sa.create_engine(database_url)
    inspector = sa.inspect(engine)
    assert not inspector.has_table("trip")
    assert not inspector.has_table("vehicle_positions")
    engine.dispose()
