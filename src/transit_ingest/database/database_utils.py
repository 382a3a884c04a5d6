import threading
from typing import Any, Dict, Iterable, List, Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from transit_ingest.ingestion.error import StoreError
from transit_ingest.ingestion.gtfs_rt_structs import DeltaBatch
from transit_ingest.runtime_utils.process_logger import ProcessLogger

from .transit_schema import DELTA_TABLE_NAMES, TransitSqlBase, Trip, VehiclePositions

# lock key shared by both delta feed tables, they are always written together
DELTA_DESTINATION = "delta_feed"

RowBatch = List[Dict[str, str]]

# dialects with a conflict-ignoring insert for the trip table
SUPPORTED_DIALECTS = frozenset({"sqlite", "postgresql"})


def _sqlite_on_connect(dbapi_connection: Any, _: Any) -> None:
    """
    stop pysqlite from managing transactions itself. by default it only opens
    a transaction before DML statements, which would let the DROP / CREATE of
    a table load commit on its own.
    """
    dbapi_connection.isolation_level = None


def _sqlite_on_begin(connection: sa.engine.Connection) -> None:
    """
    emit our own BEGIN so DDL and DML share one transaction. IMMEDIATE takes
    the write lock up front, concurrent writers then wait on the busy timeout
    instead of failing when they both try to upgrade a read lock.
    """
    connection.exec_driver_sql("BEGIN IMMEDIATE")


def create_transit_engine(database_url: str, echo: bool = False) -> sa.engine.Engine:
    """
    create a SQL Alchemy engine for the destination store. sqlite engines get
    transactional DDL and a busy timeout so concurrent table loads wait on each
    other rather than fail.
    """
    url = sa.engine.make_url(database_url)
    process_logger = ProcessLogger(
        "create_sql_engine",
        dialect=url.get_backend_name(),
        host=url.host,
        database_name=url.database,
    )
    process_logger.log_start()
    try:
        if url.get_backend_name() not in SUPPORTED_DIALECTS:
            raise StoreError(f"Unsupported database dialect {url.get_backend_name()}")

        if url.get_backend_name() == "sqlite":
            engine = sa.create_engine(url, echo=echo, connect_args={"timeout": 30})
            sa.event.listen(engine, "connect", _sqlite_on_connect)
            sa.event.listen(engine, "begin", _sqlite_on_begin)
        else:
            engine = sa.create_engine(
                url,
                echo=echo,
                pool_pre_ping=True,
                pool_use_lifo=True,
                pool_size=5,
                max_overflow=2,
            )

        process_logger.log_complete()
        return engine
    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception


class DatabaseManager:
    """
    manager class for the destination store shared by the delta feed poller
    and the static bundle loader.

    every write runs inside one transaction and holds a per destination lock,
    so only one logical write happens at a time for a given table while
    distinct tables can be written concurrently.
    """

    def __init__(self, database_url: str, verbose: bool = False):
        """
        initialize db manager object, creates engine and sessionmaker
        """
        self.database_url = database_url
        self.engine = create_transit_engine(database_url, echo=verbose)
        self.session = sessionmaker(bind=self.engine)

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _destination_lock(self, destination: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(destination.lower(), threading.Lock())

    def _insert_ignore_trip(self) -> sa.sql.dml.Insert:
        """
        INSERT for the trip table that leaves an existing trip association
        untouched
        """
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            return sqlite.insert(Trip.__table__).on_conflict_do_nothing(index_elements=["trip_id"])
        if dialect == "postgresql":
            return postgresql.insert(Trip.__table__).on_conflict_do_nothing(index_elements=["trip_id"])
        raise StoreError(f"No conflict-ignoring insert for {dialect}")

    def create_schema(self) -> None:
        """create the delta feed tables if they do not exist"""
        TransitSqlBase.metadata.create_all(self.engine)

    def dispose(self) -> None:
        """close all pooled connections"""
        self.engine.dispose()

    def get_session(self) -> sessionmaker:
        """
        get db session for performing actions
        """
        return self.session

    def select_as_list(self, select_query: Union[sa.sql.selectable.Select, sa.sql.elements.TextClause]) -> List[Dict[str, Any]]:
        """
        select data from db table and return list
        """
        with self.session.begin() as cursor:
            return [row._asdict() for row in cursor.execute(select_query)]

    def upsert_vehicle_positions(self, batch: DeltaBatch) -> int:
        """
        write a delta batch in a single transaction. trip associations are
        inserted unless the trip already exists, position rows are appended in
        feed order. on any failure the transaction is rolled back and a
        StoreError is raised.

        :return: number of position rows written
        """
        if len(batch) == 0:
            return 0

        process_logger = ProcessLogger("upsert_vehicle_positions", record_count=len(batch))
        process_logger.log_start()

        trip_rows = [record.trip_row() for record in batch.records]
        position_rows = [record.position_row() for record in batch.records]

        with self._destination_lock(DELTA_DESTINATION):
            try:
                with self.session.begin() as cursor:
                    cursor.execute(self._insert_ignore_trip(), trip_rows)
                    cursor.execute(sa.insert(VehiclePositions.__table__), position_rows)
            except SQLAlchemyError as exception:
                store_error = StoreError(f"Unable to write {len(batch)} vehicle positions: {exception}")
                process_logger.log_failure(store_error)
                raise store_error from exception

        process_logger.log_complete()
        return len(position_rows)

    def load_table(self, table_name: str, header: Sequence[str], row_batches: Iterable[RowBatch]) -> int:
        """
        replace the contents of table_name with the rows from row_batches.

        the table is dropped and recreated with one TEXT column per header
        field, then every batch is inserted, all inside one transaction.
        exceptions raised while producing batches (parse errors,
        cancellation) propagate unchanged after the rollback, database errors
        are raised as StoreError. either way the previous table is untouched.

        :return: number of rows inserted
        """
        if table_name.lower() in DELTA_TABLE_NAMES:
            raise StoreError(f"Refusing to replace delta feed table {table_name}")

        rows_loaded = 0
        with self._destination_lock(table_name):
            try:
                table = sa.Table(
                    table_name,
                    sa.MetaData(),
                    *[sa.Column(column, sa.Text) for column in header],
                )
                with self.engine.begin() as connection:
                    table.drop(connection, checkfirst=True)
                    table.create(connection)
                    for batch in row_batches:
                        if not batch:
                            continue
                        connection.execute(sa.insert(table), batch)
                        rows_loaded += len(batch)
            except SQLAlchemyError as exception:
                raise StoreError(f"Unable to load table {table_name}: {exception}") from exception

        return rows_loaded
