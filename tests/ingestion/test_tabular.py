import codecs
import threading

import pytest
import sqlalchemy as sa

from transit_ingest.database.database_utils import DatabaseManager
from transit_ingest.ingestion.error import Cancelled, MalformedRowError
from transit_ingest.ingestion.tabular import iter_row_batches, load_table, read_header

STOPS = (
    "stop_id,stop_code,stop_name,stop_lat,stop_lon\n"
    '1001,007,"Komtar, Jalan Penang",5.4145,100.3292\n'
    '1002,,"The ""Jetty""",5.4141,100.3434\n'
    "1003,NA,Bukit Jambul,5.3345,100.2831\n"
)


def stop_rows(db_manager: DatabaseManager) -> list:
    """every row of the stops table ordered by stop id"""
    return db_manager.select_as_list(sa.text("SELECT * FROM stops ORDER BY stop_id"))


def test_read_header() -> None:
    """test that the header is read from the first record, ignoring a BOM"""
    data = codecs.BOM_UTF8 + STOPS.encode()

    assert read_header("stops", data) == ["stop_id", "stop_code", "stop_name", "stop_lat", "stop_lon"]


def test_iter_row_batches() -> None:
    """
    test that rows are batched in order with a final partial batch, every
    field kept as a string
    """
    data = ("id,value\n" + "".join(f"{index},{index:03d}\n" for index in range(5))).encode()

    batches = list(iter_row_batches("numbers", data, ["id", "value"], batch_size=2))

    assert [len(batch) for batch in batches] == [2, 2, 1]
    assert batches[0] == [{"id": "0", "value": "000"}, {"id": "1", "value": "001"}]
    assert batches[2] == [{"id": "4", "value": "004"}]


def test_iter_row_batches_cancelled() -> None:
    """test that a set cancel event stops the stream before the next batch"""
    data = ("id\n" + "".join(f"{index}\n" for index in range(10))).encode()
    cancel_event = threading.Event()

    batches = iter_row_batches("numbers", data, ["id"], batch_size=3, cancel_event=cancel_event)
    assert len(next(batches)) == 3

    cancel_event.set()
    with pytest.raises(Cancelled):
        next(batches)


def test_iter_row_batches_malformed() -> None:
    """test that a row with the wrong number of fields is reported by row"""
    data = b"a,b,c\n1,2,3\n4,5\n"

    with pytest.raises(MalformedRowError) as error:
        list(iter_row_batches("letters", data, ["a", "b", "c"], batch_size=10))

    assert error.value.expected_columns == 3
    assert error.value.actual_columns == 2
    assert error.value.table_name == "letters"


def test_load_table(db_manager: DatabaseManager) -> None:
    """
    test that quoted fields, doubled quotes, empty fields and null-like
    strings are stored verbatim
    """
    result = load_table(db_manager, "stops", codecs.BOM_UTF8 + STOPS.encode(), batch_size=2)

    assert result.success
    assert result.rows_loaded == 3
    assert stop_rows(db_manager) == [
        {
            "stop_id": "1001",
            "stop_code": "007",
            "stop_name": "Komtar, Jalan Penang",
            "stop_lat": "5.4145",
            "stop_lon": "100.3292",
        },
        {
            "stop_id": "1002",
            "stop_code": "",
            "stop_name": 'The "Jetty"',
            "stop_lat": "5.4141",
            "stop_lon": "100.3434",
        },
        {
            "stop_id": "1003",
            "stop_code": "NA",
            "stop_name": "Bukit Jambul",
            "stop_lat": "5.3345",
            "stop_lon": "100.2831",
        },
    ]


def test_load_table_malformed_row(db_manager: DatabaseManager, caplog: pytest.LogCaptureFixture) -> None:
    """
    test that a malformed row aborts the whole load and the previous contents
    of the table are kept
    """
    assert load_table(db_manager, "stops", STOPS.encode(), batch_size=100_000).success

    data = ("stop_id,stop_name\n" + "".join(f"{index},stop {index}\n" for index in range(50)) + "99\n").encode()
    result = load_table(db_manager, "stops", data, batch_size=10)

    assert not result.success
    assert result.rows_loaded == 0
    assert result.error.startswith("MalformedRowError:")
    assert "error_type=MalformedRowError" in caplog.text

    assert [row["stop_id"] for row in stop_rows(db_manager)] == ["1001", "1002", "1003"]
    assert "stop_code" in stop_rows(db_manager)[0]


def test_load_table_cancelled(db_manager: DatabaseManager) -> None:
    """test that a cancelled load rolls back"""
    assert load_table(db_manager, "stops", STOPS.encode(), batch_size=100_000).success

    cancel_event = threading.Event()
    cancel_event.set()
    result = load_table(db_manager, "stops", b"stop_id\n1\n2\n", batch_size=1, cancel_event=cancel_event)

    assert not result.success
    assert result.error.startswith("Cancelled:")
    assert len(stop_rows(db_manager)) == 3


@pytest.mark.parametrize("data", [b"", b"\n\n", codecs.BOM_UTF8], ids=["empty", "blank-lines", "bom-only"])
def test_load_empty_entry(db_manager: DatabaseManager, data: bytes) -> None:
    """test that an empty file is a successful no-op that creates no table"""
    result = load_table(db_manager, "calendar_dates", data, batch_size=10)

    assert result.success
    assert result.rows_loaded == 0
    assert not sa.inspect(db_manager.engine).has_table("calendar_dates")


def test_load_header_only(db_manager: DatabaseManager) -> None:
    """test that a file with only a header replaces the table with no rows"""
    result = load_table(db_manager, "frequencies", b"trip_id,start_time,end_time,headway_secs\n", batch_size=10)

    assert result.success
    assert result.rows_loaded == 0
    columns = [column["name"] for column in sa.inspect(db_manager.engine).get_columns("frequencies")]
    assert columns == ["trip_id", "start_time", "end_time", "headway_secs"]
