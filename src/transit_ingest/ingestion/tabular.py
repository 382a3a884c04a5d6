import codecs
import io
import threading
from typing import Iterator, List, Optional

import pyarrow
from pyarrow import csv

from transit_ingest.database.database_utils import DatabaseManager, RowBatch
from transit_ingest.runtime_utils.process_logger import ProcessLogger

from .error import MalformedRowError
from .outcome import TableLoadResult, describe_exception
from .utils import raise_if_stopped


def is_empty_entry(data: bytes) -> bool:
    """True for entries with nothing but a byte order mark and whitespace"""
    return not data.lstrip(codecs.BOM_UTF8).strip()


def read_header(table_name: str, data: bytes) -> List[str]:
    """
    column names from the first record of a tabular file. only the first
    block of the file is parsed.
    """
    try:
        reader = csv.open_csv(
            io.BytesIO(data),
            read_options=csv.ReadOptions(use_threads=False),
            # rows are validated while loading, not while probing for names
            parse_options=csv.ParseOptions(invalid_row_handler=lambda _: "skip"),
        )
    except pyarrow.ArrowInvalid as exception:
        raise MalformedRowError(table_name, None, None, None, detail=str(exception)) from exception

    return list(reader.schema.names)


def iter_row_batches(
    table_name: str,
    data: bytes,
    header: List[str],
    batch_size: int,
    cancel_event: Optional[threading.Event] = None,
) -> Iterator[RowBatch]:
    """
    stream the records after the header as batches of at most batch_size
    rows, each row a dict of column name to string. every field is read as a
    string and empty fields stay empty strings.

    a row whose field count differs from the header raises MalformedRowError.
    cancel_event is checked before each batch is handed out.
    """
    invalid_rows: List[csv.InvalidRow] = []

    def on_invalid_row(row: csv.InvalidRow) -> str:
        invalid_rows.append(row)
        return "error"

    convert_options = csv.ConvertOptions(
        column_types={column: pyarrow.string() for column in header},
        strings_can_be_null=False,
        quoted_strings_can_be_null=False,
    )

    batch: RowBatch = []
    try:
        reader = csv.open_csv(
            io.BytesIO(data),
            read_options=csv.ReadOptions(use_threads=False),
            parse_options=csv.ParseOptions(invalid_row_handler=on_invalid_row),
            convert_options=convert_options,
        )
        for record_batch in reader:
            for row in record_batch.to_pylist():
                batch.append(row)
                if len(batch) >= batch_size:
                    raise_if_stopped(cancel_event, f"next batch of {table_name}")
                    yield batch
                    batch = []
    except pyarrow.ArrowInvalid as exception:
        if invalid_rows:
            row = invalid_rows[0]
            raise MalformedRowError(
                table_name,
                row.number,
                row.expected_columns,
                row.actual_columns,
                detail=row.text,
            ) from exception
        raise MalformedRowError(table_name, None, None, None, detail=str(exception)) from exception

    if batch:
        raise_if_stopped(cancel_event, f"last batch of {table_name}")
        yield batch


def load_table(
    store: DatabaseManager,
    table_name: str,
    data: bytes,
    batch_size: int,
    cancel_event: Optional[threading.Event] = None,
) -> TableLoadResult:
    """
    replace table_name in the store with the contents of one tabular file.

    the whole load is one store transaction, so a parse error, database error
    or cancellation leaves the previous table in place. errors are logged and
    returned on the result. an empty file is a successful no-op.
    """
    process_logger = ProcessLogger(
        "load_table",
        table_name=table_name,
        data_bytes=len(data),
        batch_size=batch_size,
    )
    process_logger.log_start()

    try:
        if is_empty_entry(data):
            process_logger.add_metadata(rows_loaded=0, print_log=False)
            process_logger.log_complete()
            return TableLoadResult(table_name)

        header = read_header(table_name, data)
        process_logger.add_metadata(column_count=len(header), print_log=False)

        rows_loaded = store.load_table(
            table_name,
            header,
            iter_row_batches(table_name, data, header, batch_size, cancel_event),
        )

        process_logger.add_metadata(rows_loaded=rows_loaded)
        process_logger.log_complete()
        return TableLoadResult(table_name, rows_loaded=rows_loaded)

    except Exception as exception:
        process_logger.log_failure(exception)
        return TableLoadResult(table_name, error=describe_exception(exception))
