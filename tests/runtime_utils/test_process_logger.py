import logging

import pytest

from transit_ingest.runtime_utils.process_logger import ProcessLogger


def test_unstarted_log(caplog: pytest.LogCaptureFixture) -> None:
    "It logs failures and completions of a process that was never started."

    process_logger = ProcessLogger("test_unstarted_log")
    process_logger.add_metadata(foo="bar")
    process_logger.log_failure(Exception("test"))
    process_logger.log_complete()

    assert "status=complete" in caplog.text


def test_unraised_exception(caplog: pytest.LogCaptureFixture) -> None:
    "It doesn't output `NoneType: None` when the exception has no traceback."

    process_logger = ProcessLogger("test_not_none")
    process_logger.log_start()

    exception = Exception("foo")

    process_logger.log_failure(Exception(exception))

    assert not exception.__traceback__
    assert "NoneType: None" not in caplog.text.splitlines()


def test_start_logging_explicitly(caplog: pytest.LogCaptureFixture) -> None:
    "It doesn't start the log when it initializes."

    ProcessLogger("test_not_none", foo="bar")

    assert caplog.text == ""


def test_log_lifecycle(caplog: pytest.LogCaptureFixture) -> None:
    "It logs key=value lines for start and completion with its metadata."

    process_logger = ProcessLogger("test_lifecycle", table_name="stops")
    process_logger.log_start()
    process_logger.add_metadata(rows_loaded=3, print_log=False)
    process_logger.log_complete()

    lines = caplog.text.splitlines()
    assert len(lines) == 2
    assert "parent=transit_ingest_test" in lines[0]
    assert "process_name=test_lifecycle" in lines[0]
    assert "status=started" in lines[0]
    assert "status=complete" in lines[1]
    assert "duration=" in lines[1]
    assert "table_name=stops" in lines[1]
    assert "rows_loaded=3" in lines[1]


def test_protected_keys(caplog: pytest.LogCaptureFixture) -> None:
    "It ignores metadata that would overwrite its own fields."

    process_logger = ProcessLogger("test_protected", status="bogus", uuid="bogus")
    process_logger.log_start()

    assert "status=bogus" not in caplog.text
    assert "uuid=bogus" not in caplog.text


def test_log_warning(caplog: pytest.LogCaptureFixture) -> None:
    "It logs recovered errors as warnings without failing the process."

    process_logger = ProcessLogger("test_warning", url="http://feeds.test")
    process_logger.log_warning(ValueError("retrying"))
    process_logger.log_complete()

    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "error_type=ValueError" in warnings[0].getMessage()
    assert "error_message=retrying" in warnings[0].getMessage()
    assert "status=failed" not in caplog.text
    assert "error_type" not in caplog.records[-1].getMessage()


def test_log_failure_traceback(caplog: pytest.LogCaptureFixture) -> None:
    "It logs the traceback and type of a raised exception."

    process_logger = ProcessLogger("test_failure")
    process_logger.log_start()
    try:
        raise KeyError("missing")
    except KeyError as exception:
        process_logger.log_failure(exception)

    assert "status=failed" in caplog.text
    assert "error_type=KeyError" in caplog.text
    assert logging.ERROR in [record.levelno for record in caplog.records]
