"""
this file contains fixtures that are intended to be used across multiple test
files
"""

from pathlib import Path
from typing import Iterator

import pytest

from transit_ingest.database.database_utils import DatabaseManager
from transit_ingest.runtime_utils.configuration import IngestConfig


@pytest.fixture(autouse=True, name="service_name")
def fixture_service_name(monkeypatch: pytest.MonkeyPatch) -> None:
    """every log line carries the service name"""
    monkeypatch.setenv("SERVICE_NAME", "transit_ingest_test")


@pytest.fixture(name="database_url")
def fixture_database_url(tmp_path: Path) -> str:
    """
    sqlite database file in the test's temp dir. a file rather than an in
    memory database so worker threads share it.
    """
    return f"sqlite:///{tmp_path / 'transit.db'}"


@pytest.fixture(name="db_manager")
def fixture_db_manager(database_url: str) -> Iterator[DatabaseManager]:
    """store with the delta feed tables created"""
    db_manager = DatabaseManager(database_url)
    db_manager.create_schema()

    yield db_manager

    db_manager.dispose()


@pytest.fixture(name="config")
def fixture_config(database_url: str) -> IngestConfig:
    """config that does not wait between retries"""
    return IngestConfig(
        database_url=database_url,
        delta_feed_url="http://feeds.test/vehicle-positions",
        static_bundle_url="http://feeds.test/gtfs-static",
        static_category="test-category",
        max_retry_attempts=3,
        retry_delay_seconds=0,
        request_timeout_seconds=5,
    )
