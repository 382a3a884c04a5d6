import asyncio
from dataclasses import replace
from typing import List, Optional
from unittest.mock import patch

import pytest

from transit_ingest.ingestion.error import IngestException, StoreError
from transit_ingest.ingestion.outcome import IngestOutcome
from transit_ingest.ingestion.pipeline import run_cycles, start
from transit_ingest.runtime_utils.configuration import IngestConfig
from transit_ingest.runtime_utils.health import HealthMonitor


class FakePoller:
    """poller replaying scripted outcomes and reporting them to health"""

    def __init__(self, outcomes: List[IngestOutcome], health: HealthMonitor) -> None:
        self.outcomes = outcomes
        self.health = health
        self.calls = 0

    async def fetch_and_store(
        self, source_url: Optional[str] = None, stop_event: Optional[asyncio.Event] = None
    ) -> IngestOutcome:
        """next scripted outcome, the last one repeats"""
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        self.health.report(outcome)
        return outcome


class FakeLoader:
    """static loader that always succeeds"""

    def __init__(self) -> None:
        self.calls = 0

    async def load_static_bundle(
        self, category: Optional[str] = None, stop_event: Optional[asyncio.Event] = None
    ) -> IngestOutcome:
        """count the load"""
        self.calls += 1
        return IngestOutcome.succeeded(10)


@pytest.fixture(name="fast_config")
def fixture_fast_config(config: IngestConfig) -> IngestConfig:
    """config that polls without waiting"""
    return replace(config, polling_interval_seconds=0, max_consecutive_failures=3)


@pytest.mark.asyncio
async def test_stop_after_consecutive_failures(fast_config: IngestConfig, caplog: pytest.LogCaptureFixture) -> None:
    """
    test that the driver gives up after max_consecutive_failures failed polls
    in a row, warning about health on each failed cycle
    """
    health = HealthMonitor()
    failure = IngestOutcome.failed(StoreError("locked"))
    poller = FakePoller([failure, IngestOutcome.succeeded(1), failure], health)
    loader = FakeLoader()

    with pytest.raises(IngestException, match="3 consecutive delta feed cycles failed"):
        await asyncio.wait_for(run_cycles(poller, loader, health, fast_config, asyncio.Event()), timeout=10)

    # the success in the second cycle resets the count
    assert poller.calls == 5
    # the static bundle is only loaded once per static interval
    assert loader.calls == 1
    assert "status=warning" in caplog.text
    assert health.current_status().consecutive_failures == 3


@pytest.mark.asyncio
async def test_stop_event(fast_config: IngestConfig) -> None:
    """test that the driver returns once the stop event is set"""
    config = replace(fast_config, polling_interval_seconds=60)
    health = HealthMonitor()
    poller = FakePoller([IngestOutcome.succeeded(1)], health)
    loader = FakeLoader()

    stop_event = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, stop_event.set)

    await asyncio.wait_for(run_cycles(poller, loader, health, config, stop_event), timeout=10)

    assert poller.calls == 1
    assert loader.calls == 1


@pytest.mark.asyncio
async def test_static_reload_interval(fast_config: IngestConfig) -> None:
    """test that the static bundle reloads once its interval has passed"""
    config = replace(fast_config, static_interval_seconds=0, max_consecutive_failures=1)
    health = HealthMonitor()
    poller = FakePoller([IngestOutcome.succeeded(1)] * 2 + [IngestOutcome.failed(StoreError("locked"))], health)
    loader = FakeLoader()

    with pytest.raises(IngestException):
        await asyncio.wait_for(run_cycles(poller, loader, health, config, asyncio.Event()), timeout=10)

    assert poller.calls == 3
    assert loader.calls == 3


def test_start(monkeypatch: pytest.MonkeyPatch, database_url: str) -> None:
    """test that start validates the environment and migrates before running"""
    monkeypatch.setenv("DATABASE_URL", database_url)

    with (
        patch("transit_ingest.ingestion.pipeline.alembic_upgrade_to_head") as upgrade,
        patch("transit_ingest.ingestion.pipeline.asyncio.run") as run,
    ):
        start()

    upgrade.assert_called_once_with(database_url)
    run.assert_called_once()
    # close the coroutine handed to the mocked event loop
    run.call_args.args[0].close()
