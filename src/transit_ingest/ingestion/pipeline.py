#!/usr/bin/env python

import os
import time
import asyncio
import logging
import signal
from typing import Optional

from transit_ingest.database.database_utils import DatabaseManager
from transit_ingest.runtime_utils.alembic_migration import alembic_upgrade_to_head
from transit_ingest.runtime_utils.configuration import IngestConfig
from transit_ingest.runtime_utils.env_validation import validate_environment
from transit_ingest.runtime_utils.health import HealthMonitor
from transit_ingest.runtime_utils.process_logger import ProcessLogger

from transit_ingest.ingestion.decode_gtfs_rt import FeedDecoder
from transit_ingest.ingestion.delta_feed import DeltaFeedPoller
from transit_ingest.ingestion.error import Cancelled, IngestException
from transit_ingest.ingestion.fetch import FeedFetcher
from transit_ingest.ingestion.message_registry import gtfs_realtime_registry
from transit_ingest.ingestion.static_bundle import StaticBundleLoader
from transit_ingest.ingestion.utils import wait_or_cancel

logging.getLogger().setLevel("INFO")
DESCRIPTION = """Entry Point For Transit Feed Ingestion"""


def handle_sigterm(stop_event: asyncio.Event) -> None:
    """
    handler for SIGTERM, lets the current cycle unwind and stops the loop
    """
    process_logger = ProcessLogger("sigterm_received")
    process_logger.log_start()
    stop_event.set()
    process_logger.log_complete()


async def run_cycles(
    poller: DeltaFeedPoller,
    loader: StaticBundleLoader,
    health: HealthMonitor,
    config: IngestConfig,
    stop_event: asyncio.Event,
) -> None:
    """
    poll the delta feed every polling interval and reload the static bundle
    every static interval, starting with a static load. returns once
    stop_event is set.

    raises IngestException after max_consecutive_failures delta feed cycles
    in a row have failed.
    """
    last_static_load: Optional[float] = None
    consecutive_failures = 0

    while not stop_event.is_set():
        process_logger = ProcessLogger(process_name="main")
        process_logger.log_start()

        if last_static_load is None or time.monotonic() - last_static_load >= config.static_interval_seconds:
            static_outcome = await loader.load_static_bundle(stop_event=stop_event)
            last_static_load = time.monotonic()
            process_logger.add_metadata(
                static_success=static_outcome.success,
                static_rows=static_outcome.items_processed,
                print_log=False,
            )

        outcome = await poller.fetch_and_store(stop_event=stop_event)
        consecutive_failures = 0 if outcome.success else consecutive_failures + 1

        status = health.current_status()
        process_logger.add_metadata(
            delta_success=outcome.success,
            delta_rows=outcome.items_processed,
            consecutive_failures=consecutive_failures,
            is_healthy=status.is_healthy,
            print_log=False,
        )

        if not status.is_healthy:
            process_logger.log_warning(IngestException(f"Unhealthy: {status.last_error}"))

        if consecutive_failures >= config.max_consecutive_failures:
            exception = IngestException(
                f"{consecutive_failures} consecutive delta feed cycles failed, last error: {outcome.error_message}"
            )
            process_logger.log_failure(exception)
            raise exception

        process_logger.log_complete()

        try:
            await wait_or_cancel(
                asyncio.sleep(config.polling_interval_seconds),
                stop_event,
                "waiting for the next poll",
            )
        except Cancelled:
            break


async def main(config: IngestConfig) -> None:
    """
    run the ingestion pipeline

    * setup the store, fetcher, decoder and health monitor
    * setup SIGTERM to stop the loop between cycles
    * on a loop
        * load the static bundle when it is due
        * poll the delta feed
        * sleep until the next poll
    """
    stop_event = asyncio.Event()
    asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, handle_sigterm, stop_event)

    store = DatabaseManager(config.database_url)
    fetcher = FeedFetcher(config.request_timeout_seconds)
    health = HealthMonitor()

    poller = DeltaFeedPoller(fetcher, FeedDecoder(gtfs_realtime_registry()), store, config, health)
    loader = StaticBundleLoader(fetcher, store, config, health)

    try:
        await run_cycles(poller, loader, health, config, stop_event)
    finally:
        store.dispose()


def start() -> None:
    """configure and start the ingestion process"""
    # configure the environment
    os.environ.setdefault("SERVICE_NAME", "transit_ingest")

    validate_environment(
        required_variables=[],
        private_variables=["DATABASE_URL"],
        optional_variables=[
            "DATABASE_URL",
            "DELTA_FEED_URL",
            "STATIC_BUNDLE_URL",
            "STATIC_CATEGORY",
            "MAX_RETRY_ATTEMPTS",
            "RETRY_DELAY_SECONDS",
            "REQUEST_TIMEOUT_SECONDS",
            "TABLE_LOAD_CONCURRENCY",
            "BATCH_SIZE",
            "EXCLUDED_TABLES",
            "POLLING_INTERVAL_SECONDS",
            "STATIC_INTERVAL_SECONDS",
            "MAX_CONSECUTIVE_FAILURES",
        ],
    )

    config = IngestConfig.from_env()

    # run store migrations
    alembic_upgrade_to_head(config.database_url)

    # run the main method
    asyncio.run(main(config))


if __name__ == "__main__":
    start()
