import asyncio
from typing import Optional

from transit_ingest.database.database_utils import DatabaseManager
from transit_ingest.runtime_utils.configuration import IngestConfig
from transit_ingest.runtime_utils.health import HealthMonitor
from transit_ingest.runtime_utils.process_logger import ProcessLogger

from .decode_gtfs_rt import FeedDecoder
from .error import FetchExhausted, TransientFetchError
from .fetch import FeedFetcher
from .outcome import IngestOutcome
from .utils import raise_if_stopped, wait_or_cancel


class DeltaFeedPoller:
    """
    fetch a GTFS Realtime vehicle position feed, decode it and write it to the
    store in one transaction. one call covers one poll cycle.
    """

    def __init__(
        self,
        fetcher: FeedFetcher,
        decoder: FeedDecoder,
        store: DatabaseManager,
        config: IngestConfig,
        health: Optional[HealthMonitor] = None,
    ) -> None:
        self.fetcher = fetcher
        self.decoder = decoder
        self.store = store
        self.config = config
        self.health = health

    async def fetch_and_store(
        self,
        source_url: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> IngestOutcome:
        """
        run one poll cycle against source_url (the configured delta feed url
        by default).

        transient fetch failures are retried up to max_retry_attempts times
        with retry_delay_seconds between attempts. decode failures are never
        retried and never reach the store. setting stop_event interrupts a
        retry delay or an in-flight read, and no store transaction is started
        after it is set.

        failures are logged and returned as an unsuccessful outcome rather than
        raised.
        """
        if source_url is None:
            source_url = self.config.delta_feed_url

        process_logger = ProcessLogger(
            "fetch_and_store",
            url=source_url,
            max_retry_attempts=self.config.max_retry_attempts,
        )
        process_logger.log_start()

        try:
            payload = await self._fetch_with_retry(source_url, stop_event, process_logger)
            batch = self.decoder.decode(payload)
            process_logger.add_metadata(
                payload_bytes=len(payload),
                record_count=len(batch),
                skipped_entities=batch.skipped_entities,
                feed_timestamp=batch.feed_timestamp,
            )

            raise_if_stopped(stop_event, "writing vehicle positions")
            rows_written = await asyncio.to_thread(self.store.upsert_vehicle_positions, batch)

            process_logger.add_metadata(rows_written=rows_written)
            process_logger.log_complete()
            outcome = IngestOutcome.succeeded(rows_written)
        except Exception as exception:
            process_logger.log_failure(exception)
            outcome = IngestOutcome.failed(exception)

        if self.health is not None:
            self.health.report(outcome)

        return outcome

    async def _fetch_with_retry(
        self,
        url: str,
        stop_event: Optional[asyncio.Event],
        process_logger: ProcessLogger,
    ) -> bytes:
        """
        fetch url, retrying transient failures. raise FetchExhausted once
        every attempt has failed.
        """
        attempts = self.config.max_retry_attempts
        last_error: Optional[TransientFetchError] = None

        for attempt in range(1, attempts + 1):
            process_logger.add_metadata(attempt=attempt, print_log=False)
            try:
                return await wait_or_cancel(self.fetcher.fetch(url), stop_event, f"fetch of {url}")
            except TransientFetchError as exception:
                last_error = exception
                process_logger.log_warning(exception)

            if attempt < attempts:
                await wait_or_cancel(
                    asyncio.sleep(self.config.retry_delay_seconds),
                    stop_event,
                    f"retry delay after attempt {attempt}",
                )

        raise FetchExhausted(url, attempts, last_error)
