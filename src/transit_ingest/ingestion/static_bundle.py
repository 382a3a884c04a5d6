import asyncio
import posixpath
import threading
from dataclasses import dataclass
from typing import AbstractSet, AsyncIterable, List, Optional

from stream_unzip import async_stream_unzip

from transit_ingest.database.database_utils import DatabaseManager
from transit_ingest.runtime_utils.configuration import IngestConfig
from transit_ingest.runtime_utils.health import HealthMonitor
from transit_ingest.runtime_utils.process_logger import ProcessLogger

from .error import IngestException
from .fetch import FeedFetcher
from .outcome import IngestOutcome, TableLoadResult, combine_table_results
from .tabular import load_table
from .utils import raise_if_stopped, wait_or_cancel

TABULAR_SUFFIX = ".txt"


def table_name_for(entry_name: str, excluded_tables: AbstractSet[str]) -> Optional[str]:
    """
    destination table for an archive entry, None if the entry should be
    skipped.

    gtfs/stops.txt -> stops
    agency.txt -> None (excluded)
    readme.md -> None (not tabular)
    """
    base_name = posixpath.basename(entry_name.replace("\\", "/"))
    stem, suffix = posixpath.splitext(base_name)

    if suffix.lower() != TABULAR_SUFFIX or not stem:
        return None
    if stem.lower() in excluded_tables:
        return None

    return stem


async def drain(chunks: AsyncIterable[bytes]) -> int:
    """read an archive entry to its end without keeping it"""
    size = 0
    async for chunk in chunks:
        size += len(chunk)
    return size


async def buffer_entry(chunks: AsyncIterable[bytes]) -> bytes:
    """read an archive entry fully into memory"""
    return b"".join([chunk async for chunk in chunks])


async def cancel_loads_on_stop(stop_event: asyncio.Event, cancel_loads: threading.Event) -> None:
    """signal the table loads running in worker threads once a stop is requested"""
    await stop_event.wait()
    cancel_loads.set()


@dataclass
class ArchiveEntry:
    """tabular archive entry buffered in memory, owned by the worker loading it"""

    name: str
    table_name: str
    data: bytes


class StaticBundleLoader:
    """
    stream a GTFS static zip bundle and replace one store table per tabular
    entry.

    entries are read from the archive one at a time and handed to worker
    tasks. at most table_load_concurrency tables load at once, the archive is
    only read further once a worker slot is free.
    """

    def __init__(
        self,
        fetcher: FeedFetcher,
        store: DatabaseManager,
        config: IngestConfig,
        health: Optional[HealthMonitor] = None,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.config = config
        self.health = health

    async def load_static_bundle(
        self,
        category: Optional[str] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> IngestOutcome:
        """
        download the bundle for category (the configured category by default)
        and load every tabular entry into its own table.

        every dispatched table load is awaited, even when reading the archive
        fails part way through. the outcome counts the rows of every table
        that loaded and carries the first error in dispatch order.
        """
        if category is None:
            category = self.config.static_category

        process_logger = ProcessLogger(
            "load_static_bundle",
            url=self.config.static_bundle_url,
            category=category,
            table_load_concurrency=self.config.table_load_concurrency,
        )
        process_logger.log_start()

        slots = asyncio.Semaphore(self.config.table_load_concurrency)
        cancel_loads = threading.Event()
        workers: List["asyncio.Task[TableLoadResult]"] = []
        demux_error: Optional[Exception] = None

        # a stop reaches running loads whether or not the archive is still
        # being read
        stop_watcher = None
        if stop_event is not None:
            stop_watcher = asyncio.create_task(cancel_loads_on_stop(stop_event, cancel_loads))

        try:
            try:
                await self._demux(category, stop_event, slots, cancel_loads, workers)
            except asyncio.CancelledError:
                cancel_loads.set()
                for worker in workers:
                    worker.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
                raise
            except Exception as exception:
                demux_error = exception

            results: List[TableLoadResult] = list(await asyncio.gather(*workers))
        finally:
            if stop_watcher is not None:
                stop_watcher.cancel()

        outcome = combine_table_results(results, demux_error)

        process_logger.add_metadata(
            tables_dispatched=len(workers),
            tables_failed=len([result for result in results if not result.success]),
            rows_loaded=outcome.items_processed,
            print_log=False,
        )
        if demux_error is not None:
            process_logger.log_failure(demux_error)
        elif not outcome.success:
            process_logger.log_failure(IngestException(outcome.error_message or "table load failed"))
        else:
            process_logger.log_complete()

        if self.health is not None:
            self.health.report(outcome)

        return outcome

    async def _demux(
        self,
        category: str,
        stop_event: Optional[asyncio.Event],
        slots: asyncio.Semaphore,
        cancel_loads: threading.Event,
        workers: List["asyncio.Task[TableLoadResult]"],
    ) -> None:
        """
        walk the archive entries in order, dispatching a worker for each
        tabular entry. workers are appended to the caller's list as they are
        created so they can be awaited if this raises.
        """
        excluded_tables = self.config.excluded_tables

        async with self.fetcher.stream(self.config.static_bundle_url, params={"category": category}) as chunks:
            entries = async_stream_unzip(chunks)
            while True:
                try:
                    entry_name, _, entry_chunks = await wait_or_cancel(
                        entries.__anext__(),
                        stop_event,
                        "reading the static bundle",
                    )
                except StopAsyncIteration:
                    break

                name = entry_name.decode("utf-8", errors="replace")
                table_name = table_name_for(name, excluded_tables)

                if table_name is None:
                    # the archive can only advance past an entry that was read
                    process_logger = ProcessLogger("skip_bundle_entry", entry_name=name)
                    process_logger.log_start()
                    skipped_bytes = await wait_or_cancel(drain(entry_chunks), stop_event, f"skipping {name}")
                    process_logger.add_metadata(entry_bytes=skipped_bytes, print_log=False)
                    process_logger.log_complete()
                    continue

                entry = ArchiveEntry(
                    name=name,
                    table_name=table_name,
                    data=await wait_or_cancel(buffer_entry(entry_chunks), stop_event, f"reading {name}"),
                )

                await wait_or_cancel(slots.acquire(), stop_event, f"waiting to load {table_name}")
                try:
                    raise_if_stopped(stop_event, f"loading {table_name}")
                except IngestException:
                    slots.release()
                    raise

                workers.append(asyncio.create_task(self._load_entry(entry, slots, cancel_loads)))

    async def _load_entry(
        self,
        entry: ArchiveEntry,
        slots: asyncio.Semaphore,
        cancel_loads: threading.Event,
    ) -> TableLoadResult:
        """
        load one table in a worker thread, holding a slot until the load
        commits or rolls back
        """
        try:
            return await asyncio.to_thread(
                load_table,
                self.store,
                entry.table_name,
                entry.data,
                self.config.batch_size,
                cancel_loads,
            )
        except asyncio.CancelledError:
            cancel_loads.set()
            raise
        finally:
            slots.release()
