import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

DEFAULT_DATABASE_URL = "sqlite:///transit_ingest.db"
DEFAULT_DELTA_FEED_URL = (
    "https://api.data.gov.my/gtfs-realtime/vehicle-position/prasarana?category=rapid-bus-penang"
)
DEFAULT_STATIC_BUNDLE_URL = "https://api.data.gov.my/gtfs-static/prasarana"
DEFAULT_STATIC_CATEGORY = "rapid-bus-penang"


def _environ_int(var_name: str, default: int, minimum: int = 1) -> int:
    """
    read an integer from the environment, falling back to default when the
    variable is unset. raise a ValueError for values below minimum.
    """
    raw_value = os.environ.get(var_name)
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        value = int(raw_value)
    except ValueError as exception:
        raise ValueError(f"{var_name} must be an integer, got '{raw_value}'") from exception

    if value < minimum:
        raise ValueError(f"{var_name} must be at least {minimum}, got {value}")

    return value


def _environ_set(var_name: str, default: FrozenSet[str]) -> FrozenSet[str]:
    """read a comma separated set of names from the environment"""
    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    return frozenset(name.strip().lower() for name in raw_value.split(",") if name.strip())


@dataclass(frozen=True)
class IngestConfig:
    """
    settings consumed by the delta feed poller, the static bundle loader and
    the pipeline driver
    """

    database_url: str = DEFAULT_DATABASE_URL
    delta_feed_url: str = DEFAULT_DELTA_FEED_URL
    static_bundle_url: str = DEFAULT_STATIC_BUNDLE_URL
    static_category: str = DEFAULT_STATIC_CATEGORY

    max_retry_attempts: int = 3
    retry_delay_seconds: float = 5
    request_timeout_seconds: float = 30

    table_load_concurrency: int = 1
    # large enough that a single flush covers most schedule files
    batch_size: int = 100_000
    excluded_tables: FrozenSet[str] = field(default_factory=lambda: frozenset({"agency"}))

    polling_interval_seconds: int = 60
    static_interval_seconds: int = 24 * 60 * 60
    max_consecutive_failures: int = 5

    def __post_init__(self) -> None:
        # entry names are matched case-insensitively
        object.__setattr__(self, "excluded_tables", frozenset(name.lower() for name in self.excluded_tables))

        for name in ("max_retry_attempts", "table_load_concurrency", "batch_size"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1, got {getattr(self, name)}")
        if self.retry_delay_seconds < 0:
            raise ValueError(f"retry_delay_seconds can not be negative, got {self.retry_delay_seconds}")

    @classmethod
    def from_env(cls, database_url: Optional[str] = None) -> "IngestConfig":
        """
        build a config from environment variables, using defaults for any
        variable that is not set
        """
        return cls(
            database_url=database_url or os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
            delta_feed_url=os.environ.get("DELTA_FEED_URL", DEFAULT_DELTA_FEED_URL),
            static_bundle_url=os.environ.get("STATIC_BUNDLE_URL", DEFAULT_STATIC_BUNDLE_URL),
            static_category=os.environ.get("STATIC_CATEGORY", DEFAULT_STATIC_CATEGORY),
            max_retry_attempts=_environ_int("MAX_RETRY_ATTEMPTS", 3),
            retry_delay_seconds=_environ_int("RETRY_DELAY_SECONDS", 5, minimum=0),
            request_timeout_seconds=_environ_int("REQUEST_TIMEOUT_SECONDS", 30),
            table_load_concurrency=_environ_int("TABLE_LOAD_CONCURRENCY", 1),
            batch_size=_environ_int("BATCH_SIZE", 100_000),
            excluded_tables=_environ_set("EXCLUDED_TABLES", frozenset({"agency"})),
            polling_interval_seconds=_environ_int("POLLING_INTERVAL_SECONDS", 60),
            static_interval_seconds=_environ_int("STATIC_INTERVAL_SECONDS", 24 * 60 * 60),
            max_consecutive_failures=_environ_int("MAX_CONSECUTIVE_FAILURES", 5),
        )
