import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from transit_ingest.ingestion.outcome import IngestOutcome, utc_now


@dataclass(frozen=True)
class HealthStatus:
    """snapshot of the most recently reported outcome"""

    is_healthy: bool = True
    last_success_time: Optional[datetime] = None
    last_error: Optional[str] = None
    last_check_time: Optional[datetime] = None
    consecutive_failures: int = 0


class HealthMonitor:
    """
    thread safe holder for the latest pipeline health. pipelines call report
    after every cycle, readers call current_status to get an immutable
    snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._status = HealthStatus(last_check_time=utc_now())

    def report(self, outcome: IngestOutcome) -> HealthStatus:
        """record an outcome and return the resulting status"""
        with self._lock:
            if outcome.success:
                self._status = replace(
                    self._status,
                    is_healthy=True,
                    last_success_time=outcome.completed_at,
                    last_error=None,
                    last_check_time=outcome.completed_at,
                    consecutive_failures=0,
                )
            else:
                self._status = replace(
                    self._status,
                    is_healthy=False,
                    last_error=outcome.error_message,
                    last_check_time=outcome.completed_at,
                    consecutive_failures=self._status.consecutive_failures + 1,
                )
            return self._status

    def current_status(self) -> HealthStatus:
        """latest status snapshot"""
        with self._lock:
            return self._status
