from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def utc_now() -> datetime:
    """timezone aware current time"""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class IngestOutcome:
    """
    uniform summary of one pipeline invocation, handed to the health monitor
    """

    success: bool
    items_processed: int = 0
    error_message: Optional[str] = None
    completed_at: datetime = field(default_factory=utc_now)

    @classmethod
    def succeeded(cls, items_processed: int) -> "IngestOutcome":
        """successful outcome"""
        return cls(success=True, items_processed=items_processed)

    @classmethod
    def failed(cls, exception: BaseException, items_processed: int = 0) -> "IngestOutcome":
        """failed outcome, with the exception type leading the error message"""
        return cls(
            success=False,
            items_processed=items_processed,
            error_message=describe_exception(exception),
        )


@dataclass(frozen=True)
class TableLoadResult:
    """result of loading one tabular file into its destination table"""

    table_name: str
    rows_loaded: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """True if the table was replaced"""
        return self.error is None


def describe_exception(exception: BaseException) -> str:
    """'ErrorType: message' string used in outcomes and health status"""
    message = str(exception)
    if message:
        return f"{type(exception).__name__}: {message}"
    return type(exception).__name__


def combine_table_results(results: List[TableLoadResult], demux_error: Optional[BaseException] = None) -> IngestOutcome:
    """
    aggregate worker results into one outcome. rows are summed across tables
    that loaded, and the first error in dispatch order is surfaced.
    """
    items_processed = sum(result.rows_loaded for result in results if result.success)
    errors = [f"{result.table_name}: {result.error}" for result in results if not result.success]

    if demux_error is not None:
        errors.append(describe_exception(demux_error))

    if errors:
        return IngestOutcome(success=False, items_processed=items_processed, error_message=errors[0])

    return IngestOutcome.succeeded(items_processed)
