from typing import Optional


class IngestException(Exception):
    """
    Generic exception for the transit_ingest library
    """


class TransientFetchError(IngestException):
    """
    A fetch failed in a way that may succeed on a later attempt (connection
    refused or reset, timeout, 5xx or 429 response)
    """


class FetchExhausted(IngestException):
    """
    Every fetch attempt failed with a transient error
    """

    def __init__(self, url: str, attempts: int, last_error: Optional[BaseException]):
        message = f"Failed to fetch data from {url} after {attempts} attempts: {last_error}"
        super().__init__(message)
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class HttpStatusError(IngestException):
    """
    The server answered with a non-2xx status that is not worth retrying
    """

    def __init__(self, url: str, status: int, reason: Optional[str] = None):
        message = f"{url} responded with HTTP {status}"
        if reason:
            message = f"{message} {reason}"
        super().__init__(message)
        self.url = url
        self.status = status


class DecodeError(IngestException):
    """
    A delta feed payload is empty, truncated or structurally invalid. Never
    retried.
    """


class StoreError(IngestException):
    """
    A store transaction failed and was rolled back
    """


class MalformedRowError(IngestException):
    """
    A tabular file row does not have the same number of fields as its header.
    The whole table load is aborted.
    """

    def __init__(
        self,
        table_name: str,
        row_number: Optional[int],
        expected_columns: Optional[int],
        actual_columns: Optional[int],
        detail: Optional[str] = None,
    ):
        message = (
            f"Malformed row in {table_name}: row {row_number} has "
            f"{actual_columns} fields, header has {expected_columns}"
        )
        if row_number is None and detail:
            message = f"Malformed row in {table_name}: {detail}"
        super().__init__(message)
        self.table_name = table_name
        self.row_number = row_number
        self.expected_columns = expected_columns
        self.actual_columns = actual_columns


class Cancelled(IngestException):
    """
    A stop was requested while the pipeline was waiting or reading
    """
