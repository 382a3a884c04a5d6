import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from aiohttp import ClientConnectionError, ClientPayloadError, ClientSession, ClientTimeout

from .error import HttpStatusError, TransientFetchError

# bytes handed to the unzipper per read of the static bundle
CHUNK_SIZE = 64 * 1024

# statuses a later attempt may get past
RETRYABLE_STATUSES = frozenset({429})


def is_retryable_status(status: int) -> bool:
    """server errors and throttling are retried, every other non-2xx is not"""
    return status >= 500 or status in RETRYABLE_STATUSES


class FeedFetcher:
    """
    plain HTTP GET client for the delta feed and the static bundle. a new
    ClientSession is opened per request, polling happens at most once a cycle.
    """

    def __init__(self, request_timeout_seconds: float = 30) -> None:
        self.request_timeout_seconds = request_timeout_seconds

    async def fetch(self, url: str, params: Optional[Dict[str, str]] = None) -> bytes:
        """
        single attempt at reading the full response body of url.

        transport failures, timeouts and retryable statuses raise
        TransientFetchError, any other non-2xx status raises HttpStatusError.
        """
        timeout = ClientTimeout(total=self.request_timeout_seconds)
        try:
            async with ClientSession(timeout=timeout) as session:
                async with session.get(url, params=params) as response:
                    if response.status < 200 or response.status >= 300:
                        if is_retryable_status(response.status):
                            raise TransientFetchError(f"{url} responded with HTTP {response.status} {response.reason}")
                        raise HttpStatusError(url, response.status, response.reason)
                    return await response.read()
        except (ClientConnectionError, ClientPayloadError) as exception:
            raise TransientFetchError(f"Unable to read {url}: {exception}") from exception
        except asyncio.TimeoutError as exception:
            raise TransientFetchError(
                f"Timed out reading {url} after {self.request_timeout_seconds} seconds"
            ) from exception

    @asynccontextmanager
    async def stream(self, url: str, params: Optional[Dict[str, str]] = None) -> AsyncIterator[AsyncIterator[bytes]]:
        """
        open a forward only stream of the body of url, yielding an async
        iterator of chunks. any non-2xx status raises HttpStatusError.

        there is no overall deadline, the timeout applies to each socket read
        so large archives can take as long as they need.
        """
        timeout = ClientTimeout(
            total=None,
            sock_connect=self.request_timeout_seconds,
            sock_read=self.request_timeout_seconds,
        )
        async with ClientSession(timeout=timeout) as session:
            async with session.get(url, params=params) as response:
                if response.status < 200 or response.status >= 300:
                    raise HttpStatusError(url, response.status, response.reason)
                yield response.content.iter_chunked(CHUNK_SIZE)
