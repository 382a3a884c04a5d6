import asyncio
import threading
from typing import Awaitable, Optional, TypeVar, Union

from .error import Cancelled

T = TypeVar("T")


def raise_if_stopped(stop_event: Optional[Union[asyncio.Event, threading.Event]], description: str) -> None:
    """raise Cancelled if a stop has been requested"""
    if stop_event is not None and stop_event.is_set():
        raise Cancelled(f"Stop requested before {description}")


async def wait_or_cancel(awaitable: Awaitable[T], stop_event: Optional[asyncio.Event], description: str) -> T:
    """
    await awaitable unless stop_event is set first, in which case the
    awaitable is cancelled and Cancelled is raised. if the caller itself is
    cancelled, the awaitable is cancelled along with it.
    """
    if stop_event is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if stop_event.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise Cancelled(f"Stop requested before {description}")

    stopper = asyncio.ensure_future(stop_event.wait())
    try:
        done, _ = await asyncio.wait({task, stopper}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, stopper):
            if not pending.done():
                pending.cancel()

    if task in done:
        return task.result()

    # let the interrupted read unwind before reporting the stop
    await asyncio.gather(task, return_exceptions=True)
    raise Cancelled(f"Stop requested during {description}")
