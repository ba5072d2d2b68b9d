import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from starlette.requests import Request

from storefront.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ClientDisconnected(Exception):
    """The HTTP client went away before the request's work finished."""


async def _wait_for_disconnect(request: Request, interval: float) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(interval)


async def run_until_disconnect(
    request: Request,
    work: Awaitable[T],
    poll_interval: Optional[float] = None,
) -> T:
    """
    Await `work`, cancelling it as soon as the client disconnects.

    Starlette keeps running a handler after its client has left, so long
    waits inside a handler have to watch the connection themselves.
    Raises ClientDisconnected when the work was cut short.
    """
    interval = settings.DISCONNECT_POLL_SECONDS if poll_interval is None else poll_interval
    job = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request, interval))

    try:
        await asyncio.wait({job, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not job.done():
            job.cancel()
        await asyncio.gather(job, watcher, return_exceptions=True)

    if job.cancelled() and not watcher.cancelled():
        if watcher.exception() is not None:
            raise watcher.exception()
        logger.info(f"Client disconnected from {request.url.path}, stopped its work")
        raise ClientDisconnected()
    return job.result()
