import asyncio
import json
import logging
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

_CLOSE = object()


def format_sse(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class EventChannel:
    """Outbound Server-Sent Events for one browser connection.

    ``send`` after ``close`` is dropped and ``close`` may be called any number
    of times.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def send(self, event: str, data: Any) -> bool:
        if self.closed:
            logger.debug("Dropped %s event on closed channel", event)
            return False
        try:
            self._queue.put_nowait(format_sse(event, data))
        except (TypeError, ValueError):
            logger.exception("Could not encode %s event", event)
            return False
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(_CLOSE)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _CLOSE:
                return
            yield item
