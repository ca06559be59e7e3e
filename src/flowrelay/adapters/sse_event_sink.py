import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from flowrelay.core.exceptions import SinkClosedError
from flowrelay.core.interfaces.event_sink import EventSinkPort
from flowrelay.core.models.events import StreamEvent
from flowrelay.core.settings import logger

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class QueueEventSink(EventSinkPort):
    """Event sink backed by an unbounded asyncio.Queue.

    The producing job task emits into the queue; the HTTP response drains it
    through `events()` / `sse_frames()`. `None` on the queue marks the end of
    the stream. Closing (consumer gone) makes every later `emit` fail and
    releases anyone blocked in `wait_closed`.
    """

    def __init__(self, correlation_id: str):
        self._correlation_id = correlation_id
        self._queue: asyncio.Queue[Optional[StreamEvent]] = asyncio.Queue()
        self._closed = asyncio.Event()
        self._finished = False
        self.emitted = 0

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def emit(self, event_type: str, payload: Dict[str, Any]) -> StreamEvent:
        if self.closed:
            raise SinkClosedError(
                f"Cannot emit '{event_type}', stream consumer is gone",
                job_id=self._correlation_id,
            )
        if self._finished:
            raise RuntimeError(f"Emit after finish on stream {self._correlation_id}")
        event = StreamEvent(
            event=event_type, payload=payload, correlation_id=self._correlation_id
        )
        self._queue.put_nowait(event)
        self.emitted += 1
        logger.debug(f"[sse:emit] job_id={self._correlation_id} event={event_type}")
        return event

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def close(self) -> None:
        if self.closed:
            return
        logger.debug(f"[sse:close] consumer gone job_id={self._correlation_id} emitted={self.emitted}")
        self._closed.set()
        # wake a reader that may still be waiting on the queue
        self._queue.put_nowait(None)

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield emitted events in order until the producer finishes."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def sse_frames(self) -> AsyncIterator[str]:
        async for event in self.events():
            yield event.to_sse()
