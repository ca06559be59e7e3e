"""Port for delivering stream events to exactly one consumer.

The engine talks only to this port; whether events end up on an SSE
response, a websocket or a test list is an adapter concern.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from flowrelay.core.models.events import StreamEvent


class EventSinkPort(ABC):
    @property
    @abstractmethod
    def correlation_id(self) -> str:
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        """True once the consumer is gone and delivery is impossible."""
        pass

    @abstractmethod
    async def emit(self, event_type: str, payload: Dict[str, Any]) -> StreamEvent:
        """Deliver one event, stamped with timestamp and correlation id.

        Raises SinkClosedError if the consumer is gone.
        """
        pass

    @abstractmethod
    async def wait_closed(self) -> None:
        """Block until the consumer is gone. Used to cut waits short."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Mark the consumer as gone (idempotent)."""
        pass

    @abstractmethod
    def finish(self) -> None:
        """Signal that the producer emitted its last event."""
        pass
