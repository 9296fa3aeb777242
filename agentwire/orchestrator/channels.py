"""
Event and input channels of a setup session.

EventChannel is the outward, push-only stream: subscribers are called
synchronously in emission order and their errors are recorded, never
propagated into the turn loop.

InputChannel is the per-session inbox for user responses. It holds at most
one pending response; closing it wakes a waiting receiver, which then sees
None (treated the same as a cancel).
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Protocol

from agentwire.orchestrator.actions import SetupEvent, UserResponse


class EventSubscriber(Protocol):
    """Callable that receives every event of a session."""

    def __call__(self, event: SetupEvent) -> None:
        ...


@dataclass
class SubscriberError:
    """Record of a subscriber failure."""

    subscriber: str
    event: str
    error: str
    timestamp: str


class EventChannel:
    """Push-only event stream with in-order delivery.

    Example:
        events = EventChannel()
        events.subscribe(lambda e: print(e.to_wire()))
        events.emit(StatusEvent(message="Detecting installed CLIs..."))
    """

    def __init__(self, subscribers: Optional[List[EventSubscriber]] = None):
        self._subscribers: List[EventSubscriber] = list(subscribers or [])
        self.history: List[SetupEvent] = []
        self.errors: List[SubscriberError] = []

    def subscribe(self, subscriber: EventSubscriber) -> None:
        self._subscribers.append(subscriber)

    def emit(self, event: SetupEvent) -> None:
        """Deliver an event to every subscriber, in registration order."""
        self.history.append(event)
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                self.errors.append(
                    SubscriberError(
                        subscriber=getattr(subscriber, "__name__", repr(subscriber)),
                        event=event.event,
                        error=str(e),
                        timestamp=datetime.now().isoformat(),
                    )
                )

    def mark(self) -> int:
        """Position in history, for slicing the events of one turn."""
        return len(self.history)

    def since(self, mark: int) -> List[SetupEvent]:
        return self.history[mark:]


class InputChannel:
    """Single-slot inbox for user responses."""

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[UserResponse]" = asyncio.Queue(maxsize=1)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def send(self, response: UserResponse) -> None:
        """Deliver a response, waiting while the slot is occupied.

        Raises:
            RuntimeError: If the channel is closed
        """
        if self.closed:
            raise RuntimeError("Input channel is closed")
        await self._queue.put(response)

    def send_nowait(self, response: UserResponse) -> None:
        """Deliver a response without waiting.

        Raises:
            RuntimeError: If the channel is closed
            asyncio.QueueFull: If a response is already pending
        """
        if self.closed:
            raise RuntimeError("Input channel is closed")
        self._queue.put_nowait(response)

    def close(self) -> None:
        self._closed.set()

    async def receive(self) -> Optional[UserResponse]:
        """Wait for the next response.

        A response already in the slot is delivered even after close.

        Returns:
            The response, or None once the channel is closed and empty
        """
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            return None

        get_task = asyncio.ensure_future(self._queue.get())
        close_task = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({get_task, close_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            close_task.cancel()
            if not get_task.done():
                get_task.cancel()

        if get_task.done() and not get_task.cancelled():
            return get_task.result()
        if not self._queue.empty():
            return self._queue.get_nowait()
        return None
