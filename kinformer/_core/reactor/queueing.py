"""
The bounded event queue between the informer and the dispatch loop.

The queue is the only shared state between the producing side (the informer's
background task: listing, watching, decoding) and the consuming side
(the dispatch loop, or any other code that pops the events).

The events are consumed strictly in the order of their production (FIFO).
The queue is always bounded; when it is full, the configured overflow policy
applies: either the producer is blocked until there is room (the default),
or the oldest queued event is dropped (and counted & logged).

Popping never blocks: the consumers decide on their own waiting cadence,
with :meth:`EventQueue.wait` as a helper for the asyncio-based consumers.
Popping is also safe from other threads: the asyncio-side waiters are then
woken up via the event loop's thread-safe callbacks.
"""
import asyncio
import collections
import logging
import threading
from typing import Deque, Generic, Optional

from kinformer._cogs.configs import configuration
from kinformer._cogs.structs import events, resources

logger = logging.getLogger(__name__)


class QueueClosed(Exception):
    """ Raised when putting into a closed queue. """


class EventQueue(Generic[resources.SpecT]):

    def __init__(
            self,
            capacity: int = 1000,
            overflow: configuration.OverflowPolicy = configuration.OverflowPolicy.BLOCK,
    ) -> None:
        super().__init__()
        if not isinstance(capacity, int) or capacity < 1:
            raise ValueError(f"The queue capacity must be a positive integer, got {capacity!r}.")
        self.capacity = capacity
        self.overflow = overflow
        self.dropped = 0
        self._lock = threading.Lock()
        self._items: Deque["events.LifecycleEvent[resources.SpecT]"] = collections.deque()
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._not_empty = asyncio.Event()  # also set when closed.
        self._not_full = asyncio.Event()  # also set when closed.

    def __repr__(self) -> str:
        closed = ', closed' if self._closed else ''
        return f'<{self.__class__.__name__}: {len(self)}/{self.capacity}{closed}>'

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def drained(self) -> bool:
        """ Is the queue closed and empty, i.e. nothing will ever be popped? """
        with self._lock:
            return self._closed and not self._items

    def empty(self) -> bool:
        with self._lock:
            return not self._items

    def full(self) -> bool:
        with self._lock:
            return len(self._items) >= self.capacity

    async def put(self, event: "events.LifecycleEvent[resources.SpecT]") -> None:
        """
        Append an event to the end of the queue, applying the overflow policy.

        For the blocking policy, the call waits until there is room in the queue
        (or the queue is closed, in which case `QueueClosed` is raised).
        """
        self._bind()
        if self.overflow is configuration.OverflowPolicy.BLOCK:
            while not self._closed and self.full():
                self._not_full.clear()
                await self._not_full.wait()

        dropped: "Optional[events.LifecycleEvent[resources.SpecT]]" = None
        with self._lock:
            if self._closed:
                raise QueueClosed("The event queue is closed.")
            if len(self._items) >= self.capacity:
                dropped = self._items.popleft()
                self.dropped += 1
            self._items.append(event)

        if dropped is not None:
            logger.warning(f"The event queue is full ({self.capacity}); "
                           f"dropped the oldest event: {events.describe(dropped)}")
        self._wakeup(self._not_empty)

    def put_nowait(
            self,
            event: "events.LifecycleEvent[resources.SpecT]",
            *,
            force: bool = False,
    ) -> None:
        """
        Append an event without waiting; fail with `asyncio.QueueFull` if full.

        The forced events are appended even beyond the capacity: this is used
        only for the terminal events (fatal faults), which must never be lost.
        """
        with self._lock:
            if self._closed:
                raise QueueClosed("The event queue is closed.")
            if len(self._items) >= self.capacity and not force:
                raise asyncio.QueueFull()
            self._items.append(event)
        self._wakeup(self._not_empty)

    def pop(self) -> "Optional[events.LifecycleEvent[resources.SpecT]]":
        """ Take the first queued event, if any. Never blocks. """
        with self._lock:
            event = self._items.popleft() if self._items else None
        if event is not None:
            self._wakeup(self._not_full)
        return event

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until there are events in the queue, or it is closed.

        Returns ``True`` if there is something to pop, ``False`` otherwise
        (i.e. on timeout, or if the queue is closed and drained).
        """
        self._bind()
        try:
            await asyncio.wait_for(self._wait_not_empty(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return not self.empty()

    async def _wait_not_empty(self) -> None:
        while not self._closed and self.empty():
            self._not_empty.clear()
            await self._not_empty.wait()

    def close(self) -> None:
        """
        Stop accepting new events. The queued events can still be popped.

        The blocked producers are woken up and fail with `QueueClosed`.
        The waiting consumers are woken up to see the closure.
        """
        with self._lock:
            self._closed = True
        self._wakeup(self._not_empty)
        self._wakeup(self._not_full)

    def _bind(self) -> None:
        # The waiters can only be in one event loop: the one of the first async usage.
        if self._loop is None:
            self._loop = asyncio.get_running_loop()

    def _wakeup(self, event: asyncio.Event) -> None:
        loop = self._loop
        if loop is None:
            event.set()  # nobody has ever waited, so it is safe to set it directly.
            return
        try:
            running_loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is loop:
            event.set()
        elif not loop.is_closed():
            loop.call_soon_threadsafe(event.set)
