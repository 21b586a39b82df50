"""
The dispatch loop: take the events from the informer and pass them to a handler.

The handlers are invoked one at a time, strictly in the order of the events
(single-consumer dispatching). The handler can be a regular function or a
coroutine function. Its failures never stop the loop: they are wrapped into
`HandlerFault`, logged, counted, and reported to the optional fault callback,
and the loop proceeds to the next event.

The loop ends when the informer is stopped (explicitly or by a fatal fault)
and all of its queued events are dispatched.
"""
import asyncio
import collections
import dataclasses
import logging
from typing import Any, Awaitable, Callable, Counter, Generic, Optional, Union

from kinformer._cogs.clients import errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.structs import events, resources
from kinformer._core.actions import loggers
from kinformer._core.reactor import informing

logger = logging.getLogger(__name__)

Handler = Callable[["events.LifecycleEvent[Any]"], Union[None, Awaitable[None]]]
FaultCallback = Callable[[errors.HandlerFault, "events.LifecycleEvent[Any]"], None]


@dataclasses.dataclass
class DispatchStats:
    handled: int = 0
    failed: int = 0
    per_type: Counter[events.EventType] = dataclasses.field(default_factory=collections.Counter)


class Dispatcher(Generic[resources.SpecT]):

    def __init__(
            self,
            informer: informing.Informer[resources.SpecT],
            handler: Handler,
            *,
            on_fault: Optional[FaultCallback] = None,
            settings: Optional[configuration.InformerSettings] = None,
    ) -> None:
        super().__init__()
        self.informer = informer
        self.handler = handler
        self.on_fault = on_fault
        self.settings = settings if settings is not None else informer.settings
        self.stats = DispatchStats()

    async def run(self) -> DispatchStats:
        """ Dispatch the events until the informer is stopped and drained. """
        idle_timeout = self.settings.dispatching.idle_timeout
        while True:
            event = self.informer.pop()
            if event is not None:
                await self.dispatch(event)
            elif self.informer.queue.drained:
                break
            else:
                await self.informer.wait(timeout=idle_timeout)
        logger.debug(f"The dispatching has ended: {self.stats.handled} handled, "
                     f"{self.stats.failed} failed.")
        return self.stats

    async def dispatch(self, event: "events.LifecycleEvent[resources.SpecT]") -> None:
        """ Invoke the handler for one event; never fails except on cancellations. """
        self.stats.per_type[events.get_type(event)] += 1
        try:
            result = self.handler(event)
            if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
                await result
        except Exception as e:
            self.stats.failed += 1
            fault = errors.HandlerFault(f"The handler has failed for {events.describe(event)}: {e}")
            fault.__cause__ = e
            resource = events.get_resource(event)
            event_logger = loggers.ResourceLogger(resource=resource) if resource is not None else logger
            event_logger.exception(f"Handler failed for {events.describe(event)}: {e}")
            if self.on_fault is not None:
                try:
                    self.on_fault(fault, event)
                except Exception as e2:
                    logger.exception(f"The fault callback has failed for {events.describe(event)}: {e2}")
        else:
            self.stats.handled += 1
