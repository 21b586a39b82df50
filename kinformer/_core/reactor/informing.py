"""
The informer: a fault-tolerant list-then-watch loop feeding the event queue.

The informer owns a background task, which lists the resource's objects
(and enqueues them as synthetic ``Added`` events), then watches for the changes
since the listed resource version (and enqueues them as they arrive).
The consumers take the events from the queue with :meth:`Informer.pop`.

The recovery follows the nature of the fault:

* When the server closes the watch-stream normally (e.g. on its timeout),
  or when the connection breaks (`TransportFault`), the watching is resumed
  from the last seen resource version, never re-listed. The transport faults
  are retried with an exponential capped backoff, infinitely.
* When the resource version is not retained by the server anymore
  (`StaleResourceVersionFault`), it is discarded and the objects are re-listed
  without a delay. The re-listing is a reset of the world's state: all existing
  objects are re-emitted as synthetic ``Added`` events, but the objects that
  disappeared in the meantime are NOT reported as deleted (the informer does
  not keep the objects, so it cannot know what has disappeared).
* All other faults (`AuthFault`, `NotFoundFault`, unrecognised API errors)
  are fatal: the informer stops and reports the fault both as a terminal
  ``Error`` event in the queue and as `Informer.fault` (re-raised by `join`).

This is a push-model informer: all the I/O & enqueueing happens in the
background task in the event loop, so there is no need to "poll" it.
"""
import asyncio
import collections
import dataclasses
import enum
import logging
import types
from typing import Any, Callable, Counter, Generic, Iterator, Mapping, Optional, Type

from kinformer._cogs.aiokits import aiotasks, aiotime
from kinformer._cogs.clients import changes, errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.structs import bodies, events, references, resources
from kinformer._core.reactor import decoding, queueing

logger = logging.getLogger(__name__)


class ConnectionStatus(enum.Enum):
    DISCONNECTED = 'disconnected'
    LISTING = 'listing'
    WATCHING = 'watching'
    FAULTED = 'faulted'


@dataclasses.dataclass(frozen=True)
class InformerState:
    last_resource_version: Optional[str] = None
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED


StateChangeCallback = Callable[[InformerState, InformerState], None]


class Informer(Generic[resources.SpecT]):
    """
    Observe one resource kind and queue its objects' lifecycle events.

    Usage::

        async with kinformer.APIClient(info) as client:
            async with kinformer.Informer(client=client, descriptor=descriptor) as informer:
                while await informer.wait():
                    event = informer.pop()
                    ...

    `start` must be called from the event loop's thread, unless the loop
    is explicitly given. `stop` can be called from any thread.
    Both are idempotent. A stopped informer cannot be restarted.
    """

    def __init__(
            self,
            *,
            client: changes.ChangeStreamClient,
            descriptor: references.ResourceDescriptor,
            decoder: Optional[decoding.Decoder[resources.SpecT]] = None,
            spec_parser: Optional[decoding.SpecParser[resources.SpecT]] = None,
            settings: Optional[configuration.InformerSettings] = None,
            on_state_change: Optional[StateChangeCallback] = None,
            loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        super().__init__()
        if decoder is not None and spec_parser is not None:
            raise TypeError("Either a decoder or a spec parser can be passed, not both.")
        if decoder is None:
            decoder = decoding.Decoder(spec_parser or decoding.parse_mapping, descriptor=descriptor)
        self.client = client
        self.descriptor = descriptor
        self.decoder = decoder
        self.settings = settings if settings is not None else configuration.InformerSettings()
        self.on_state_change = on_state_change
        self.transitions: Counter[ConnectionStatus] = collections.Counter()
        self._queue: queueing.EventQueue[resources.SpecT] = queueing.EventQueue(
            capacity=self.settings.queueing.capacity,
            overflow=self.settings.queueing.overflow,
        )
        self._status = ConnectionStatus.DISCONNECTED
        self._last_resource_version: Optional[str] = None
        self._fault: Optional[BaseException] = None
        self._delays: Optional[Iterator[float]] = None
        self._loop = loop
        self._task: Optional[aiotasks.Task] = None
        self._stopper: Optional[aiotasks.Future] = None
        self._started = False
        self._stopped = False

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} for {self.descriptor!r}: {self._status.value}>'

    async def __aenter__(self) -> "Informer[resources.SpecT]":
        self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[Type[BaseException]],
            exc_val: Optional[BaseException],
            exc_tb: Optional[types.TracebackType],
    ) -> None:
        self.stop()
        await self.wait_stopped()
        if exc_val is None and self._fault is not None:
            raise self._fault

    @property
    def state(self) -> InformerState:
        return InformerState(last_resource_version=self._last_resource_version, status=self._status)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def last_resource_version(self) -> Optional[str]:
        return self._last_resource_version

    @property
    def fault(self) -> Optional[BaseException]:
        """ The fatal fault that has stopped the informer, if any. """
        return self._fault

    @property
    def queue(self) -> queueing.EventQueue[resources.SpecT]:
        return self._queue

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def stopped(self) -> bool:
        """ Is the informer stopped, either explicitly or by a fatal fault? """
        return self._stopped or (self._task is not None and self._task.done())

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError(f"{self!r} is stopped and cannot be restarted.")
        if self._started:
            return
        self._started = True

        try:
            running_loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if self._loop is None and running_loop is None:
            self._started = False
            raise RuntimeError("An informer can be started only in an event loop, "
                               "or with an event loop explicitly passed to it.")
        elif self._loop is None or self._loop is running_loop:
            self._loop = running_loop
            self._start_now()
        else:
            self._loop.call_soon_threadsafe(self._start_now)

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True

        try:
            running_loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if self._loop is None:
            self._queue.close()
        elif self._loop is running_loop:
            self._stop_now()
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._stop_now)

    def pop(self) -> "Optional[events.LifecycleEvent[resources.SpecT]]":
        """ Take the next event, if any. Never blocks. """
        return self._queue.pop()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """ Wait until there is an event to pop; ``False`` if drained or timed out. """
        return await self._queue.wait(timeout=timeout)

    async def join(self) -> None:
        """ Wait until the informer is stopped; re-raise the fatal fault if any. """
        await self.wait_stopped()
        if self._fault is not None:
            raise self._fault

    async def wait_stopped(self) -> None:
        """ Wait until the background task is over, but do not raise the faults. """
        # The task can be scheduled from another thread, so wait for it to appear.
        while self._started and self._task is None and not self._queue.closed:
            await asyncio.sleep(0)
        if self._task is not None:
            await aiotasks.wait([self._task])

    def _start_now(self) -> None:
        if self._stopped:
            self._queue.close()
            return
        assert self._loop is not None
        self._stopper = self._loop.create_future()
        self._task = aiotasks.create_background_task(
            self._run(),
            name=f"informer for {self.descriptor!r}",
            logger=logger,
        )

    def _stop_now(self) -> None:
        # Never cancel the stopper: it is shielded in the sleeps, only its result wakes them up.
        if self._stopper is not None and not self._stopper.done():
            self._stopper.set_result(None)
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._queue.close()

    async def _run(self) -> None:
        try:
            await self._observe()
        except queueing.QueueClosed:
            if not self._stopped:
                raise
        except Exception as e:
            self._set_status(ConnectionStatus.FAULTED)
            self._fault = e
            if errors.is_fatal(e):
                logger.error(f"Stopping the {self!r} due to a fatal fault: {e}")
            else:
                logger.exception(f"Stopping the {self!r} due to an unexpected error: {e}")
            if not self._queue.closed:
                self._queue.put_nowait(events.Error(fault=e), force=True)
        finally:
            self._queue.close()
            self._set_status(ConnectionStatus.DISCONNECTED)

    async def _observe(self) -> None:
        assert self._stopper is not None
        relisting = True
        while not self._stopper.done():
            try:
                if relisting:
                    self._set_status(ConnectionStatus.LISTING)
                    await self._list()
                    relisting = False
                self._set_status(ConnectionStatus.WATCHING)
                await self._watch()
            except errors.StaleResourceVersionFault as e:
                self._set_status(ConnectionStatus.FAULTED)
                logger.info(f"The resource version {self._last_resource_version!r} of "
                            f"{self.descriptor!r} is gone; re-listing: {e}")
                self._last_resource_version = None
                relisting = True
            except errors.TransportFault as e:
                if self._stopper.done():
                    break
                self._set_status(ConnectionStatus.FAULTED)
                delay = self._next_delay(e)
                logger.warning(f"Cannot {'list' if relisting else 'watch'} {self.descriptor!r}: "
                               f"{e}. Retrying in {delay:.3g}s.")
                await aiotime.sleep(delay, wakeup=self._stopper)
            else:
                if self._stopper.done():
                    break
                self._set_status(ConnectionStatus.FAULTED)
                logger.debug(f"The watch-stream of {self.descriptor!r} has ended; "
                             f"resuming from {self._last_resource_version!r}.")
                await aiotime.sleep(self.settings.watching.reconnect_delay, wakeup=self._stopper)

    async def _list(self) -> None:
        objs, resource_version = await self.client.list(self.descriptor, stopper=self._stopper)
        self._delays = None
        logger.debug(f"Listed {len(objs)} objects of {self.descriptor!r} "
                     f"at the resource version {resource_version!r}.")
        for raw_body in objs:
            await self._queue.put(self.decoder.decode_listed(raw_body))
        if resource_version is None:
            logger.warning(f"The listing of {self.descriptor!r} has no resource version; "
                           f"the watching will start from the current state.")
        self._last_resource_version = resource_version

    async def _watch(self) -> None:
        stream = self.client.watch(self.descriptor,
                                   since=self._last_resource_version,
                                   stopper=self._stopper)
        try:
            async for raw_record in stream:
                self._delays = None
                raw_type = raw_record.get('type') if isinstance(raw_record, Mapping) else None
                if raw_type == 'ERROR':
                    raw_object = raw_record.get('object')  # type: ignore
                    raise errors.fault_from_status(raw_object if isinstance(raw_object, Mapping) else {})
                elif raw_type == 'BOOKMARK':
                    self._advance(raw_record)
                    continue
                await self._queue.put(self.decoder.decode(raw_record))
                self._advance(raw_record)
        finally:
            aclose = getattr(stream, 'aclose', None)
            if aclose is not None:
                await aclose()

    def _advance(self, raw_record: Any) -> None:
        if isinstance(raw_record, Mapping):
            resource_version = bodies.get_resource_version(raw_record)
            if resource_version is not None:
                self._last_resource_version = resource_version

    def _next_delay(self, fault: errors.TransportFault) -> float:
        if self._delays is None:
            self._delays = self.settings.backoff.iter_delays()
        delay = next(self._delays)
        if fault.retry_after is not None:
            delay = max(delay, fault.retry_after)
        return delay

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        old_state = self.state
        self._status = status
        self.transitions[status] += 1
        new_state = self.state
        logger.debug(f"The informer for {self.descriptor!r} is {old_state.status.value} -> "
                     f"{new_state.status.value} at {new_state.last_resource_version!r}.")
        if self.on_state_change is not None:
            self.on_state_change(old_state, new_state)
