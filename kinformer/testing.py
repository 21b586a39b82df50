"""
Helpers for testing the applications built on the informers.

`ScriptedClient` replaces the real API client with a pre-scripted sequence
of listings and watch-streams, and records all calls made by the informer::

    client = kinformer.testing.ScriptedClient()
    client.add_listing([moby_dick], resource_version='100')
    client.add_stream([{'type': 'DELETED', 'object': moby_dick_deleted}])

    async with kinformer.Informer(client=client, descriptor=descriptor) as informer:
        await client.wait_idle()
        assert informer.pop() == ...

Every ``list()`` call consumes the next scripted listing, every ``watch()``
consumes the next scripted stream. Once the script is exhausted, the calls
hang until the informer is stopped, as an idle connection would do.
"""
import asyncio
import collections
import dataclasses
from typing import Any, AsyncIterator, Collection, Deque, Iterable, List, \
                   Literal, Mapping, Optional, Tuple, Union

from kinformer._cogs.aiokits import aioflags, aiotasks
from kinformer._cogs.clients import errors, watching
from kinformer._cogs.structs import bodies, references


@dataclasses.dataclass(frozen=True)
class ScriptedCall:
    verb: Literal['list', 'watch']
    descriptor: references.ResourceDescriptor
    since: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class _Listing:
    items: Collection[bodies.RawBody] = ()
    resource_version: Optional[str] = None
    fault: Optional[BaseException] = None


@dataclasses.dataclass(frozen=True)
class _Stream:
    records: Collection[watching.RawRecord] = ()
    fault: Optional[BaseException] = None


class ScriptedClient:
    """ An in-memory change-stream client for tests. """

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[ScriptedCall] = []
        self._listings: Deque[_Listing] = collections.deque()
        self._streams: Deque[_Stream] = collections.deque()
        self._idle = asyncio.Event()

    def add_listing(
            self,
            items: Iterable[bodies.RawBody] = (),
            *,
            resource_version: Optional[str] = None,
    ) -> "ScriptedClient":
        self._listings.append(_Listing(items=list(items), resource_version=resource_version))
        return self

    def add_list_fault(self, fault: BaseException) -> "ScriptedClient":
        self._listings.append(_Listing(fault=fault))
        return self

    def add_stream(
            self,
            records: Iterable[Union[Mapping[str, Any], bytes]] = (),
            *,
            fault: Optional[BaseException] = None,
    ) -> "ScriptedClient":
        """ Script a watch-stream: its records, and a fault at the end (if any). """
        self._streams.append(_Stream(records=list(records), fault=fault))
        return self

    def add_watch_fault(self, fault: BaseException) -> "ScriptedClient":
        return self.add_stream(fault=fault)

    @property
    def lists(self) -> List[ScriptedCall]:
        return [call for call in self.calls if call.verb == 'list']

    @property
    def watches(self) -> List[ScriptedCall]:
        return [call for call in self.calls if call.verb == 'watch']

    @property
    def idle(self) -> bool:
        """ Has the script been exhausted, and is the informer waiting for more? """
        return self._idle.is_set()

    async def wait_idle(self, timeout: Optional[float] = 1.0) -> None:
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    async def list(
            self,
            descriptor: references.ResourceDescriptor,
            *,
            stopper: Optional[aiotasks.Future] = None,
    ) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
        self.calls.append(ScriptedCall('list', descriptor))
        if not self._listings:
            await self._hang(stopper)
            raise errors.TransportFault(None, status=0, message="The client is stopped.")
        listing = self._listings.popleft()
        if listing.fault is not None:
            raise listing.fault
        return listing.items, listing.resource_version

    async def watch(
            self,
            descriptor: references.ResourceDescriptor,
            *,
            since: Optional[str],
            stopper: Optional[aiotasks.Future] = None,
    ) -> AsyncIterator[watching.RawRecord]:
        self.calls.append(ScriptedCall('watch', descriptor, since))
        if not self._streams:
            await self._hang(stopper)
            return
        stream = self._streams.popleft()
        for record in stream.records:
            if stopper is not None and stopper.done():
                return
            yield record
        if stream.fault is not None:
            raise stream.fault

    async def _hang(self, stopper: Optional[aiotasks.Future]) -> None:
        self._idle.set()
        await aioflags.wait_flag(stopper)
