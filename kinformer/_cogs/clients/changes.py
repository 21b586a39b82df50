"""
The change-stream clients: the informers' only way to talk to the API.

The informer does not know how the objects are listed & watched: it consumes
an abstract client as per `ChangeStreamClient`, which must be explicitly
constructed and passed to it. The default implementation is `APIClient`
based on ``aiohttp``; the tests and the applications' tests can use
an in-memory scripted client (see :mod:`kinformer.testing`).
"""
import contextlib
import logging
import types
from typing import AsyncIterator, Collection, Optional, Protocol, Tuple, Type

from kinformer._cogs.aiokits import aiotasks
from kinformer._cogs.clients import auth, fetching, watching
from kinformer._cogs.configs import configuration
from kinformer._cogs.structs import bodies, credentials, references

logger = logging.getLogger(__name__)


class ChangeStreamClient(Protocol):
    """
    The contract of the list & watch calls as consumed by the informer.

    ``list()`` returns the current objects and the collection's resource version.
    ``watch()`` yields the raw records since that version until the server
    closes the stream (normally). Both raise the faults from :mod:`errors`;
    notably, ``watch()`` raises `StaleResourceVersionFault` if the version
    is not retained by the server anymore, so that the informer re-lists.

    The stopper, once done, must terminate the calls promptly (close the connections).
    A watch-stream then ends normally; a listing can fail with `TransportFault`,
    which the informer ignores once it is stopping.
    """

    async def list(
            self,
            descriptor: references.ResourceDescriptor,
            *,
            stopper: Optional[aiotasks.Future] = None,
    ) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
        ...

    def watch(
            self,
            descriptor: references.ResourceDescriptor,
            *,
            since: Optional[str],
            stopper: Optional[aiotasks.Future] = None,
    ) -> AsyncIterator[watching.RawRecord]:
        ...


class APIClient:
    """
    The K8s API client for listing & watching, owning its own HTTP session.

    Usage::

        async with kinformer.APIClient(info) as client:
            informer = kinformer.Informer(client=client, descriptor=descriptor)
            ...

    The session is created on the first use or on entering the context,
    as ``aiohttp`` sessions must be created inside of a running event loop.
    """

    def __init__(
            self,
            info: credentials.ConnectionInfo,
            *,
            settings: Optional[configuration.InformerSettings] = None,
    ) -> None:
        super().__init__()
        self.info = info
        self.settings = settings if settings is not None else configuration.InformerSettings()
        self._context: Optional[auth.APIContext] = None

    async def __aenter__(self) -> "APIClient":
        self._get_context()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[Type[BaseException]],
            exc_val: Optional[BaseException],
            exc_tb: Optional[types.TracebackType],
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._context is not None:
            context, self._context = self._context, None
            await context.close()

    def _get_context(self) -> auth.APIContext:
        if self._context is None:
            self._context = auth.APIContext(self.info)
        return self._context

    async def list(
            self,
            descriptor: references.ResourceDescriptor,
            *,
            stopper: Optional[aiotasks.Future] = None,
    ) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
        return await fetching.list_objs(
            context=self._get_context(),
            settings=self.settings,
            descriptor=descriptor,
            stopper=stopper,
            logger=logger,
        )

    async def watch(
            self,
            descriptor: references.ResourceDescriptor,
            *,
            since: Optional[str],
            stopper: Optional[aiotasks.Future] = None,
    ) -> AsyncIterator[watching.RawRecord]:
        async with contextlib.aclosing(watching.watch_objs(
            context=self._get_context(),
            settings=self.settings,
            descriptor=descriptor,
            since=since,
            stopper=stopper,
        )) as raw_records:
            async for raw_record in raw_records:
                yield raw_record

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__} {self.info.server}>'
