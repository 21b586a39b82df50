"""
Watching and streaming the raw watch-records.

A single watch-stream is one long-lived API request, which yields the records
of changes since a specific resource version, until the server closes it
(usually, by the requested or the server-side timeout). The closing is normal.

The in-stream ``ERROR`` records are not yielded: they are raised as faults,
same as the HTTP errors of the initial request. Most notably, "410 Gone"
means that the requested resource version is not retained anymore,
so the stream cannot be resumed and the objects must be re-listed.
"""
import contextlib
import json
import logging
from typing import Any, AsyncGenerator, Dict, Mapping, Optional, Union

import aiohttp

from kinformer._cogs.aiokits import aiotasks
from kinformer._cogs.clients import api, auth, errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import references

logger = logging.getLogger(__name__)

# Whatever is received from the stream: normally, raw inputs, but malformed lines are also possible.
RawRecord = Union[Mapping[str, Any], bytes]


async def watch_objs(
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        descriptor: references.ResourceDescriptor,
        since: Optional[str] = None,
        stopper: Optional[aiotasks.Future] = None,
        logger: typedefs.Logger = logger,
) -> AsyncGenerator[RawRecord, None]:
    """
    Watch objects of a specific resource type since a specific version.

    The records are yielded in the order they are received from the server.
    The malformed (non-JSON) lines are yielded as is, to be reported by the decoder.
    The stream ends when the server closes it, or when the stopper is done.
    """
    params: Dict[str, str] = {}
    params['watch'] = 'true'
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(int(settings.watching.server_timeout))
    if settings.watching.allow_bookmarks:
        params['allowWatchBookmarks'] = 'true'

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed records from the response until it is closed server-side,
    # or until it is closed client-side by the stopper's callbacks.
    lines = api.stream(
        url=descriptor.get_url(params=params),
        logger=logger,
        context=context,
        settings=settings,
        stopper=stopper,
        timeout=aiohttp.ClientTimeout(
            total=settings.watching.client_timeout,
            sock_connect=connect_timeout,
        ),
    )
    async with contextlib.aclosing(lines):
        async for line in lines:
            try:
                raw_input = json.loads(line.decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError):
                logger.warning(f"Received a malformed line in the watch-stream for {descriptor}.")
                yield line
                continue

            # The error records are the server's way to break the stream. Fatal or not, it is over.
            if isinstance(raw_input, Mapping) and raw_input.get('type') == 'ERROR':
                raw_object = raw_input.get('object')
                raw_status = raw_object if isinstance(raw_object, Mapping) else {}
                raise errors.fault_from_status(raw_status)

            yield raw_input
