import asyncio
from typing import Any, AsyncGenerator, Mapping, Optional

import aiohttp

from kinformer._cogs.aiokits import aiotasks
from kinformer._cogs.clients import auth, errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs

# The low-level networking errors, which are not related to the domain of K8s API.
CONNECTION_ERRORS = (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError)


async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        payload: Optional[object] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Make a single API request and check its response for errors.

    There are no retries here: the informer decides when & how to retry.
    The networking errors are converted to `TransportFault`, the API errors
    to the corresponding specialised errors (see :mod:`errors`).
    """
    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')

    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    what = f"{method.upper()} {url}"
    try:
        response = await context.session.request(
            method=method,
            url=url,
            json=payload,
            headers=headers,
            timeout=timeout,
        )
    except CONNECTION_ERRORS as e:
        logger.debug(f"Request failed: {what} -> {e!r}")
        raise errors.TransportFault(None, status=0, message=f"{what} -> {e!r}") from e

    await errors.check_response(response)  # but do not parse it!
    return response


async def get(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        stopper: Optional[aiotasks.Future] = None,
        logger: typedefs.Logger,
) -> Any:
    """
    Get the parsed JSON of a response.

    Once the stopper is done, the response is closed, and the reading fails
    with `TransportFault` instead of waiting for the rest of the payload.
    """
    response = await request(
        method='get',
        url=url,
        headers=headers,
        timeout=timeout,
        context=context,
        settings=settings,
        logger=logger,
    )
    response_close_callback = lambda _: response.close()  # to remove the positional arg.
    if stopper is not None:
        stopper.add_done_callback(response_close_callback)
    try:
        async with response:
            return await response.json()
    except CONNECTION_ERRORS as e:
        raise errors.TransportFault(None, status=0, message=f"GET {url} -> {e!r}") from e
    except ValueError as e:
        # A truncated payload of a response closed by the stopper.
        if stopper is not None and stopper.done():
            raise errors.TransportFault(None, status=0, message=f"GET {url} -> stopped") from e
        raise
    finally:
        if stopper is not None:
            stopper.remove_done_callback(response_close_callback)


async def stream(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
        stopper: Optional[aiotasks.Future] = None,
        logger: typedefs.Logger,
) -> AsyncGenerator[bytes, None]:
    """
    Stream the raw lines (presumably JSON) of a response until the server closes it.

    The stream is also closed from the client side once the stopper is done:
    the response's connection is closed via the stopper's "done" callback,
    so the reading is interrupted instantly instead of awaiting a next line.
    Such a stop is a normal end of the stream, not an error.
    """
    response = await request(
        method='get',
        url=url,
        headers=headers,
        timeout=timeout,
        context=context,
        settings=settings,
        logger=logger,
    )
    response_close_callback = lambda _: response.close()  # to remove the positional arg.
    if stopper is not None:
        stopper.add_done_callback(response_close_callback)
    try:
        async with response:
            async for line in iter_jsonlines(response.content):
                yield line
    except CONNECTION_ERRORS as e:
        if stopper is not None and stopper.done():
            pass
        else:
            raise errors.TransportFault(None, status=0, message=f"GET {url} -> {e!r}") from e
    finally:
        if stopper is not None:
            stopper.remove_done_callback(response_close_callback)


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncGenerator[bytes, None]:
    """
    Iterate line by line over the response's content.

    This is an equivalent of::

        async for line in response.content:
            pass

    Except that the aiohttp's line iteration fails if the accumulated buffer
    length is above 2**17 bytes, i.e. 128 KB (`aiohttp.streams.DEFAULT_LIMIT`
    for the buffer's low-watermark, multiplied by 2 for the high-watermark).
    Kubernetes objects can be much longer, up to MBs in length.

    The chunk size of 1MB keeps the memory footprint reasonably low on huge
    amount of small lines, while ensuring the near-instant reads of huge lines.
    """

    # Minimize the memory footprint by keeping at most 2 copies of a yielded line in memory
    # (in the buffer and as a yielded value), and at most 1 copy of other lines (in the buffer).
    buffer = b''
    async for data in content.iter_chunked(chunk_size):
        buffer += data
        del data

        start = 0
        index = buffer.find(b'\n', start)
        while index >= 0:
            line = buffer[start:index]
            if line.strip():
                yield line
            del line
            start = index + 1
            index = buffer.find(b'\n', start)

        if start > 0:
            buffer = buffer[start:]

    if buffer.strip():
        yield buffer
