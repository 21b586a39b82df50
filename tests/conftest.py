import asyncio
import collections
import dataclasses
import io
import json
import logging
import re
import sys
import time
from typing import Any, Deque, List, Mapping, Optional, Sequence, Union

import aiohttp.test_utils
import aiohttp.web
import pytest

from kinformer._cogs.clients.auth import APIContext
from kinformer._cogs.configs.configuration import BackoffSettings, InformerSettings
from kinformer._cogs.structs.credentials import ConnectionInfo
from kinformer._cogs.structs.references import ResourceDescriptor
from kinformer._core.actions.loggers import ObjectPrefixingTextFormatter, configure


#
# Resources & objects.
#

@pytest.fixture()
def descriptor():
    return ResourceDescriptor('kinformer.dev', 'v1', 'Book', plural='books')


@pytest.fixture()
def namespaced_descriptor():
    return ResourceDescriptor('kinformer.dev', 'v1', 'Book', plural='books', namespace='ns1')


def make_body(name: str, version: Optional[str] = None, *, namespace: Optional[str] = None,
              spec: Optional[Mapping[str, Any]] = None) -> dict:
    metadata = {'name': name, 'uid': f'uid-{name}'}
    if namespace is not None:
        metadata['namespace'] = namespace
    if version is not None:
        metadata['resourceVersion'] = version
    return {
        'apiVersion': 'kinformer.dev/v1',
        'kind': 'Book',
        'metadata': metadata,
        'spec': dict(spec or {}),
    }


def make_record(type: str, name: str, version: Optional[str] = None, **kwargs: Any) -> dict:
    return {'type': type, 'object': make_body(name, version, **kwargs)}


@pytest.fixture(name='make_body')
def make_body_fixture():
    return make_body


@pytest.fixture(name='make_record')
def make_record_fixture():
    return make_record


@pytest.fixture()
def settings():
    # Fast retries for the tests: we do not want to wait for the real-world delays.
    return InformerSettings(backoff=BackoffSettings(initial=0.01, factor=2.0, maximum=0.05))


#
# The fake K8s API server: scripted listings & watch-streams.
#

@dataclasses.dataclass
class FakeRequest:
    path: str
    query: Mapping[str, str]
    headers: Mapping[str, str]


@dataclasses.dataclass
class FakeResponse:
    status: int = 200
    payload: Any = None
    lines: Sequence[Union[bytes, Mapping[str, Any]]] = ()
    hang: bool = False


class FakeAPI:
    """
    A scripted K8s API: every request consumes the next scripted response.

    The listings & the watch-streams are scripted separately. When a script
    is exhausted, the watch-streams hang (until the server is closed),
    and the listings return empty lists.
    """

    def __init__(self) -> None:
        super().__init__()
        self.requests: List[FakeRequest] = []
        self.listings: Deque[FakeResponse] = collections.deque()
        self.streams: Deque[FakeResponse] = collections.deque()
        self.closing = asyncio.Event()
        self.server: Optional[aiohttp.test_utils.TestServer] = None

    @property
    def url(self) -> str:
        assert self.server is not None
        return str(self.server.make_url('/')).rstrip('/')

    @property
    def watches(self) -> List[FakeRequest]:
        return [request for request in self.requests if request.query.get('watch') == 'true']

    @property
    def lists(self) -> List[FakeRequest]:
        return [request for request in self.requests if request.query.get('watch') != 'true']

    def add_listing(self, items=(), *, resource_version=None, kind='BookList'):
        payload = {'apiVersion': 'kinformer.dev/v1', 'kind': kind, 'items': list(items),
                   'metadata': {'resourceVersion': resource_version}}
        self.listings.append(FakeResponse(payload=payload))

    def add_list_error(self, status, payload=None):
        self.listings.append(FakeResponse(status=status, payload=payload))

    def add_hanging_listing(self):
        self.listings.append(FakeResponse(hang=True))

    def add_stream(self, lines=(), *, hang=False):
        self.streams.append(FakeResponse(lines=list(lines), hang=hang))

    def add_watch_error(self, status, payload=None):
        self.streams.append(FakeResponse(status=status, payload=payload))

    async def handle(self, request: aiohttp.web.Request) -> aiohttp.web.StreamResponse:
        self.requests.append(FakeRequest(path=request.path,
                                         query=dict(request.query),
                                         headers=dict(request.headers)))
        watching = request.query.get('watch') == 'true'
        script = self.streams if watching else self.listings
        response = script.popleft() if script else FakeResponse(
            payload=None if watching else {'items': [], 'metadata': {}},
            hang=watching,
        )

        if response.hang and not watching:
            stream = aiohttp.web.StreamResponse(headers={'Content-Type': 'application/json'})
            await stream.prepare(request)
            await stream.write(b'{"items": [')
            await self.closing.wait()
            return stream

        if response.status >= 400 or not watching:
            return aiohttp.web.json_response(response.payload, status=response.status)

        stream = aiohttp.web.StreamResponse(headers={'Content-Type': 'application/json'})
        await stream.prepare(request)
        for line in response.lines:
            data = line if isinstance(line, bytes) else json.dumps(line).encode('utf-8')
            await stream.write(data + b'\n')
        if response.hang:
            await self.closing.wait()
        return stream


@pytest.fixture()
async def fake_api():
    api = FakeAPI()
    app = aiohttp.web.Application()
    app.router.add_route('GET', '/{tail:.*}', api.handle)
    server = aiohttp.test_utils.TestServer(app)
    await server.start_server()
    api.server = server
    try:
        yield api
    finally:
        api.closing.set()
        await server.close()


@pytest.fixture()
def connection(fake_api):
    return ConnectionInfo(server=fake_api.url, token='secret-token')


@pytest.fixture()
async def context(connection):
    context = APIContext(connection)
    try:
        yield context
    finally:
        await context.close()


#
# Helpers for the timing checks.
#

@pytest.fixture()
def timer():
    return Timer()


class Timer:
    """
    A helper context manager to measure the time of the code-blocks.
    Also, supports direct comparison with the numbers of seconds.

    Usage:

        with Timer() as timer:
            do_something()
            print(f"Executing for {timer.seconds}s already.")
            do_something_else()

        print(f"Executed in {timer.seconds}s.")
        assert timer.seconds < 5.0
    """

    def __init__(self):
        super().__init__()
        self._ts = None
        self._te = None

    @property
    def seconds(self):
        if self._ts is None:
            return None
        elif self._te is None:
            return time.perf_counter() - self._ts
        else:
            return self._te - self._ts

    def __repr__(self):
        status = 'new' if self._ts is None else 'running' if self._te is None else 'finished'
        return f'<Timer: {self.seconds}s ({status})>'

    def __enter__(self):
        self._ts = time.perf_counter()
        self._te = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._te = time.perf_counter()

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)


#
# Helpers for the logging checks.
#

@pytest.fixture()
def logstream(caplog):
    """ Prefixing is done at the final output. We have to intercept it. """

    logger = logging.getLogger()
    handlers = list(logger.handlers)

    # Setup all log levels of sub-libraries. A side-effect: the handlers are also added.
    configure(verbose=True)

    # Remove any stream handlers added in the step above. But keep the caplog's handlers.
    for handler in list(logger.handlers):
        if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stderr:
            logger.removeHandler(handler)

    # Inject our stream-intercepting handler.
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    formatter = ObjectPrefixingTextFormatter('prefix %(message)s')
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    try:
        with caplog.at_level(logging.DEBUG):
            yield stream
    finally:
        logger.removeHandler(handler)
        logger.handlers[:] = handlers  # undo `configure()`


@pytest.fixture()
def assert_logs(caplog):
    """
    A function to assert the logs are present (by pattern).

    The listed message patterns MUST be present, in the order specified.
    Some other log messages can also be present, but they are ignored.
    """
    caplog.set_level(logging.DEBUG)

    def assert_logs_fn(patterns, prohibited=[], strict=False):
        __traceback_hide__ = True
        remaining_patterns = list(patterns)
        for message in caplog.messages:
            # The expected pattern is at position 0.
            # Looking-ahead: if one of the following patterns matches, while the
            # 0th does not, then the log message is missing, and we fail the test.
            for idx, pattern in enumerate(remaining_patterns):
                m = re.search(pattern, message)
                if m:
                    if idx == 0:
                        remaining_patterns[:1] = []
                        break  # out of `remaining_patterns` cycle
                    else:
                        skipped_patterns = remaining_patterns[:idx]
                        raise AssertionError(f"Few patterns were skipped: {skipped_patterns!r}")
                elif strict:
                    raise AssertionError(f"Unexpected log message: {message!r}")

            # Check that the prohibited patterns do not appear in any message.
            for pattern in prohibited:
                m = re.search(pattern, message)
                if m:
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

        # If all patterns have been matched in order, we are done.
        # if some are left, but the messages are over, then we fail.
        if remaining_patterns:
            raise AssertionError(f"Few patterns were missed: {remaining_patterns!r}")

    return assert_logs_fn
