"""
K8s API errors and the faults of the change-streams.

The underlying client library (now, ``aiohttp``) can be replaced in the future.
We cannot rely on embedding its exceptions all over the code in the library.
Hence, we have our own hierarchy of exceptions for K8s API errors.

The original errors of the client library are chained as the causes of our own
specialised errors -- for better explainability of errors in the stack traces.

The faults are split by how the informer reacts to them:

* `AuthFault` & `NotFoundFault` are fatal: a misconfiguration, not a glitch.
* `TransportFault` is transient: retried with backoff, resuming the stream.
* `StaleResourceVersionFault` is transient: recovered by re-listing.
* Other `APIError` are fatal, as their reasons are unknown.

`DecodeFault` and `HandlerFault` are not API errors: the former is delivered
to the application as an error event, the latter is only reported.
"""
import collections.abc
import json
from typing import Any, Collection, Mapping, Optional

import aiohttp
from typing_extensions import Literal, TypedDict


class RawStatusCause(TypedDict):
    field: str
    reason: str
    message: str


class RawStatusDetails(TypedDict):
    name: str
    uid: str
    retryAfterSeconds: int
    kind: str
    group: str
    causes: Collection[RawStatusCause]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.19/#status-v1-meta
class RawStatus(TypedDict):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):

    def __init__(
            self,
            payload: Optional[RawStatus],
            *,
            status: int,
            message: Optional[str] = None,
    ) -> None:
        if message is None and payload:
            message = payload.get('message')
        super().__init__(message, payload)
        self._status = status
        self._payload = payload
        self._message = message

    @property
    def status(self) -> int:
        return self._status

    @property
    def code(self) -> Optional[int]:
        return self._payload.get('code') if self._payload else None

    @property
    def message(self) -> Optional[str]:
        return self._message

    @property
    def details(self) -> Optional[RawStatusDetails]:
        return self._payload.get('details') if self._payload else None


class AuthFault(APIError):
    """ The credentials are rejected (401) or the access is forbidden (403). """


class NotFoundFault(APIError):
    """ The resource kind is not served by the API (404). """


class StaleResourceVersionFault(APIError):
    """ The resource version to resume from is not retained anymore (410). """


class TransportFault(APIError):
    """ The connection is lost, broken, timed out, or the server is overloaded. """

    @property
    def retry_after(self) -> Optional[float]:
        """ A delay suggested by the server (for 429 mostly), if any. """
        details = self.details
        return details.get('retryAfterSeconds') if details else None


class DecodeFault(Exception):
    """ A record of the stream does not match the expected structure or spec. """


class HandlerFault(Exception):
    """ The application's handler has failed; the original error is the cause. """


def is_fatal(exc: BaseException) -> bool:
    """ Should the fault stop the informer (or should it be retried)? """
    return isinstance(exc, APIError) and not isinstance(exc, (
        TransportFault,
        StaleResourceVersionFault,
    ))


def get_fault_class(status: int) -> type:
    return (
        AuthFault if status in (401, 403) else
        NotFoundFault if status == 404 else
        StaleResourceVersionFault if status == 410 else
        TransportFault if status == 429 or status >= 500 else
        APIError
    )


def fault_from_status(payload: Mapping[str, Any], *, status: Optional[int] = None) -> APIError:
    """
    Interpret an in-stream ``ERROR`` record (a ``Status`` object) as a fault.

    The watch-streams report some errors with a normal HTTP 200 status,
    with the actual code in the payload: e.g. "410 Gone" for the expired
    resource versions. The HTTP status is used only if there is no code.
    """
    code = payload.get('code')
    status = code if isinstance(code, int) else status if status is not None else 500
    cls = get_fault_class(status)
    return cls(payload, status=status)  # type: ignore


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Check for specialised K8s errors, and raise with extended information.
    """
    if response.status >= 400:

        # Read the response's body before it is closed by raise_for_status().
        payload: Optional[RawStatus]
        try:
            payload = await response.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
            payload = None

        # Better be safe: who knows which sensitive information can be dumped unless kind==Status.
        if not isinstance(payload, collections.abc.Mapping) or payload.get('kind') != 'Status':
            payload = None

        cls = get_fault_class(response.status)

        # Raise the library-specific error while keeping the original error in scope.
        # This call also closes the response's body, so it cannot be read afterwards.
        try:
            response.raise_for_status()
        except aiohttp.ClientResponseError as e:
            raise cls(payload, status=response.status) from e
