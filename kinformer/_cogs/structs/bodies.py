"""
All the raw structures coming from the Kubernetes API.

Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
from Kubernetes API, as retrieved in the listing or watching API calls.
"Input" is a parsed JSON line of the watch-stream as is, including errors.

For strict type-checking, they are detailed to the per-field level
(`TypedDict` instead of just ``Mapping[Any, Any]``) -- as used by the library.
The actual objects can have arbitrary fields at runtime, which are not declared
in the type definitions at type-checking time.
"""
from typing import Any, List, Mapping, Union

from typing_extensions import Literal, TypedDict

Labels = Mapping[str, str]
Annotations = Mapping[str, str]

RawInputType = Literal['ADDED', 'MODIFIED', 'DELETED', 'BOOKMARK', 'ERROR']


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    generation: int
    labels: Labels
    annotations: Annotations
    finalizers: List[str]
    resourceVersion: str
    deletionTimestamp: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


# A special payload for type==ERROR (this is not a connection or client error).
class RawError(TypedDict, total=False):
    apiVersion: str     # usually: Literal['v1']
    kind: str           # usually: Literal['Status']
    metadata: Mapping[Any, Any]
    code: int
    reason: str
    status: str
    message: str


# As received from the stream before processing the errors and special cases.
class RawInput(TypedDict, total=True):
    type: RawInputType
    object: Union[RawBody, RawError]


def get_resource_version(raw: Mapping[str, Any]) -> Union[str, None]:
    """ Get the resource version of a raw body or a raw input, if present. """
    obj = raw.get('object', raw) if 'type' in raw else raw
    if not isinstance(obj, Mapping):
        return None
    meta = obj.get('metadata')
    if not isinstance(meta, Mapping):
        return None
    version = meta.get('resourceVersion')
    return str(version) if version is not None else None
