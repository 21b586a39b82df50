"""
Typed snapshots of the resources as delivered to the application.

Unlike the raw bodies, the typed resources are immutable: they are owned
by the lifecycle event that carries them and must not be changed after decoding.
The spec is converted to an application-defined type by a spec parser
(see :mod:`kinformer._core.reactor.decoding`); the status is kept as is.
"""
import dataclasses
import datetime
import types
from typing import Any, Generic, Mapping, Optional, TypeVar

import iso8601

SpecT = TypeVar('SpecT')

_EMPTY: Mapping[str, Any] = types.MappingProxyType({})


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """ Parse K8s timestamps (RFC 3339); raise `ValueError` if malformed. """
    if value is None:
        return None
    try:
        return iso8601.parse_date(value)
    except iso8601.ParseError as e:
        raise ValueError(f"Malformed timestamp: {value!r}") from e


def freeze(value: Any) -> Any:
    """ Make a read-only view of nested mappings & lists, as JSON-decoded. """
    if isinstance(value, Mapping):
        return types.MappingProxyType({key: freeze(val) for key, val in value.items()})
    elif isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    else:
        return value


@dataclasses.dataclass(frozen=True)
class ObjectMeta:
    """ The essential metadata of an object, as used for identification & ordering. """
    name: str
    namespace: Optional[str] = None
    resource_version: Optional[str] = None
    uid: Optional[str] = None
    generation: Optional[int] = None
    labels: Mapping[str, str] = dataclasses.field(default_factory=lambda: _EMPTY)
    annotations: Mapping[str, str] = dataclasses.field(default_factory=lambda: _EMPTY)
    creation_timestamp: Optional[datetime.datetime] = None
    deletion_timestamp: Optional[datetime.datetime] = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ObjectMeta":
        name = raw.get('name')
        if not name or not isinstance(name, str):
            raise ValueError("The object has no name in its metadata.")
        version = raw.get('resourceVersion')
        return cls(
            name=name,
            namespace=raw.get('namespace'),
            resource_version=str(version) if version is not None else None,
            uid=raw.get('uid'),
            generation=raw.get('generation'),
            labels=freeze(raw.get('labels') or {}),
            annotations=freeze(raw.get('annotations') or {}),
            creation_timestamp=parse_timestamp(raw.get('creationTimestamp')),
            deletion_timestamp=parse_timestamp(raw.get('deletionTimestamp')),
        )


@dataclasses.dataclass(frozen=True)
class TypedResource(Generic[SpecT]):
    """ A decoded snapshot of a single object at a specific resource version. """
    metadata: ObjectMeta
    spec: SpecT
    api_version: Optional[str] = None
    kind: Optional[str] = None
    status: Mapping[str, Any] = dataclasses.field(default_factory=lambda: _EMPTY)

    def __repr__(self) -> str:
        where = f'{self.metadata.namespace}/' if self.metadata.namespace else ''
        return f'<{self.kind or "Resource"} {where}{self.metadata.name}' \
               f' @{self.metadata.resource_version}>'

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.namespace

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.resource_version

    def as_reference(self) -> Mapping[str, Optional[str]]:
        """ An object reference as used in logs, similar to K8s's ObjectReference. """
        return dict(
            apiVersion=self.api_version,
            kind=self.kind,
            name=self.metadata.name,
            uid=self.metadata.uid,
            namespace=self.metadata.namespace,
        )
