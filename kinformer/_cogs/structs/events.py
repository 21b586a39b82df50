"""
Lifecycle events as delivered to the application's handlers.

The events form a closed set of variants: `Added`, `Modified`, `Deleted`
for the observed transitions of the objects, and `Error` for the faults
that the application should be aware of (malformed records, fatal API errors).

The handlers are expected to match them exhaustively::

    match event:
        case kinformer.Added(resource=book):
            ...
        case kinformer.Modified(resource=book):
            ...
        case kinformer.Deleted(resource=book):
            ...
        case kinformer.Error(fault=fault):
            ...
        case _:
            assert_never(event)
"""
import dataclasses
import enum
from typing import Any, Generic, Mapping, Optional, Union

from typing_extensions import assert_never

from kinformer._cogs.structs import resources


class EventType(str, enum.Enum):
    ADDED = 'ADDED'
    MODIFIED = 'MODIFIED'
    DELETED = 'DELETED'
    ERROR = 'ERROR'

    def __str__(self) -> str:
        return self.value


@dataclasses.dataclass(frozen=True)
class Added(Generic[resources.SpecT]):
    resource: resources.TypedResource[resources.SpecT]
    synthetic: bool = False  # True if simulated from the listing, not from the watch-stream.


@dataclasses.dataclass(frozen=True)
class Modified(Generic[resources.SpecT]):
    resource: resources.TypedResource[resources.SpecT]


@dataclasses.dataclass(frozen=True)
class Deleted(Generic[resources.SpecT]):
    resource: resources.TypedResource[resources.SpecT]


@dataclasses.dataclass(frozen=True)
class Error:
    fault: BaseException
    raw: Optional[Mapping[str, Any]] = None  # the offending record, if the fault is per-record.


LifecycleEvent = Union[
    Added[resources.SpecT],
    Modified[resources.SpecT],
    Deleted[resources.SpecT],
    Error,
]


def get_type(event: "LifecycleEvent[Any]") -> EventType:
    if isinstance(event, Added):
        return EventType.ADDED
    elif isinstance(event, Modified):
        return EventType.MODIFIED
    elif isinstance(event, Deleted):
        return EventType.DELETED
    elif isinstance(event, Error):
        return EventType.ERROR
    else:
        assert_never(event)


def get_resource(event: "LifecycleEvent[Any]") -> Optional[resources.TypedResource[Any]]:
    """ The resource carried by the event, or ``None`` for errors. """
    if isinstance(event, (Added, Modified, Deleted)):
        return event.resource
    elif isinstance(event, Error):
        return None
    else:
        assert_never(event)


def describe(event: "LifecycleEvent[Any]") -> str:
    """ A one-line human-readable description, as used in logs and the CLI. """
    resource = get_resource(event)
    if resource is not None:
        where = f'{resource.namespace}/' if resource.namespace else ''
        return f"{get_type(event)} {where}{resource.name} @{resource.resource_version}"
    elif isinstance(event, Error):
        return f"{get_type(event)} {event.fault!r}"
    else:
        raise TypeError(f"Unsupported event: {event!r}")
