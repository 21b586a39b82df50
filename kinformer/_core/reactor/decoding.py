"""
Decoding of the raw records into the typed lifecycle events.

The decoder never raises on the malformed records: every record becomes
exactly one event, either a proper `Added`/`Modified`/`Deleted` with a typed
resource snapshot, or an `Error` with a `DecodeFault` and the offending record.
This way, one malformed record does not stop the delivery of the following ones.

The spec is converted to an application-defined type by a spec parser:
a callable that accepts the raw spec mapping and returns anything, or raises
if the spec does not fit. Two parsers are provided out of the box:
`parse_mapping` (a read-only mapping as is) and `model_parser`
(for pydantic models and dataclasses, validated by pydantic)::

    @dataclasses.dataclass(frozen=True)
    class Book:
        title: str
        authors: Optional[List[str]] = None

    decoder = Decoder(model_parser(Book))
"""
import collections.abc
from typing import Any, Callable, Generic, Mapping, Optional, Type

import pydantic

from kinformer._cogs.clients import errors
from kinformer._cogs.structs import events, references, resources

SpecParser = Callable[[Mapping[str, Any]], resources.SpecT]

EVENT_CLASSES: Mapping[str, Any] = {
    'ADDED': events.Added,
    'MODIFIED': events.Modified,
    'DELETED': events.Deleted,
}


def parse_mapping(spec: Mapping[str, Any]) -> Mapping[str, Any]:
    """ The default spec parser: keep the spec as a read-only mapping. """
    frozen: Mapping[str, Any] = resources.freeze(spec)
    return frozen


def model_parser(cls: Type[resources.SpecT]) -> SpecParser[resources.SpecT]:
    """
    Make a spec parser for a type known to pydantic: a model or a dataclass.

    The camelCase names of the API can be mapped with pydantic's aliases::

        replicas_count: Annotated[int, pydantic.Field(alias='replicasCount')] = 1

    Unknown fields in the spec are ignored (unless the model forbids them).
    Missing required fields and the values of the wrong types fail the parsing
    with `pydantic.ValidationError`.
    """
    adapter: pydantic.TypeAdapter[resources.SpecT] = pydantic.TypeAdapter(cls)

    def parse(spec: Mapping[str, Any]) -> resources.SpecT:
        return adapter.validate_python(dict(spec))

    return parse


class Decoder(Generic[resources.SpecT]):
    """
    Convert the raw records (from listing & watching) to the lifecycle events.

    If a descriptor is given, the objects' ``kind`` & ``apiVersion`` (if present)
    are verified against it: the mismatching objects are reported as malformed.
    """

    def __init__(
            self,
            spec_parser: SpecParser[resources.SpecT] = parse_mapping,  # type: ignore
            *,
            descriptor: Optional[references.ResourceDescriptor] = None,
    ) -> None:
        super().__init__()
        self.spec_parser = spec_parser
        self.descriptor = descriptor

    def decode(self, raw: Any) -> "events.LifecycleEvent[resources.SpecT]":
        """ Decode a raw record of the watch-stream. """
        try:
            if not isinstance(raw, collections.abc.Mapping):
                raise errors.DecodeFault(f"The record is not a JSON object: {raw!r}")
            raw_type = raw.get('type')
            cls = EVENT_CLASSES.get(raw_type) if isinstance(raw_type, str) else None
            if cls is None:
                raise errors.DecodeFault(f"Unsupported event type: {raw_type!r}")
            resource = self.decode_resource(raw.get('object'))
        except errors.DecodeFault as e:
            return events.Error(fault=e, raw=_as_raw(raw))
        event: events.LifecycleEvent[resources.SpecT] = cls(resource=resource)
        return event

    def decode_listed(self, raw: Any) -> "events.LifecycleEvent[resources.SpecT]":
        """ Decode an object from the listing into a synthetic ``Added`` event. """
        try:
            resource = self.decode_resource(raw)
        except errors.DecodeFault as e:
            return events.Error(fault=e, raw=_as_raw(raw))
        return events.Added(resource=resource, synthetic=True)

    def decode_resource(self, raw: Any) -> resources.TypedResource[resources.SpecT]:
        """ Decode a single object's body, or raise `DecodeFault`. """
        if not isinstance(raw, collections.abc.Mapping):
            raise errors.DecodeFault(f"The object is not a JSON object: {raw!r}")
        if self.descriptor is not None and not self.descriptor.matches(raw):
            raise errors.DecodeFault(f"The object's kind or version mismatch the expected "
                                     f"{self.descriptor.api_version}/{self.descriptor.kind}: "
                                     f"{raw.get('apiVersion')}/{raw.get('kind')}")

        raw_meta = raw.get('metadata')
        if not isinstance(raw_meta, collections.abc.Mapping):
            raise errors.DecodeFault("The object has no metadata.")
        try:
            metadata = resources.ObjectMeta.from_raw(raw_meta)
        except (TypeError, ValueError) as e:
            raise errors.DecodeFault(f"Malformed metadata: {e}") from e

        raw_spec = raw.get('spec', {})
        raw_status = raw.get('status', {})
        if not isinstance(raw_spec, collections.abc.Mapping):
            raise errors.DecodeFault(f"The spec of {metadata.name!r} is not an object.")
        if not isinstance(raw_status, collections.abc.Mapping):
            raise errors.DecodeFault(f"The status of {metadata.name!r} is not an object.")
        try:
            spec = self.spec_parser(raw_spec)
        except Exception as e:
            raise errors.DecodeFault(f"The spec of {metadata.name!r} is invalid: {e}") from e

        return resources.TypedResource(
            metadata=metadata,
            spec=spec,
            api_version=raw.get('apiVersion'),
            kind=raw.get('kind'),
            status=resources.freeze(raw_status),
        )


def _as_raw(raw: Any) -> Mapping[str, Any]:
    if isinstance(raw, collections.abc.Mapping):
        return raw
    elif isinstance(raw, bytes):
        return {'line': raw.decode('utf-8', errors='replace')}
    else:
        return {'value': raw}
