"""
References to the watched resource kinds.

A descriptor identifies one resource kind (custom or built-in) and, optionally,
one namespace to which the watching is restricted. It is only a value object:
it is validated at construction and is used to build the K8s API URLs.
"""
import dataclasses
import re
import urllib.parse
from typing import List, Mapping, NewType, Optional

# A specific really existing addressable namespace (at least, the one assumed to be so).
NamespaceName = NewType('NamespaceName', str)

# A namespace reference usable in the API calls. `None` means cluster-wide API calls.
Namespace = Optional[NamespaceName]

# As per https://kubernetes.io/docs/concepts/overview/working-with-objects/names/#dns-label-names
NAMESPACE_PATTERN = re.compile(r'^[a-z0-9]([-a-z0-9]*[a-z0-9])?$')
NAMESPACE_MAX_LENGTH = 63

# Detect conventional API versions: e.g. "v1", "v1alpha1", "v2beta3".
K8S_VERSION_PATTERN = re.compile(r'^v\d+(?:(?:alpha|beta)\d+)?$')


def is_valid_namespace(name: str) -> bool:
    return len(name) <= NAMESPACE_MAX_LENGTH and bool(NAMESPACE_PATTERN.match(name))


@dataclasses.dataclass(frozen=True)
class ResourceDescriptor:
    """
    A reference to a specific resource kind, optionally within one namespace.

    K8s API only needs an API group, an API version, and a plural name
    of the resource to list & watch it. The kind is used to verify the objects
    and for logging; the namespace narrows the calls to that namespace only.
    """

    group: str
    """
    The resource's API group; e.g. ``"example.technosophos.com"``, ``"apps"``.
    For Core v1 API resources, an empty string: ``""``.
    """

    version: str
    """
    The resource's API version; e.g. ``"v1"``, ``"v1beta1"``, etc.
    """

    kind: str
    """
    The resource's kind (as in YAML files); e.g. ``"Book"``, ``"Pod"``.
    """

    plural: Optional[str] = None
    """
    The resource's plural name; e.g. ``"books"``. It is used as an API endpoint.
    If not set, it is guessed from the kind (lowercased, with an extra "s").
    """

    namespace: Namespace = None
    """
    The namespace to watch. ``None`` means cluster-wide watching.
    """

    namespaced: bool = True
    """
    Whether the resource is namespaced (``True``) or cluster-scoped (``False``).
    """

    singular: Optional[str] = None
    """
    The resource's singular name; e.g. ``"book"``. Informational only.
    """

    def __post_init__(self) -> None:
        if not self.kind:
            raise ValueError("The resource kind must be non-empty.")
        if not self.version:
            raise ValueError("The resource version must be non-empty.")
        if not self.group and self.version != 'v1':
            raise ValueError("The API group must be non-empty (except for the core v1 API).")
        if self.namespace is not None:
            if not self.namespaced:
                raise ValueError(f"Namespaces are not supported for cluster-scoped {self.kind}.")
            if not isinstance(self.namespace, str) or not is_valid_namespace(self.namespace):
                raise ValueError(f"Invalid namespace name: {self.namespace!r}")
        if self.plural is None:
            object.__setattr__(self, 'plural', f'{self.kind.lower()}s')
        elif not self.plural:
            raise ValueError("The plural name must be non-empty if specified.")

    def __repr__(self) -> str:
        name_text = f'{self.plural}.{self.version}.{self.group}'.strip('.')
        where = f' in {self.namespace!r}' if self.namespace is not None else ''
        return f'{name_text}{where}'

    @property
    def api_version(self) -> str:
        """ The ``apiVersion`` as seen in the objects' bodies: e.g. ``"apps/v1"``. """
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: Optional[str] = None,
            params: Optional[Mapping[str, str]] = None,
    ) -> str:
        """
        Build a URL to be used with K8s API for listing & watching.

        If the namespace is not set, a cluster-wide URL is returned.
        Params go to the query parameters (``?param1=value1&param2=value2...``).
        """
        namespace = self.namespace if self.namespaced else None
        parts: List[Optional[str]] = [
            '/api' if self.group == '' and self.version == 'v1' else '/apis',
            self.group,
            self.version,
            'namespaces' if namespace is not None else None,
            namespace,
            self.plural,
        ]

        query = urllib.parse.urlencode(params, encoding='utf-8') if params else ''
        path = '/'.join([part for part in parts if part])
        url = path + ('?' if query else '') + query
        return url if server is None else server.rstrip('/') + '/' + url.lstrip('/')

    def matches(self, body: Mapping[str, object]) -> bool:
        """ Check if a raw object is of this resource kind (if it says so). """
        kind = body.get('kind')
        api_version = body.get('apiVersion')
        return (kind is None or kind == self.kind) and \
               (api_version is None or api_version == self.api_version)


def parse_descriptor(
        text: str,
        *,
        kind: Optional[str] = None,
        namespace: Optional[str] = None,
        namespaced: bool = True,
) -> ResourceDescriptor:
    """
    Parse a resource from the CLI notations into a descriptor.

    The supported notations are::

        books.v1.example.com        # plural.version.group
        books.example.com/v1        # plural.group/version
        example.com/v1/books        # group/version/plural
        v1/pods                     # version/plural (the core API)

    If the kind is not specified, it is guessed from the plural name:
    e.g. ``books`` becomes ``Book`` (which is not always right, hence the option).
    """
    text = text.strip()
    group: str
    version: str
    plural: str
    if text.count('/') == 2:
        group, version, plural = text.split('/')
    elif text.count('/') == 1 and '.' not in text:
        version, plural = text.split('/')
        group = ''
    elif text.count('/') == 1:
        name, version = text.split('/')
        plural, _, group = name.partition('.')
    elif text.count('.') >= 2:
        plural, version, group = text.split('.', 2)
        if not K8S_VERSION_PATTERN.match(version):
            raise ValueError(f"Cannot recognise the API version in {text!r}.")
    else:
        raise ValueError(f"Unsupported resource notation: {text!r}")

    if not plural or not version:
        raise ValueError(f"Unsupported resource notation: {text!r}")
    if kind is None:
        singular = plural[:-1] if plural.endswith('s') else plural
        kind = singular.capitalize()
    return ResourceDescriptor(
        group=group,
        version=version,
        kind=kind,
        plural=plural,
        namespace=NamespaceName(namespace) if namespace is not None else None,
        namespaced=namespaced,
    )
