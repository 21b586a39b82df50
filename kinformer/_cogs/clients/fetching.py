from typing import Collection, List, Optional, Tuple

from kinformer._cogs.aiokits import aiotasks
from kinformer._cogs.clients import api, auth
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, references


async def list_objs(
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        descriptor: references.ResourceDescriptor,
        stopper: Optional[aiotasks.Future] = None,
        logger: typedefs.Logger,
) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
    """
    List the objects of specific resource type.

    The cluster-scoped call is used in two cases:

    * The resource itself is cluster-scoped, and namespacing makes not sense.
    * The informer serves all namespaces for the namespaced custom resource.

    Otherwise, the namespace-scoped call is used:

    * The resource is namespace-scoped AND the informer is namespace-restricted.

    The list's items have no ``kind`` & ``apiVersion`` (they are in the list
    itself, with the "List" suffix in the kind); they are filled in here.
    """
    rsp = await api.get(
        url=descriptor.get_url(),
        logger=logger,
        context=context,
        settings=settings,
        stopper=stopper,
    )

    items: List[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items') or []:
        if not isinstance(item, dict):
            items.append(item)  # malformed, but it is for the decoder to decide.
            continue
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
