"""
The main Kinformer module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the library's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from kinformer import (
    testing,  # as a separate name on the public namespace
)
from kinformer._cogs.configs.configuration import (
    InformerSettings,
    NetworkingSettings,
    WatchingSettings,
    BackoffSettings,
    QueueingSettings,
    DispatchingSettings,
    OverflowPolicy,
)
from kinformer._cogs.clients.changes import (
    ChangeStreamClient,
    APIClient,
)
from kinformer._cogs.clients.errors import (
    APIError,
    AuthFault,
    NotFoundFault,
    StaleResourceVersionFault,
    TransportFault,
    DecodeFault,
    HandlerFault,
    is_fatal,
)
from kinformer._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kinformer._cogs.structs.references import (
    ResourceDescriptor,
    parse_descriptor,
)
from kinformer._cogs.structs.resources import (
    ObjectMeta,
    TypedResource,
)
from kinformer._cogs.structs.events import (
    EventType,
    LifecycleEvent,
    Added,
    Modified,
    Deleted,
    Error,
)
from kinformer._core.actions.loggers import (
    configure,
    LogFormat,
    ResourceLogger,
)
from kinformer._core.intents.piggybacking import (
    login,
    login_with_kubeconfig,
    login_with_service_account,
)
from kinformer._core.reactor.decoding import (
    Decoder,
    SpecParser,
    parse_mapping,
    model_parser,
)
from kinformer._core.reactor.queueing import (
    EventQueue,
    QueueClosed,
)
from kinformer._core.reactor.informing import (
    ConnectionStatus,
    InformerState,
    Informer,
)
from kinformer._core.reactor.dispatching import (
    DispatchStats,
    Dispatcher,
)
from kinformer._core.reactor.running import (
    operate,
    run,
)

__all__ = [
    'testing',
    'InformerSettings', 'NetworkingSettings', 'WatchingSettings', 'BackoffSettings',
    'QueueingSettings', 'DispatchingSettings', 'OverflowPolicy',
    'ChangeStreamClient', 'APIClient',
    'APIError', 'AuthFault', 'NotFoundFault', 'StaleResourceVersionFault',
    'TransportFault', 'DecodeFault', 'HandlerFault', 'is_fatal',
    'LoginError', 'ConnectionInfo',
    'login', 'login_with_kubeconfig', 'login_with_service_account',
    'ResourceDescriptor', 'parse_descriptor',
    'ObjectMeta', 'TypedResource',
    'EventType', 'LifecycleEvent', 'Added', 'Modified', 'Deleted', 'Error',
    'configure', 'LogFormat', 'ResourceLogger',
    'Decoder', 'SpecParser', 'parse_mapping', 'model_parser',
    'EventQueue', 'QueueClosed',
    'ConnectionStatus', 'InformerState', 'Informer',
    'DispatchStats', 'Dispatcher',
    'operate', 'run',
]
