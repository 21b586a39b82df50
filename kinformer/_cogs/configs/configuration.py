"""
All configuration flags, options, settings to fine-tune an informer.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).

The settings object is explicitly passed to the API client, the informer,
and the dispatcher; there is no global or process-wide configuration.
"""
import dataclasses
import enum
import random
from typing import Iterator, Optional


class OverflowPolicy(enum.Enum):
    """ What to do when the event queue is full and a new event arrives. """
    BLOCK = 'block'              # the producer waits until there is room.
    DROP_OLDEST = 'drop-oldest'  # the oldest queued event is discarded.


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: Optional[float] = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the regular (non-streaming) API requests, i.e. for listing.
    """

    connect_timeout: Optional[float] = None
    """
    A timeout for the connection establishment in all API requests.
    If not set, the request timeout is used.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: Optional[float] = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: Optional[float] = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: Optional[float] = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_delay: float = 0.1
    """
    How long should a pause be between the watch requests when the server
    closes the stream normally (to prevent API flooding).
    """

    allow_bookmarks: bool = False
    """
    Should the informer request the ``BOOKMARK`` records from the server?
    They are not delivered as events, but they advance the resource version,
    so that the resumed watch-streams do not start from a too old version.
    """


@dataclasses.dataclass
class BackoffSettings:
    """
    Exponential backoff for the transient faults (e.g. disconnects).

    There is no limit on the number of retries: an informer never gives up
    on observing its resource until it is explicitly stopped.
    """

    initial: float = 0.5
    """
    The first delay after a fault, in seconds.
    """

    factor: float = 2.0
    """
    The multiplier for every next delay in a series of consecutive faults.
    """

    maximum: float = 30.0
    """
    The cap of the delays; the delays never grow beyond it.
    """

    jitter: float = 0.0
    """
    A random fraction of the delay added or subtracted to each delay
    (e.g., 0.1 for ±10%), to prevent the informers of many processes
    from reconnecting at the same moment. Disabled by default.
    """

    def iter_delays(self) -> Iterator[float]:
        """
        Iterate over the delays infinitely: growing exponentially, then capped.

        Every new series of faults starts with a new iterator (see the informer).
        """
        delay = min(self.maximum, self.initial)
        while True:
            noise = delay * random.uniform(-self.jitter, self.jitter) if self.jitter else 0.0
            yield max(0.0, min(self.maximum, delay + noise))
            delay = min(self.maximum, delay * self.factor)


@dataclasses.dataclass
class QueueingSettings:

    capacity: int = 1000
    """
    How many events can be queued before the overflow policy is applied.
    The queue is always bounded; there is no "unlimited" option.
    """

    overflow: OverflowPolicy = OverflowPolicy.BLOCK
    """
    What to do when the queue is full: block the watch-stream (the default),
    or drop the oldest queued events (and log it).
    """


@dataclasses.dataclass
class DispatchingSettings:

    idle_timeout: float = 1.0
    """
    How long the dispatch loop waits for new events before re-checking
    if the informer is still alive. It does not delay the events' delivery.
    """


@dataclasses.dataclass
class InformerSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    backoff: BackoffSettings = dataclasses.field(default_factory=BackoffSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    dispatching: DispatchingSettings = dataclasses.field(default_factory=DispatchingSettings)
