"""
Advanced modes of sleeping: interruptible by an event or a future.
"""
import asyncio
import collections.abc
from typing import Collection, Optional, Union

from kinformer._cogs.aiokits import aiotasks

Wakeup = Union[asyncio.Event, aiotasks.Future]


async def sleep(
        delays: Union[None, float, Collection[Union[None, float]]],
        wakeup: Optional[Wakeup] = None,
) -> Optional[float]:
    """
    Measure the sleep time: either until the timeout, or until woken up.

    The wakeup can be an event (woken up when set) or a future (when done).

    If several delays are passed, the shortest one is slept; ``None`` means
    "no delay". Zero or negative delays are skipped: the sleep is instant.

    Returns the number of seconds left to sleep, or ``None`` if the sleep was
    not interrupted and reached its specified delay (an equivalent of ``0``).
    In theory, the result can be ``0`` if the sleep was interrupted precisely
    the last moment before timing out; this is unlikely to happen though.
    """
    passed_delays = delays if isinstance(delays, collections.abc.Collection) else [delays]
    actual_delays = [delay for delay in passed_delays if delay is not None]
    minimal_delay = min(actual_delays) if actual_delays else 0

    # Do not go for the real low-level system sleep if there is no need to sleep.
    if minimal_delay <= 0:
        return None

    awaitable = (
        wakeup.wait() if isinstance(wakeup, asyncio.Event) else
        asyncio.shield(wakeup) if wakeup is not None else
        asyncio.Event().wait()
    )

    loop = asyncio.get_running_loop()
    try:
        start_time = loop.time()
        await asyncio.wait_for(awaitable, timeout=minimal_delay)
    except asyncio.TimeoutError:
        return None  # interruptable sleep is over: uninterrupted.
    else:
        end_time = loop.time()
        duration = end_time - start_time
        return max(0, minimal_delay - duration)
