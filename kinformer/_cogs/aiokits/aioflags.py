"""
Flags for stopping the informers from outside: in the same loop or in threads.

Non-asyncio primitives are generally not our worry, but they are supported
for convenience, e.g. when the informer runs in a thread of a sync application.
"""
import asyncio
import concurrent.futures
import threading
from typing import Any, Optional, Union

from kinformer._cogs.aiokits import aiotasks

Flag = Union[aiotasks.Future, asyncio.Event, concurrent.futures.Future, threading.Event]

THREADING_POLL_INTERVAL = 0.1


async def wait_flag(
        flag: Optional[Flag],
) -> Any:
    """
    Wait for a flag to be raised; wait forever if there is no flag.
    """
    if flag is None:
        await asyncio.Event().wait()
    elif isinstance(flag, asyncio.Future):
        return await asyncio.shield(flag)
    elif isinstance(flag, asyncio.Event):
        await flag.wait()
        return None
    elif isinstance(flag, concurrent.futures.Future):
        return await asyncio.shield(asyncio.wrap_future(flag))
    elif isinstance(flag, threading.Event):
        # Polled: a thread blocked in flag.wait() would block the loop's shutdown forever.
        while not flag.is_set():
            await asyncio.sleep(THREADING_POLL_INTERVAL)
        return None
    else:
        raise TypeError(f"Unsupported type of a flag: {flag!r}")
