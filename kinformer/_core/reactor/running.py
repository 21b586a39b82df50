import asyncio
import logging
import signal
import threading
from typing import Optional

from kinformer._cogs.aiokits import aioflags, aiotasks
from kinformer._cogs.clients import changes
from kinformer._cogs.configs import configuration
from kinformer._cogs.structs import credentials, references, resources
from kinformer._core.intents import piggybacking
from kinformer._core.reactor import decoding, dispatching, informing

logger = logging.getLogger(__name__)


def run(
        descriptor: references.ResourceDescriptor,
        handler: dispatching.Handler,
        *,
        client: Optional[changes.ChangeStreamClient] = None,
        connection: Optional[credentials.ConnectionInfo] = None,
        settings: Optional[configuration.InformerSettings] = None,
        spec_parser: Optional[decoding.SpecParser[resources.SpecT]] = None,
        on_fault: Optional[dispatching.FaultCallback] = None,
        on_state_change: Optional[informing.StateChangeCallback] = None,
        stop_flag: Optional[aioflags.Flag] = None,
) -> dispatching.DispatchStats:
    """
    Run the informer & the dispatching synchronously, until stopped.

    This function should be used to run an informer in normal sync mode.
    SIGINT & SIGTERM stop it gracefully if it runs in the main thread.
    """
    return asyncio.run(operate(
        descriptor,
        handler,
        client=client,
        connection=connection,
        settings=settings,
        spec_parser=spec_parser,
        on_fault=on_fault,
        on_state_change=on_state_change,
        stop_flag=stop_flag,
    ))


async def operate(
        descriptor: references.ResourceDescriptor,
        handler: dispatching.Handler,
        *,
        client: Optional[changes.ChangeStreamClient] = None,
        connection: Optional[credentials.ConnectionInfo] = None,
        settings: Optional[configuration.InformerSettings] = None,
        spec_parser: Optional[decoding.SpecParser[resources.SpecT]] = None,
        on_fault: Optional[dispatching.FaultCallback] = None,
        on_state_change: Optional[informing.StateChangeCallback] = None,
        stop_flag: Optional[aioflags.Flag] = None,
) -> dispatching.DispatchStats:
    """
    Run the informer & the dispatching asynchronously, until stopped.

    This function should be used to run an informer in an asyncio event-loop
    if it is orchestrated explicitly and manually.

    If no client is passed, an API client is created from the connection info;
    if there is no connection info either, it is taken from the environment
    (the in-cluster service account or the kubeconfig files).
    The fatal faults of the informer are re-raised once all events are handled.
    """
    settings = settings if settings is not None else configuration.InformerSettings()
    own_client: Optional[changes.APIClient] = None
    if client is None:
        connection = connection if connection is not None else piggybacking.login()
        client = own_client = changes.APIClient(connection, settings=settings)

    informer: informing.Informer[resources.SpecT] = informing.Informer(
        client=client,
        descriptor=descriptor,
        spec_parser=spec_parser,
        settings=settings,
        on_state_change=on_state_change,
    )
    dispatcher = dispatching.Dispatcher(informer, handler, on_fault=on_fault, settings=settings)

    loop = asyncio.get_running_loop()
    signal_flag: aiotasks.Future = loop.create_future()
    signals_installed = _install_signal_handlers(loop, signal_flag)
    checker = aiotasks.create_background_task(
        _stop_flag_checker(informer=informer, signal_flag=signal_flag, stop_flag=stop_flag),
        name="stop-flag checker", logger=logger)

    try:
        informer.start()
        stats = await dispatcher.run()
        await informer.join()
    finally:
        informer.stop()
        checker.cancel()
        await aiotasks.wait([checker])
        await informer.wait_stopped()
        if signals_installed:
            loop.remove_signal_handler(signal.SIGINT)
            loop.remove_signal_handler(signal.SIGTERM)
        if own_client is not None:
            await own_client.close()
    return stats


def _install_signal_handlers(
        loop: asyncio.AbstractEventLoop,
        signal_flag: aiotasks.Future,
) -> bool:
    # On Ctrl+C or pod termination, stop the informer gracefully.
    if threading.current_thread() is not threading.main_thread():
        logger.warning("OS signals are ignored: running not in the main thread.")
        return False
    try:
        loop.add_signal_handler(signal.SIGINT, _set_signal, signal_flag, signal.SIGINT)
        loop.add_signal_handler(signal.SIGTERM, _set_signal, signal_flag, signal.SIGTERM)
    except NotImplementedError:
        logger.warning("OS signals are ignored: can't add signal handler in Windows.")
        return False
    return True


def _set_signal(signal_flag: aiotasks.Future, signum: signal.Signals) -> None:
    if not signal_flag.done():
        signal_flag.set_result(signum)


async def _stop_flag_checker(
        *,
        informer: informing.Informer[resources.SpecT],
        signal_flag: aiotasks.Future,
        stop_flag: Optional[aioflags.Flag],
) -> None:
    """
    A task for external stopping by a signal or by setting a stop-flag.
    Once either is raised, the informer is stopped, and so is the dispatching.
    """
    waiter = asyncio.create_task(aioflags.wait_flag(stop_flag), name="stop-flag waiter")
    try:
        done, _ = await asyncio.wait([signal_flag, waiter], return_when=asyncio.FIRST_COMPLETED)
        result = done.pop().result()
    finally:
        waiter.cancel()
        await aiotasks.wait([waiter])

    if isinstance(result, signal.Signals):
        logger.info(f"Signal {result.name} is received. The informer is stopping.")
    elif result is None:
        logger.info("Stop-flag is raised. The informer is stopping.")
    else:
        logger.info(f"Stop-flag is set to {result!r}. The informer is stopping.")
    informer.stop()
