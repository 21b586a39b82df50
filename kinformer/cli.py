import dataclasses
import functools
from typing import Any, Callable, Optional

import click

from kinformer._cogs.aiokits import aioflags
from kinformer._cogs.clients import changes, errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import versions
from kinformer._cogs.structs import credentials, events, references
from kinformer._core.actions import loggers
from kinformer._core.intents import piggybacking
from kinformer._core.reactor import running


@dataclasses.dataclass()
class CLIControls:
    """ The controls for embedded & test runs, which are impossible to pass via CLI. """
    stop_flag: Optional[aioflags.Flag] = None
    client: Optional[changes.ChangeStreamClient] = None
    settings: Optional[configuration.InformerSettings] = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


class OverflowParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.value for v in configuration.OverflowPolicy])

    def convert(self, value: Any, param: Any, ctx: Any) -> configuration.OverflowPolicy:
        if isinstance(value, configuration.OverflowPolicy):
            return value
        name: str = super().convert(value, param, ctx)
        return configuration.OverflowPolicy(name)


def logging_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """ A decorator to configure logging in all commands the same way."""
    @click.option('-v', '--verbose', is_flag=True)
    @click.option('-d', '--debug', is_flag=True)
    @click.option('-q', '--quiet', is_flag=True)
    @click.option('--log-format', type=LogFormatParamType(), default='full')
    @click.option('--log-refkey', type=str)
    @click.option('--log-prefix/--no-log-prefix', default=None)
    @functools.wraps(fn)  # to preserve other opts/args
    def wrapper(verbose: bool, quiet: bool, debug: bool,
                log_format: loggers.LogFormat = loggers.LogFormat.FULL,
                log_prefix: Optional[bool] = False,
                log_refkey: Optional[str] = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


@click.version_option(version=versions.version or 'unknown', prog_name='kinformer')
@click.group(name='kinformer', context_settings=dict(
    auto_envvar_prefix='KINFORMER',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('-n', '--namespace', type=str, default=None)
@click.option('-A', '--all-namespaces', 'clusterwide', is_flag=True)
@click.option('--cluster-scoped', is_flag=True, help="The resource is not namespaced.")
@click.option('--kind', type=str, default=None, help="The kind, if not guessable from the plural.")
@click.option('--kubeconfig', type=click.Path(dir_okay=False), default=None)
@click.option('--context', type=str, default=None)
@click.option('--server', type=str, default=None)
@click.option('--token', type=str, default=None)
@click.option('--insecure', is_flag=True, default=None)
@click.option('--capacity', type=click.IntRange(min=1), default=None)
@click.option('--overflow', type=OverflowParamType(), default=None)
@click.option('--server-timeout', type=float, default=None)
@click.argument('resource')
@click.make_pass_decorator(CLIControls, ensure=True)
def watch(
        __controls: CLIControls,
        resource: str,
        namespace: Optional[str],
        clusterwide: bool,
        cluster_scoped: bool,
        kind: Optional[str],
        kubeconfig: Optional[str],
        context: Optional[str],
        server: Optional[str],
        token: Optional[str],
        insecure: Optional[bool],
        capacity: Optional[int],
        overflow: Optional[configuration.OverflowPolicy],
        server_timeout: Optional[float],
) -> None:
    """ Watch a resource and print its objects' lifecycle events. """
    if namespace and clusterwide:
        raise click.UsageError("Either --namespace or --all-namespaces can be used, not both.")
    if namespace and cluster_scoped:
        raise click.UsageError("Cluster-scoped resources cannot be watched in a namespace.")

    settings = __controls.settings if __controls.settings is not None else configuration.InformerSettings()
    if capacity is not None:
        settings.queueing.capacity = capacity
    if overflow is not None:
        settings.queueing.overflow = overflow
    if server_timeout is not None:
        settings.watching.server_timeout = server_timeout

    connection: Optional[credentials.ConnectionInfo] = None
    if __controls.client is None:
        connection = _login(kubeconfig=kubeconfig, context=context,
                            server=server, token=token, insecure=insecure or None)
        if namespace is None and not clusterwide and not cluster_scoped:
            namespace = connection.default_namespace

    try:
        descriptor = references.parse_descriptor(
            resource,
            kind=kind,
            namespace=namespace,
            namespaced=not cluster_scoped,
        )
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint='RESOURCE') from e

    try:
        stats = running.run(
            descriptor,
            _print_event,
            client=__controls.client,
            connection=connection,
            settings=settings,
            stop_flag=__controls.stop_flag,
        )
    except errors.APIError as e:
        raise click.ClickException(f"Cannot watch {descriptor!r}: {e!r}") from e
    click.echo(f"Handled {stats.handled} events, {stats.failed} failed.", err=True)


def _print_event(event: "events.LifecycleEvent[Any]") -> None:
    click.echo(events.describe(event))


def _login(
        *,
        kubeconfig: Optional[str],
        context: Optional[str],
        server: Optional[str],
        token: Optional[str],
        insecure: Optional[bool],
) -> credentials.ConnectionInfo:
    if server is not None:
        return credentials.ConnectionInfo(server=server, token=token, insecure=insecure)
    try:
        info = piggybacking.login(kubeconfig=kubeconfig, context=context)
    except credentials.LoginError as e:
        raise click.ClickException(str(e)) from e
    if token is not None or insecure is not None:
        info = dataclasses.replace(info,
                                   token=token if token is not None else info.token,
                                   insecure=insecure if insecure is not None else info.insecure)
    return info
