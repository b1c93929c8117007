import asyncio
import dataclasses
import functools
import logging
import sys
from collections.abc import Callable
from typing import Any

import click

from kinformer._cogs.clients import resources
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import versions
from kinformer._cogs.structs import credentials, references
from kinformer._core.actions import loggers
from kinformer._core.engines import sequencing

logger = logging.getLogger(__name__)


@dataclasses.dataclass()
class CLIControls:
    """ Controls, which are impossible to pass via CLI (e.g. from tests). """
    client: resources.ResourceClient | None = None
    settings: configuration.InformerSettings | None = None
    stop_flag: asyncio.Event | None = None


class LogFormatParamType(click.Choice):

    def __init__(self) -> None:
        super().__init__(choices=[v.name.lower() for v in loggers.LogFormat])

    def convert(self, value: Any, param: Any, ctx: Any) -> loggers.LogFormat:
        if isinstance(value, loggers.LogFormat):
            return value
        name: str = super().convert(value, param, ctx)
        return loggers.LogFormat[name.upper()]


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
                log_prefix: bool | None = False,
                log_refkey: str | None = None,
                *args: Any, **kwargs: Any) -> Any:
        loggers.configure(debug=debug, verbose=verbose, quiet=quiet,
                          log_format=log_format, log_refkey=log_refkey, log_prefix=log_prefix)
        return fn(*args, **kwargs)

    return wrapper


def make_settings(
        controls: "CLIControls",
        *,
        request_timeout: float | None,
        callback_timeout: float | None,
) -> configuration.InformerSettings:
    settings = controls.settings if controls.settings is not None else configuration.InformerSettings()
    if request_timeout is not None:
        settings.networking.request_timeout = request_timeout
    if callback_timeout is not None:
        settings.dispatching.callback_timeout = callback_timeout
    return settings


@click.version_option(prog_name='kinformer', version=versions.version or 'unknown')
@click.group(name='kinformer', context_settings=dict(
    auto_envvar_prefix='KINFORMER',
))
def main() -> None:
    pass


@main.command()
@logging_options
@click.option('--kubeconfig', type=click.Path(dir_okay=False))
@click.option('-n', '--namespace', type=str, default=sequencing.DEFAULT_NAMESPACE, show_default=True)
@click.option('-l', '--label', type=str, default=sequencing.DEFAULT_LABEL, show_default=True)
@click.option('--request-timeout', type=float)
@click.option('--callback-timeout', type=float)
@click.option('--settle-timeout', type=float, default=10.0, show_default=True)
@click.make_pass_decorator(CLIControls, ensure=True)
def run(
        __controls: CLIControls,
        kubeconfig: str | None,
        namespace: str,
        label: str,
        request_timeout: float | None,
        callback_timeout: float | None,
        settle_timeout: float,
) -> None:
    """ Run the demo sequence while watching the pods with an informer. """
    settings = make_settings(__controls,
                             request_timeout=request_timeout,
                             callback_timeout=callback_timeout)
    try:
        asyncio.run(sequencing.execute(
            client=__controls.client,
            kubeconfig=kubeconfig,
            settings=settings,
            namespace=namespace,
            label=label,
            settle_timeout=settle_timeout,
        ))
    except (sequencing.SequenceError, credentials.LoginError) as e:
        logger.critical(f"The demo has failed: {e}")
        sys.exit(1)


@main.command()
@logging_options
@click.option('--kubeconfig', type=click.Path(dir_okay=False))
@click.option('-n', '--namespace', type=str, default=None)
@click.option('--request-timeout', type=float)
@click.option('--callback-timeout', type=float)
@click.make_pass_decorator(CLIControls, ensure=True)
def watch(
        __controls: CLIControls,
        kubeconfig: str | None,
        namespace: str | None,
        request_timeout: float | None,
        callback_timeout: float | None,
) -> None:
    """ Log the changes of the pods until interrupted (cluster-wide by default). """
    settings = make_settings(__controls,
                             request_timeout=request_timeout,
                             callback_timeout=callback_timeout)
    try:
        asyncio.run(sequencing.watch(
            client=__controls.client,
            kubeconfig=kubeconfig,
            settings=settings,
            namespace=references.NamespaceName(namespace) if namespace else None,
            stop_flag=__controls.stop_flag,
        ))
    except credentials.LoginError as e:
        logger.critical(f"The watching has failed: {e}")
        sys.exit(1)
