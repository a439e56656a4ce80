"""Command-line interface for ktf."""

import functools
import os
from collections.abc import Awaitable, Callable
from datetime import timedelta
from pathlib import Path

import click
import semver
from safir.asyncio import run_with_asyncio
from safir.click import display_help
from safir.datetime import parse_timedelta
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import get_logger

from .addons.certmanager import CertManagerAddonBuilder
from .clusters.kind import KindCluster
from .config import Config
from .constants import (
    ALERT_HOOK_ENV_VAR,
    CLI_TIMEOUT,
    CONFIG_FILE,
    CONFIG_FILE_ENV_VAR,
    ROOT_LOGGER,
)
from .services.environment import EnvironmentBuilder
from .timeout import Timeout

__all__ = ["main"]


def _common[**P, R](
    func: Callable[P, Awaitable[R]],
) -> Callable[P, R]:
    """Add common Click options and error reporting to a command."""

    @click.option(
        "--debug",
        "-d",
        is_flag=True,
        help="Enable debug logging",
    )
    @click.option(
        "--config-file",
        "-c",
        help="Configuration file",
        type=Path,
        default=CONFIG_FILE,
    )
    @click.option(
        "--timeout",
        "-t",
        type=parse_timedelta,
        help="Timeout for the whole command, such as 15m",
        default=None,
    )
    @run_with_asyncio
    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        logger = get_logger(ROOT_LOGGER)
        if alert_hook := os.environ.get(ALERT_HOOK_ENV_VAR, None):
            slack_client = SlackWebhookClient(
                alert_hook,
                "ktf",
                logger=logger,
            )
        else:
            slack_client = None

        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            if slack_client:
                await slack_client.post_exception(exc)
            raise

    return wrapper


def _load_config(config_file: Path, *, debug: bool) -> Config:
    """Load the configuration, overriding it from command-line options."""
    if env_config_path := os.getenv(CONFIG_FILE_ENV_VAR):
        config_file = Path(env_config_path)
    if config_file.exists():
        config = Config.from_file(config_file)
    else:
        config = Config()
        config.configure_logging()
    if debug:
        config.debug = debug
        config.configure_logging()
    return config


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s")
def main() -> None:
    """Kubernetes testing framework command-line interface."""


@main.command()
@click.argument("topic", default=None, required=False, nargs=1)
@click.argument("subtopic", default=None, required=False, nargs=1)
@click.pass_context
def help(ctx: click.Context, topic: str | None, subtopic: str | None) -> None:
    """Show help for any command."""
    display_help(main, ctx, topic, subtopic)


@main.group()
def environments() -> None:
    """Create and delete testing environments."""


@environments.command
@click.option("--name", "-n", help="Name of the environment", default=None)
@click.option(
    "--addon",
    "addons",
    type=click.Choice(["cert-manager"]),
    multiple=True,
    help="Addon to deploy, may be given multiple times",
)
@click.option(
    "--kubernetes-version",
    help="Kubernetes version of the cluster nodes",
    default=None,
)
@_common
async def create(
    *,
    name: str | None,
    addons: tuple[str, ...],
    kubernetes_version: str | None,
    config_file: Path,
    debug: bool,
    timeout: timedelta | None,
) -> None:
    """Create a new testing environment on a kind cluster."""
    config = _load_config(config_file, debug=debug)
    logger = get_logger(ROOT_LOGGER)
    builder = EnvironmentBuilder(config=config, logger=logger)
    if name:
        builder.with_name(name)
    if kubernetes_version:
        try:
            version = semver.Version.parse(kubernetes_version.lstrip("v"))
        except ValueError as e:
            msg = f"Invalid Kubernetes version {kubernetes_version}"
            raise click.BadParameter(msg) from e
        builder.with_kubernetes_version(version)
    for addon in addons:
        if addon == "cert-manager":
            builder.with_addons(CertManagerAddonBuilder().build())

    command_timeout = Timeout("Creating environment", timeout or CLI_TIMEOUT)
    environment = await builder.build(command_timeout)
    await environment.wait_for_ready(
        command_timeout.child(f"Waiting for environment {environment.name}")
    )
    click.echo(f"Environment {environment.name} is ready")


@environments.command
@click.option("--name", "-n", help="Name of the environment", required=True)
@_common
async def delete(
    *,
    name: str,
    config_file: Path,
    debug: bool,
    timeout: timedelta | None,
) -> None:
    """Delete a testing environment and its kind cluster."""
    config = _load_config(config_file, debug=debug)
    config.keep_cluster = False
    operation = f"Deleting environment {name}"
    command_timeout = Timeout(operation, timeout or CLI_TIMEOUT)
    cluster = await KindCluster.from_existing(
        name, command_timeout, config=config
    )
    await cluster.cleanup(command_timeout)
    click.echo(f"Environment {name} deleted")
