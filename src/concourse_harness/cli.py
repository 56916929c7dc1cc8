"""Command-line interface for concourse-harness.

Installs, drives and removes managed servers from the shell, and runs
cross-version test classes.
"""

from __future__ import annotations

import contextlib
import functools
import importlib
import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import click

from concourse_harness import __version__
from concourse_harness.config import HarnessConfig, load_config
from concourse_harness.crossversion import run_cross_version
from concourse_harness.downloader import download as fetch_installer
from concourse_harness.errors import HarnessError
from concourse_harness.formatting import (
    format_duration,
    format_section_header,
    format_status_icon,
    format_table,
)
from concourse_harness.installer import APPLICATION_DIR
from concourse_harness.logging import setup_logging
from concourse_harness.ports import allocate_ports
from concourse_harness.server import ManagedServer, manage_new_server


def _common_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Add ``--config``, ``-v/--verbose``, ``-q/--quiet`` and ``--log-file``."""

    @click.option(
        "--config",
        "config_path",
        type=click.Path(exists=True, dir_okay=False, path_type=Path),
        default=None,
        help="Config file to use instead of the user and project files.",
    )
    @click.option("-v", "--verbose", is_flag=True, help="Show detailed output.")
    @click.option("-q", "--quiet", is_flag=True, help="Only show errors.")
    @click.option("--log-file", type=click.Path(path_type=Path), default=None)
    @functools.wraps(func)
    def wrapper(
        *args: Any,
        config_path: Path | None,
        verbose: bool,
        quiet: bool,
        log_file: Path | None,
        **kwargs: Any,
    ) -> Any:
        setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)
        try:
            config = load_config(config_path)
        except (OSError, ValueError) as exc:
            raise click.ClickException(f"Invalid configuration: {exc}") from exc
        try:
            return func(*args, config=config, **kwargs)
        except HarnessError as exc:
            raise click.ClickException(str(exc)) from exc

    return wrapper


@contextlib.contextmanager
def _attached(root: Path, config: HarnessConfig) -> Iterator[ManagedServer]:
    # Accept either the workspace or the application directory inside it.
    if (root / APPLICATION_DIR).is_dir():
        root = root / APPLICATION_DIR
    server = ManagedServer.attach(root, config=config)
    try:
        yield server
    finally:
        server.detach()


_root_argument = click.argument(
    "root", type=click.Path(exists=True, file_okay=False, path_type=Path)
)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """concourse-harness: ephemeral Concourse Server instances for integration tests."""


@main.command()
@click.option(
    "--installer",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Local installer payload.",
)
@click.option("--server-version", "server_version", default=None, help="Release to download.")
@click.option(
    "--dir",
    "directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Workspace to install into (default: a fresh directory under install_home).",
)
@_common_options
def install(
    installer: Path | None,
    server_version: str | None,
    directory: Path | None,
    config: HarnessConfig,
) -> None:
    """Install a server and print where it lives."""
    if (installer is None) == (server_version is None):
        raise click.UsageError("Specify exactly one of --installer or --server-version.")
    server = manage_new_server(
        installer, version=server_version, directory=directory, config=config
    )
    server.detach()
    click.echo(f"Installed:     {server.install_directory}")
    click.echo(f"Client port:   {server.client_port}")
    click.echo(f"Shutdown port: {server.installation.shutdown_port}")


@main.command()
@_root_argument
@_common_options
def start(root: Path, config: HarnessConfig) -> None:
    """Start the server installed at ROOT."""
    with _attached(root, config) as server:
        server.start()
    click.echo(f"Started server at {server.install_directory} (port {server.client_port})")


@main.command()
@_root_argument
@_common_options
def stop(root: Path, config: HarnessConfig) -> None:
    """Stop the server installed at ROOT."""
    with _attached(root, config) as server:
        server.stop()
    click.echo(f"Stopped server at {server.install_directory}")


@main.command()
@_root_argument
@_common_options
def status(root: Path, config: HarnessConfig) -> None:
    """Report whether the server at ROOT is running (exit code 1 if not)."""
    with _attached(root, config) as server:
        running = server.is_running()
    click.echo(f"{server.install_directory}: {'running' if running else 'not running'}")
    if not running:
        sys.exit(1)


@main.command()
@_root_argument
@_common_options
def destroy(root: Path, config: HarnessConfig) -> None:
    """Stop the server at ROOT if needed and delete its workspace."""
    with _attached(root, config) as server:
        workspace = server.installation.workspace
        server.destroy()
    click.echo(f"Destroyed {workspace}")


@main.command()
@click.argument("version")
@click.option(
    "--dest",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Cache directory (default: installer_cache from config).",
)
@_common_options
def download(version: str, dest: Path | None, config: HarnessConfig) -> None:
    """Download the installer for VERSION (cached)."""
    click.echo(str(fetch_installer(version, dest, config=config)))


@main.command()
@click.option("--count", type=click.IntRange(min=1), default=1, show_default=True)
@_common_options
def port(count: int, config: HarnessConfig) -> None:
    """Print COUNT distinct free ports from the ephemeral range."""
    for p in allocate_ports(count):
        click.echo(str(p))


def _load_target(target: str) -> type:
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter("expected module:Class", param_hint="TARGET")
    if "" not in sys.path and str(Path.cwd()) not in sys.path:
        sys.path.insert(0, str(Path.cwd()))
    try:
        obj: Any = importlib.import_module(module_name)
        for part in attr.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as exc:
        raise click.BadParameter(f"cannot load {target}: {exc}", param_hint="TARGET") from exc
    if not isinstance(obj, type):
        raise click.BadParameter(f"{target} is not a class", param_hint="TARGET")
    return obj


@main.command()
@click.argument("target")
@click.option(
    "-V",
    "--server-version",
    "server_versions",
    multiple=True,
    help="Run against this version instead of the declared ones (repeatable).",
)
@_common_options
def run(target: str, server_versions: tuple[str, ...], config: HarnessConfig) -> None:
    """Run the cross-version test class TARGET (``module:Class``)."""
    test_class = _load_target(target)
    if getattr(test_class, "harness_config", None) is None:
        # Bind the CLI configuration without mutating the loaded class.
        test_class = type(
            test_class.__name__,
            (test_class,),
            {
                "harness_config": config,
                "__module__": test_class.__module__,
                "__qualname__": test_class.__qualname__,
            },
        )

    result = run_cross_version(
        test_class,  # type: ignore[arg-type]
        stream=sys.stdout,
        versions=server_versions or None,
    )

    click.echo("")
    click.echo(format_section_header("Results"))
    rows = [[o.label, format_status_icon(o.status), o.message] for o in result.outcomes]
    click.echo(format_table(["Test", "Status", "Detail"], rows))
    click.echo("")
    click.echo(
        f"{len(result.outcomes)} test(s) across {len(result.versions)} version(s) "
        f"in {format_duration(result.duration)}"
    )
    if not result.was_successful:
        sys.exit(1)
