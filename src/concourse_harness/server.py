"""Lifecycle management for one installed Concourse Server.

A :class:`ManagedServer` wraps exactly one :class:`Installation` and drives
it through the control scripts the installer ships in ``<root>/bin``. All
operations block until the script exits. The handle is a context manager:
leaving the ``with`` block destroys the installation on every exit path,
including test failures.
"""

from __future__ import annotations

import atexit
import contextlib
import enum
import logging
import shutil
import subprocess
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any

from concourse_harness.config import HarnessConfig, get_config
from concourse_harness.downloader import download, is_installer_path
from concourse_harness.errors import HarnessError, LifecycleError, ServerStateError
from concourse_harness.installer import Installation, install
from concourse_harness.logging import get_logger, log_lines

if TYPE_CHECKING:
    from concourse_harness.client.base import ConcourseClient

log = get_logger("server")

# First line of `concourse status` contains this while the server is up.
RUNNING_TOKEN = "is running"


class ServerState(enum.Enum):
    INSTALLED = "installed"
    RUNNING = "running"
    STOPPED = "stopped"
    DESTROYED = "destroyed"
    DETACHED = "detached"


# Installation roots that currently have a live handle in this process.
_bound_roots: set[Path] = set()
_bound_lock = threading.Lock()

_last_stamp = 0
_stamp_lock = threading.Lock()


def default_install_directory(config: HarnessConfig | None = None) -> Path:
    """Return ``<install_home>/<epoch-millis>``, unique within this process."""
    global _last_stamp
    if config is None:
        config = get_config()
    with _stamp_lock:
        stamp = max(int(time.time() * 1000), _last_stamp + 1)
        _last_stamp = stamp
    return config.install_home / str(stamp)


def resolve_installer(identifier: str | Path, *, config: HarnessConfig | None = None) -> Path:
    """Map a version identifier (version string or installer path) to an installer."""
    if isinstance(identifier, Path) or is_installer_path(identifier):
        return Path(identifier).expanduser()
    return download(identifier, config=config)


class ManagedServer:
    """Handle for one installed server process."""

    def __init__(
        self,
        installation: Installation,
        *,
        config: HarnessConfig | None = None,
        cleanup_at_exit: bool = False,
    ) -> None:
        root = installation.root.resolve()
        with _bound_lock:
            if root in _bound_roots:
                raise ServerStateError(f"Installation at {root} is already managed by a live handle")
            _bound_roots.add(root)
        self.installation = installation
        self.config = config or get_config()
        self._root = root
        self._state = ServerState.INSTALLED
        self._clients: list[ConcourseClient] = []
        self._exit_hook = None
        if cleanup_at_exit:
            # Best effort only: not run if the controlling process is killed hard.
            self._exit_hook = self.destroy
            atexit.register(self._exit_hook)

    @classmethod
    def attach(
        cls,
        root: Path | str,
        *,
        version: str | None = None,
        config: HarnessConfig | None = None,
    ) -> ManagedServer:
        """Take over an existing installation, e.g. one created by an earlier CLI call."""
        server = cls(Installation.attach(Path(root), version=version), config=config)
        try:
            running = server.is_running()
        except HarnessError:
            server._release(ServerState.DETACHED)
            raise
        if running:
            server._state = ServerState.RUNNING
        return server

    # -- properties --------------------------------------------------------

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def install_directory(self) -> Path:
        return self.installation.root

    @property
    def client_port(self) -> int:
        return self.installation.client_port

    @property
    def version(self) -> str | None:
        return self.installation.version

    def __repr__(self) -> str:
        return (
            f"ManagedServer(root={str(self.installation.root)!r}, "
            f"version={self.version!r}, state={self._state.value})"
        )

    # -- lifecycle ---------------------------------------------------------

    def _require_live(self, operation: str) -> None:
        if self._state in (ServerState.DESTROYED, ServerState.DETACHED):
            raise ServerStateError(
                f"Cannot {operation}: server at {self.installation.root} has been {self._state.value}"
            )

    def _run(self, script: str, *args: str) -> subprocess.CompletedProcess[str]:
        cmd = ["sh", script, *args]
        log.debug("Running: %s (in %s)", " ".join(cmd), self.installation.bin_dir)
        try:
            return subprocess.run(
                cmd,
                cwd=str(self.installation.bin_dir),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise LifecycleError(
                f"Could not run {' '.join(cmd)} for server at {self.installation.root}: {exc}"
            ) from exc

    def execute(self, script: str, *args: str) -> list[str]:
        """Run ``sh <script> [args]`` from the bin directory and return its output lines.

        Raises:
            LifecycleError: If the script cannot be launched.
        """
        proc = self._run(script, *args)
        return proc.stdout.splitlines() if proc.stdout else []

    def _run_action(self, action: str) -> None:
        proc = self._run(action)
        log_lines(log, logging.INFO, (proc.stdout or "").splitlines())
        if proc.returncode != 0:
            log.warning(
                "'%s' exited %d for server at %s", action, proc.returncode, self.installation.root
            )

    def start(self) -> None:
        self._require_live("start")
        self._run_action("start")
        self._state = ServerState.RUNNING

    def stop(self) -> None:
        self._require_live("stop")
        self._run_action("stop")
        self._state = ServerState.STOPPED

    def is_running(self) -> bool:
        """True iff the first line of ``concourse status`` contains ``"is running"``."""
        self._require_live("query status")
        lines = self.execute("concourse", "status")
        return bool(lines) and RUNNING_TOKEN in lines[0]

    def destroy(self) -> None:
        """Stop the server if needed and delete its whole workspace.

        Safe to call repeatedly, and a no-op when the installation was
        already removed by someone else.
        """
        if self._state in (ServerState.DESTROYED, ServerState.DETACHED):
            return
        # A failure below leaves the handle bound and in its current state.
        self._close_clients()
        if self.installation.exists():
            if self.is_running():
                self.stop()
            workspace = self.installation.workspace
            try:
                shutil.rmtree(workspace)
            except OSError as exc:
                raise LifecycleError(f"Could not delete {workspace}: {exc}") from exc
            log.info("Deleted server install directory at %s", self.installation.root)
        self._release(ServerState.DESTROYED)

    def detach(self) -> None:
        """Give up this handle and leave the installation as it is.

        The server keeps running (or not) and can be attached again later.
        """
        if self._state in (ServerState.DESTROYED, ServerState.DETACHED):
            return
        try:
            self._close_clients()
        finally:
            self._release(ServerState.DETACHED)

    def _close_clients(self) -> None:
        for client in list(self._clients):
            client.close()
        self._clients.clear()

    def _release(self, state: ServerState) -> None:
        self._state = state
        with _bound_lock:
            _bound_roots.discard(self._root)
        if self._exit_hook is not None:
            atexit.unregister(self._exit_hook)
            self._exit_hook = None

    # -- clients -----------------------------------------------------------

    def connect(self, username: str | None = None, password: str | None = None) -> ConcourseClient:
        """Connect a client matching this server's build (default credentials from config)."""
        from concourse_harness.client.factory import connect

        self._require_live("connect")
        client = connect(
            self,
            username if username is not None else self.config.username,
            password if password is not None else self.config.password,
        )
        self._clients.append(client)
        return client

    def forget_client(self, client: ConcourseClient) -> None:
        """Drop *client* from the set closed on destroy (called when it closes itself)."""
        with contextlib.suppress(ValueError):
            self._clients.remove(client)

    # -- context manager ---------------------------------------------------

    def __enter__(self) -> ManagedServer:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.destroy()


def manage_new_server(
    installer: Path | str | None = None,
    *,
    version: str | None = None,
    directory: Path | str | None = None,
    config: HarnessConfig | None = None,
    cleanup_at_exit: bool = False,
) -> ManagedServer:
    """Install a fresh server and return a handle for it.

    Exactly one of *installer* (a local payload) and *version* (a version
    string or installer path) must be given.
    """
    if (installer is None) == (version is None):
        raise ValueError("Specify exactly one of installer or version")
    if config is None:
        config = get_config()

    if installer is not None:
        source = Path(installer).expanduser()
        label = None
    else:
        assert version is not None
        source = resolve_installer(version, config=config)
        label = None if is_installer_path(version) else version

    target = Path(directory) if directory is not None else default_install_directory(config)
    installation = install(source, target, version=label, config=config)
    return ManagedServer(installation, config=config, cleanup_at_exit=cleanup_at_exit)


@contextlib.contextmanager
def managed_server(
    installer: Path | str | None = None,
    *,
    version: str | None = None,
    directory: Path | str | None = None,
    config: HarnessConfig | None = None,
    start: bool = True,
) -> Iterator[ManagedServer]:
    """Provision a server for the duration of a ``with`` block."""
    server = manage_new_server(installer, version=version, directory=directory, config=config)
    with server:
        if start:
            server.start()
        yield server
