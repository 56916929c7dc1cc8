"""Unpacking a Concourse Server installer into an isolated directory.

The installer payload is a self-extracting shell script. It lays down the
``concourse-server`` application directory almost immediately and then
prompts for an admin password to finish an optional system-wide setup. The
harness never answers that prompt: it lets the payload run for a short grace
period and then kills it, which leaves a complete, self-contained install.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path

from concourse_harness.config import HarnessConfig, get_config
from concourse_harness.errors import InstallationError
from concourse_harness.logging import get_logger, log_lines
from concourse_harness.ports import allocate_ports
from concourse_harness.prefs import ServerPreferences

log = get_logger("installer")

TARGET_BINARY_NAME = "concourse-server.bin"
APPLICATION_DIR = "concourse-server"
CONF_DIR = "conf"
BIN_DIR = "bin"
LIB_DIR = "lib"
DATA_DIR = "data"
PREFS_FILE = "concourse.prefs"


@dataclass
class Installation:
    """Filesystem state of one installed server.

    *root* is the application directory (``<workspace>/concourse-server``);
    the workspace that contains it is what gets deleted on destroy.
    """

    root: Path
    client_port: int
    shutdown_port: int
    source_binary: Path | None = None
    version: str | None = None

    @property
    def workspace(self) -> Path:
        return self.root.parent

    @property
    def conf_dir(self) -> Path:
        return self.root / CONF_DIR

    @property
    def prefs_file(self) -> Path:
        return self.conf_dir / PREFS_FILE

    @property
    def bin_dir(self) -> Path:
        return self.root / BIN_DIR

    @property
    def lib_dir(self) -> Path:
        return self.root / LIB_DIR

    @property
    def buffer_dir(self) -> Path:
        return self.root / DATA_DIR / "buffer"

    @property
    def database_dir(self) -> Path:
        return self.root / DATA_DIR / "database"

    def exists(self) -> bool:
        return self.root.exists()

    @classmethod
    def attach(cls, root: Path, *, version: str | None = None) -> Installation:
        """Describe an existing installation by reading its preference file.

        Raises:
            InstallationError: If *root* is not an installed server.
        """
        root = Path(root).resolve()
        prefs_path = root / CONF_DIR / PREFS_FILE
        if not prefs_path.exists():
            raise InstallationError(
                f"No server installation at {root} (missing {prefs_path})", directory=root
            )
        prefs = ServerPreferences.load(prefs_path)
        if prefs.client_port is None or prefs.shutdown_port is None:
            raise InstallationError(
                f"Installation at {root} has no configured ports", directory=root
            )
        return cls(
            root=root,
            client_port=prefs.client_port,
            shutdown_port=prefs.shutdown_port,
            version=version,
        )


def configure(root: Path, *, log_level: str = "DEBUG") -> ServerPreferences:
    """Point an installed server at its own data directories and fresh ports.

    Returns:
        The rewritten preferences.
    """
    prefs = ServerPreferences.load(root / CONF_DIR / PREFS_FILE)
    data = root / DATA_DIR
    prefs.buffer_directory = data / "buffer"
    prefs.database_directory = data / "database"
    client_port, shutdown_port = allocate_ports(2)
    prefs.client_port = client_port
    prefs.shutdown_port = shutdown_port
    prefs.log_level = log_level
    log.debug(
        "Configured %s: client_port=%d shutdown_port=%d", root, client_port, shutdown_port
    )
    return prefs


def _kill_group(proc: subprocess.Popen[str]) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except OSError:
        proc.kill()


def run_installer(binary: Path, cwd: Path, grace_period: float) -> list[str]:
    """Run the installer payload and abandon it after *grace_period* seconds.

    Returns:
        The captured (stdout + stderr) output lines.
    """
    log.debug("Running: sh %s (in %s)", binary, cwd)
    proc = subprocess.Popen(
        ["sh", str(binary)],
        cwd=str(cwd),
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        preexec_fn=os.setpgrp,
    )

    lines: list[str] = []

    def _reader() -> None:
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                lines.append(line.rstrip("\n"))
        except (ValueError, OSError):
            pass

    reader = threading.Thread(target=_reader, daemon=True)
    reader.start()
    try:
        proc.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        # Still waiting on its prompt; stdin stays open so it never gets an answer.
        _kill_group(proc)
        proc.wait()
    finally:
        reader.join(timeout=5)
        if proc.stdin is not None:
            proc.stdin.close()

    log_lines(log, logging.DEBUG, lines, prefix="installer: ")
    return lines


def install(
    source_binary: Path | str,
    target_directory: Path | str,
    *,
    version: str | None = None,
    grace_period: float | None = None,
    config: HarnessConfig | None = None,
) -> Installation:
    """Install a server from *source_binary* into *target_directory*.

    Args:
        source_binary: The installer payload.
        target_directory: Workspace to install into; created if missing.
        version: Version label recorded on the Installation.
        grace_period: Seconds before the installer is killed (default from config).
        config: Configuration object (default: load from files).

    Returns:
        The configured Installation.

    Raises:
        InstallationError: If copying, running or verifying the install fails.
            Partial directories are left in place for inspection.
    """
    if config is None:
        config = get_config()
    if grace_period is None:
        grace_period = config.grace_period

    source = Path(source_binary).expanduser().resolve()
    directory = Path(target_directory).expanduser().resolve()
    application = directory / APPLICATION_DIR

    try:
        directory.mkdir(parents=True, exist_ok=True)
        binary = directory / TARGET_BINARY_NAME
        binary.unlink(missing_ok=True)
        shutil.copyfile(source, binary)
        run_installer(binary, directory, grace_period)
    except (OSError, subprocess.SubprocessError) as exc:
        raise InstallationError(
            f"Unsuccessful attempt to install server at {directory} "
            f"using binary from {source}: {exc}",
            directory=directory,
            installer=source,
        ) from exc

    if not application.is_dir() or not any(application.iterdir()):
        raise InstallationError(
            f"Unsuccessful attempt to install server at {directory} using binary from {source}",
            directory=directory,
            installer=source,
        )

    try:
        prefs = configure(application, log_level=config.server_log_level)
    except (OSError, ValueError) as exc:
        raise InstallationError(
            f"Installed server at {application} could not be configured: {exc}",
            directory=directory,
            installer=source,
        ) from exc

    assert prefs.client_port is not None and prefs.shutdown_port is not None
    log.info("Successfully installed server in %s", application)
    return Installation(
        root=application,
        client_port=prefs.client_port,
        shutdown_port=prefs.shutdown_port,
        source_binary=source,
        version=version,
    )
