"""Exception hierarchy for concourse-harness.

Every failure the harness raises is a :class:`HarnessError`. Apart from port
collisions, which :mod:`concourse_harness.ports` retries internally, none of
these are retried: they abort the current test (or the current version of a
cross-version test).
"""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Base class for all harness failures."""


class InstallationError(HarnessError):
    """The installer payload could not be copied, run, or verified."""

    def __init__(self, message: str, *, directory: object = None, installer: object = None):
        super().__init__(message)
        self.directory = directory
        self.installer = installer


class PortAllocationError(HarnessError):
    """Binding a probe socket failed for a reason other than the port being taken."""


class LifecycleError(HarnessError):
    """A control script could not be launched or reported failure."""


class ServerStateError(HarnessError):
    """An operation was attempted in a state that does not allow it."""


class ClientProxyError(HarnessError):
    """A call through the versioned client could not be resolved or completed."""

    def __init__(self, message: str, *, remote_type: str | None = None, remote_traceback: str = ""):
        super().__init__(message)
        self.remote_type = remote_type
        self.remote_traceback = remote_traceback


class CrossVersionConfigError(HarnessError):
    """A cross-version test class is missing or misdeclares its versions."""


class DownloadError(HarnessError):
    """An installer could not be located or fetched from the release host."""
