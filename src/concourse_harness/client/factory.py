"""Choosing a client implementation for a server build.

Drivers are registered against version prefixes. A server whose version
matches no prefix (or has no version, e.g. one installed from a local
payload) gets a :class:`VersionedClient` over its own client library.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from concourse_harness.client.base import ConcourseClient
from concourse_harness.client.proxy import VersionedClient
from concourse_harness.logging import get_logger

if TYPE_CHECKING:
    from concourse_harness.server import ManagedServer

log = get_logger("client.factory")

DriverFactory = Callable[["ManagedServer", str, str], ConcourseClient]

_drivers: dict[str, DriverFactory] = {}


def register_driver(prefix: str, factory: DriverFactory) -> None:
    """Use *factory* for every server whose version starts with *prefix*."""
    _drivers[prefix] = factory


def unregister_driver(prefix: str) -> None:
    _drivers.pop(prefix, None)


def driver_for(version: str | None) -> DriverFactory:
    """Return the factory for *version*: longest registered prefix wins."""
    if version is not None:
        matches = [p for p in _drivers if version.startswith(p)]
        if matches:
            return _drivers[max(matches, key=len)]
    return VersionedClient.for_server


def connect(server: ManagedServer, username: str, password: str) -> ConcourseClient:
    factory = driver_for(server.version)
    log.debug("Connecting to %r with %s", server, getattr(factory, "__qualname__", factory))
    return factory(server, username, password)
