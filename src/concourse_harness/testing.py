"""unittest base class for tests that need a live server and client.

Every test method gets a freshly installed, started server and a connected
client::

    class AddTest(ClientServerTestCase):
        def server_version(self):
            return "0.4.0"

        def test_add_then_get(self):
            self.client.add("foo", "bar", 1)
            self.assertEqual(self.client.get("foo", 1), "bar")

The server is destroyed on every exit path, including a failing
``before_each_test``.
"""

from __future__ import annotations

import unittest
from pathlib import Path
from typing import Any

from concourse_harness import variables
from concourse_harness.client.base import ConcourseClient
from concourse_harness.config import HarnessConfig, get_config
from concourse_harness.errors import HarnessError
from concourse_harness.logging import get_logger
from concourse_harness.server import ManagedServer, manage_new_server

log = get_logger("testing")


class _DumpOnFailure:
    """Result wrapper that logs registered variables when a test fails."""

    def __init__(self, result: Any) -> None:
        self._result = result

    def _dump(self, test: unittest.TestCase, err: Any) -> None:
        exc = err[1] if isinstance(err, tuple) and len(err) > 1 else err
        log.error("TEST FAILURE in %s: %s\n---\n%s\n", test.id(), exc, variables.dump())

    def addFailure(self, test: unittest.TestCase, err: Any) -> None:
        self._dump(test, err)
        self._result.addFailure(test, err)

    def addError(self, test: unittest.TestCase, err: Any) -> None:
        self._dump(test, err)
        self._result.addError(test, err)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._result, name)


class ClientServerTestCase(unittest.TestCase):
    """Provisions ``self.server`` and ``self.client`` around each test.

    Subclasses override :meth:`server_version` or :meth:`installer_path`.
    """

    # Set on a subclass to bypass file/env configuration.
    harness_config: HarnessConfig | None = None

    server: ManagedServer | None = None
    client: ConcourseClient | None = None

    def server_version(self) -> str | None:
        """Version of the server to test against."""
        return None

    def installer_path(self) -> Path | str | None:
        """A local installer (e.g. a snapshot build) that takes precedence over the version."""
        return None

    def before_each_test(self) -> None:
        """Hook run after the client connects."""

    def after_each_test(self) -> None:
        """Hook run after the server is destroyed."""

    def get_harness_config(self) -> HarnessConfig:
        return self.harness_config if self.harness_config is not None else get_config()

    def run(self, result: Any = None) -> Any:
        if result is None:
            result = self.defaultTestResult()
        super().run(_DumpOnFailure(result))
        return result

    def setUp(self) -> None:
        super().setUp()
        variables.clear()
        config = self.get_harness_config()
        installer = self.installer_path()
        if installer:
            server = manage_new_server(installer, config=config)
        else:
            version = self.server_version()
            if not version:
                raise HarnessError(
                    f"{type(self).__name__} must override server_version() or installer_path()"
                )
            server = manage_new_server(version=version, config=config)
        self.server = server
        self.addCleanup(self._finish)
        server.start()
        self.client = server.connect()
        self.before_each_test()

    def _finish(self) -> None:
        try:
            if self.client is not None:
                self.client.exit()
        finally:
            try:
                if self.server is not None:
                    self.server.destroy()
            finally:
                self.client = None
                self.server = None
                self.after_each_test()
