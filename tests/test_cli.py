"""Tests for concourse_harness.cli."""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner
from harness_test_helpers import write_client_archive, write_fake_installer

from concourse_harness import __version__
from concourse_harness.cli import main


class CliTestBase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)
        self.config_file = self.base / "harness.yaml"
        self.config_file.write_text(
            f"install_home: {self.base / 'installs'}\n"
            f"installer_cache: {self.base / 'cache'}\n"
            "grace_period: 0.5\n",
            encoding="utf-8",
        )
        self.runner = CliRunner()

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def invoke(self, *args: str) -> object:
        return self.runner.invoke(main, [*args, "--config", str(self.config_file)])


class TestMain(unittest.TestCase):
    def test_version(self) -> None:
        result = CliRunner().invoke(main, ["--version"])
        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, result.output)

    def test_help_lists_commands(self) -> None:
        result = CliRunner().invoke(main, ["--help"])
        self.assertEqual(result.exit_code, 0)
        for command in ("install", "start", "stop", "status", "destroy", "download", "port", "run"):
            self.assertIn(command, result.output)


class TestPortCommand(CliTestBase):
    def test_distinct_ports(self) -> None:
        result = self.invoke("port", "--count", "3")
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        ports = [int(line) for line in result.output.split()]  # type: ignore[attr-defined]
        self.assertEqual(len(set(ports)), 3)
        for p in ports:
            self.assertTrue(49152 <= p <= 65535)

    def test_count_must_be_positive(self) -> None:
        result = self.invoke("port", "--count", "0")
        self.assertEqual(result.exit_code, 2)  # type: ignore[attr-defined]


class TestLifecycleCommands(CliTestBase):
    def setUp(self) -> None:
        super().setUp()
        self.installer = write_fake_installer(self.base / "fake.bin")
        self.workspace = self.base / "ws"

    def test_install_start_status_stop_destroy(self) -> None:
        result = self.invoke("install", "--installer", str(self.installer), "--dir", str(self.workspace))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertIn("Installed:", result.output)  # type: ignore[attr-defined]
        self.assertIn("Client port:", result.output)  # type: ignore[attr-defined]

        result = self.invoke("status", str(self.workspace))
        self.assertEqual(result.exit_code, 1)  # type: ignore[attr-defined]
        self.assertIn("not running", result.output)  # type: ignore[attr-defined]

        result = self.invoke("start", str(self.workspace))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]

        result = self.invoke("status", str(self.workspace / "concourse-server"))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertIn(": running", result.output)  # type: ignore[attr-defined]

        result = self.invoke("stop", str(self.workspace))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]

        result = self.invoke("destroy", str(self.workspace))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertIn("Destroyed", result.output)  # type: ignore[attr-defined]
        self.assertFalse(self.workspace.exists())

    def test_destroy_stops_a_running_server(self) -> None:
        self.invoke("install", "--installer", str(self.installer), "--dir", str(self.workspace))
        self.invoke("start", str(self.workspace))
        running_marker = self.workspace / "concourse-server" / ".running"
        self.assertTrue(running_marker.exists())
        result = self.invoke("destroy", str(self.workspace))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertFalse(self.workspace.exists())

    def test_install_needs_exactly_one_source(self) -> None:
        result = self.invoke("install")
        self.assertEqual(result.exit_code, 2)  # type: ignore[attr-defined]
        result = self.invoke(
            "install", "--installer", str(self.installer), "--server-version", "0.4.0"
        )
        self.assertEqual(result.exit_code, 2)  # type: ignore[attr-defined]

    def test_not_an_installation(self) -> None:
        empty = self.base / "empty"
        empty.mkdir()
        result = self.invoke("start", str(empty))
        self.assertEqual(result.exit_code, 1)  # type: ignore[attr-defined]
        self.assertIn("No server installation", result.output)  # type: ignore[attr-defined]

    @patch("concourse_harness.server.download")
    def test_install_by_version(self, mock_download: MagicMock) -> None:
        mock_download.return_value = self.installer
        result = self.invoke("install", "--server-version", "0.4.0", "--dir", str(self.workspace))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertEqual(mock_download.call_args.args[0], "0.4.0")
        self.invoke("destroy", str(self.workspace))


class TestDownloadCommand(CliTestBase):
    @patch("concourse_harness.cli.fetch_installer")
    def test_prints_installer_path(self, mock_fetch: MagicMock) -> None:
        mock_fetch.return_value = self.base / "cache" / "concourse-server-0.4.0.bin"
        result = self.invoke("download", "0.4.0", "--dest", str(self.base / "cache"))
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertIn("concourse-server-0.4.0.bin", result.output)  # type: ignore[attr-defined]
        self.assertEqual(mock_fetch.call_args.args, ("0.4.0", self.base / "cache"))

    @patch("concourse_harness.downloader.requests.get")
    def test_download_error_is_reported(self, mock_get: MagicMock) -> None:
        import requests

        mock_get.side_effect = requests.ConnectionError("offline")
        result = self.invoke("download", "0.4.0")
        self.assertEqual(result.exit_code, 1)  # type: ignore[attr-defined]
        self.assertIn("release page", result.output)  # type: ignore[attr-defined]


class TestRunCommand(CliTestBase):
    def setUp(self) -> None:
        super().setUp()
        lib = write_client_archive(self.base / "dist" / "concourse-driver.zip")
        self.installer = write_fake_installer(self.base / "fake.bin", client_lib=lib)
        download = patch("concourse_harness.server.download", return_value=self.installer)
        self.mock_download = download.start()
        self.addCleanup(download.stop)

    def run_target(self, target_class: str, *extra: str) -> object:
        return self.invoke("run", f"test_crossversion:{target_class}", *extra)

    def test_stats_and_results_table(self) -> None:
        result = self.run_target("LatencyCase")
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        output = result.output  # type: ignore[attr-defined]
        self.assertIn("CROSS VERSION STATS", output)
        self.assertIn("latencyMs", output)
        self.assertIn("test_latency [0.3.2]", output)
        self.assertIn("test_latency [0.4.0]", output)
        self.assertIn("2 test(s) across 2 version(s)", output)

    def test_failure_sets_exit_code(self) -> None:
        result = self.run_target("NewFeatureCase")
        self.assertEqual(result.exit_code, 1)  # type: ignore[attr-defined]
        self.assertIn("FAIL", result.output)  # type: ignore[attr-defined]

    def test_version_override(self) -> None:
        result = self.run_target("LatencyCase", "-V", "0.4.0")
        self.assertEqual(result.exit_code, 0, result.output)  # type: ignore[attr-defined]
        self.assertIn("1 test(s) across 1 version(s)", result.output)  # type: ignore[attr-defined]
        self.assertEqual([c.args[0] for c in self.mock_download.call_args_list], ["0.4.0"])

    def test_bad_target(self) -> None:
        for target in ("no_colon", "test_crossversion:Missing", "no_such_module_abc:Thing"):
            with self.subTest(target=target):
                result = self.invoke("run", target)
                self.assertEqual(result.exit_code, 2)  # type: ignore[attr-defined]

    def test_undecorated_class(self) -> None:
        result = self.invoke("run", "test_crossversion:UndeclaredCase")
        self.assertEqual(result.exit_code, 1)  # type: ignore[attr-defined]
        self.assertIn("@versions", result.output)  # type: ignore[attr-defined]


if __name__ == "__main__":
    unittest.main()
