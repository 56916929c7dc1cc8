"""Tests for concourse_harness.server."""

import itertools
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from harness_test_helpers import write_fake_installer

from concourse_harness.config import HarnessConfig
from concourse_harness.errors import LifecycleError, ServerStateError
from concourse_harness.server import (
    ManagedServer,
    ServerState,
    default_install_directory,
    manage_new_server,
    managed_server,
    resolve_installer,
)


class ServerTestBase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)
        self.installer = write_fake_installer(self.base / "fake.bin")
        self.config = HarnessConfig(
            install_home=self.base / "installs", installer_cache=self.base, grace_period=0.5
        )

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def new_server(self, **kwargs: object) -> ManagedServer:
        server = manage_new_server(self.installer, config=self.config, **kwargs)  # type: ignore[arg-type]
        self.addCleanup(server.destroy)
        return server


class TestLifecycle(ServerTestBase):
    def test_start_then_running_stop_then_not(self) -> None:
        server = self.new_server()
        self.assertEqual(server.state, ServerState.INSTALLED)
        self.assertFalse(server.is_running())
        server.start()
        self.assertEqual(server.state, ServerState.RUNNING)
        self.assertTrue(server.is_running())
        server.stop()
        self.assertEqual(server.state, ServerState.STOPPED)
        self.assertFalse(server.is_running())

    def test_start_logs_script_output(self) -> None:
        server = self.new_server()
        with self.assertLogs("concourse_harness.server", level="INFO") as cm:
            server.start()
        self.assertTrue(any("Starting Concourse Server" in line for line in cm.output))

    def test_destroy_removes_workspace_and_is_idempotent(self) -> None:
        server = self.new_server()
        server.start()
        workspace = server.installation.workspace
        server.destroy()
        self.assertFalse(workspace.exists())
        self.assertEqual(server.state, ServerState.DESTROYED)
        server.destroy()
        self.assertEqual(server.state, ServerState.DESTROYED)

    def test_destroy_stops_running_server(self) -> None:
        server = self.new_server()
        server.start()
        with patch.object(server, "stop", wraps=server.stop) as mock_stop:
            server.destroy()
        mock_stop.assert_called_once()

    def test_destroy_after_external_deletion(self) -> None:
        server = self.new_server()
        shutil.rmtree(server.installation.workspace)
        server.destroy()
        self.assertEqual(server.state, ServerState.DESTROYED)

    def test_failed_destroy_can_be_retried(self) -> None:
        server = self.new_server()
        server.start()
        workspace = server.installation.workspace
        with patch.object(server, "stop", side_effect=LifecycleError("stop failed")):
            with self.assertRaises(LifecycleError):
                server.destroy()
        self.assertEqual(server.state, ServerState.RUNNING)
        self.assertTrue(workspace.exists())
        with self.assertRaises(ServerStateError):
            ManagedServer.attach(server.install_directory, config=self.config)

        server.destroy()
        self.assertFalse(workspace.exists())
        self.assertEqual(server.state, ServerState.DESTROYED)

    def test_failing_stop_script_does_not_block_destroy(self) -> None:
        server = self.new_server()
        server.start()
        workspace = server.installation.workspace
        (server.installation.bin_dir / "stop").write_text("exit 3\n", encoding="utf-8")
        with self.assertLogs("concourse_harness.server", level="WARNING"):
            server.destroy()
        self.assertFalse(workspace.exists())
        self.assertEqual(server.state, ServerState.DESTROYED)

    def test_failed_delete_keeps_handle(self) -> None:
        server = self.new_server()
        with patch("concourse_harness.server.shutil.rmtree", side_effect=PermissionError("busy")):
            with self.assertRaises(LifecycleError):
                server.destroy()
        self.assertEqual(server.state, ServerState.INSTALLED)
        server.destroy()
        self.assertFalse(server.installation.workspace.exists())

    def test_operations_after_destroy_fail(self) -> None:
        server = self.new_server()
        server.destroy()
        for op in (server.start, server.stop, server.is_running, server.connect):
            with self.subTest(op=op.__name__):
                with self.assertRaises(ServerStateError):
                    op()

    def test_context_manager_destroys_on_error(self) -> None:
        server = self.new_server()
        workspace = server.installation.workspace
        with self.assertRaises(RuntimeError):
            with server:
                server.start()
                raise RuntimeError("test body failed")
        self.assertFalse(workspace.exists())
        self.assertEqual(server.state, ServerState.DESTROYED)

    def test_managed_server_starts_and_destroys(self) -> None:
        with managed_server(self.installer, config=self.config) as server:
            self.assertTrue(server.is_running())
            workspace = server.installation.workspace
        self.assertFalse(workspace.exists())

    def test_destroy_closes_clients(self) -> None:
        server = self.new_server()
        client = MagicMock()
        with patch("concourse_harness.client.factory.connect", return_value=client):
            self.assertIs(server.connect(), client)
        server.destroy()
        client.close.assert_called_once()


class TestPortsAndDirectories(ServerTestBase):
    def test_installations_never_share_ports(self) -> None:
        draws = itertools.count(50000)
        rng = MagicMock()
        rng.randrange.side_effect = lambda *_: next(draws)
        with patch("concourse_harness.ports._rng", rng):
            servers = [self.new_server() for _ in range(4)]
        ports = [s.client_port for s in servers] + [s.installation.shutdown_port for s in servers]
        self.assertEqual(len(ports), len(set(ports)))

    def test_default_directories_are_unique(self) -> None:
        with patch("concourse_harness.server.time.time", return_value=1000.0):
            dirs = [default_install_directory(self.config) for _ in range(3)]
        self.assertEqual(len(set(dirs)), 3)
        for d in dirs:
            self.assertEqual(d.parent, self.config.install_home)

    def test_sequential_servers_get_distinct_roots(self) -> None:
        first = self.new_server()
        second = self.new_server()
        self.assertNotEqual(first.install_directory, second.install_directory)
        self.assertEqual(first.installation.workspace.parent, self.config.install_home)


class TestBinding(ServerTestBase):
    def test_second_handle_for_same_root_rejected(self) -> None:
        server = self.new_server()
        with self.assertRaises(ServerStateError):
            ManagedServer.attach(server.install_directory, config=self.config)

    def test_attach_running_installation(self) -> None:
        server = self.new_server(directory=self.base / "ws")
        server.start()
        root = server.install_directory
        server.detach()
        attached = ManagedServer.attach(root, config=self.config)
        self.addCleanup(attached.destroy)
        self.assertEqual(attached.state, ServerState.RUNNING)
        self.assertEqual(attached.client_port, server.client_port)

    def test_failed_attach_releases_root(self) -> None:
        server = self.new_server(directory=self.base / "ws")
        root = server.install_directory
        server.detach()
        bin_dir = server.installation.bin_dir
        hidden = bin_dir.with_name("bin.hidden")
        bin_dir.rename(hidden)
        with self.assertRaises(LifecycleError):
            ManagedServer.attach(root, config=self.config)
        hidden.rename(bin_dir)
        attached = ManagedServer.attach(root, config=self.config)
        self.addCleanup(attached.destroy)
        self.assertEqual(attached.state, ServerState.INSTALLED)

    def test_detached_handle_is_inert(self) -> None:
        server = self.new_server()
        server.detach()
        with self.assertRaises(ServerStateError):
            server.start()
        server.destroy()
        self.assertEqual(server.state, ServerState.DETACHED)
        self.assertTrue(server.install_directory.exists())
        reattached = ManagedServer.attach(server.install_directory, config=self.config)
        self.addCleanup(reattached.destroy)
        self.assertEqual(reattached.state, ServerState.INSTALLED)


class TestFactory(ServerTestBase):
    def test_exactly_one_source_required(self) -> None:
        with self.assertRaises(ValueError):
            manage_new_server(config=self.config)
        with self.assertRaises(ValueError):
            manage_new_server(self.installer, version="0.4.0", config=self.config)

    @patch("concourse_harness.server.download")
    def test_version_is_downloaded(self, mock_download: MagicMock) -> None:
        mock_download.return_value = self.installer
        server = self.new_server_for_version("0.4.0")
        mock_download.assert_called_once_with("0.4.0", config=self.config)
        self.assertEqual(server.version, "0.4.0")

    def test_installer_path_as_version(self) -> None:
        server = self.new_server_for_version(str(self.installer))
        self.assertIsNone(server.version)
        self.assertTrue(server.installation.exists())

    def new_server_for_version(self, version: str) -> ManagedServer:
        server = manage_new_server(version=version, config=self.config)
        self.addCleanup(server.destroy)
        return server

    def test_resolve_installer(self) -> None:
        self.assertEqual(resolve_installer(self.installer), self.installer)
        with patch("concourse_harness.server.download", return_value=self.installer) as m:
            resolve_installer("0.3.2", config=self.config)
        m.assert_called_once()

    def test_cleanup_at_exit_registers_and_unregisters(self) -> None:
        with patch("concourse_harness.server.atexit") as mock_atexit:
            server = self.new_server(cleanup_at_exit=True)
            mock_atexit.register.assert_called_once()
            server.destroy()
            mock_atexit.unregister.assert_called_once()


class TestExecute(ServerTestBase):
    def test_launch_failure_is_lifecycle_error(self) -> None:
        server = self.new_server()
        with patch("concourse_harness.server.subprocess.run", side_effect=OSError("no sh")):
            with self.assertRaises(LifecycleError):
                server.start()

    def test_nonzero_exit_is_logged(self) -> None:
        server = self.new_server()
        failed = subprocess.CompletedProcess(["sh", "start"], 2, stdout="boom\n")
        with patch("concourse_harness.server.subprocess.run", return_value=failed):
            with self.assertLogs("concourse_harness.server", level="INFO") as cm:
                server.start()
        self.assertIn("boom", cm.output[0])
        self.assertTrue(any("WARNING" in line and "exited 2" in line for line in cm.output))

    def test_status_checks_only_first_line(self) -> None:
        server = self.new_server()
        output = subprocess.CompletedProcess(
            ["sh", "concourse", "status"], 0, stdout="Concourse Server is not running\nis running\n"
        )
        with patch("concourse_harness.server.subprocess.run", return_value=output):
            self.assertFalse(server.is_running())

    def test_empty_status_output_means_not_running(self) -> None:
        server = self.new_server()
        output = subprocess.CompletedProcess(["sh", "concourse", "status"], 0, stdout="")
        with patch("concourse_harness.server.subprocess.run", return_value=output):
            self.assertFalse(server.is_running())

    def test_scripts_run_from_bin_dir(self) -> None:
        server = self.new_server()
        output = subprocess.CompletedProcess(["sh", "start"], 0, stdout="")
        with patch("concourse_harness.server.subprocess.run", return_value=output) as mock_run:
            server.start()
        self.assertEqual(mock_run.call_args.args[0], ["sh", "start"])
        self.assertEqual(mock_run.call_args.kwargs["cwd"], str(server.installation.bin_dir))


if __name__ == "__main__":
    unittest.main()
