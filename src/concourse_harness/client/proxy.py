"""Parent-process side of the versioned client.

A :class:`VersionedClient` owns one worker interpreter that has loaded the
installed build's client library (see :mod:`concourse_harness.client.worker`).
Every capability call is forwarded to that worker and either returns the
exported result or raises :class:`ClientProxyError`. There is no fallback.
"""

from __future__ import annotations

import multiprocessing
import pickle
import threading
from collections.abc import Callable
from multiprocessing.connection import Connection
from pathlib import Path
from typing import TYPE_CHECKING, Any

from concourse_harness.client.base import ConcourseClient
from concourse_harness.client.worker import ClientLayout, call_shape, serve
from concourse_harness.errors import ClientProxyError
from concourse_harness.logging import get_logger

if TYPE_CHECKING:
    from concourse_harness.server import ManagedServer

log = get_logger("client.proxy")

_JOIN_TIMEOUT = 2.0


def _capability(name: str) -> Callable[..., Any]:
    def method(self: VersionedClient, *args: Any, **kwargs: Any) -> Any:
        return self._call(name, *args, **kwargs)

    method.__name__ = name
    method.__qualname__ = f"VersionedClient.{name}"
    method.__doc__ = f"Forward ``{name}`` to the connected build's client."
    return method


class VersionedClient(ConcourseClient):
    """Client for whichever build is installed under *lib_dir*."""

    def __init__(
        self,
        lib_dir: Path | str,
        host: str,
        port: int,
        username: str,
        password: str,
        *,
        layout: ClientLayout | None = None,
        connect_timeout: float = 30.0,
        on_close: Callable[[VersionedClient], None] | None = None,
    ) -> None:
        self.lib_dir = Path(lib_dir)
        self.host = host
        self.port = port
        self.layout = layout or ClientLayout()
        self._on_close = on_close
        self._lock = threading.Lock()
        self._closed = False

        context = multiprocessing.get_context("spawn")
        parent_conn, child_conn = context.Pipe(duplex=True)
        process = context.Process(
            target=serve,
            args=(child_conn, str(self.lib_dir), self.layout, host, port, username, password),
            name=f"concourse-client-{port}",
        )
        process.daemon = True
        process.start()
        child_conn.close()
        self._conn: Connection = parent_conn
        self._process = process

        try:
            if not parent_conn.poll(connect_timeout):
                raise ClientProxyError(
                    f"Client worker for {host}:{port} did not become ready "
                    f"within {connect_timeout:.0f}s"
                )
            reply = parent_conn.recv()
        except (EOFError, OSError) as exc:
            self._shutdown()
            raise ClientProxyError(f"Client worker for {host}:{port} died during startup") from exc
        except ClientProxyError:
            self._shutdown()
            raise
        if reply[0] != "ready":
            self._shutdown()
            raise self._error_from(reply, f"connect to {host}:{port}")
        log.debug("Connected client for %s:%d using libraries in %s", host, port, self.lib_dir)

    @classmethod
    def for_server(cls, server: ManagedServer, username: str, password: str) -> VersionedClient:
        return cls(
            server.installation.lib_dir,
            server.config.host,
            server.client_port,
            username,
            password,
            connect_timeout=server.config.connect_timeout,
            on_close=server.forget_client,
        )

    abort = _capability("abort")
    add = _capability("add")
    audit = _capability("audit")
    clear = _capability("clear")
    commit = _capability("commit")
    create = _capability("create")
    describe = _capability("describe")
    fetch = _capability("fetch")
    find = _capability("find")
    get = _capability("get")
    get_server_version = _capability("get_server_version")
    link = _capability("link")
    ping = _capability("ping")
    remove = _capability("remove")
    revert = _capability("revert")
    search = _capability("search")
    set = _capability("set")
    stage = _capability("stage")
    unlink = _capability("unlink")
    verify = _capability("verify")
    verify_and_swap = _capability("verify_and_swap")

    @property
    def closed(self) -> bool:
        return self._closed

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"VersionedClient({self.host}:{self.port}, {state})"

    @staticmethod
    def _error_from(reply: tuple[Any, ...], action: str) -> ClientProxyError:
        _, remote_type, message, remote_tb = reply
        return ClientProxyError(
            f"{action} failed: {remote_type}: {message}",
            remote_type=remote_type,
            remote_traceback=remote_tb,
        )

    def _call(self, name: str, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            if self._closed:
                raise ClientProxyError(f"Cannot call {name}: client is closed")
            request = ("call", name, call_shape(args, kwargs), list(args), kwargs)
            try:
                self._conn.send(request)
            except (pickle.PicklingError, TypeError, AttributeError) as exc:
                raise ClientProxyError(
                    f"Cannot send arguments of {name} to the client worker: {exc}"
                ) from exc
            except OSError as exc:
                raise ClientProxyError(f"Client worker exited during {name}") from exc
            try:
                reply = self._conn.recv()
            except (EOFError, OSError) as exc:
                raise ClientProxyError(f"Client worker exited during {name}") from exc
        if reply[0] == "ok":
            return reply[1]
        raise self._error_from(reply, name)

    def exit(self) -> None:
        """End the server session, then stop the worker."""
        if self._closed:
            return
        try:
            self._call("exit")
        finally:
            self.close()

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._conn.send(("close",))
                if self._conn.poll(_JOIN_TIMEOUT):
                    self._conn.recv()
            except (EOFError, OSError):
                log.debug("Client worker for %s:%d already gone", self.host, self.port)
            self._shutdown()
        if self._on_close is not None:
            self._on_close(self)

    def _shutdown(self) -> None:
        self._closed = True
        self._conn.close()
        self._process.join(timeout=_JOIN_TIMEOUT)
        if self._process.is_alive():
            self._process.terminate()
            self._process.join(timeout=_JOIN_TIMEOUT)

