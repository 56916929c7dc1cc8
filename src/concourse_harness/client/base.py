"""The capability interface every client implementation provides."""

from __future__ import annotations

import abc
from typing import Any

# Operations a test may invoke on a connected client, by name.
CAPABILITIES = (
    "abort",
    "add",
    "audit",
    "clear",
    "commit",
    "create",
    "describe",
    "exit",
    "fetch",
    "find",
    "get",
    "get_server_version",
    "link",
    "ping",
    "remove",
    "revert",
    "search",
    "set",
    "stage",
    "unlink",
    "verify",
    "verify_and_swap",
)


class ConcourseClient(abc.ABC):
    """A session against one running server.

    Argument lists follow the connected build's own client, so the methods
    here accept whatever that build accepts. Timestamps and operators must
    be passed as :class:`~concourse_harness.client.types.Timestamp` and
    :class:`~concourse_harness.client.types.Operator`.
    """

    @abc.abstractmethod
    def abort(self, *args: Any, **kwargs: Any) -> Any:
        """Discard the current transaction."""

    @abc.abstractmethod
    def add(self, *args: Any, **kwargs: Any) -> Any:
        """Append a value to a key in a record."""

    @abc.abstractmethod
    def audit(self, *args: Any, **kwargs: Any) -> Any:
        """Return the revision log of a record or key."""

    @abc.abstractmethod
    def clear(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def commit(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def create(self, *args: Any, **kwargs: Any) -> Any:
        """Create an empty record and return its id."""

    @abc.abstractmethod
    def describe(self, *args: Any, **kwargs: Any) -> Any:
        """Return the keys present in a record."""

    @abc.abstractmethod
    def exit(self) -> None:
        """Close the session. The client is unusable afterwards."""

    @abc.abstractmethod
    def fetch(self, *args: Any, **kwargs: Any) -> Any:
        """Return all values stored for a key in a record."""

    @abc.abstractmethod
    def find(self, *args: Any, **kwargs: Any) -> Any:
        """Return the records matching a key, operator and value(s)."""

    @abc.abstractmethod
    def get(self, *args: Any, **kwargs: Any) -> Any:
        """Return the most recently added value for a key in a record."""

    @abc.abstractmethod
    def get_server_version(self) -> Any: ...

    @abc.abstractmethod
    def link(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def ping(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def remove(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def revert(self, *args: Any, **kwargs: Any) -> Any:
        """Restore a key in a record to its state at a timestamp."""

    @abc.abstractmethod
    def search(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def set(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def stage(self, *args: Any, **kwargs: Any) -> Any:
        """Start a transaction."""

    @abc.abstractmethod
    def unlink(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def verify(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def verify_and_swap(self, *args: Any, **kwargs: Any) -> Any: ...

    @abc.abstractmethod
    def close(self) -> None:
        """Release local resources without contacting the server. Idempotent."""

    def __enter__(self) -> ConcourseClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.exit()
