"""Per-test debugging variables.

Tests register interesting intermediate values while they run; if the test
fails, :class:`~concourse_harness.testing.ClientServerTestCase` dumps them
with the failure. Storage is thread-local.
"""

from __future__ import annotations

import threading
from typing import Any

_local = threading.local()


def _store() -> dict[str, Any]:
    store = getattr(_local, "variables", None)
    if store is None:
        store = {}
        _local.variables = store
    return store


def register(name: str, value: Any) -> Any:
    """Record *value* under *name* and return it, so calls can be inlined."""
    _store()[name] = value
    return value


def get(name: str, default: Any = None) -> Any:
    return _store().get(name, default)


def clear() -> None:
    _store().clear()


def dump() -> str:
    """Render all registered variables, one ``name = value`` per line."""
    store = _store()
    if not store:
        return "(no variables registered)"
    width = max(len(name) for name in store)
    return "\n".join(f"{name:<{width}} = {value!r}" for name, value in store.items())
