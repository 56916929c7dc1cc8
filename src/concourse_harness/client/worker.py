"""Child-process side of the versioned client.

The worker runs in its own interpreter with the installed build's client
library first on ``sys.path``, so the build's classes never meet the test
process's own imports. Requests arrive over a pipe as tuples:

* ``("call", name, shape, args, kwargs)`` -> ``("ok", result)`` or an error
* ``("close",)`` -> ``("ok", None)``, then the worker exits

Errors are sent back as ``("error", type_name, message, traceback)``.
"""

from __future__ import annotations

import datetime
import decimal
import enum
import importlib
import inspect
import sys
import traceback
from dataclasses import dataclass
from multiprocessing.connection import Connection
from pathlib import Path
from typing import Any

from concourse_harness.client.types import Operator, Timestamp
from concourse_harness.errors import ClientProxyError

ARCHIVE_SUFFIXES = (".zip", ".whl", ".egg", ".pyz")

# (positional argument count, sorted keyword names)
CallShape = tuple[int, tuple[str, ...]]

_PLAIN_TYPES = (bool, int, float, str, bytes, decimal.Decimal, datetime.date, datetime.datetime)


@dataclass(frozen=True)
class ClientLayout:
    """Where a build's client keeps its entry point and version-sensitive types.

    Targets use ``module:attr.path`` notation.
    """

    entry_point: str = "concourse:Concourse.connect"
    timestamp_type: str = "concourse:Timestamp"
    operator_type: str = "concourse:Operator"
    # Classmethod on the timestamp type taking microseconds.
    timestamp_factory: str = "from_micros"
    # Attribute on a timestamp instance holding microseconds.
    timestamp_micros: str = "micros"


def call_shape(args: tuple[Any, ...] | list[Any], kwargs: dict[str, Any]) -> CallShape:
    return len(args), tuple(sorted(kwargs))


def gather_archives(lib_dir: Path) -> list[Path]:
    """Return every packaged library under *lib_dir* (sorted), then *lib_dir* itself."""
    lib_dir = Path(lib_dir)
    archives = sorted(
        p for p in lib_dir.rglob("*") if p.is_file() and p.suffix.lower() in ARCHIVE_SUFFIXES
    )
    return [*archives, lib_dir]


class IsolatedNamespace:
    """Import roots placed ahead of everything else on this interpreter's path."""

    def __init__(self, roots: list[Path]) -> None:
        self.roots = [str(r) for r in roots]
        for root in reversed(self.roots):
            if root not in sys.path:
                sys.path.insert(0, root)
        importlib.invalidate_caches()
        self._cache: dict[str, Any] = {}

    def load(self, target: str) -> Any:
        """Resolve a ``module:attr.path`` target.

        Raises:
            ClientProxyError: If the module or attribute does not exist.
        """
        if target in self._cache:
            return self._cache[target]
        module_name, sep, attr_path = target.partition(":")
        if not sep or not module_name or not attr_path:
            raise ClientProxyError(f"Invalid target {target!r}, expected module:attr")
        try:
            obj: Any = importlib.import_module(module_name)
        except ImportError as exc:
            raise ClientProxyError(f"Cannot import {module_name!r} from {self.roots}: {exc}") from exc
        for part in attr_path.split("."):
            try:
                obj = getattr(obj, part)
            except AttributeError as exc:
                raise ClientProxyError(f"{target!r} not found: no attribute {part!r}") from exc
        self._cache[target] = obj
        return obj


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(word.capitalize() for word in rest)


class Dispatcher:
    """Invokes capabilities on a delegate loaded from an isolated namespace."""

    def __init__(self, delegate: Any, namespace: IsolatedNamespace, layout: ClientLayout) -> None:
        self.delegate = delegate
        self.namespace = namespace
        self.layout = layout
        self._resolved: dict[tuple[str, CallShape], str] = {}

    def resolve(self, name: str, shape: CallShape) -> str:
        """Find the delegate attribute serving *name* for calls of *shape*.

        Older builds spell methods in camelCase; both spellings are tried.
        The result is memoized per (name, shape).
        """
        key = (name, shape)
        if key in self._resolved:
            return self._resolved[key]

        cls = type(self.delegate)
        n_args, kw_names = shape
        mismatches: list[str] = []
        for candidate in dict.fromkeys((name, _camel_case(name))):
            if not callable(getattr(cls, candidate, None)):
                continue
            method = getattr(self.delegate, candidate)
            try:
                sig = inspect.signature(method)
            except (TypeError, ValueError):
                # Signature not introspectable (e.g. a builtin); accept it.
                sig = None
            if sig is not None:
                try:
                    sig.bind(*([None] * n_args), **dict.fromkeys(kw_names))
                except TypeError as exc:
                    mismatches.append(f"{cls.__qualname__}.{candidate}: {exc}")
                    continue
            self._resolved[key] = candidate
            return candidate
        if mismatches:
            raise ClientProxyError(
                f"No method for {name!r} takes {n_args} positional argument(s) "
                f"and keywords {list(kw_names)} ({'; '.join(mismatches)})"
            )
        raise ClientProxyError(f"{cls.__qualname__} has no method {name!r}")

    def translate(self, value: Any) -> Any:
        """Convert harness value types into the namespace's own types."""
        if isinstance(value, Timestamp):
            ts_type = self.namespace.load(self.layout.timestamp_type)
            try:
                factory = getattr(ts_type, self.layout.timestamp_factory)
                return factory(value.micros)
            except Exception as exc:
                raise ClientProxyError(f"Cannot translate {value!r}: {exc}") from exc
        if isinstance(value, Operator):
            return self._translate_operator(value)
        if isinstance(value, dict):
            return {self.translate(k): self.translate(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return type(value)(self.translate(v) for v in value)
        return value

    def _translate_operator(self, value: Operator) -> Any:
        op_type = self.namespace.load(self.layout.operator_type)
        if isinstance(op_type, enum.EnumMeta):
            try:
                return op_type(value.value)
            except ValueError:
                pass
        try:
            return getattr(op_type, value.name)
        except AttributeError as exc:
            raise ClientProxyError(f"Operator {value.name} is not supported by this build") from exc

    def _optional_type(self, target: str) -> type | None:
        try:
            loaded = self.namespace.load(target)
        except ClientProxyError:
            return None
        return loaded if isinstance(loaded, type) else None

    def export(self, value: Any) -> Any:
        """Convert a delegate result into plain data the parent can unpickle."""
        if value is None:
            return None
        ts_type = self._optional_type(self.layout.timestamp_type)
        if ts_type is not None and isinstance(value, ts_type):
            return Timestamp(int(getattr(value, self.layout.timestamp_micros)))
        if isinstance(value, enum.Enum):
            op_type = self._optional_type(self.layout.operator_type)
            if op_type is not None and isinstance(value, op_type):
                return Operator[value.name]
            return value.value
        if isinstance(value, _PLAIN_TYPES):
            return value
        if isinstance(value, dict):
            return {self.export(k): self.export(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set, frozenset)):
            return type(value)(self.export(v) for v in value)
        raise ClientProxyError(
            f"Cannot return a {type(value).__module__}.{type(value).__qualname__} "
            "across the isolation boundary"
        )

    def call(self, name: str, args: list[Any], kwargs: dict[str, Any]) -> Any:
        attr = self.resolve(name, call_shape(args, kwargs))
        method = getattr(self.delegate, attr)
        result = method(
            *[self.translate(a) for a in args],
            **{k: self.translate(v) for k, v in kwargs.items()},
        )
        return self.export(result)


def _error_reply(exc: BaseException) -> tuple[str, str, str, str]:
    return (
        "error",
        type(exc).__qualname__,
        str(exc),
        "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    )


def serve(
    conn: Connection,
    lib_dir: str,
    layout: ClientLayout,
    host: str,
    port: int,
    username: str,
    password: str,
) -> None:
    """Worker entry point: connect a delegate, then answer requests until closed."""
    try:
        namespace = IsolatedNamespace(gather_archives(Path(lib_dir)))
        connect = namespace.load(layout.entry_point)
        delegate = connect(host, port, username, password)
        dispatcher = Dispatcher(delegate, namespace, layout)
    except Exception as exc:
        conn.send(_error_reply(exc))
        conn.close()
        return

    conn.send(("ready",))
    try:
        while True:
            try:
                request = conn.recv()
            except EOFError:
                break
            if request[0] == "close":
                conn.send(("ok", None))
                break
            if request[0] != "call":
                conn.send(("error", "ClientProxyError", f"Unknown request {request[0]!r}", ""))
                continue
            _, name, shape, args, kwargs = request
            try:
                if call_shape(args, kwargs) != tuple(shape):
                    raise ClientProxyError(f"Call shape {shape!r} does not match its arguments")
                reply = ("ok", dispatcher.call(name, args, kwargs))
            except Exception as exc:
                reply = _error_reply(exc)
            conn.send(reply)
    finally:
        conn.close()
