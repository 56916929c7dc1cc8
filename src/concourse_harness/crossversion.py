"""Running one test class against several server versions.

Declare the versions on the class and run it with :func:`run_cross_version`
(or ``concourse-harness run module:Class``)::

    @versions("0.3.2", "0.4.0")
    class LatencyTest(CrossVersionTestCase):
        def test_add(self):
            start = time.monotonic()
            self.client.add("foo", "bar", 1)
            self.record("latencyMs", (time.monotonic() - start) * 1000)

Each version gets its own full lifecycle per test method. Versions run one
after another in declaration order, and a failure under one version never
touches the others. Statistics passed to :meth:`CrossVersionTestCase.record`
land in the :class:`CrossVersionResult` returned by the run.

Cross-version classes are not collected by pytest on their own: they only
make sense with a version bound, which the runner supplies.
"""

from __future__ import annotations

import inspect
import sys
import time
import unittest
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import IO, Any, TypeVar

from concourse_harness.errors import CrossVersionConfigError
from concourse_harness.formatting import format_table, format_value
from concourse_harness.logging import get_logger
from concourse_harness.testing import ClientServerTestCase

log = get_logger("crossversion")

STATS_TITLE = "CROSS VERSION STATS"
VERSION_COLUMN = "Version"

_T = TypeVar("_T", bound=type)


def versions(*identifiers: str) -> Callable[[_T], _T]:
    """Class decorator declaring the version identifiers to run against.

    Each identifier is a release version (``"0.4.0"``) or the path of a
    local installer. Subclasses inherit the declaration.
    """
    if not identifiers:
        raise CrossVersionConfigError("@versions needs at least one version")
    for identifier in identifiers:
        if not isinstance(identifier, str) or not identifier.strip():
            raise CrossVersionConfigError(f"Invalid version identifier {identifier!r}")

    def decorate(cls: _T) -> _T:
        cls.cross_versions = tuple(identifiers)  # type: ignore[attr-defined]
        return cls

    return decorate


def declared_versions(test_class: type) -> tuple[str, ...]:
    declared = getattr(test_class, "cross_versions", None)
    if not declared:
        raise CrossVersionConfigError(
            f"class '{test_class.__module__}.{test_class.__qualname__}' "
            "must be decorated with @versions(...)"
        )
    return tuple(declared)


class CrossVersionStats:
    """Named statistics per version, in first-recorded order."""

    def __init__(self) -> None:
        self._table: dict[str, dict[str, Any]] = {}

    def record(self, version: str, key: str, value: Any) -> None:
        self._table.setdefault(version, {})[key] = value

    def get(self, version: str, key: str, default: Any = None) -> Any:
        return self._table.get(version, {}).get(key, default)

    def columns(self) -> list[str]:
        names: dict[str, None] = {}
        for row in self._table.values():
            names.update(dict.fromkeys(row))
        return list(names)

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {version: dict(row) for version, row in self._table.items()}

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)

    def __bool__(self) -> bool:
        return any(self._table.values())


def format_stats_table(stats: CrossVersionStats | dict[str, dict[str, Any]]) -> str:
    """One row per version, one column per statistic. Empty stats give ``""``."""
    table = stats.as_dict() if isinstance(stats, CrossVersionStats) else stats
    table = {version: row for version, row in table.items() if row}
    if not table:
        return ""
    columns: dict[str, None] = {}
    for row in table.values():
        columns.update(dict.fromkeys(row))
    headers = [VERSION_COLUMN, *columns]
    rows = [
        [version, *(format_value(row.get(name)) for name in columns)]
        for version, row in table.items()
    ]
    return format_table(headers, rows, alignments=["l"] + ["r"] * len(columns))


class CrossVersionTestCase(ClientServerTestCase):
    """A client/server test bound to one version by its runner."""

    __test__ = False

    cross_versions: tuple[str, ...] = ()

    def __init__(
        self,
        methodName: str = "runTest",
        *,
        version: str | None = None,
        stats: CrossVersionStats | None = None,
    ) -> None:
        super().__init__(methodName)
        self.version = version
        self.stats = stats if stats is not None else CrossVersionStats()

    @property
    def label(self) -> str:
        return f"{self._testMethodName} [{self.version}]"

    def server_version(self) -> str | None:
        if self.version is None:
            raise CrossVersionConfigError(
                f"{type(self).__qualname__} has no version bound; run it with run_cross_version()"
            )
        return self.version

    def setUp(self) -> None:
        log.info("Running against version %s", self.version)
        super().setUp()

    def record(self, key: str, value: Any) -> None:
        """Store a statistic for the current version."""
        if self.version is None:
            raise CrossVersionConfigError(
                f"{type(self).__qualname__} has no version bound; run it with run_cross_version()"
            )
        self.stats.record(self.version, key, value)

    def id(self) -> str:
        return f"{super().id()} [{self.version}]"

    def __str__(self) -> str:
        return f"{super().__str__()} [{self.version}]"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CrossVersionTestCase):
            return NotImplemented
        return super().__eq__(other) is True and self.version == other.version

    def __hash__(self) -> int:
        return hash((super().__hash__(), self.version))


def _accepts_version(test_class: type) -> bool:
    try:
        params = inspect.signature(test_class).parameters
    except (TypeError, ValueError):
        return False
    return "version" in params or any(p.kind is p.VAR_KEYWORD for p in params.values())


def build_suite(
    test_class: type[CrossVersionTestCase],
    *,
    stats: CrossVersionStats | None = None,
    versions: tuple[str, ...] | list[str] | None = None,
) -> unittest.TestSuite:
    """Build one test per (version, method), version-major in declaration order.

    Everything is validated before any test exists, so a misconfigured
    class fails before a server is provisioned.

    Raises:
        CrossVersionConfigError: If the class is not a cross-version test,
            declares no versions, or has no test methods.
    """
    if not (isinstance(test_class, type) and issubclass(test_class, CrossVersionTestCase)):
        raise CrossVersionConfigError(
            f"{test_class!r} must subclass {CrossVersionTestCase.__qualname__}"
        )
    if not _accepts_version(test_class):
        raise CrossVersionConfigError(
            f"{test_class.__qualname__}.__init__ must accept a 'version' argument"
        )
    if versions is None:
        run_versions = declared_versions(test_class)
    else:
        run_versions = tuple(versions)
        if not run_versions:
            raise CrossVersionConfigError("No versions given")

    names = unittest.TestLoader().getTestCaseNames(test_class)
    if not names:
        raise CrossVersionConfigError(f"{test_class.__qualname__} has no test methods")

    if stats is None:
        stats = CrossVersionStats()
    suite = unittest.TestSuite()
    for version in run_versions:
        for name in names:
            suite.addTest(test_class(name, version=version, stats=stats))
    return suite


@dataclass
class Outcome:
    label: str
    version: str | None
    status: str
    message: str = ""


@dataclass
class CrossVersionResult:
    """Everything one cross-version run produced."""

    versions: tuple[str, ...]
    outcomes: list[Outcome] = field(default_factory=list)
    stats: dict[str, dict[str, Any]] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def was_successful(self) -> bool:
        return all(o.status in ("passed", "skipped", "expected_failure") for o in self.outcomes)

    def outcomes_for(self, version: str) -> list[Outcome]:
        return [o for o in self.outcomes if o.version == version]

    @property
    def failures(self) -> list[Outcome]:
        return [
            o for o in self.outcomes if o.status in ("failed", "error", "unexpected_success")
        ]


class _RecordingResult(unittest.TextTestResult):
    """Text result that also keeps one :class:`Outcome` per test."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.outcomes: list[Outcome] = []

    def _note(self, test: unittest.TestCase, status: str, message: str = "") -> None:
        label = getattr(test, "label", str(test))
        self.outcomes.append(Outcome(label, getattr(test, "version", None), status, message))

    def addSuccess(self, test: unittest.TestCase) -> None:
        super().addSuccess(test)
        self._note(test, "passed")

    def addFailure(self, test: unittest.TestCase, err: Any) -> None:
        super().addFailure(test, err)
        self._note(test, "failed", str(err[1]))

    def addError(self, test: unittest.TestCase, err: Any) -> None:
        super().addError(test, err)
        self._note(test, "error", f"{err[0].__name__}: {err[1]}")

    def addSkip(self, test: unittest.TestCase, reason: str) -> None:
        super().addSkip(test, reason)
        self._note(test, "skipped", reason)

    def addExpectedFailure(self, test: unittest.TestCase, err: Any) -> None:
        super().addExpectedFailure(test, err)
        self._note(test, "expected_failure")

    def addUnexpectedSuccess(self, test: unittest.TestCase) -> None:
        super().addUnexpectedSuccess(test)
        self._note(test, "unexpected_success")


def run_cross_version(
    test_class: type[CrossVersionTestCase],
    *,
    stream: IO[str] | None = None,
    verbosity: int = 1,
    versions: tuple[str, ...] | list[str] | None = None,
) -> CrossVersionResult:
    """Run *test_class* once per version and return what happened.

    The statistics table is written to *stream* after the last version
    finishes, and only if something was recorded. Each call starts with
    empty statistics.
    """
    out = stream if stream is not None else sys.stderr
    stats = CrossVersionStats()
    suite = build_suite(test_class, stats=stats, versions=versions)
    run_versions = tuple(dict.fromkeys(t.version for t in suite if t.version is not None))

    runner = unittest.TextTestRunner(stream=out, verbosity=verbosity, resultclass=_RecordingResult)
    start = time.monotonic()
    result = runner.run(suite)
    duration = time.monotonic() - start

    assert isinstance(result, _RecordingResult)
    if stats:
        out.write(f"{STATS_TITLE}:\n{format_stats_table(stats)}\n")
        out.flush()
    return CrossVersionResult(
        versions=run_versions,
        outcomes=result.outcomes,
        stats=stats.as_dict(),
        duration=duration,
    )
