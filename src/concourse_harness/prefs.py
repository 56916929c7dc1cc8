"""Reading and rewriting ``conf/concourse.prefs``.

The preference file is a flat ``key = value`` list with ``#`` comments. Only
the handful of keys the installer relocates are exposed as properties, and
every setter writes the file back immediately, so the server sees the change
the next time it starts.
"""

from __future__ import annotations

import re
from pathlib import Path

from concourse_harness.logging import get_logger

log = get_logger("prefs")

BUFFER_DIRECTORY = "buffer_directory"
DATABASE_DIRECTORY = "database_directory"
CLIENT_PORT = "client_port"
SHUTDOWN_PORT = "shutdown_port"
LOG_LEVEL = "log_level"

_ENTRY_RE = re.compile(r"^\s*(?P<key>[A-Za-z0-9_.\-]+)\s*[=:]\s*(?P<value>.*?)\s*$")


class ServerPreferences:
    """A preference file with write-through setters."""

    def __init__(self, path: Path, lines: list[str]) -> None:
        self.path = path
        self._lines = lines

    @classmethod
    def load(cls, path: Path) -> ServerPreferences:
        """Load the preference file at *path*. A missing file starts empty."""
        path = Path(path)
        if path.exists():
            lines = path.read_text(encoding="utf-8").splitlines()
        else:
            lines = []
        return cls(path, lines)

    def _find(self, key: str) -> int | None:
        for index, line in enumerate(self._lines):
            if line.lstrip().startswith("#"):
                continue
            m = _ENTRY_RE.match(line)
            if m and m.group("key") == key:
                return index
        return None

    def get(self, key: str, default: str | None = None) -> str | None:
        index = self._find(key)
        if index is None:
            return default
        m = _ENTRY_RE.match(self._lines[index])
        assert m is not None
        return m.group("value")

    def set(self, key: str, value: object) -> None:
        """Set *key* to *value* and write the file."""
        entry = f"{key} = {value}"
        index = self._find(key)
        if index is None:
            self._lines.append(entry)
        else:
            self._lines[index] = entry
        self.save()
        log.debug("Set %s in %s", entry, self.path)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("\n".join(self._lines) + "\n", encoding="utf-8")

    def _get_int(self, key: str) -> int | None:
        value = self.get(key)
        if value is None or value == "":
            return None
        return int(value)

    @property
    def buffer_directory(self) -> str | None:
        return self.get(BUFFER_DIRECTORY)

    @buffer_directory.setter
    def buffer_directory(self, value: str | Path) -> None:
        self.set(BUFFER_DIRECTORY, value)

    @property
    def database_directory(self) -> str | None:
        return self.get(DATABASE_DIRECTORY)

    @database_directory.setter
    def database_directory(self, value: str | Path) -> None:
        self.set(DATABASE_DIRECTORY, value)

    @property
    def client_port(self) -> int | None:
        return self._get_int(CLIENT_PORT)

    @client_port.setter
    def client_port(self, value: int) -> None:
        self.set(CLIENT_PORT, int(value))

    @property
    def shutdown_port(self) -> int | None:
        return self._get_int(SHUTDOWN_PORT)

    @shutdown_port.setter
    def shutdown_port(self, value: int) -> None:
        self.set(SHUTDOWN_PORT, int(value))

    @property
    def log_level(self) -> str | None:
        return self.get(LOG_LEVEL)

    @log_level.setter
    def log_level(self, value: str) -> None:
        self.set(LOG_LEVEL, value.upper())
