"""Configuration management for concourse-harness.

Configuration is loaded from (in order of precedence):

1. Environment variables (``CONCOURSE_HARNESS_*`` prefix)
2. Project-local ``.concourse-harness.yaml`` (found by walking up from cwd)
3. User config ``~/.config/concourse-harness/config.yaml``
4. Built-in defaults
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from concourse_harness.logging import get_logger

log = get_logger("config")

USER_CONFIG_PATH = Path.home() / ".config" / "concourse-harness" / "config.yaml"
PROJECT_CONFIG_NAME = ".concourse-harness.yaml"
ENV_PREFIX = "CONCOURSE_HARNESS_"

_PATH_FIELDS = ("install_home", "installer_cache")
_FLOAT_FIELDS = ("grace_period", "connect_timeout", "download_timeout")


@dataclass
class HarnessConfig:
    """Resolved settings shared by the installer, server handle and client."""

    # Parent of the per-test workspaces created when no directory is given.
    install_home: Path = field(default_factory=lambda: Path.home() / ".concourse-testing")
    # Where downloaded installers are cached as concourse-server-<version>.bin.
    installer_cache: Path = field(default_factory=Path.home)

    # Seconds to let the installer run before its prompt is abandoned.
    grace_period: float = 1.0

    host: str = "localhost"
    username: str = "admin"
    password: str = "admin"
    connect_timeout: float = 30.0

    download_timeout: float = 60.0
    release_url_base: str = "https://github.com/cinchapi/concourse/releases/tag/v"
    download_url_base: str = "https://github.com"

    server_log_level: str = "DEBUG"

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            setattr(self, name, Path(value).expanduser())
        for name in _FLOAT_FIELDS:
            setattr(self, name, float(getattr(self, name)))


def _find_project_config() -> Path | None:
    """Find project-local config file by walking up from cwd."""
    current = Path.cwd()
    while current != current.parent:
        config_path = current / PROJECT_CONFIG_NAME
        if config_path.exists():
            return config_path
        current = current.parent
    return None


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping from *path*; missing files yield an empty dict."""
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must be a YAML mapping, got {type(data).__name__}: {path}")
    return data


def apply_overrides(config: HarnessConfig, data: dict[str, Any], *, source: str = "") -> None:
    """Apply known keys from *data* onto *config*, ignoring (and logging) unknown ones."""
    known = {f.name for f in fields(HarnessConfig)}
    for key, value in data.items():
        if key not in known:
            log.warning("Ignoring unknown config key %r%s", key, f" in {source}" if source else "")
            continue
        if key in _PATH_FIELDS:
            value = Path(str(value)).expanduser()
        elif key in _FLOAT_FIELDS:
            value = float(value)
        else:
            value = str(value)
        setattr(config, key, value)


def _env_overrides() -> dict[str, str]:
    known = {f.name for f in fields(HarnessConfig)}
    overrides: dict[str, str] = {}
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        name = env_key[len(ENV_PREFIX) :].lower()
        if name in known:
            overrides[name] = value
    return overrides


def load_config(path: Path | None = None) -> HarnessConfig:
    """Load configuration from files and environment.

    Args:
        path: Explicit config file. When given, it replaces the user and
            project files; environment variables still take precedence.

    Returns:
        HarnessConfig with merged settings.
    """
    config = HarnessConfig()

    if path is not None:
        sources = [path]
    else:
        sources = [USER_CONFIG_PATH]
        project_path = _find_project_config()
        if project_path is not None:
            sources.append(project_path)

    for source in sources:
        data = _load_yaml(source)
        if data:
            log.debug("Loaded config from %s", source)
            apply_overrides(config, data, source=str(source))

    apply_overrides(config, _env_overrides(), source="environment")
    return config


_cached_config: HarnessConfig | None = None


def get_config() -> HarnessConfig:
    """Get the current configuration (cached)."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config() -> None:
    """Reset the cached configuration."""
    global _cached_config
    _cached_config = None
