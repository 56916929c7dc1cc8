"""Fetch Concourse Server installers from the project's release pages.

Installers are cached by version as ``concourse-server-<version>.bin`` so a
version is only ever downloaded once per cache directory.
"""

from __future__ import annotations

import re
from pathlib import Path

import requests

from concourse_harness import __version__
from concourse_harness.config import HarnessConfig, get_config
from concourse_harness.errors import DownloadError
from concourse_harness.logging import get_logger

log = get_logger("downloader")

_USER_AGENT = f"concourse-harness/{__version__}"
_HREF_RE = re.compile(r"""href\s*=\s*["']([^"']+\.bin)["']""", re.IGNORECASE)
_CHUNK_SIZE = 1 << 16


def installer_filename(version: str) -> str:
    return f"concourse-server-{version}.bin"


def is_installer_path(identifier: str) -> bool:
    """Return True if a version identifier names a local installer file."""
    return identifier.endswith(".bin") or Path(identifier).expanduser().is_file()


def find_download_url(version: str, *, config: HarnessConfig | None = None) -> str:
    """Scrape the release page for *version* and return its installer URL.

    Raises:
        DownloadError: If the page cannot be fetched or links no ``.bin`` file.
    """
    if config is None:
        config = get_config()
    page = f"{config.release_url_base}{version}"
    try:
        resp = requests.get(
            page, timeout=config.download_timeout, headers={"User-Agent": _USER_AGENT}
        )
    except requests.RequestException as exc:
        raise DownloadError(f"Could not fetch release page {page}: {exc}") from exc
    if resp.status_code != 200:
        raise DownloadError(f"Release page {page} returned HTTP {resp.status_code}")

    m = _HREF_RE.search(resp.text)
    if not m:
        raise DownloadError(f"Could not determine download URL for version {version}")
    href = m.group(1)
    if href.startswith("/"):
        href = config.download_url_base + href
    return href


def download(
    version: str,
    location: Path | None = None,
    *,
    config: HarnessConfig | None = None,
) -> Path:
    """Return a local installer for *version*, downloading it if not cached.

    Args:
        version: Server version, e.g. ``"0.4.0"``.
        location: Cache directory (default: ``config.installer_cache``).
        config: Configuration object (default: load from files).

    Returns:
        Path to the installer.
    """
    if config is None:
        config = get_config()
    location = Path(location) if location is not None else config.installer_cache
    target = location / installer_filename(version)
    if target.exists():
        log.debug("Using cached installer %s", target)
        return target

    log.info("Did not find an installer for Concourse Server v%s in %s", version, location)
    url = find_download_url(version, config=config)
    partial = target.with_name(target.name + ".part")
    try:
        location.mkdir(parents=True, exist_ok=True)
        with requests.get(
            url,
            stream=True,
            timeout=config.download_timeout,
            headers={"User-Agent": _USER_AGENT},
        ) as resp:
            resp.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    f.write(chunk)
        partial.replace(target)
    except (requests.RequestException, OSError) as exc:
        partial.unlink(missing_ok=True)
        raise DownloadError(f"Could not download {url}: {exc}") from exc

    log.info(
        "Downloaded the installer for Concourse Server v%s from %s. The installer is stored in %s",
        version,
        url,
        location,
    )
    return target
