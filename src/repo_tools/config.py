#!/usr/bin/env python3
"""
Configuration for release downloads and resolution.

Values come from an optional JSON file and are overridden by command line
flags. The release version is always explicit; only the CLI falls back to
the version of the running system.
"""

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from closure_engine.errors import DataUnavailableError

DEFAULT_REPO_URL = "https://cdn.download.clearlinux.org"
DEFAULT_BUNDLES_URL = "https://github.com/clearlinux/clr-bundles"
OS_RELEASE_PATH = Path("/usr/lib/os-release")
CLEAR_LINUX_ID = "clear-linux-os"


@dataclass
class DissectorConfig:
    """Settings shared by the loaders and the CLI."""
    version: int | None = None
    repo_url: str = DEFAULT_REPO_URL
    bundles_url: str = DEFAULT_BUNDLES_URL
    cache_dir: Path = Path(".")
    retries: int = 3
    timeout: int = 60
    verbose: bool = True

    def __post_init__(self):
        self.cache_dir = Path(self.cache_dir)
        if self.version is not None:
            self.version = int(self.version)
        if self.retries < 0:
            raise ValueError(f"retries must not be negative, got: {self.retries}")

    def require_version(self) -> int:
        """Get the configured release version.

        Raises:
            DataUnavailableError: If no version has been configured.
        """
        if self.version is None:
            raise DataUnavailableError("No release version configured")
        return self.version

    def release_dir(self) -> Path:
        """Directory holding everything cached for the release."""
        return self.cache_dir / str(self.require_version())

    def repodata_dir(self) -> Path:
        return self.release_dir() / "repodata"

    def srpms_dir(self) -> Path:
        return self.release_dir() / "srpms"

    def source_dir(self) -> Path:
        return self.release_dir() / "source"

    def primary_db_path(self) -> Path:
        return self.repodata_dir() / "primary.sqlite"

    def filelists_db_path(self) -> Path:
        return self.repodata_dir() / "filelist.sqlite"

    def bundle_archive_path(self) -> Path:
        return self.release_dir() / "clr-bundles.tar.gz"

    def release_url(self) -> str:
        """Base URL of the release on the repository server."""
        return f"{self.repo_url.rstrip('/')}/releases/{self.require_version()}/clear"

    def merged(self, overrides: dict[str, Any]) -> "DissectorConfig":
        """Return a copy with every non-None override applied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update({k: v for k, v in overrides.items() if v is not None})
        return DissectorConfig(**values)


def load_config(path: str | Path | None) -> DissectorConfig:
    """Load configuration from a JSON file.

    Args:
        path: Config file path. None returns the defaults.

    Returns:
        Loaded configuration.

    Raises:
        DataUnavailableError: If the file cannot be read or parsed.
        ValueError: If the file contains unknown keys.
    """
    if path is None:
        return DissectorConfig()

    config_path = Path(path)
    try:
        with open(config_path) as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise DataUnavailableError(f"Config file not found: {config_path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise DataUnavailableError(f"Invalid config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise DataUnavailableError(f"Config file {config_path} must contain an object")

    known = {f.name for f in fields(DissectorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

    return DissectorConfig(**data)


def detect_installed_version(os_release_path: str | Path = OS_RELEASE_PATH) -> int:
    """Read the release version of the running Clear Linux system.

    Args:
        os_release_path: Path to the os-release file.

    Returns:
        Installed release version.

    Raises:
        DataUnavailableError: If the system is not Clear Linux or the
            version cannot be read.
    """
    path = Path(os_release_path)
    try:
        content = path.read_text()
    except OSError as e:
        raise DataUnavailableError(f"Cannot read {path}: {e}") from e

    values = {}
    for line in content.splitlines():
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        values[key.strip()] = value.strip().strip('"')

    if values.get("ID") == CLEAR_LINUX_ID:
        try:
            return int(values.get("VERSION_ID", ""))
        except ValueError:
            pass

    raise DataUnavailableError("No installed version available!")
