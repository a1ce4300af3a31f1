#!/usr/bin/env python3
"""
Source RPM fetcher.

Maps resolved binary packages to their source RPMs, downloads them into the
release cache and unpacks them.
"""

import shutil
import subprocess
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from closure_engine.errors import DataUnavailableError
from closure_engine.requirements import RequirementIndex

from .config import DissectorConfig
from .downloader import DownloadResult, FileDownloader


def source_dir_name(srpm: str) -> str:
    """Get the unpack directory name of a source RPM.

    The version and release fields are dropped, so
    ``bash-5.1-42.src.rpm`` unpacks into ``bash``.
    """
    base = srpm.removesuffix(".src.rpm")
    parts = base.split("-")
    if len(parts) < 3:
        return base
    return "-".join(parts[:-2])


def extract_rpm(archive: str | Path, target: str | Path) -> Path:
    """Unpack an RPM archive with rpm2cpio and cpio.

    The archive is unpacked into a temporary sibling directory that is
    renamed to ``target`` only once extraction succeeded.

    Args:
        archive: RPM file.
        target: Directory to unpack into.

    Returns:
        Target directory.

    Raises:
        DataUnavailableError: If the tools are missing or extraction fails.
    """
    archive_path = Path(archive).resolve()
    target_path = Path(target)
    tmp_path = target_path.with_name(target_path.name + ".tmp")
    if tmp_path.exists():
        shutil.rmtree(tmp_path)
    tmp_path.mkdir(parents=True)

    try:
        rpm2cpio = subprocess.run(
            ["rpm2cpio", str(archive_path)],
            capture_output=True,
            check=True,
        )
        subprocess.run(
            ["cpio", "-idm", "--quiet"],
            input=rpm2cpio.stdout,
            capture_output=True,
            check=True,
            cwd=tmp_path,
        )
    except FileNotFoundError as e:
        shutil.rmtree(tmp_path, ignore_errors=True)
        raise DataUnavailableError(f"Extraction tool not available: {e}") from e
    except subprocess.CalledProcessError as e:
        shutil.rmtree(tmp_path, ignore_errors=True)
        stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
        raise DataUnavailableError(f"Failed to extract {archive_path}: {stderr or e}") from e

    tmp_path.rename(target_path)
    return target_path


class SourceFetcher:
    """Download and unpack source RPMs of a release."""

    def __init__(
        self,
        config: DissectorConfig,
        requirements: RequirementIndex,
        downloader: FileDownloader | None = None,
    ):
        config.require_version()
        self.config = config
        self.requirements = requirements
        self.downloader = downloader or FileDownloader(
            retries=config.retries,
            timeout=config.timeout,
            verbose=config.verbose,
        )
        self.results: list[DownloadResult] = []

    def _log(self, message: str) -> None:
        if self.config.verbose:
            timestamp = datetime.now(timezone.utc).isoformat()
            print(f"[{timestamp}] {message}", file=sys.stderr)

    def srpm_url(self, srpm: str) -> str:
        return f"{self.config.release_url()}/source/SRPMS/{srpm}"

    def source_urls(self, packages: Iterable[str]) -> dict[str, str]:
        """Map binary packages to the URLs of their source RPMs.

        Raises:
            NotFoundError: If a package has no source mapping.
        """
        return {name: self.srpm_url(self.requirements.source_rpm(name)) for name in packages}

    def download_sources(
        self,
        srpms: Iterable[str],
        checksums: dict[str, str] | None = None,
    ) -> list[DownloadResult]:
        """Download source RPMs into the release cache.

        Args:
            srpms: Source RPM file names.
            checksums: Optional sha256 digests by file name.

        Returns:
            Download results.
        """
        downloads = {srpm: self.srpm_url(srpm) for srpm in srpms}
        self._log(f"Downloading {len(downloads)} source RPMs to {self.config.srpms_dir()}")
        self.results = self.downloader.download_many(downloads, self.config.srpms_dir(), checksums)
        return self.results

    def extract_sources(self) -> list[Path]:
        """Unpack every successfully downloaded source RPM.

        Already unpacked sources are skipped.

        Returns:
            Directories holding the unpacked sources.
        """
        extracted = []
        successful = self.get_successful_downloads()
        for i, result in enumerate(successful, 1):
            target = self.config.source_dir() / source_dir_name(result.name)
            if not target.exists():
                self._log(f"Extracting ({i}/{len(successful)}) {result.name} to {target}")
                extract_rpm(result.local_path, target)
            extracted.append(target)
        return extracted

    def get_successful_downloads(self) -> list[DownloadResult]:
        """Get list of successful downloads."""
        return [r for r in self.results if r.success]

    def get_failed_downloads(self) -> list[DownloadResult]:
        """Get list of failed downloads."""
        return [r for r in self.results if not r.success]
