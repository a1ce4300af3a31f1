#!/usr/bin/env python3
"""
Release metadata fetcher.

Downloads the repodata databases and the bundle definition archive of a
release into the local cache and opens them for the closure engine.
"""

import json
import lzma
import shutil
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from closure_engine.bundles import BundleStore
from closure_engine.errors import DataUnavailableError, NotFoundError
from closure_engine.requirements import RequirementIndex

from .config import DissectorConfig
from .downloader import FileDownloader

REPO_NS = {"repo": "http://linux.duke.edu/metadata/repo"}

# href suffix in repomd.xml -> local file name
REPODATA_FILES = {
    "primary.sqlite.xz": "primary.sqlite.xz",
    "other.sqlite.xz": "other.sqlite.xz",
    "filelists.sqlite.xz": "filelist.sqlite.xz",
    "comps.xml.xz": "comps.xml.xz",
}


@dataclass
class RepoDataEntry:
    """One ``<data>`` element of repomd.xml."""
    data_type: str
    href: str
    checksum: str
    checksum_type: str

    @property
    def sha256(self) -> str | None:
        """Checksum usable for download verification, if any."""
        if self.checksum_type == "sha256" and self.checksum:
            return self.checksum
        return None


def parse_repomd(content: bytes | str) -> list[RepoDataEntry]:
    """Parse repomd.xml.

    Args:
        content: Raw repomd.xml.

    Returns:
        Entries in document order.

    Raises:
        DataUnavailableError: If the document is not valid XML.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise DataUnavailableError(f"Invalid repomd.xml: {e}") from e

    entries = []
    for data in root.findall("repo:data", REPO_NS):
        location = data.find("repo:location", REPO_NS)
        checksum = data.find("repo:checksum", REPO_NS)
        entries.append(RepoDataEntry(
            data_type=data.get("type", ""),
            href=location.get("href", "") if location is not None else "",
            checksum=(checksum.text or "").strip() if checksum is not None else "",
            checksum_type=checksum.get("type", "") if checksum is not None else "",
        ))
    return entries


def decompress_xz(source: str | Path, target: str | Path) -> Path:
    """Decompress an .xz file.

    Raises:
        DataUnavailableError: If the source is not valid xz data.
    """
    target_path = Path(target)
    tmp_path = target_path.with_name(target_path.name + ".tmp")
    try:
        with lzma.open(source) as src, open(tmp_path, "wb") as dst:
            shutil.copyfileobj(src, dst)
    except (lzma.LZMAError, EOFError, OSError) as e:
        tmp_path.unlink(missing_ok=True)
        raise DataUnavailableError(f"Failed to decompress {source}: {e}") from e

    tmp_path.rename(target_path)
    return target_path


class RepoFetcher:
    """Fetch and open the metadata of one release."""

    def __init__(self, config: DissectorConfig, downloader: FileDownloader | None = None):
        """Initialize the fetcher.

        Args:
            config: Configuration with the release version set.
            downloader: Downloader to use. Built from the config by default.
        """
        config.require_version()
        self.config = config
        self.downloader = downloader or FileDownloader(
            retries=config.retries,
            timeout=config.timeout,
            verbose=config.verbose,
        )

    def _log(self, message: str) -> None:
        if self.config.verbose:
            timestamp = datetime.now(timezone.utc).isoformat()
            print(f"[{timestamp}] {message}", file=sys.stderr)

    def repomd_url(self) -> str:
        return f"{self.config.release_url()}/x86_64/os/repodata/repomd.xml"

    def download_repo(self) -> Path:
        """Download the release repodata.

        Returns:
            Path to the decompressed primary database.

        Raises:
            NotFoundError: If the release does not exist on the server.
        """
        version = self.config.require_version()
        self._log(f"Fetching repodata for release {version}")

        try:
            content = self.downloader.fetch(self.repomd_url())
        except NotFoundError as e:
            raise NotFoundError(str(version), "release") from e

        for directory in (
            self.config.repodata_dir(),
            self.config.source_dir(),
            self.config.srpms_dir(),
        ):
            directory.mkdir(parents=True, exist_ok=True)

        for entry in parse_repomd(content):
            local_name = self._local_name(entry.href)
            if not local_name:
                continue

            url = f"{self.config.release_url()}/x86_64/os/{entry.href}"
            target = self.config.repodata_dir() / local_name
            self.downloader.download(url, target, entry.sha256)

        primary = self.config.primary_db_path()
        if not primary.exists():
            compressed = self.config.repodata_dir() / "primary.sqlite.xz"
            if not compressed.exists():
                raise DataUnavailableError(f"repomd.xml for release {version} lists no primary database")
            decompress_xz(compressed, primary)
            self._log(f"  Unpacked {primary}")

        filelists = self.config.filelists_db_path()
        compressed = self.config.repodata_dir() / "filelist.sqlite.xz"
        if not filelists.exists() and compressed.exists():
            decompress_xz(compressed, filelists)
            self._log(f"  Unpacked {filelists}")

        return primary

    def _local_name(self, href: str) -> str:
        for suffix, local_name in REPODATA_FILES.items():
            if href.endswith(suffix):
                return local_name
        return ""

    def bundle_archive_url(self) -> str:
        return f"{self.config.bundles_url.rstrip('/')}/archive/{self.config.require_version()}.tar.gz"

    def fetch_bundle_archive(self) -> Path:
        """Download the clr-bundles archive of the release."""
        try:
            return self.downloader.download(
                self.bundle_archive_url(),
                self.config.bundle_archive_path(),
            )
        except NotFoundError as e:
            raise NotFoundError(str(self.config.version), "bundle release") from e

    def load_bundles(self) -> BundleStore:
        """Download if needed and load the release bundles."""
        return BundleStore.from_archive(self.fetch_bundle_archive())

    def open_requirements(self, download: bool = True, filelists: bool = False) -> RequirementIndex:
        """Open the release package database.

        Args:
            download: Fetch the repodata first when it is not cached.
            filelists: Also attach the file list database.
        """
        primary = self.config.primary_db_path()
        filelists_path = self.config.filelists_db_path() if filelists else None
        missing = not primary.exists() or (filelists_path is not None and not filelists_path.exists())
        if download and missing:
            self.download_repo()
        return RequirementIndex.open(primary, filelists_path)

    def image_config_url(self, image_name: str) -> str:
        return f"{self.config.release_url()}/config/image/{image_name}-config.json"

    def image_bundles(self, image_name: str) -> list[str]:
        """Get the bundles listed by an image configuration.

        Raises:
            NotFoundError: If the image does not exist for the release.
            DataUnavailableError: If the configuration is malformed.
        """
        try:
            content = self.downloader.fetch(self.image_config_url(image_name))
        except NotFoundError as e:
            raise NotFoundError(image_name, "image") from e

        try:
            config = json.loads(content)
        except json.JSONDecodeError as e:
            raise DataUnavailableError(f"Invalid image config for {image_name}: {e}") from e

        bundles = config.get("Bundles") if isinstance(config, dict) else None
        if not isinstance(bundles, list):
            raise DataUnavailableError(f"Image config for {image_name} has no Bundles list")
        return [str(b) for b in bundles]
