#!/usr/bin/env python3
"""
HTTP downloader with retry and checksum verification.

Files are written to a temporary name and only renamed into place once the
transfer completed and the checksum matched.
"""

import hashlib
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import requests

from closure_engine.errors import ChecksumError, DataUnavailableError, NotFoundError

CHUNK_SIZE = 1 << 16


@dataclass
class DownloadResult:
    """Result of a single file download."""
    name: str
    success: bool
    local_path: Path | None
    sha256: str | None
    error: str | None


class FileDownloader:
    """Fetch files over HTTP."""

    def __init__(
        self,
        retries: int = 3,
        timeout: int = 60,
        backoff: float = 1.0,
        verbose: bool = True,
        session: requests.Session | None = None,
    ):
        """Initialize the downloader.

        Args:
            retries: Extra attempts after a failed request.
            timeout: Per-request timeout in seconds.
            backoff: Base delay between attempts, doubled each retry.
            verbose: Print progress messages to stderr.
            session: Session to reuse. A new one is created by default.
        """
        self.retries = retries
        self.timeout = timeout
        self.backoff = backoff
        self.verbose = verbose
        self.session = session or requests.Session()

    def _log(self, message: str) -> None:
        if self.verbose:
            timestamp = datetime.now(timezone.utc).isoformat()
            print(f"[{timestamp}] {message}", file=sys.stderr)

    def _get(self, url: str, stream: bool = False) -> requests.Response:
        """GET a URL, retrying transient failures.

        Raises:
            NotFoundError: If the server answers 404.
            DataUnavailableError: If every attempt failed.
        """
        last_error: Exception | None = None

        for attempt in range(self.retries + 1):
            if attempt:
                time.sleep(self.backoff * 2 ** (attempt - 1))
                self._log(f"Retrying ({attempt}/{self.retries}) {url}")
            try:
                response = self.session.get(url, stream=stream, timeout=self.timeout)
                if response.status_code == 404:
                    response.close()
                    raise NotFoundError(url, "resource")
                try:
                    response.raise_for_status()
                except requests.exceptions.HTTPError:
                    response.close()
                    raise
                return response
            except requests.exceptions.RequestException as e:
                last_error = e

        raise DataUnavailableError(f"Failed to fetch {url}: {last_error}")

    def fetch(self, url: str) -> bytes:
        """Fetch a URL into memory."""
        response = self._get(url)
        return response.content

    def download(self, url: str, target: str | Path, checksum: str | None = None) -> Path:
        """Download a URL to a file.

        Existing targets are kept as they are.

        Args:
            url: Source URL.
            target: Destination path.
            checksum: Expected sha256 hex digest, if known.

        Returns:
            Path to the downloaded file.

        Raises:
            ChecksumError: If the downloaded data does not match ``checksum``.
        """
        path, _ = self._download(url, target, checksum)
        return path

    def _download(
        self,
        url: str,
        target: str | Path,
        checksum: str | None = None,
    ) -> tuple[Path, str | None]:
        """Download a URL to a file and return its sha256 digest.

        The digest is None when the target already existed.
        """
        path = Path(target)
        if path.exists():
            return path, None

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".tmp")

        self._log(f"Downloading {path.name}")
        sha256 = hashlib.sha256()
        total = 0
        try:
            with self._get(url, stream=True) as response, open(tmp_path, "wb") as f:
                for chunk in response.iter_content(CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        sha256.update(chunk)
                        total += len(chunk)
        except requests.exceptions.RequestException as e:
            tmp_path.unlink(missing_ok=True)
            raise DataUnavailableError(f"Download of {url} interrupted: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        actual = sha256.hexdigest()
        if checksum and actual != checksum.lower():
            tmp_path.unlink(missing_ok=True)
            raise ChecksumError(str(path), checksum, actual)

        tmp_path.rename(path)
        self._log(f"  {path.name}: {total} bytes")
        return path, actual

    def download_many(
        self,
        downloads: dict[str, str],
        target_dir: str | Path,
        checksums: dict[str, str] | None = None,
    ) -> list[DownloadResult]:
        """Download several files into one directory.

        A failure is recorded in its result and does not stop the batch.

        Args:
            downloads: Mapping of file name to URL.
            target_dir: Destination directory.
            checksums: Optional mapping of file name to sha256 digest.

        Returns:
            One result per file, in file name order.
        """
        checksums = checksums or {}
        directory = Path(target_dir)
        results = []

        names = sorted(downloads)
        for i, name in enumerate(names, 1):
            self._log(f"({i}/{len(names)}) {name}")
            try:
                path, sha256 = self._download(downloads[name], directory / name, checksums.get(name))
                results.append(DownloadResult(
                    name=name,
                    success=True,
                    local_path=path,
                    sha256=sha256 or compute_sha256(path),
                    error=None,
                ))
            except (DataUnavailableError, NotFoundError) as e:
                results.append(DownloadResult(
                    name=name,
                    success=False,
                    local_path=None,
                    sha256=None,
                    error=str(e),
                ))

        return results


def compute_sha256(filepath: str | Path) -> str:
    """Compute the SHA256 hash of a file.

    Args:
        filepath: Path to file.

    Returns:
        Hex-encoded SHA256 hash.
    """
    sha256 = hashlib.sha256()
    with open(filepath, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def write_checksums_file(results: list[DownloadResult], output_path: str | Path) -> Path:
    """Write a SHA256SUMS file for successful downloads.

    Args:
        results: Download results.
        output_path: Output file path.

    Returns:
        Path to checksums file.
    """
    path = Path(output_path)
    lines = []
    for result in sorted(results, key=lambda r: r.name):
        if result.success and result.sha256 and result.local_path:
            lines.append(f"{result.sha256}  {result.local_path.name}")

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")

    return path
