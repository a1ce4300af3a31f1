"""Release metadata loaders and command line tools."""

from .config import DissectorConfig, load_config
from .downloader import DownloadResult, FileDownloader
from .repodata import RepoFetcher
from .sources import SourceFetcher

__all__ = [
    "DissectorConfig",
    "DownloadResult",
    "FileDownloader",
    "RepoFetcher",
    "SourceFetcher",
    "load_config",
]
