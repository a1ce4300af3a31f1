#!/usr/bin/env python3
"""
Requirement index over a repodata primary.sqlite database.

Expands packages through their requires/provides relations. A package's
dependencies are every package that provides any name it requires. A
filelists.sqlite database can be attached to look up shipped files.
"""

import sqlite3
from pathlib import Path
from typing import Iterable

from .errors import DataUnavailableError, NotFoundError
from .walk import ClosureBackend

REQUIRED_TABLES = ("packages", "requires", "provides")

TABLES_QUERY = "SELECT name FROM sqlite_master WHERE type='table'"

REQUIRES_QUERY = """
    SELECT DISTINCT requires.name
    FROM packages
    JOIN requires ON packages.pkgKey = requires.pkgKey
    WHERE packages.name = ?
"""

PROVIDERS_QUERY = """
    SELECT DISTINCT packages.name
    FROM packages
    JOIN provides ON packages.pkgKey = provides.pkgKey
    WHERE provides.name = ?
"""

PACKAGE_KEY_QUERY = "SELECT pkgKey FROM packages WHERE name = ? ORDER BY pkgKey LIMIT 1"
PACKAGE_EXISTS_QUERY = "SELECT 1 FROM packages WHERE name = ? LIMIT 1"
PACKAGE_NAMES_QUERY = "SELECT DISTINCT name FROM packages ORDER BY name"
SOURCE_RPM_QUERY = "SELECT rpm_sourcerpm FROM packages WHERE name = ? LIMIT 1"
SOURCE_RPM_MAP_QUERY = "SELECT name, rpm_sourcerpm FROM packages"

# filelists.sqlite is attached as schema "filelists" and joined on pkgId,
# since its pkgKey values differ from primary.sqlite.
FILELIST_TABLES = ("packages", "filelist")
FILELIST_TABLES_QUERY = "SELECT name FROM filelists.sqlite_master WHERE type='table'"
ATTACH_FILELISTS_QUERY = "ATTACH DATABASE ? AS filelists"
DETACH_FILELISTS_QUERY = "DETACH DATABASE filelists"

FILES_QUERY = """
    SELECT f.dirname, f.filenames
    FROM main.packages AS p
    JOIN filelists.packages AS fp ON fp.pkgId = p.pkgId
    JOIN filelists.filelist AS f ON f.pkgKey = fp.pkgKey
    WHERE p.pkgKey = ?
"""

OWNERS_QUERY = """
    SELECT DISTINCT p.name, f.filenames
    FROM filelists.filelist AS f
    JOIN filelists.packages AS fp ON fp.pkgKey = f.pkgKey
    JOIN main.packages AS p ON p.pkgId = fp.pkgId
    WHERE f.dirname = ?
"""


def _read_only_uri(path: Path) -> str:
    return f"{path.resolve().as_uri()}?mode=ro"


class RequirementIndex(ClosureBackend):
    """Provides/requires graph backed by a repodata sqlite database."""

    def __init__(self, connection: sqlite3.Connection):
        """Initialize the index.

        Args:
            connection: Open connection to a primary repodata database.

        Raises:
            DataUnavailableError: If the database lacks the expected tables.
        """
        self.connection = connection
        self.has_filelists = False
        self._providers: dict[str, list[str]] = {}
        self._check_tables(TABLES_QUERY, REQUIRED_TABLES, "Package database")

    @classmethod
    def open(
        cls,
        db_path: str | Path,
        filelists_path: str | Path | None = None,
    ) -> "RequirementIndex":
        """Open a primary.sqlite file read-only.

        Args:
            db_path: Path to the database.
            filelists_path: Optional filelists.sqlite to attach for file
                lookups.

        Returns:
            Index over the database.
        """
        path = Path(db_path)
        if not path.is_file():
            raise DataUnavailableError(f"Missing DB: {path}")

        try:
            connection = sqlite3.connect(_read_only_uri(path), uri=True)
        except sqlite3.Error as e:
            raise DataUnavailableError(f"Cannot open {path}: {e}") from e

        try:
            index = cls(connection)
            if filelists_path is not None:
                index.attach_filelists(filelists_path)
            return index
        except DataUnavailableError:
            connection.close()
            raise

    def attach_filelists(self, db_path: str | Path) -> None:
        """Attach a filelists.sqlite database read-only.

        Raises:
            DataUnavailableError: If the file is missing or lacks the
                expected tables.
        """
        path = Path(db_path)
        if not path.is_file():
            raise DataUnavailableError(f"Missing DB: {path}")

        self._query(ATTACH_FILELISTS_QUERY, (_read_only_uri(path),))
        try:
            self._check_tables(FILELIST_TABLES_QUERY, FILELIST_TABLES, "File list database")
        except DataUnavailableError:
            self._query(DETACH_FILELISTS_QUERY)
            raise
        self.has_filelists = True

    def __enter__(self) -> "RequirementIndex":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying connection."""
        self.connection.close()

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        try:
            return self.connection.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise DataUnavailableError(f"Package database query failed: {e}") from e

    def _check_tables(self, query: str, required: tuple[str, ...], label: str) -> None:
        tables = {row[0] for row in self._query(query)}
        missing = [t for t in required if t not in tables]
        if missing:
            raise DataUnavailableError(f"{label} is missing tables: {', '.join(missing)}")

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        return bool(self._query(PACKAGE_EXISTS_QUERY, (name,)))

    def requirements_of(self, name: str) -> list[str]:
        """Get the requirement names declared by a package."""
        return [row[0] for row in self._query(REQUIRES_QUERY, (name,))]

    def providers_of(self, requirement: str) -> list[str]:
        """Get the packages that provide a requirement name.

        An empty list means the requirement cannot be satisfied; callers
        skip it.
        """
        if requirement not in self._providers:
            self._providers[requirement] = [
                row[0] for row in self._query(PROVIDERS_QUERY, (requirement,))
            ]
        return self._providers[requirement]

    def successors(self, node: str) -> set[str]:
        """Get every package providing a name required by ``node``."""
        candidates: set[str] = set()
        for requirement in self.requirements_of(node):
            candidates.update(self.providers_of(requirement))
        return candidates

    def package_names(self) -> list[str]:
        """Get sorted names of all packages in the database."""
        return [row[0] for row in self._query(PACKAGE_NAMES_QUERY)]

    def package_key(self, name: str) -> int:
        """Get the database key of a package.

        Raises:
            NotFoundError: If the package is not in the database.
        """
        rows = self._query(PACKAGE_KEY_QUERY, (name,))
        if not rows:
            raise NotFoundError(name, "package")
        return rows[0][0]

    def source_rpm(self, name: str) -> str:
        """Get the source RPM a binary package was built from.

        Raises:
            NotFoundError: If the package is not in the database or has no
                source RPM recorded.
        """
        rows = self._query(SOURCE_RPM_QUERY, (name,))
        if not rows or not rows[0][0]:
            raise NotFoundError(name, "source mapping for package")
        return rows[0][0]

    def source_rpm_map(self) -> dict[str, str]:
        """Get a mapping of binary package name to source RPM file name."""
        return {
            name: srpm
            for name, srpm in self._query(SOURCE_RPM_MAP_QUERY)
            if srpm
        }

    def source_rpms(self, names: Iterable[str]) -> set[str]:
        """Get the distinct source RPMs for a set of packages.

        Packages without a recorded source RPM are skipped.
        """
        srpm_map = self.source_rpm_map()
        return {srpm_map[name] for name in names if name in srpm_map}

    def files_of(self, name: str) -> list[str]:
        """Get the paths of every file shipped by a package.

        Raises:
            NotFoundError: If the package is not in the database.
            DataUnavailableError: If no file list database is attached.
        """
        self._require_filelists()
        key = self.package_key(name)

        files = []
        for dirname, filenames in self._query(FILES_QUERY, (key,)):
            for filename in filenames.split("/"):
                if filename:
                    files.append(f"{dirname.rstrip('/')}/{filename}")
        return sorted(files)

    def packages_owning(self, path: str) -> list[str]:
        """Get the sorted names of packages that ship a file path.

        Raises:
            DataUnavailableError: If no file list database is attached.
        """
        self._require_filelists()
        dirname, _, filename = path.rstrip("/").rpartition("/")
        if not filename:
            return []

        return sorted({
            name
            for name, filenames in self._query(OWNERS_QUERY, (dirname or "/",))
            if filename in filenames.split("/")
        })

    def _require_filelists(self) -> None:
        if not self.has_filelists:
            raise DataUnavailableError("No file list database loaded for file lookups")
