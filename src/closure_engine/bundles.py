#!/usr/bin/env python3
"""
Bundle definitions and bundle-to-package resolution.

A bundle is a curated list of package names. Lines of the form
``include(other)`` pull in the packages of another bundle.
"""

import re
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from .errors import DataUnavailableError, NotFoundError

INCLUDE_RE = re.compile(r"include\((.*)\)")
ARCHIVE_MEMBER_RE = re.compile(r"clr-bundles-[1-9].*/bundles/(.*)")


@dataclass(frozen=True)
class Bundle:
    """A parsed bundle definition."""
    name: str
    packages: tuple[str, ...] = ()
    includes: tuple[str, ...] = ()


def parse_bundle(name: str, text: str) -> Bundle:
    """Parse the text of a bundle definition.

    Args:
        name: Bundle name.
        text: Definition contents.

    Returns:
        Bundle with packages and includes in file order, duplicates dropped.
    """
    packages: dict[str, None] = {}
    includes: dict[str, None] = {}

    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue

        match = INCLUDE_RE.fullmatch(line)
        if match:
            includes[match.group(1).strip()] = None
        else:
            packages[line] = None

    return Bundle(name=name, packages=tuple(packages), includes=tuple(includes))


def bundle_name_from_member(member_name: str) -> str:
    """Get the bundle name from a release archive member path.

    Returns:
        Bundle name, or an empty string if the member is not a bundle file.
    """
    match = ARCHIVE_MEMBER_RE.search(member_name)
    if not match:
        return ""
    return match.group(1)


class BundleStore:
    """Bundle definitions for one distribution release."""

    def __init__(self, bundles: Iterable[Bundle]):
        self._bundles: dict[str, Bundle] = {b.name: b for b in bundles}
        self._included: set[str] = set()
        for bundle in self._bundles.values():
            self._included.update(bundle.includes)

    @classmethod
    def from_texts(cls, texts: Mapping[str, str]) -> "BundleStore":
        """Build a store from a mapping of bundle name to definition text."""
        return cls(parse_bundle(name, text) for name, text in texts.items())

    @classmethod
    def from_directory(cls, directory: str | Path) -> "BundleStore":
        """Load every file in a directory as a bundle definition.

        Args:
            directory: Directory such as a checkout's ``bundles/``.

        Returns:
            Loaded store.
        """
        path = Path(directory)
        if not path.is_dir():
            raise DataUnavailableError(f"Bundle directory not found: {path}")

        try:
            return cls(
                parse_bundle(f.name, f.read_text())
                for f in sorted(path.iterdir())
                if f.is_file() and not f.name.startswith(".")
            )
        except (OSError, UnicodeDecodeError) as e:
            raise DataUnavailableError(f"Failed to read bundles from {path}: {e}") from e

    @classmethod
    def from_archive(cls, archive_path: str | Path) -> "BundleStore":
        """Load bundles from a clr-bundles release tarball.

        Args:
            archive_path: Path to the ``.tar.gz`` release archive.

        Returns:
            Loaded store.
        """
        path = Path(archive_path)
        if not path.exists():
            raise DataUnavailableError(f"Bundle archive not found: {path}")

        bundles = []
        try:
            with tarfile.open(path, "r:*") as tar:
                for member in tar:
                    if not member.isfile():
                        continue
                    name = bundle_name_from_member(member.name)
                    if not name:
                        continue
                    f = tar.extractfile(member)
                    if f is None:
                        continue
                    with f:
                        bundles.append(parse_bundle(name, f.read().decode("utf-8")))
        except (tarfile.TarError, OSError, EOFError, UnicodeDecodeError) as e:
            raise DataUnavailableError(f"Corrupt bundle archive {path}: {e}") from e

        return cls(bundles)

    def __contains__(self, name: object) -> bool:
        return name in self._bundles or name in self._included

    def __len__(self) -> int:
        return len(self._bundles)

    def names(self) -> list[str]:
        """Get sorted names of all defined bundles."""
        return sorted(self._bundles)

    def get(self, name: str) -> Bundle:
        """Get a bundle by name.

        Names that are only referenced through ``include(...)`` resolve to
        an empty bundle.
        """
        if name in self._bundles:
            return self._bundles[name]
        if name in self._included:
            return Bundle(name=name)
        raise NotFoundError(name, "bundle")

    def packages_of(self, name: str) -> set[str]:
        """Get the packages of a bundle and of the bundles it includes.

        Only one level of includes is expanded.
        """
        bundle = self.get(name)
        packages = set(bundle.packages)
        for included in bundle.includes:
            # Includes of an included bundle are not followed.
            if included in self._bundles:
                packages.update(self._bundles[included].packages)
        return packages

    def resolve(self, names: Iterable[str]) -> set[str]:
        """Resolve bundle names to the set of packages they list.

        Args:
            names: Bundle names.

        Returns:
            Union of the packages of each bundle.

        Raises:
            NotFoundError: If a name is not a known bundle.
        """
        packages: set[str] = set()
        for name in names:
            packages.update(self.packages_of(name))
        return packages

    def all_packages(self) -> set[str]:
        """Get every package listed by any bundle."""
        packages: set[str] = set()
        for bundle in self._bundles.values():
            packages.update(bundle.packages)
        return packages
