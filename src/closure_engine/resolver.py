#!/usr/bin/env python3
"""
Closure resolver: expands bundle and package roots into a package set.

Bundles are always expanded first. The resulting seed packages are then
closed over with the backend selected by the resolution mode.
"""

from enum import Enum
from typing import Iterable

from .bundles import BundleStore
from .errors import DataUnavailableError, NotFoundError
from .relation_graph import RelationGraph, quote, unquote
from .requirements import RequirementIndex


class Mode(str, Enum):
    """Backend used to expand seed packages."""
    BUNDLES = "bundles"            # bundle contents only, no dependency expansion
    REQUIREMENTS = "requirements"  # provides/requires database
    RELATIONS = "relations"        # external dependency graph
    ALL = "all"                    # every package of every bundle


class ClosureResolver:
    """Resolve roots to the full package closure."""

    def __init__(
        self,
        bundles: BundleStore,
        requirements: RequirementIndex | None = None,
        graph: RelationGraph | None = None,
    ):
        """Initialize the resolver.

        Args:
            bundles: Bundle definitions of the release.
            requirements: Requirement index, needed for REQUIREMENTS mode.
            graph: Dependency graph, needed for RELATIONS mode.
        """
        self.bundles = bundles
        self.requirements = requirements
        self.graph = graph

    def seed_packages(self, roots: Iterable[str], mode: Mode = Mode.BUNDLES) -> set[str]:
        """Expand bundle roots and pass package roots through.

        Args:
            roots: Bundle or package names.
            mode: Resolution mode, used to validate package roots.

        Returns:
            Set of seed package names.

        Raises:
            NotFoundError: If a package root is unknown to the backend.
        """
        seeds: set[str] = set()
        for root in roots:
            if root in self.bundles:
                seeds.update(self.bundles.resolve([root]))
            else:
                self._check_package(root, mode)
                seeds.add(root)
        return seeds

    def _check_package(self, name: str, mode: Mode) -> None:
        if mode == Mode.REQUIREMENTS:
            if name not in self._requirement_index():
                raise NotFoundError(name)
        elif mode == Mode.RELATIONS:
            if quote(name) not in self._relation_graph():
                raise NotFoundError(name)

    def _requirement_index(self) -> RequirementIndex:
        if self.requirements is None:
            raise DataUnavailableError("No package database loaded for requirement resolution")
        return self.requirements

    def _relation_graph(self) -> RelationGraph:
        if self.graph is None:
            raise DataUnavailableError("No dependency graph loaded for relation resolution")
        return self.graph

    def expand(self, seeds: set[str], mode: Mode) -> set[str]:
        """Expand seed packages with the backend for ``mode``.

        Returns:
            Packages reached from the seeds, without the seeds themselves
            unless they were reached again.
        """
        if mode == Mode.REQUIREMENTS:
            return self._requirement_index().closure_all(seeds)

        if mode == Mode.RELATIONS:
            graph = self._relation_graph()
            nodes = graph.closure_all(quote(seed) for seed in seeds)
            return {unquote(node) for node in nodes}

        return set()

    def resolve(self, roots: Iterable[str], mode: Mode = Mode.REQUIREMENTS) -> set[str]:
        """Resolve roots to their full package closure.

        Args:
            roots: Bundle or package names.
            mode: Backend used for dependency expansion.

        Returns:
            Seed packages plus everything they pull in. In ALL mode, every
            package listed by any bundle.

        Raises:
            NotFoundError: If a root is neither a bundle nor a known package.
            DataUnavailableError: If the backing data for ``mode`` is missing
                or unreadable.
        """
        mode = Mode(mode)
        if mode == Mode.ALL:
            return self.bundles.all_packages()

        seeds = self.seed_packages(roots, mode)
        return seeds | self.expand(seeds, mode)

    def source_rpms(self, roots: Iterable[str], mode: Mode = Mode.REQUIREMENTS) -> set[str]:
        """Resolve roots and map the closure to source RPM file names."""
        packages = self.resolve(roots, mode)
        return self._requirement_index().source_rpms(packages)
