#!/usr/bin/env python3
"""
Generic worklist closure shared by the dependency backends.

A backend only has to say which nodes follow a given node; the traversal,
cycle handling and result accumulation live here.
"""

from typing import Callable, Iterable


def walk(seeds: Iterable[str], successors: Callable[[str], Iterable[str]]) -> set[str]:
    """Collect every node reachable in one or more steps from the seeds.

    Args:
        seeds: Starting nodes. They are expanded but only appear in the
            result when some node leads back to them.
        successors: Function returning the direct successors of a node.

    Returns:
        Set of reached nodes.
    """
    visited = set(seeds)
    stack = list(visited)
    reached: set[str] = set()

    while stack:
        node = stack.pop()
        for succ in successors(node):
            reached.add(succ)
            if succ not in visited:
                visited.add(succ)
                stack.append(succ)

    return reached


class ClosureBackend:
    """Base class for graphs that can be closed over from a seed."""

    def successors(self, node: str) -> Iterable[str]:
        """Return the direct successors of a node."""
        raise NotImplementedError

    def __contains__(self, name: object) -> bool:
        raise NotImplementedError

    def closure(self, seed: str) -> set[str]:
        """Return the transitive closure of a single seed.

        Args:
            seed: Starting node.

        Returns:
            Every node reached from the seed, excluding the seed itself
            unless it is part of a cycle.
        """
        return walk([seed], self.successors)

    def closure_all(self, seeds: Iterable[str]) -> set[str]:
        """Return the union of the closures of all seeds.

        Args:
            seeds: Starting nodes.

        Returns:
            Union of ``closure(seed)`` over the seeds.
        """
        return walk(seeds, self.successors)
