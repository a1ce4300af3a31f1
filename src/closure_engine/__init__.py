"""Dependency closure engine for bundle and package resolution."""

from .bundles import Bundle, BundleStore, parse_bundle
from .errors import ChecksumError, DataUnavailableError, DissectorError, NotFoundError
from .relation_graph import RelationGraph, parse_dot
from .requirements import RequirementIndex
from .resolver import ClosureResolver, Mode

__all__ = [
    "Bundle",
    "BundleStore",
    "ChecksumError",
    "ClosureResolver",
    "DataUnavailableError",
    "DissectorError",
    "Mode",
    "NotFoundError",
    "RelationGraph",
    "RequirementIndex",
    "parse_bundle",
    "parse_dot",
]
