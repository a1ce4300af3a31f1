#!/usr/bin/env python3
"""
Dependency graph loaded from a Graphviz DOT description.

Edges in these graphs do not point at packages directly. The destination of
an edge is a relation key (a subgraph name) and the members of that subgraph
are the packages that can satisfy the dependency. Every member is kept.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import pydot
import pyparsing

from .errors import DataUnavailableError
from .walk import ClosureBackend

# Default attribute statements that pydot reports as nodes
DEFAULT_STATEMENTS = {"node", "edge", "graph"}


def quote(name: str) -> str:
    """Wrap a package name into the quoted node id form used in graphs."""
    return f'"{name}"'


def unquote(node: str) -> str:
    """Strip the surrounding quotes of a node id."""
    if len(node) >= 2 and node[0] == '"' and node[-1] == '"':
        return node[1:-1]
    return node


def _node_id(point) -> str:
    """Get the node id of an edge endpoint without its port."""
    if not isinstance(point, str):
        raise DataUnavailableError("Subgraph edge endpoints are not supported")
    if point.startswith('"'):
        return point[:point.rindex('"') + 1]
    return point.partition(":")[0]


@dataclass
class GraphData:
    """Parsed contents of a dependency graph."""
    name: str = ""
    nodes: dict[str, None] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    relations: dict[str, set[str]] = field(default_factory=dict)


def _collect(graph: pydot.Graph, data: GraphData) -> set[str]:
    """Add the statements of a graph or subgraph to ``data``.

    Returns:
        Ids of the direct children of ``graph``: its nodes, the endpoints
        of its edges and the names of its named subgraphs.
    """
    children: set[str] = set()

    for node in graph.get_nodes():
        name = _node_id(node.get_name())
        if name not in DEFAULT_STATEMENTS:
            data.nodes[name] = None
            children.add(name)

    for edge in graph.get_edges():
        src = _node_id(edge.get_source())
        dst = _node_id(edge.get_destination())
        data.nodes.setdefault(src, None)
        data.nodes.setdefault(dst, None)
        data.edges.setdefault(src, []).append(dst)
        children.update((src, dst))

    for subgraph in graph.get_subgraphs():
        members = _collect(subgraph, data)
        key = subgraph.get_name()
        if key:
            data.relations.setdefault(key, set()).update(members)
            children.add(key)
        else:
            # anonymous blocks belong to their parent
            children.update(members)

    return children


def parse_dot(text: str) -> GraphData:
    """Parse a DOT dependency graph.

    Named subgraphs form the relation table. A relation holds the direct
    children of its subgraph, including the names of nested subgraphs.

    Args:
        text: Graph description.

    Returns:
        Parsed graph data with node ids kept exactly as written.

    Raises:
        DataUnavailableError: If the description is malformed.
    """
    try:
        graphs = pydot.graph_from_dot_data(text)
    except (pyparsing.ParseBaseException, ValueError) as e:
        raise DataUnavailableError(f"Invalid dependency graph: {e}") from e
    if not graphs:
        raise DataUnavailableError("Invalid dependency graph: no graph found")

    graph = graphs[0]
    data = GraphData(name=graph.get_name())
    _collect(graph, data)
    return data


class RelationGraph(ClosureBackend):
    """Directed graph whose edges resolve through a relation table."""

    def __init__(
        self,
        edges: dict[str, list[str]],
        relations: dict[str, set[str]],
        nodes: Iterable[str] = (),
    ):
        """Initialize the graph.

        Args:
            edges: Mapping of source node id to destination relation keys.
            relations: Mapping of relation key to member node ids.
            nodes: All node ids. Edge sources and relation members are
                added automatically.
        """
        self.edges = {src: list(dsts) for src, dsts in edges.items()}
        self.relations = {key: set(members) for key, members in relations.items()}

        self.nodes: dict[str, None] = dict.fromkeys(nodes)
        for src, dsts in self.edges.items():
            self.nodes[src] = None
            for dst in dsts:
                self.nodes[dst] = None
        for members in self.relations.values():
            for member in members:
                self.nodes[member] = None

    @classmethod
    def from_dot(cls, text: str) -> "RelationGraph":
        """Build a graph from DOT text."""
        data = parse_dot(text)
        return cls(data.edges, data.relations, data.nodes)

    @classmethod
    def from_file(cls, path: str | Path) -> "RelationGraph":
        """Load a graph from a DOT file.

        Raises:
            DataUnavailableError: If the file is missing, unreadable or
                malformed.
        """
        graph_path = Path(path)
        try:
            text = graph_path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            raise DataUnavailableError(f"Cannot read dependency graph {graph_path}: {e}") from e
        return cls.from_dot(text)

    def __contains__(self, node: object) -> bool:
        return node in self.nodes

    def successors(self, node: str) -> set[str]:
        """Get the members of every relation targeted by the node's edges."""
        members: set[str] = set()
        for key in self.edges.get(node, ()):
            members.update(self.relations.get(key, ()))
        return members

    def node_names(self) -> list[str]:
        """Get every node id with its quotes stripped."""
        return [unquote(node) for node in self.nodes]
