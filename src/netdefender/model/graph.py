"""Graph model: nodes, undirected edges, and the source/goal/chokepoint sets."""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import networkx as nx

from netdefender.errors import TopologyError

Path = list[int]


class NodeKind(StrEnum):
    """Role of a node, derived from the owning graph's id sets."""

    SOURCE = "source"
    NORMAL = "normal"
    CHOKEPOINT = "chokepoint"
    GOAL = "goal"


@dataclass(frozen=True)
class Node:
    """A network node at a 2D position. Its kind is a property of the Graph."""

    id: int
    x: float
    y: float


@dataclass(frozen=True)
class Graph:
    """Immutable topology: nodes, bidirectional edges and role sets.

    An undirected ``networkx.Graph`` is built on construction and backs every
    traversal. Duplicate edges collapse into one neighbour entry and self
    edges are kept in ``edges`` but never traversed. Neighbour order follows
    first appearance in ``edges``.
    """

    nodes: tuple[Node, ...]
    edges: tuple[tuple[int, int], ...]
    sources: frozenset[int]
    goals: frozenset[int]
    chokepoints: frozenset[int] = frozenset()
    name: str = ""

    _by_id: dict[int, Node] = field(init=False, repr=False, compare=False)
    _nx: nx.Graph = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_id = {node.id: node for node in self.nodes}
        network = nx.Graph(name=self.name)
        network.add_nodes_from((node.id, {"pos": (node.x, node.y)}) for node in self.nodes)
        for a, b in self.edges:
            if a not in by_id or b not in by_id:
                raise TopologyError(f"Edge ({a}, {b}) references an unknown node")
            if a != b:
                na, nb = by_id[a], by_id[b]
                network.add_edge(a, b, length=math.hypot(nb.x - na.x, nb.y - na.y))

        for label, ids in (
            ("source", self.sources),
            ("goal", self.goals),
            ("chokepoint", self.chokepoints),
        ):
            missing = sorted(i for i in ids if i not in by_id)
            if missing:
                raise TopologyError(f"Unknown {label} node ids: {missing}")

        object.__setattr__(self, "_by_id", by_id)
        nx.freeze(network)
        object.__setattr__(self, "_nx", network)

    # -- Construction ----------------------------------------------------------

    @classmethod
    def build(
        cls,
        positions: Mapping[int, tuple[float, float]] | Iterable[tuple[float, float]],
        edges: Iterable[tuple[int, int] | list[int]],
        sources: Iterable[int],
        goals: Iterable[int],
        chokepoints: Iterable[int] = (),
        name: str = "",
    ) -> Graph:
        """Build a graph from plain positions and edge pairs.

        ``positions`` is either a mapping id -> (x, y) or a sequence whose
        index is the node id.
        """
        items = positions.items() if isinstance(positions, Mapping) else enumerate(positions)
        nodes = tuple(Node(int(i), float(x), float(y)) for i, (x, y) in items)
        return cls(
            nodes=nodes,
            edges=tuple((int(a), int(b)) for a, b in edges),
            sources=frozenset(sources),
            goals=frozenset(goals),
            chokepoints=frozenset(chokepoints),
            name=name,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Graph:
        """Load the serialized topology contract.

        Node ``kind``/``type`` hints are ignored: roles come from the id sets.

        Raises:
            TopologyError: If required keys are missing or ids are unknown.
        """
        try:
            positions = {int(n["id"]): (n["x"], n["y"]) for n in data["nodes"]}
            return cls.build(
                positions,
                data["edges"],
                data["sources"],
                data["goals"],
                data.get("chokepoints", ()),
                name=data.get("name", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, TopologyError):
                raise
            raise TopologyError(f"Malformed topology data: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Serialize to ``{name, nodes, edges, sources, goals, chokepoints}``."""
        return {
            "name": self.name,
            "nodes": [
                {"id": n.id, "x": n.x, "y": n.y, "kind": self.kind_of(n.id).value}
                for n in self.nodes
            ],
            "edges": [[a, b] for a, b in self.edges],
            "sources": sorted(self.sources),
            "goals": sorted(self.goals),
            "chokepoints": sorted(self.chokepoints),
        }

    def with_chokepoints(self, chokepoints: Iterable[int]) -> Graph:
        """Copy of this graph with a replaced chokepoint set."""
        return Graph(
            nodes=self.nodes,
            edges=self.edges,
            sources=self.sources,
            goals=self.goals,
            chokepoints=frozenset(chokepoints),
            name=self.name,
        )

    def translated(self, dx: float, dy: float) -> Graph:
        """Copy of this graph with every node shifted by (dx, dy)."""
        return Graph(
            nodes=tuple(Node(n.id, n.x + dx, n.y + dy) for n in self.nodes),
            edges=self.edges,
            sources=self.sources,
            goals=self.goals,
            chokepoints=self.chokepoints,
            name=self.name,
        )

    # -- Queries ---------------------------------------------------------------

    @property
    def node_ids(self) -> list[int]:
        return [n.id for n in self.nodes]

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._by_id

    def node(self, node_id: int) -> Node:
        return self._by_id[node_id]

    def position(self, node_id: int) -> tuple[float, float]:
        node = self._by_id[node_id]
        return node.x, node.y

    @property
    def network(self) -> nx.Graph:
        """Frozen networkx view; edges carry their Euclidean ``length``."""
        return self._nx

    def neighbors(self, node_id: int) -> tuple[int, ...]:
        if node_id not in self._nx:
            return ()
        return tuple(self._nx.adj[node_id])

    def degree(self, node_id: int) -> int:
        if node_id not in self._nx:
            return 0
        return self._nx.degree(node_id)

    def has_edge(self, a: int, b: int) -> bool:
        return self._nx.has_edge(a, b)

    def kind_of(self, node_id: int) -> NodeKind:
        """Role of a node. Precedence: source, goal, chokepoint, normal."""
        if node_id not in self._by_id:
            raise KeyError(node_id)
        if node_id in self.sources:
            return NodeKind.SOURCE
        if node_id in self.goals:
            return NodeKind.GOAL
        if node_id in self.chokepoints:
            return NodeKind.CHOKEPOINT
        return NodeKind.NORMAL

    def distance(self, a: int, b: int) -> float:
        na, nb = self._by_id[a], self._by_id[b]
        return math.hypot(nb.x - na.x, nb.y - na.y)

    def average_edge_length(self) -> float:
        lengths = [self.distance(a, b) for a, b in self.edges if a != b]
        if not lengths:
            return 0.0
        return sum(lengths) / len(lengths)

    def bounds(self) -> tuple[float, float, float, float]:
        """(min_x, min_y, max_x, max_y) over all nodes."""
        xs = [n.x for n in self.nodes]
        ys = [n.y for n in self.nodes]
        return min(xs), min(ys), max(xs), max(ys)

    def reachable_from(self, start: int) -> set[int]:
        return set(nx.node_connected_component(self._nx, start))

    def is_valid_path(self, path: Path) -> bool:
        """True if consecutive ids are joined by an edge."""
        if not path or any(node_id not in self._by_id for node_id in path):
            return False
        return all(self.has_edge(a, b) for a, b in zip(path, path[1:], strict=False))

    def validate(self) -> None:
        """Check the role sets and that every source reaches at least one goal.

        Raises:
            TopologyError: If the graph has no sources/goals or a source is cut off.
        """
        if not self.sources:
            raise TopologyError(f"Topology '{self.name}' has no source nodes")
        if not self.goals:
            raise TopologyError(f"Topology '{self.name}' has no goal nodes")
        for source in sorted(self.sources):
            if not any(nx.has_path(self._nx, source, goal) for goal in self.goals):
                raise TopologyError(
                    f"Topology '{self.name}': source {source} cannot reach any goal"
                )
