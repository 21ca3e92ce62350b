"""A* path planning over a Graph, spawn path computation and capped path enumeration."""

from __future__ import annotations

import itertools
import logging
import random
from typing import TYPE_CHECKING, Any

import networkx as nx

if TYPE_CHECKING:
    from netdefender.model.graph import Graph, Path

logger = logging.getLogger(__name__)

JITTER = 0.2  # maximum relative edge-cost perturbation


def find_path(
    graph: Graph,
    start: int,
    goal: int,
    jitter: bool = False,
    rng: random.Random | None = None,
    jitter_amount: float = JITTER,
) -> Path:
    """Find a shortest path with A*.

    Edge cost and heuristic are both Euclidean distance. With ``jitter`` each
    relaxed edge cost is multiplied by ``1 + U(-jitter_amount, jitter_amount)``
    so repeated calls spread packets over near-equal routes.

    Ties on f-score go to the entry pushed first.

    Args:
        graph: Graph to search.
        start: Start node id.
        goal: Goal node id.
        jitter: Perturb edge costs for path diversity.
        rng: Random source for jitter (a fresh Random if omitted).
        jitter_amount: Maximum relative perturbation.

    Returns:
        Node ids from start to goal inclusive, ``[start]`` when start == goal,
        or ``[]`` when the goal is unreachable or either id is unknown.
    """
    if start not in graph or goal not in graph:
        return []
    if start == goal:
        return [start]
    if jitter and rng is None:
        rng = random.Random()

    def edge_cost(u: int, v: int, data: dict[str, Any]) -> float:
        if jitter:
            return data["length"] * (1 + rng.uniform(-jitter_amount, jitter_amount))
        return data["length"]

    try:
        return nx.astar_path(graph.network, start, goal, heuristic=graph.distance, weight=edge_cost)
    except nx.NetworkXNoPath:
        return []


def compute_spawn_paths(
    graph: Graph,
    jitter: bool = True,
    rng: random.Random | None = None,
    jitter_amount: float = JITTER,
) -> list[Path]:
    """One planned path per (source, goal) pair, skipping unreachable pairs.

    Sources and goals are visited in ascending id order so path indices are
    stable for a given graph and seed.
    """
    paths: list[Path] = []
    for source in sorted(graph.sources):
        for goal in sorted(graph.goals):
            path = find_path(graph, source, goal, jitter=jitter, rng=rng, jitter_amount=jitter_amount)
            if path:
                paths.append(path)
    logger.debug("Computed %d spawn paths for '%s'", len(paths), graph.name)
    return paths


def enumerate_simple_paths(
    graph: Graph,
    start: int,
    goal: int,
    max_paths: int = 64,
    max_depth: int | None = None,
) -> list[Path]:
    """Enumerate simple paths from start to goal, fewest hops first.

    Stops after ``max_paths`` paths. Paths longer than ``max_depth`` edges are
    dropped. Dense generated graphs can have exponentially many simple paths,
    so the caps are always in force.
    """
    if start not in graph or goal not in graph or max_paths <= 0:
        return []
    if start == goal:
        return [[start]]

    candidates = nx.shortest_simple_paths(graph.network, start, goal)
    if max_depth is not None:
        candidates = itertools.takewhile(lambda p: len(p) - 1 <= max_depth, candidates)
    try:
        found = list(itertools.islice(candidates, max_paths))
    except nx.NetworkXNoPath:
        return []

    if len(found) >= max_paths:
        logger.debug("Simple path enumeration capped at %d paths", max_paths)
    return found
