"""Chokepoint classification by sampled path betweenness."""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from netdefender.model.graph import Graph, Path

logger = logging.getLogger(__name__)

DEFAULT_SAMPLES = 50
DEFAULT_THRESHOLD = 0.4
DEFAULT_MIN_DEGREE = 3


def randomized_bfs(graph: Graph, start: int, goal: int, rng: random.Random) -> Path:
    """Breadth-first path from start to goal with neighbour order shuffled per node.

    Returns ``[]`` when the goal is unreachable.
    """
    if start == goal:
        return [start]
    previous: dict[int, int] = {}
    visited = {start}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        if current == goal:
            break
        neighbors = list(graph.network.adj[current])
        rng.shuffle(neighbors)
        for neighbor in neighbors:
            if neighbor not in visited:
                visited.add(neighbor)
                previous[neighbor] = current
                queue.append(neighbor)

    if goal not in previous:
        return []
    path = [goal]
    while path[-1] != start:
        path.append(previous[path[-1]])
    path.reverse()
    return path


def betweenness_scores(
    graph: Graph,
    sources: Iterable[int],
    goals: Iterable[int],
    sample_count: int = DEFAULT_SAMPLES,
    rng: random.Random | None = None,
) -> dict[int, int]:
    """Count how often each node lies inside a sampled source-to-goal path.

    Endpoints of each sampled path are not counted.
    """
    rng = rng if rng is not None else random.Random()
    source_list = sorted(sources)
    goal_list = sorted(goals)
    scores = dict.fromkeys(graph.node_ids, 0)
    for _ in range(sample_count):
        for source in source_list:
            for goal in goal_list:
                path = randomized_bfs(graph, source, goal, rng)
                for node_id in path:
                    if node_id != source and node_id != goal:
                        scores[node_id] += 1
    return scores


def classify_chokepoints(
    graph: Graph,
    sources: Iterable[int] | None = None,
    goals: Iterable[int] | None = None,
    sample_count: int = DEFAULT_SAMPLES,
    rng: random.Random | None = None,
    threshold: float = DEFAULT_THRESHOLD,
    min_degree: int = DEFAULT_MIN_DEGREE,
) -> frozenset[int]:
    """Classify high-traffic junctions as chokepoints.

    A node qualifies when its visit count normalized by the maximum count is
    strictly above ``threshold`` and it has at least ``min_degree`` distinct
    neighbours. This is an empirical approximation of betweenness centrality,
    resampled rather than computed exactly.

    Args:
        graph: Graph to analyse.
        sources: Source ids (defaults to ``graph.sources``).
        goals: Goal ids (defaults to ``graph.goals``).
        sample_count: Number of randomized BFS rounds.
        rng: Random source; a seeded one makes the result deterministic.
        threshold: Normalized score a node must exceed.
        min_degree: Minimum degree of a chokepoint.

    Returns:
        Chokepoint node ids (empty when no source reaches any goal).
    """
    sources = graph.sources if sources is None else sources
    goals = graph.goals if goals is None else goals
    scores = betweenness_scores(graph, sources, goals, sample_count, rng)
    max_score = max(scores.values(), default=0)
    if max_score == 0:
        return frozenset()

    chokepoints = frozenset(
        node_id
        for node_id, score in scores.items()
        if score / max_score > threshold and graph.degree(node_id) >= min_degree
    )
    logger.debug(
        "Classified %d chokepoints in '%s' from %d samples",
        len(chokepoints),
        graph.name,
        sample_count,
    )
    return chokepoints
