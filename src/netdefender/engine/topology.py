"""Procedural topology generation: layered meshes and parametrized grids.

Every random draw goes through one seeded linear congruential generator, so a
generated map can be rebuilt from the seed recorded on the generator.
Node roles are never trusted from generation: chokepoints are always
recomputed by the chokepoint analyzer on the finished graph.
"""

from __future__ import annotations

import logging
import random
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from netdefender.config import get_settings
from netdefender.engine.chokepoints import classify_chokepoints
from netdefender.errors import TopologyError
from netdefender.model.graph import Graph

if TYPE_CHECKING:
    from netdefender.config import EngineSettings

logger = logging.getLogger(__name__)


def derive_seed() -> int:
    """Seed from wall-clock microseconds plus a random salt."""
    return time.time_ns() // 1000 + secrets.randbelow(10_000_000)


class LinearCongruentialGenerator(random.Random):
    """random.Random driven by a 32-bit LCG (a=1664525, c=1013904223, m=2**32).

    All derived helpers (uniform, randint, choice, shuffle) draw from
    :meth:`random`, so the whole stream is reproducible from the seed.
    """

    MULTIPLIER = 1664525
    INCREMENT = 1013904223
    MODULUS = 2**32

    def __init__(self, seed: int | None = None) -> None:
        self._state = 0
        super().__init__(seed)

    def seed(self, a: int | None = None, version: int = 2) -> None:
        if a is None:
            a = derive_seed()
        self.initial_seed = int(a)
        self._state = self.initial_seed % self.MODULUS
        self.gauss_next = None

    def random(self) -> float:
        self._state = (self.MULTIPLIER * self._state + self.INCREMENT) % self.MODULUS
        return self._state / self.MODULUS

    def getstate(self) -> tuple[int, float | None]:
        return self._state, self.gauss_next

    def setstate(self, state: tuple[int, float | None]) -> None:
        self._state, self.gauss_next = state


class GridStyle(StrEnum):
    """Named grid presets chosen by the learning strategy."""

    DIRECT = "DIRECT"
    EVASIVE = "EVASIVE"
    SPREAD = "SPREAD"
    BALANCED = "BALANCED"


@dataclass(frozen=True)
class GridPreset:
    layers: int
    nodes_per_layer: int
    randomness: float


GRID_PRESETS: dict[GridStyle, GridPreset] = {
    GridStyle.DIRECT: GridPreset(layers=3, nodes_per_layer=2, randomness=0.1),
    GridStyle.EVASIVE: GridPreset(layers=5, nodes_per_layer=3, randomness=0.4),
    GridStyle.SPREAD: GridPreset(layers=4, nodes_per_layer=2, randomness=0.8),
    GridStyle.BALANCED: GridPreset(layers=4, nodes_per_layer=2, randomness=0.3),
}

_REASONING = {
    GridStyle.DIRECT: "Detected weakness to speed. Rushing core with direct paths.",
    GridStyle.SPREAD: "Firewall concentration detected. Spreading nodes to minimize AOE impact.",
    GridStyle.EVASIVE: "IDS heavy defense detected. Using evasive routing to delay detection.",
    GridStyle.BALANCED: "Balanced approach for general testing.",
}


def reasoning_for(style: GridStyle | str) -> str:
    """Human-readable rationale for choosing a grid style."""
    return _REASONING[GridStyle(style)]


class TopologyGenerator:
    """Builds new graphs procedurally.

    Example:
        >>> gen = TopologyGenerator(seed=42)
        >>> graph = gen.generate_layered_mesh()
        >>> TopologyGenerator(seed=42).generate_layered_mesh() == graph
        True
    """

    def __init__(self, seed: int | None = None, settings: EngineSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self.rng = LinearCongruentialGenerator(seed)
        self.seed = self.rng.initial_seed
        logger.debug("Topology generator seeded with %d", self.seed)

    def generate(
        self, policy: Literal["mesh", "grid"] = "mesh", style: GridStyle | str | None = None
    ) -> Graph:
        """Generate with the named policy (``style`` only applies to grids)."""
        if policy == "mesh":
            return self.generate_layered_mesh()
        if policy == "grid":
            return self.generate_grid(style or GridStyle.BALANCED)
        raise ValueError(f"Unknown generation policy: {policy}")

    def generate_layered_mesh(self) -> Graph:
        """Lanes of layered nodes between one source and one goal, meshed across lanes."""
        return self._with_retries(self._build_layered_mesh)

    def generate_grid(self, style: GridStyle | str) -> Graph:
        """Layered grid whose density and jitter follow the style preset."""
        grid_style = GridStyle(style)
        return self._with_retries(lambda: self._build_grid(grid_style))

    # -- Internals -------------------------------------------------------------

    def _with_retries(self, build: Callable[[], Graph]) -> Graph:
        attempts = self.settings.generation_attempts
        last_error: TopologyError | None = None
        for attempt in range(1, attempts + 1):
            try:
                graph = self._finalize(build())
            except TopologyError as e:
                last_error = e
                logger.warning("Generated topology rejected (attempt %d/%d): %s",
                               attempt, attempts, e)
                continue
            logger.info(
                "Generated topology '%s': %d nodes, %d edges, %d chokepoints (seed=%d)",
                graph.name,
                len(graph.nodes),
                len(graph.edges),
                len(graph.chokepoints),
                self.seed,
            )
            return graph
        raise TopologyError(f"No valid topology after {attempts} attempts: {last_error}")

    def _finalize(self, graph: Graph) -> Graph:
        """Replace chokepoints with analyzed ones, recentre and validate."""
        graph.validate()
        chokepoints = classify_chokepoints(
            graph,
            sample_count=self.settings.chokepoint_samples,
            rng=self.rng,
            threshold=self.settings.chokepoint_threshold,
            min_degree=self.settings.chokepoint_min_degree,
        )
        min_x, min_y, max_x, max_y = graph.bounds()
        center_x, center_y = self.settings.viewport_center
        dx = center_x - (min_x + max_x) / 2
        dy = center_y - (min_y + max_y) / 2
        return graph.with_chokepoints(chokepoints).translated(dx, dy)

    def _build_layered_mesh(self) -> Graph:
        rng = self.rng
        width = self.settings.viewport_width
        height = self.settings.viewport_height
        margin_x = margin_y = 150.0

        lanes = rng.randint(2, 4)
        layers = rng.randint(2, 4)
        lane_ys = [margin_y + i * (height - 2 * margin_y) / (lanes - 1) for i in range(lanes)]
        layer_width = (width - 2 * margin_x - 100) / (layers + 1)

        positions: dict[int, tuple[float, float]] = {0: (margin_x, height / 2)}
        grid: list[list[int]] = []
        next_id = 1
        for lane_y in lane_ys:
            lane: list[int] = []
            for layer in range(1, layers + 1):
                x = margin_x + layer * layer_width + (rng.random() - 0.5) * 80
                y = lane_y + (rng.random() - 0.5) * 100
                positions[next_id] = (x, y)
                lane.append(next_id)
                next_id += 1
            grid.append(lane)
        goal = next_id
        positions[goal] = (width - margin_x, height / 2)

        edges: list[tuple[int, int]] = [(0, lane[0]) for lane in grid]
        for lane in grid:
            edges.extend(zip(lane, lane[1:], strict=False))
        edges.extend((lane[-1], goal) for lane in grid)

        cross_probability = rng.uniform(0.5, 0.8)
        for layer in range(layers):
            for lane in range(lanes - 1):
                if rng.random() < cross_probability:
                    edges.append((grid[lane][layer], grid[lane + 1][layer]))
            if lanes >= 3 and layer == layers // 2 and rng.random() < 0.2:
                skip = rng.randint(1, lanes - 2)
                edges.append((grid[0][layer], grid[skip + 1][layer]))

        name = f"Layered Mesh {rng.randrange(1000)}"
        return Graph.build(positions, edges, sources=[0], goals=[goal], name=name)

    def _build_grid(self, style: GridStyle) -> Graph:
        rng = self.rng
        preset = GRID_PRESETS[style]
        width = self.settings.viewport_width
        height = self.settings.viewport_height
        margin_x = margin_y = 100.0
        usable_width = width - 2 * margin_x - 250
        usable_height = height - 2 * margin_y
        layer_width = usable_width / (preset.layers + 1)

        positions: dict[int, tuple[float, float]] = {0: (margin_x, height / 2)}
        layers: list[list[int]] = []
        next_id = 1
        for i in range(1, preset.layers + 1):
            layer_x = margin_x + i * layer_width
            count = preset.nodes_per_layer
            if style is GridStyle.EVASIVE and i % 2 == 0:
                count += 1
            spacing = usable_height / (count + 1)

            layer: list[int] = []
            for j in range(count):
                y = margin_y + (j + 1) * spacing
                if style is GridStyle.SPREAD:
                    if j == 0:
                        y = margin_y + 50
                    if j == count - 1:
                        y = height - margin_y - 50
                y += (rng.random() - 0.5) * 100 * preset.randomness
                x = layer_x + (rng.random() - 0.5) * 60 * preset.randomness
                positions[next_id] = (x, max(50.0, min(height - 50, y)))
                layer.append(next_id)
                next_id += 1
            layers.append(layer)
        goal = next_id
        positions[goal] = (width - 250 - margin_x, height / 2)

        edges: list[tuple[int, int]] = [(0, v) for v in layers[0]]
        for current, following in zip(layers, layers[1:], strict=False):
            if style is GridStyle.DIRECT:
                edges.extend((u, v) for u in current for v in following)
                continue
            targeted: set[int] = set()
            for u in current:
                target = rng.choice(following)
                edges.append((u, target))
                targeted.add(target)
                if rng.random() < 0.5:
                    second = rng.choice(following)
                    if second != target:
                        edges.append((u, second))
                        targeted.add(second)
            for v in following:
                if v not in targeted:
                    edges.append((rng.choice(current), v))
        edges.extend((u, goal) for u in layers[-1])

        if style in (GridStyle.EVASIVE, GridStyle.BALANCED):
            for layer in layers:
                for a, b in zip(layer, layer[1:], strict=False):
                    if rng.random() < 0.3:
                        edges.append((a, b))

        return Graph.build(positions, edges, sources=[0], goals=[goal], name=f"Smart {style}")
