"""ReactiveCounterAI: classify the defender's tower mix and send the counter."""

from __future__ import annotations

import logging
import random
from collections import deque
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from netdefender.catalog import TOWERS
from netdefender.model.defender import TowerType, count_types
from netdefender.strategies.base import (
    AttackStrategy,
    SpawnPolicy,
    TopologyRequest,
    WaveContext,
    WaveResult,
)

if TYPE_CHECKING:
    from netdefender.model.defender import DefenderSnapshot

logger = logging.getLogger(__name__)


class Archetype(StrEnum):
    """Defender archetypes recognised from tower-type ratios."""

    FIREWALL_HEAVY = "FIREWALL_HEAVY"
    IDS_HEAVY = "IDS_HEAVY"
    HONEYPOT_FOCUS = "HONEYPOT_FOCUS"
    BALANCED = "BALANCED"
    NONE = "NONE"


_BALANCED_MIX = {"BASIC": 0.3, "FAST": 0.25, "TANK": 0.2, "STEALTH": 0.15, "ADAPTIVE": 0.1}

COUNTER_MIXES: dict[Archetype, tuple[dict[str, float], str]] = {
    Archetype.FIREWALL_HEAVY: (
        {"FAST": 0.4, "STEALTH": 0.3, "BASIC": 0.2, "ADAPTIVE": 0.1},
        "Firewall-heavy defense. Sending FAST and STEALTH to bypass.",
    ),
    Archetype.IDS_HEAVY: (
        {"TANK": 0.3, "ENCRYPTED": 0.3, "BASIC": 0.3, "ADAPTIVE": 0.1},
        "IDS-heavy defense. Sending TANK and ENCRYPTED to absorb damage.",
    ),
    Archetype.HONEYPOT_FOCUS: (
        {"FAST": 0.5, "BASIC": 0.4, "ADAPTIVE": 0.1},
        "Weak tower coverage. Overwhelming with numbers.",
    ),
    Archetype.BALANCED: (_BALANCED_MIX, "Balanced mix for adaptive pressure."),
    Archetype.NONE: (_BALANCED_MIX, "Balanced mix for adaptive pressure."),
}

DEFAULT_POLICY_MIX = {"BASIC": 0.5, "FAST": 0.3, "TANK": 0.2}


@dataclass(frozen=True)
class PathCoverage:
    path_index: int
    coverage: float


@dataclass
class DefenseAnalysis:
    """Result of observing the defenders.

    Attributes:
        archetype: Recognised defender archetype.
        tower_counts: Towers per type name.
        total_value: Summed purchase cost of the towers.
        weak_paths: The two least-covered spawn paths, weakest first.
    """

    archetype: Archetype
    tower_counts: dict[str, int] = field(default_factory=dict)
    total_value: int = 0
    weak_paths: list[PathCoverage] = field(default_factory=list)

    @property
    def tower_count(self) -> int:
        return sum(self.tower_counts.values())


def classify_archetype(snapshot: DefenderSnapshot) -> Archetype:
    counts = count_types(snapshot)
    total = sum(counts.values())
    if total == 0:
        return Archetype.NONE
    firewall_ratio = counts[TowerType.FIREWALL] / total
    ids_ratio = counts[TowerType.IDS] / total
    if firewall_ratio > 0.6:
        return Archetype.FIREWALL_HEAVY
    if ids_ratio > 0.6:
        return Archetype.IDS_HEAVY
    if firewall_ratio < 0.3 and ids_ratio < 0.3:
        return Archetype.HONEYPOT_FOCUS
    return Archetype.BALANCED


class ReactiveCounterAI(AttackStrategy):
    """Counter the defender's archetype and hit the least-covered paths.

    Every ``switch_interval`` completed waves it also asks the session to move
    to a different catalog topology, chosen uniformly among the others.
    """

    name = "reactive"

    def __init__(
        self,
        rng: random.Random | None = None,
        topology_pool: Sequence[str] = ("adaptive1", "adaptive2", "adaptive3"),
        current_topology: str = "adaptive1",
        switch_interval: int | None = 2,
        history_size: int = 5,
    ) -> None:
        super().__init__(rng)
        self.topology_pool = list(topology_pool)
        self.current_topology = current_topology
        self.switch_interval = switch_interval
        self.history: deque[dict[str, Any]] = deque(maxlen=history_size)
        self.waves_completed = 0
        self.analysis: DefenseAnalysis | None = None

    def path_coverage(self, snapshot: DefenderSnapshot) -> list[PathCoverage]:
        """Sum of in-range tower damage over every node of every spawn path."""
        if self.graph is None:
            return []
        graph = self.graph
        coverages = []
        for index, path in enumerate(self.paths):
            coverage = 0.0
            for node_id in path:
                x, y = graph.position(node_id)
                coverage += sum(t.damage for t in snapshot if t.in_range(x, y))
            coverages.append(PathCoverage(index, coverage))
        return sorted(coverages, key=lambda c: c.coverage)

    def observe(self, snapshot: DefenderSnapshot) -> DefenseAnalysis:
        counts = count_types(snapshot)
        analysis = DefenseAnalysis(
            archetype=classify_archetype(snapshot),
            tower_counts={str(k): v for k, v in counts.items()},
            total_value=sum(TOWERS[t.tower_type].cost for t in snapshot),
            weak_paths=self.path_coverage(snapshot)[:2] if snapshot else [],
        )
        if snapshot:
            self.analysis = analysis
        return analysis

    def propose_spawn_policy(self, analysis: DefenseAnalysis | None) -> SpawnPolicy:
        if analysis is None or analysis.tower_count == 0:
            return self.default_policy()
        mix, reasoning = COUNTER_MIXES[analysis.archetype]
        return SpawnPolicy(
            enemy_mix=dict(mix),
            path_preferences=[w.path_index for w in analysis.weak_paths],
            reasoning=reasoning,
        )

    @staticmethod
    def default_policy() -> SpawnPolicy:
        return SpawnPolicy(
            enemy_mix=dict(DEFAULT_POLICY_MIX),
            path_preferences=[0, 1],
            reasoning="Early game: Basic threat assessment.",
        )

    # -- Session hooks ---------------------------------------------------------

    def on_wave_complete(self, context: WaveContext, result: WaveResult) -> None:
        analysis = self.observe(context.snapshot)
        self.history.append({"wave": context.wave, "analysis": analysis, "result": result})
        self.waves_completed += 1

    def should_switch_topology(self) -> bool:
        if not self.switch_interval:
            return False
        return self.waves_completed > 0 and self.waves_completed % self.switch_interval == 0

    def select_next_topology(self) -> str | None:
        """Pick a pool topology other than the current one."""
        candidates = [name for name in self.topology_pool if name != self.current_topology]
        if not candidates:
            return None
        self.current_topology = self.rng.choice(candidates)
        return self.current_topology

    def select_topology(self, context: WaveContext) -> TopologyRequest | None:
        self.current_topology = context.topology
        if not self.should_switch_topology():
            return None
        name = self.select_next_topology()
        if name is None:
            return None
        reasoning = str(self.analysis.archetype) if self.analysis else "Adaptive change"
        logger.info("Reactive strategy switching topology %s -> %s (%s)",
                    context.topology, name, reasoning)
        return TopologyRequest(reasoning=reasoning, catalog_name=name)
