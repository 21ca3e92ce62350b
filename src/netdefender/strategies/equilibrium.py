"""EquilibriumAI: one-shot leader/follower response to a committed defense.

The defender commits first; the attacker observes the locked snapshot and
answers with per-path enemy mixes. The reported "defense value" and
"attacker value" are heuristic scores, not the value of a solved game.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from netdefender.catalog import PAYOFF_MATRIX, TOWERS
from netdefender.config import get_settings
from netdefender.engine.pathfinding import enumerate_simple_paths
from netdefender.model.defender import TowerType, classify_posture
from netdefender.strategies.base import AttackStrategy, SpawnPolicy, normalize

if TYPE_CHECKING:
    from netdefender.model.defender import DefenderSnapshot
    from netdefender.model.graph import Path

logger = logging.getLogger(__name__)

VALUE_CAP = 100.0
SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM")


@dataclass
class NodeCoverage:
    damage_per_second: float
    firepower: dict[str, float]

    @property
    def is_covered(self) -> bool:
        return self.damage_per_second > 0


@dataclass
class PathStrength:
    path_index: int
    total_damage: float
    min_damage: float
    weakest_node: int | None
    avg_damage_per_node: float


@dataclass
class PathStrategy:
    priority: int
    spawn_rate: float
    enemy_mix: dict[str, float]


@dataclass
class Weakness:
    severity: str
    description: str
    avg_dps: float


@dataclass
class EquilibriumAnalysis:
    """Full output of one observe pass.

    Attributes:
        posture: Defender posture bucket (payoff-matrix column).
        coverage: Node id -> damage per second in range.
        path_analysis: Paths sorted weakest (lowest total DPS) first.
        strategy: Path index -> priority, spawn rate and enemy mix.
        defense_value: ``min(100, sum of node DPS)``.
        attacker_value: ``min(100, 10 * sum(priority * spawn_rate))``.
        weaknesses: Top three weak paths for player feedback.
    """

    posture: str
    coverage: dict[int, NodeCoverage] = field(default_factory=dict)
    path_analysis: list[PathStrength] = field(default_factory=list)
    strategy: dict[int, PathStrategy] = field(default_factory=dict)
    defense_value: float = 0.0
    attacker_value: float = 0.0
    weaknesses: list[Weakness] = field(default_factory=list)


@dataclass
class CostEfficiency:
    rating: str
    message: str
    efficiency: float
    total_spent: int = 0


@dataclass
class PlacementAdvice:
    recommendation: str
    weakest_path: list[int] = field(default_factory=list)
    target_node: int | None = None


class EquilibriumAI(AttackStrategy):
    """Leader/follower approximation over a fixed payoff matrix.

    Args:
        rng: Random source for sampling.
        payoff: Enemy type -> posture -> attacker success probability.
            Defaults to the catalog matrix.
    """

    name = "equilibrium"

    def __init__(
        self,
        rng: random.Random | None = None,
        payoff: Mapping[str, Mapping[str, float]] | None = None,
    ) -> None:
        super().__init__(rng)
        self.payoff = {k: dict(v) for k, v in (payoff or PAYOFF_MATRIX).items()}
        self.analysis: EquilibriumAnalysis | None = None

    # -- Step 1: coverage ------------------------------------------------------

    def analyze_coverage(self, snapshot: DefenderSnapshot) -> dict[int, NodeCoverage]:
        """Damage per second each node receives from towers in range."""
        coverage: dict[int, NodeCoverage] = {}
        if self.graph is None:
            return coverage
        for node in self.graph.nodes:
            dps = 0.0
            firepower = {str(t): 0.0 for t in TowerType}
            for tower in snapshot:
                if tower.in_range(node.x, node.y):
                    dps += tower.dps
                    firepower[str(tower.tower_type)] += tower.damage
            coverage[node.id] = NodeCoverage(dps, firepower)
        return coverage

    # -- Step 2: path strength -------------------------------------------------

    def rank_paths(self, coverage: Mapping[int, NodeCoverage]) -> list[PathStrength]:
        """Per-path total/min DPS, sorted weakest first (stable on ties)."""
        ranked = []
        for index, path in enumerate(self.paths):
            total = 0.0
            min_damage = float("inf")
            weakest = None
            for node_id in path:
                dps = coverage[node_id].damage_per_second if node_id in coverage else 0.0
                total += dps
                if dps < min_damage:
                    min_damage = dps
                    weakest = node_id
            ranked.append(
                PathStrength(
                    path_index=index,
                    total_damage=total,
                    min_damage=min_damage if path else 0.0,
                    weakest_node=weakest,
                    avg_damage_per_node=total / len(path) if path else 0.0,
                )
            )
        return sorted(ranked, key=lambda p: p.total_damage)

    # -- Step 3: response ------------------------------------------------------

    def path_mix(self, posture: str, total_damage: float) -> dict[str, float]:
        """Enemy mix for one path: payoff x path weakness, normalized.

        LEGITIMATE traffic always passes and is never part of an attack mix.
        """
        weakness = 100 / (total_damage + 1)
        weights = {
            enemy_type: row[posture] * weakness
            for enemy_type, row in self.payoff.items()
            if enemy_type != "LEGITIMATE"
        }
        return normalize(weights)

    def calculate_response(self, posture: str, ranked: list[PathStrength]) -> dict[int, PathStrategy]:
        strategy = {}
        for info in ranked:
            strategy[info.path_index] = PathStrategy(
                priority=5 if info.total_damage < 20 else 2,
                spawn_rate=max(0.4, 1.2 - info.total_damage / 50),
                enemy_mix=self.path_mix(posture, info.total_damage),
            )
        return strategy

    # -- Step 4: reporting -----------------------------------------------------

    @staticmethod
    def defense_value(coverage: Mapping[int, NodeCoverage]) -> float:
        return min(VALUE_CAP, sum(c.damage_per_second for c in coverage.values()))

    @staticmethod
    def attacker_value(strategy: Mapping[int, PathStrategy]) -> float:
        total = sum(s.priority * s.spawn_rate for s in strategy.values())
        return min(VALUE_CAP, total * 10)

    @staticmethod
    def summarize_weaknesses(ranked: list[PathStrength]) -> list[Weakness]:
        return [
            Weakness(
                severity=severity,
                description=f"Path {info.path_index}: Node {info.weakest_node} severely under-defended",
                avg_dps=round(info.avg_damage_per_node, 1),
            )
            for severity, info in zip(SEVERITIES, ranked, strict=False)
        ]

    # -- AttackStrategy --------------------------------------------------------

    def observe(self, snapshot: DefenderSnapshot) -> EquilibriumAnalysis:
        """Run the four analysis steps against a committed snapshot."""
        posture = classify_posture(snapshot)
        coverage = self.analyze_coverage(snapshot)
        ranked = self.rank_paths(coverage)
        strategy = self.calculate_response(posture, ranked)
        analysis = EquilibriumAnalysis(
            posture=posture,
            coverage=coverage,
            path_analysis=ranked,
            strategy=strategy,
            defense_value=self.defense_value(coverage),
            attacker_value=self.attacker_value(strategy),
            weaknesses=self.summarize_weaknesses(ranked),
        )
        self.analysis = analysis
        logger.info(
            "Equilibrium analysis: posture=%s, paths=%d, defense=%.1f, attacker=%.1f",
            posture,
            len(ranked),
            analysis.defense_value,
            analysis.attacker_value,
        )
        return analysis

    def propose_spawn_policy(self, analysis: EquilibriumAnalysis) -> SpawnPolicy:
        """Weakest path first; path selection weighted by ``10 - total/10``."""
        order = [p.path_index for p in analysis.path_analysis]
        if order:
            enemy_mix = analysis.strategy[order[0]].enemy_mix
        else:
            enemy_mix = {"BASIC": 1.0}
        weights = {p.path_index: max(0.0, 10 - p.total_damage / 10) for p in analysis.path_analysis}
        return SpawnPolicy(
            enemy_mix=dict(enemy_mix),
            path_preferences=order,
            reasoning=f"Counter to {analysis.posture} posture on weakest path first.",
            path_mixes={i: dict(s.enemy_mix) for i, s in analysis.strategy.items()},
            path_weights=weights,
        )

    # -- Advice ----------------------------------------------------------------

    def analyze_cost_efficiency(self, snapshot: DefenderSnapshot) -> CostEfficiency:
        """Rate how well the committed budget was spent.

        Firewalls and IDS are worth more on chokepoints; honeypots are neutral.
        """
        if not snapshot:
            return CostEfficiency("POOR", "No defense placed. Funds unutilized.", 0.0)

        chokepoints = self.graph.chokepoints if self.graph is not None else frozenset()
        total_cost = 0
        effectiveness = 0.0
        for tower in snapshot:
            cost = TOWERS[tower.tower_type].cost
            total_cost += cost
            on_chokepoint = self._node_at(tower.x, tower.y) in chokepoints
            if tower.tower_type is TowerType.FIREWALL:
                value = 1.5 if on_chokepoint else 0.8
            elif tower.tower_type is TowerType.IDS:
                value = 1.2 if on_chokepoint else 0.9
            else:
                value = 1.0
            effectiveness += cost * value

        ratio = effectiveness / total_cost
        if ratio > 1.2:
            rating, message = "EXCELLENT", "Great value! Strategic placement maximized your budget."
        elif ratio > 1.0:
            rating, message = "GOOD", "Solid defense, but some placements could be more optimal."
        else:
            rating = "FAIR"
            message = ("Consider using cheaper towers on non-critical nodes "
                       "or prioritizing chokepoints.")
        return CostEfficiency(rating, message, ratio, total_cost)

    def recommend_placement(self, snapshot: DefenderSnapshot) -> PlacementAdvice:
        """Find the least-resistant simple path and name a node to reinforce."""
        if self.graph is None or not self.graph.sources or not self.graph.goals:
            return PlacementAdvice("No clear path analysis available.")
        graph = self.graph
        settings = get_settings()
        paths = enumerate_simple_paths(
            graph,
            min(graph.sources),
            min(graph.goals),
            max_paths=settings.max_enumerated_paths,
        )
        if not paths:
            return PlacementAdvice("No clear path analysis available.")

        occupied: dict[int, float] = {}
        for tower in snapshot:
            node_id = self._node_at(tower.x, tower.y)
            if node_id is not None:
                occupied[node_id] = tower.damage

        def resistance(path: Path) -> tuple[int, float]:
            towers_on_path = [occupied[n] for n in path if n in occupied]
            return len(path) + 5 * len(towers_on_path), sum(d * 10 for d in towers_on_path)

        scored = sorted(((resistance(p), p) for p in paths), key=lambda item: sum(item[0]))
        (weak_res, weak_def), weakest = scored[0]
        _, strong_def = scored[-1][0]
        middle = weakest[len(weakest) // 2]

        if strong_def - weak_def > 50:
            target = next(
                (n for n in weakest if n in graph.chokepoints and n not in occupied), middle
            )
            message = (
                f"The AI exploited the weakest path (Resistance: {weak_res}). Optimal strategy: "
                f"Place a Firewall at Node {target} to equalize defense."
            )
        elif weak_def == 0:
            target = next((n for n in weakest if n in graph.chokepoints), middle)
            message = (
                "You left a path completely open! The AI will always choose the path of "
                f"least resistance. Reinforce Node {target}."
            )
        else:
            target = None
            message = ("Defenses are well-balanced. Ensure you have enough raw damage output "
                       "(DPS) to stop the wave.")
        return PlacementAdvice(message, list(weakest), target)

    def _node_at(self, x: float, y: float) -> int | None:
        if self.graph is None:
            return None
        for node in self.graph.nodes:
            if abs(node.x - x) <= 1.0 and abs(node.y - y) <= 1.0:
                return node.id
        return None
