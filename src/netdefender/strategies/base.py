"""AttackStrategy contract shared by the reactive, equilibrium and learning strategies."""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from netdefender.engine.topology import GridStyle
    from netdefender.model.defender import DefenderSnapshot
    from netdefender.model.graph import Graph, Path

logger = logging.getLogger(__name__)

FALLBACK_ENEMY = "BASIC"


@dataclass
class SpawnPolicy:
    """What to spawn next and where.

    Attributes:
        enemy_mix: Enemy type -> probability (sums to 1).
        path_preferences: Preferred spawn path indices, best first.
        reasoning: Human-readable explanation.
        path_mixes: Optional per-path enemy mixes overriding ``enemy_mix``.
        path_weights: Optional per-path selection weights; when present they
            replace the uniform pick over ``path_preferences``.
    """

    enemy_mix: dict[str, float]
    path_preferences: list[int] = field(default_factory=list)
    reasoning: str = ""
    path_mixes: dict[int, dict[str, float]] = field(default_factory=dict)
    path_weights: dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enemyMix": dict(self.enemy_mix),
            "preferredPaths": list(self.path_preferences),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class WaveContext:
    """What a strategy may look at between waves."""

    wave: int
    snapshot: DefenderSnapshot
    topology: str
    credits: int = 0
    success_rate: float = 0.0


@dataclass(frozen=True)
class WaveResult:
    blocked: int = 0
    leaked: int = 0


@dataclass(frozen=True)
class TopologyRequest:
    """A strategy's request to rotate the map.

    Exactly one of ``catalog_name`` (load from the catalog) or ``grid_style``
    (generate a grid) is set.
    """

    reasoning: str
    catalog_name: str | None = None
    grid_style: GridStyle | None = None


def normalize(weights: Mapping[str, float]) -> dict[str, float]:
    """Scale non-negative weights to probabilities; all-zero stays all-zero."""
    total = sum(weights.values())
    if total <= 0:
        return dict.fromkeys(weights, 0.0)
    return {key: value / total for key, value in weights.items()}


def weighted_choice(mix: Mapping[str, float], rng: random.Random) -> str:
    """Cumulative-probability sampling; falls back to BASIC if the roll overshoots."""
    roll = rng.random()
    cumulative = 0.0
    for enemy_type, probability in mix.items():
        cumulative += probability
        if roll <= cumulative:
            return enemy_type
    return FALLBACK_ENEMY


class AttackStrategy(ABC):
    """Base class for attacker strategies.

    A strategy is bound to the current graph and its spawn paths, observes a
    read-only defender snapshot, and turns the resulting analysis into a
    :class:`SpawnPolicy`. Sampling helpers draw from the injected ``rng``.
    """

    name: ClassVar[str] = "base"

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng if rng is not None else random.Random()
        self.graph: Graph | None = None
        self.paths: list[Path] = []

    def bind_topology(self, graph: Graph, paths: Sequence[Path]) -> None:
        """Point the strategy at a (new) graph and its spawn paths."""
        self.graph = graph
        self.paths = [list(p) for p in paths]

    @abstractmethod
    def observe(self, snapshot: DefenderSnapshot) -> Any:
        """Analyse a defender snapshot. The snapshot is never mutated."""

    @abstractmethod
    def propose_spawn_policy(self, analysis: Any) -> SpawnPolicy:
        """Turn an analysis into a spawn policy."""

    def sample_enemy_type(self, policy: SpawnPolicy | None, path_index: int | None = None) -> str:
        if policy is None:
            return FALLBACK_ENEMY
        mix = policy.path_mixes.get(path_index) if path_index is not None else None
        return weighted_choice(mix or policy.enemy_mix, self.rng)

    def select_path_index(self, policy: SpawnPolicy | None, available: int) -> int | None:
        """Pick a spawn path index, or None when no path is available."""
        if available <= 0:
            return None
        if policy is not None and policy.path_weights:
            weights = {i: w for i, w in policy.path_weights.items() if 0 <= i < available}
            total = sum(weights.values())
            if total > 0:
                roll = self.rng.random() * total
                for index, weight in weights.items():
                    roll -= weight
                    if roll <= 0:
                        return index
        preferred = []
        if policy is not None:
            preferred = [i for i in policy.path_preferences if 0 <= i < available]
        if preferred:
            if policy is not None and policy.path_weights:
                return preferred[0]
            return self.rng.choice(preferred)
        return self.rng.randrange(available)

    def sample_spawn_path(self, policy: SpawnPolicy | None, available_paths: Sequence[Path]) -> Path:
        index = self.select_path_index(policy, len(available_paths))
        if index is None:
            return []
        return list(available_paths[index])

    # -- Session hooks ---------------------------------------------------------

    def on_wave_start(self, context: WaveContext) -> tuple[Any, SpawnPolicy]:
        """Observe the defenders and produce the policy for the coming wave."""
        analysis = self.observe(context.snapshot)
        return analysis, self.propose_spawn_policy(analysis)

    def on_wave_complete(self, context: WaveContext, result: WaveResult) -> None:
        """Learn from a finished wave (no-op by default)."""

    def select_topology(self, context: WaveContext) -> TopologyRequest | None:
        """Request a map rotation after a wave, or None to keep the current map."""
        return None
