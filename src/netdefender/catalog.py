"""Static game data: topology catalog, tower and enemy tables, payoff matrix, modes.

Topologies are stored in the serialized contract form and turned into
:class:`~netdefender.model.graph.Graph` objects on load. Game modes are
pydantic models so that custom modes can be validated from JSON.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from netdefender.errors import MissingTopologyError
from netdefender.model.defender import DefenderTower, TowerType
from netdefender.model.graph import Graph

logger = logging.getLogger(__name__)


# =============================================================================
# Towers and enemies
# =============================================================================


class TowerSpec(BaseModel):
    """Balance values for one tower type (cooldown in seconds)."""

    cost: int
    damage: float
    range: float
    cooldown: float
    maintenance: int
    distract_duration: float | None = None


TOWERS: dict[TowerType, TowerSpec] = {
    TowerType.FIREWALL: TowerSpec(cost=300, damage=18, range=120, cooldown=0.75, maintenance=10),
    TowerType.IDS: TowerSpec(cost=140, damage=4, range=150, cooldown=0.5, maintenance=5),
    TowerType.HONEYPOT: TowerSpec(
        cost=140, damage=1, range=250, cooldown=0.2, maintenance=3, distract_duration=3.0
    ),
}


class EnemySpec(BaseModel):
    """Balance values for one enemy type."""

    health: float
    speed: float
    reward: int
    stealthy: bool = False
    legitimate: bool = False


ENEMIES: dict[str, EnemySpec] = {
    "BASIC": EnemySpec(health=20, speed=1.5, reward=15),
    "FAST": EnemySpec(health=12, speed=4.0, reward=20),
    "TANK": EnemySpec(health=50, speed=0.8, reward=35),
    "STEALTH": EnemySpec(health=18, speed=2.5, reward=30, stealthy=True),
    "ENCRYPTED": EnemySpec(health=25, speed=1.8, reward=25),
    "ADAPTIVE": EnemySpec(health=30, speed=2.0, reward=40),
    "LEGITIMATE": EnemySpec(health=float("inf"), speed=1.5, reward=-50, legitimate=True),
}


def make_tower(tower_type: TowerType | str, x: float, y: float) -> DefenderTower:
    """Build a DefenderTower with catalog stats at (x, y)."""
    kind = TowerType(tower_type)
    spec = TOWERS[kind]
    return DefenderTower(
        x=x,
        y=y,
        tower_type=kind,
        damage=spec.damage,
        range=spec.range,
        cooldown=spec.cooldown,
    )


# =============================================================================
# Payoff matrix: attacker success probability per (enemy type, defender posture)
# =============================================================================

POSTURES: tuple[str, ...] = ("FW_HEAVY", "IDS_HEAVY", "BALANCED")

PAYOFF_MATRIX: dict[str, dict[str, float]] = {
    "BASIC": {"FW_HEAVY": 0.2, "IDS_HEAVY": 0.7, "BALANCED": 0.4},
    "FAST": {"FW_HEAVY": 0.1, "IDS_HEAVY": 0.8, "BALANCED": 0.5},
    "TANK": {"FW_HEAVY": 0.6, "IDS_HEAVY": 0.3, "BALANCED": 0.4},
    "STEALTH": {"FW_HEAVY": 0.9, "IDS_HEAVY": 0.2, "BALANCED": 0.4},
    "ENCRYPTED": {"FW_HEAVY": 0.8, "IDS_HEAVY": 0.4, "BALANCED": 0.5},
    "ADAPTIVE": {"FW_HEAVY": 0.7, "IDS_HEAVY": 0.6, "BALANCED": 0.8},
    "LEGITIMATE": {"FW_HEAVY": 1.0, "IDS_HEAVY": 1.0, "BALANCED": 1.0},
}


# =============================================================================
# Topologies
# =============================================================================


def _nodes(*coords: tuple[float, float]) -> list[dict[str, float]]:
    return [{"id": i, "x": x, "y": y} for i, (x, y) in enumerate(coords)]


TOPOLOGIES: dict[str, dict[str, Any]] = {
    "level1": {
        "name": "Basic Branch",
        "nodes": _nodes((225, 350), (375, 350), (525, 250), (525, 450), (675, 350), (825, 350),
                        (975, 350)),
        "edges": [[0, 1], [1, 2], [1, 3], [2, 4], [3, 4], [4, 5], [5, 6]],
        "sources": [0],
        "goals": [6],
        "chokepoints": [2, 3, 5],
    },
    "adaptive1": {
        "name": "Branching Network",
        "nodes": _nodes((225, 350), (375, 200), (375, 500), (525, 150), (525, 350), (525, 550),
                        (675, 200), (675, 500), (825, 350), (975, 350)),
        "edges": [[0, 1], [0, 2], [1, 3], [1, 4], [2, 4], [2, 5], [3, 6], [4, 6], [4, 7],
                  [5, 7], [6, 8], [7, 8], [8, 9]],
        "sources": [0],
        "goals": [9],
        "chokepoints": [1, 2, 4, 6, 7, 8],
    },
    "adaptive2": {
        "name": "Diamond Pattern",
        "nodes": _nodes((150, 350), (350, 200), (350, 350), (350, 500), (600, 150), (600, 350),
                        (600, 550), (850, 250), (850, 450), (1050, 350)),
        "edges": [[0, 1], [0, 2], [0, 3], [1, 4], [2, 5], [3, 6], [4, 7], [5, 7], [5, 8],
                  [6, 8], [7, 9], [8, 9]],
        "sources": [0],
        "goals": [9],
        "chokepoints": [1, 2, 3, 7, 8],
    },
    "adaptive3": {
        "name": "Y-Junction Network",
        "nodes": _nodes((150, 350), (350, 350), (500, 250), (500, 450), (700, 150), (700, 350),
                        (700, 550), (900, 250), (900, 450), (1050, 350)),
        "edges": [[0, 1], [1, 2], [1, 3], [2, 4], [2, 5], [3, 5], [3, 6], [4, 7], [5, 7],
                  [5, 8], [6, 8], [7, 9], [8, 9]],
        "sources": [0],
        "goals": [9],
        "chokepoints": [2, 3, 7, 8],
    },
    "stackelberg_mesh": {
        "name": "Stackelberg Mesh",
        "nodes": _nodes((300, 350), (450, 200), (600, 200), (750, 200), (450, 350), (600, 350),
                        (750, 350), (450, 500), (600, 500), (750, 500), (900, 350)),
        "edges": [[0, 1], [1, 2], [2, 3], [3, 10], [0, 4], [4, 5], [5, 6], [6, 10], [0, 7],
                  [7, 8], [8, 9], [9, 10], [1, 5], [4, 2], [4, 8], [7, 5], [2, 6], [5, 3],
                  [5, 9], [8, 6]],
        "sources": [0],
        "goals": [10],
        "chokepoints": [1, 3, 5, 7, 9],
    },
    "dynamic_mesh": {
        "name": "Dynamic Grid",
        "nodes": _nodes((50, 350), (200, 200), (200, 350), (200, 500), (400, 200), (400, 350),
                        (400, 500), (600, 200), (600, 350), (600, 500), (800, 200), (800, 350),
                        (800, 500), (1000, 200), (1000, 350), (1000, 500), (1150, 350)),
        "edges": [[0, 1], [0, 2], [0, 3], [1, 2], [2, 3], [1, 4], [2, 5], [3, 6], [1, 5],
                  [2, 4], [2, 6], [3, 5], [4, 5], [5, 6], [4, 7], [5, 8], [6, 9], [4, 8],
                  [6, 8], [7, 8], [8, 9], [7, 10], [8, 11], [9, 12], [8, 10], [8, 12],
                  [10, 11], [11, 12], [10, 13], [11, 14], [12, 15], [13, 16], [14, 16],
                  [15, 16]],
        "sources": [0],
        "goals": [16],
        "chokepoints": [5, 7, 8, 9, 11],
    },
}


def topology_names() -> list[str]:
    return list(TOPOLOGIES)


def load_topology(name: str) -> Graph:
    """Look up a catalog topology and build its Graph.

    Args:
        name: Catalog key, e.g. ``"adaptive1"``.

    Returns:
        A validated Graph whose ``name`` is the catalog key.

    Raises:
        MissingTopologyError: If the name is not in the catalog.
    """
    data = TOPOLOGIES.get(name)
    if data is None:
        logger.error("Topology '%s' not found in catalog", name)
        raise MissingTopologyError(name)
    graph = Graph.from_dict({**data, "name": name})
    graph.validate()
    return graph


# =============================================================================
# Game modes
# =============================================================================


class PhaseDurations(BaseModel):
    """Seconds spent in each timed phase."""

    commitment: float = Field(default=30.0, gt=0)
    training: float = Field(default=5.0, gt=0)
    battle: float = Field(default=30.0, gt=0)


class ModeConfig(BaseModel):
    """Data describing one playable mode.

    The session is assembled from this: ``strategy`` picks the attack
    strategy and ``phases`` (when present) enables the phase controller.
    ``topology=None`` means a freshly generated layered mesh.
    """

    name: str
    strategy: Literal["reactive", "equilibrium", "learning"]
    topology: str | None = "adaptive1"
    topology_pool: list[str] = Field(default_factory=lambda: ["adaptive1", "adaptive2", "adaptive3"])
    phases: PhaseDurations | None = None
    spawn_interval: float = Field(default=3.0, gt=0, description="Seconds between spawns")
    legitimate_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    switch_interval: int | None = Field(default=None, ge=1)
    wave_size: int = Field(default=10, ge=1, description="Packets spawned per wave")
    maintenance: bool = Field(default=False, description="Charge tower upkeep after each wave")
    starting_credits: int = Field(default=1200, ge=0)
    core_health: int = Field(default=100, gt=0)
    wave_time_limit: float | None = Field(
        default=None, gt=0, description="Seconds before an unfinished wave times out"
    )
    spawn_decay: float = Field(default=1.0, gt=0, le=1.0, description="Spawn interval factor per wave")
    min_spawn_interval: float = Field(default=0.5, gt=0)
    target_wave: int | None = Field(default=None, ge=1, description="Completing this wave wins")

    @model_validator(mode="after")
    def check_references(self) -> ModeConfig:
        names = [self.topology] if self.topology else []
        missing = [t for t in [*names, *self.topology_pool] if t not in TOPOLOGIES]
        if missing:
            raise ValueError(f"Unknown topologies: {missing}")
        if self.strategy == "equilibrium" and self.phases is None:
            raise ValueError("equilibrium mode requires phase durations")
        return self


MODES: dict[str, ModeConfig] = {
    mode.name: mode
    for mode in (
        ModeConfig(
            name="adaptive",
            strategy="reactive",
            topology="adaptive1",
            spawn_interval=1.2,
            legitimate_ratio=0.3,
            switch_interval=2,
        ),
        ModeConfig(
            name="endless_classic",
            strategy="reactive",
            topology="adaptive1",
            spawn_interval=3.0,
            legitimate_ratio=0.3,
            switch_interval=3,
        ),
        ModeConfig(
            name="stackelberg",
            strategy="equilibrium",
            topology=None,
            phases=PhaseDurations(),
            spawn_interval=1.0,
            legitimate_ratio=0.2,
        ),
        ModeConfig(
            name="economic",
            strategy="learning",
            topology="adaptive1",
            spawn_interval=2.2,
            legitimate_ratio=0.25,
            switch_interval=2,
            maintenance=True,
            starting_credits=1500,
        ),
        ModeConfig(
            name="endless_economic",
            strategy="learning",
            topology="dynamic_mesh",
            spawn_interval=2.2,
            legitimate_ratio=0.3,
            switch_interval=5,
            maintenance=True,
            starting_credits=2000,
        ),
        ModeConfig(
            name="time_attack",
            strategy="reactive",
            topology="adaptive3",
            spawn_interval=2.0,
            starting_credits=1500,
            wave_time_limit=60.0,
            spawn_decay=0.9,
            target_wave=20,
        ),
    )
}


def get_mode(name: str) -> ModeConfig:
    """Look up a built-in mode.

    Raises:
        ValueError: If the mode name is unknown.
    """
    try:
        return MODES[name]
    except KeyError:
        raise ValueError(f"Unknown mode: {name}") from None
