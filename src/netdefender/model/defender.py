"""Defender telemetry: read-only view of placed towers supplied each tick."""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import StrEnum


class TowerType(StrEnum):
    """Defensive tower kinds."""

    FIREWALL = "Firewall"
    IDS = "IDS"
    HONEYPOT = "Honeypot"


@dataclass(frozen=True)
class DefenderTower:
    """One placed defense. Cooldown values are in seconds."""

    x: float
    y: float
    tower_type: TowerType
    damage: float
    range: float
    cooldown: float
    cooldown_remaining: float = 0.0

    @property
    def dps(self) -> float:
        """Damage per second, 0 for towers with no cooldown."""
        if self.cooldown <= 0:
            return 0.0
        return self.damage / self.cooldown

    def in_range(self, x: float, y: float) -> bool:
        return math.hypot(self.x - x, self.y - y) <= self.range


DefenderSnapshot = tuple[DefenderTower, ...]


def snapshot(towers: Iterable[DefenderTower]) -> DefenderSnapshot:
    """Freeze an iterable of towers into a snapshot."""
    return tuple(towers)


def count_types(towers: Sequence[DefenderTower]) -> dict[TowerType, int]:
    """Count towers per type, with every type present (possibly 0)."""
    counts = Counter(t.tower_type for t in towers)
    return {tower_type: counts.get(tower_type, 0) for tower_type in TowerType}


def classify_posture(towers: Sequence[DefenderTower]) -> str:
    """Coarse defender posture used as the payoff-matrix column.

    FW_HEAVY when firewalls outnumber IDS by more than 1.5x, IDS_HEAVY when
    IDS outnumber firewalls, BALANCED otherwise (including no towers).
    """
    counts = count_types(towers)
    firewalls = counts[TowerType.FIREWALL]
    ids = counts[TowerType.IDS]
    if firewalls > ids * 1.5:
        return "FW_HEAVY"
    if ids > firewalls:
        return "IDS_HEAVY"
    return "BALANCED"
