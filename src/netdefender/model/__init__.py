"""Domain model: Graph, Node, Packet, DefenderTower."""

from netdefender.model.defender import (
    DefenderSnapshot,
    DefenderTower,
    TowerType,
    classify_posture,
    count_types,
    snapshot,
)
from netdefender.model.graph import Graph, Node, NodeKind, Path
from netdefender.model.packet import Packet

__all__ = [
    "DefenderSnapshot",
    "DefenderTower",
    "Graph",
    "Node",
    "NodeKind",
    "Packet",
    "Path",
    "TowerType",
    "classify_posture",
    "count_types",
    "snapshot",
]
