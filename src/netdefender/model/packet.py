"""Packet dataclass: a mobile agent travelling a path from a source to a goal."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Packet:
    """A single attacking (or legitimate) packet moving along a path.

    The packet sits on the edge ``path[path_index] -> path[path_index + 1]``.
    ``attracted_to`` is only cleared on arrival at that node or when the
    attraction timer expires; ``visited_attractors`` only ever grows.
    """

    # Identity
    id: str
    enemy_type: str

    # Traversal
    path: list[int] = field(default_factory=list)
    path_index: int = 0
    x: float = 0.0
    y: float = 0.0
    speed: float = 1.0  # enemy speed units, scaled to px/s by the router

    # Attraction state
    attracted_to: int | None = None
    attraction_remaining: float = 0.0  # seconds
    visited_attractors: set[int] = field(default_factory=set)
    original_path: list[int] | None = None

    # Lifecycle
    alive: bool = True
    reached_goal: bool = False

    @property
    def current_node(self) -> int | None:
        """Node the packet last left (its traversal anchor)."""
        if not self.path or self.path_index >= len(self.path):
            return None
        return self.path[self.path_index]

    @property
    def next_node(self) -> int | None:
        """Node the packet is heading to, or None at the end of its path."""
        if self.path_index + 1 >= len(self.path):
            return None
        return self.path[self.path_index + 1]

    @property
    def goal(self) -> int | None:
        return self.path[-1] if self.path else None

    @property
    def active(self) -> bool:
        return self.alive and not self.reached_goal
