"""Agent router: moves packets along their paths and splices routes toward attractors."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import TYPE_CHECKING

from netdefender.engine.pathfinding import find_path
from netdefender.model.defender import TowerType

if TYPE_CHECKING:
    from netdefender.model.defender import DefenderTower
    from netdefender.model.graph import Graph
    from netdefender.model.packet import Packet

logger = logging.getLogger(__name__)

REVERSAL_BIAS = 1.1  # reversal wins unless it costs 10% more than continuing
NODE_SNAP_TOLERANCE = 1.0  # px; a tower this close to a node sits on it


class AgentRouter:
    """Moves packets over one graph and applies attraction re-routing.

    Args:
        graph: Graph the packets travel on.
        attraction_duration: Seconds an attraction stays active.
        speed_scale: Pixels per second per unit of packet speed.
    """

    def __init__(self, graph: Graph, attraction_duration: float = 3.0, speed_scale: float = 60.0):
        self.graph = graph
        self.attraction_duration = attraction_duration
        self.speed_scale = speed_scale
        self._avg_edge = graph.average_edge_length()

    def attract(self, packet: Packet, node_id: int) -> bool:
        """Splice the packet's path so it detours through ``node_id``.

        The packet ignores attractors it has already visited and does not
        switch to a second attractor while committed to another one. A repeat
        attraction to its current attractor only applies while the packet is
        leaving that node, which drags it back.

        Returns:
            True if the path was replaced, False if it was left untouched.
        """
        graph = self.graph
        if node_id in packet.visited_attractors:
            return False
        if packet.attracted_to is not None and packet.attracted_to != node_id:
            return False
        leaving = packet.current_node == node_id
        if packet.attracted_to == node_id and not leaving:
            return False
        if node_id not in graph:
            return False

        prev_id = packet.current_node
        next_id = packet.next_node
        goal_id = packet.goal
        if prev_id is None or next_id is None or goal_id is None:
            return False

        path_from_prev = find_path(graph, prev_id, node_id)
        path_from_next = find_path(graph, next_id, node_id)
        path_to_goal = find_path(graph, node_id, goal_id)

        if not path_to_goal:
            logger.debug("Reroute to %d abandoned: no path to goal %d", node_id, goal_id)
            return False
        if not path_from_prev and not path_from_next:
            logger.debug("Reroute to %d abandoned: unreachable from edge %d-%d",
                         node_id, prev_id, next_id)
            return False

        reverse = False
        if path_from_prev:
            if prev_id == node_id or not path_from_next:
                reverse = True
            else:
                cost_prev = self._distance_to(packet, prev_id) + self._hop_cost(path_from_prev)
                cost_next = self._distance_to(packet, next_id) + self._hop_cost(path_from_next)
                reverse = cost_prev < cost_next * REVERSAL_BIAS

        if reverse:
            path_to_attractor = [next_id, *path_from_prev]
        else:
            path_to_attractor = [prev_id, *path_from_next]
        new_path = path_to_attractor + path_to_goal[1:]

        if packet.original_path is None:
            packet.original_path = list(packet.path)
        packet.path = new_path
        packet.path_index = 0
        packet.x, packet.y = graph.position(new_path[0])
        packet.attracted_to = node_id
        packet.attraction_remaining = self.attraction_duration

        logger.debug(
            "Packet %s rerouted via %s node toward %d: %s",
            packet.id,
            "previous" if reverse else "next",
            node_id,
            "->".join(map(str, new_path)),
        )
        return True

    def advance(self, packet: Packet, dt: float) -> None:
        """Move a packet ``dt`` seconds along its path.

        Counts down the attraction timer first; on expiry the attractor is
        released and marked visited. Arriving at the attractor node does the
        same. Reaching the last node of the path flags ``reached_goal``.
        """
        if not packet.active:
            return

        if packet.attracted_to is not None:
            packet.attraction_remaining -= dt
            if packet.attraction_remaining <= 0:
                self._release(packet)

        budget = packet.speed * self.speed_scale * dt
        while packet.next_node is not None and budget > 0:
            tx, ty = self.graph.position(packet.next_node)
            remaining = math.hypot(tx - packet.x, ty - packet.y)
            if remaining <= budget:
                packet.x, packet.y = tx, ty
                packet.path_index += 1
                budget -= remaining
                if packet.current_node == packet.attracted_to:
                    self._release(packet)
            else:
                packet.x += (tx - packet.x) / remaining * budget
                packet.y += (ty - packet.y) / remaining * budget
                budget = 0

        if packet.next_node is None:
            packet.reached_goal = True

    def apply_attractors(self, packets: Iterable[Packet], towers: Iterable[DefenderTower]) -> int:
        """Attract every packet in range of a honeypot that sits on a node.

        Returns:
            Number of packets whose path was spliced.
        """
        packets = list(packets)
        spliced = 0
        for tower in towers:
            if tower.tower_type is not TowerType.HONEYPOT:
                continue
            node_id = self.node_at(tower.x, tower.y)
            if node_id is None:
                continue
            for packet in packets:
                if packet.active and tower.in_range(packet.x, packet.y):
                    spliced += self.attract(packet, node_id)
        return spliced

    def node_at(self, x: float, y: float) -> int | None:
        """Id of the node at (x, y), if any."""
        for node in self.graph.nodes:
            if math.hypot(node.x - x, node.y - y) <= NODE_SNAP_TOLERANCE:
                return node.id
        return None

    def _release(self, packet: Packet) -> None:
        if packet.attracted_to is not None:
            packet.visited_attractors.add(packet.attracted_to)
        packet.attracted_to = None
        packet.attraction_remaining = 0.0

    def _distance_to(self, packet: Packet, node_id: int) -> float:
        x, y = self.graph.position(node_id)
        return math.hypot(x - packet.x, y - packet.y)

    def _hop_cost(self, path: list[int]) -> float:
        return (len(path) - 1) * self._avg_edge
