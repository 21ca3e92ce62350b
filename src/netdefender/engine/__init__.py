"""Graph algorithms, topology generation, packet routing and session timing.

Sessions and the phase controller live in :mod:`netdefender.engine.session`
and :mod:`netdefender.engine.phases`; they depend on the strategies and are
imported from there directly.
"""

from netdefender.engine.chokepoints import classify_chokepoints
from netdefender.engine.events import Event, EventBus
from netdefender.engine.pathfinding import compute_spawn_paths, enumerate_simple_paths, find_path
from netdefender.engine.router import AgentRouter
from netdefender.engine.scheduler import ScheduledCall, TickScheduler
from netdefender.engine.topology import GridStyle, TopologyGenerator

__all__ = [
    "AgentRouter",
    "Event",
    "EventBus",
    "GridStyle",
    "ScheduledCall",
    "TickScheduler",
    "TopologyGenerator",
    "classify_chokepoints",
    "compute_spawn_paths",
    "enumerate_simple_paths",
    "find_path",
]
