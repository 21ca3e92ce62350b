"""Exceptions raised by the NetDefender engine."""


class NetDefenderError(Exception):
    """Base class for engine errors."""


class TopologyError(NetDefenderError, ValueError):
    """A graph is malformed or does not connect every source to a goal."""


class MissingTopologyError(NetDefenderError, KeyError):
    """A topology name is absent from the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Topology '{self.name}' not found"


class PlacementError(NetDefenderError, ValueError):
    """A defense was rejected by the session."""
