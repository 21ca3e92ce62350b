"""API endpoints for the topology catalog, topology generation and path planning."""

import logging
import random
from typing import Any, Literal

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from netdefender.catalog import load_topology, topology_names
from netdefender.config import get_settings
from netdefender.engine.pathfinding import find_path
from netdefender.engine.topology import GridStyle, TopologyGenerator, reasoning_for
from netdefender.errors import MissingTopologyError, TopologyError
from netdefender.model.graph import Graph

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["topologies"])


class TopologySummary(BaseModel):
    """Catalog entry with its size and roles."""

    name: str
    node_count: int = Field(alias="nodeCount")
    edge_count: int = Field(alias="edgeCount")
    sources: list[int]
    goals: list[int]
    chokepoints: list[int]

    model_config = {"populate_by_name": True}


class TopologyResponse(BaseModel):
    """A full serialized topology."""

    name: str
    graph: dict[str, Any] = Field(description="Serialized graph (nodes, edges, id sets)")


class GenerateRequest(BaseModel):
    """Request body for generating a topology."""

    policy: Literal["mesh", "grid"] = Field(default="mesh", description="Generation policy")
    style: GridStyle | None = Field(default=None, description="Grid style (grid policy only)")
    seed: int | None = Field(default=None, description="Generator seed; random when omitted")


class GenerateResponse(BaseModel):
    """A generated topology and the seed that rebuilds it."""

    seed: int
    reasoning: str | None = None
    graph: dict[str, Any]


class PathRequest(BaseModel):
    """Request body for planning a path on a catalog topology."""

    topology: str = Field(min_length=1)
    start: int
    goal: int
    jitter: bool = False
    seed: int | None = Field(default=None, description="Seed for jittered planning")


class PathResponse(BaseModel):
    path: list[int]
    reachable: bool
    hops: int


def _summary(graph: Graph) -> TopologySummary:
    return TopologySummary(
        name=graph.name,
        node_count=len(graph.nodes),
        edge_count=len(graph.edges),
        sources=sorted(graph.sources),
        goals=sorted(graph.goals),
        chokepoints=sorted(graph.chokepoints),
    )


def _load(name: str) -> Graph:
    try:
        return load_topology(name)
    except MissingTopologyError as e:
        logger.warning("Topology not found: %s", name)
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        ) from e


@router.get("/topologies", response_model=list[TopologySummary])
async def list_topologies() -> list[TopologySummary]:
    """List every catalog topology."""
    return [_summary(load_topology(name)) for name in topology_names()]


@router.get(
    "/topologies/{name}",
    response_model=TopologyResponse,
    responses={404: {"description": "Topology not found"}},
)
async def get_topology(name: str) -> TopologyResponse:
    """Retrieve one catalog topology.

    Raises:
        HTTPException: 404 if the name is not in the catalog.
    """
    graph = _load(name)
    return TopologyResponse(name=name, graph=graph.to_dict())


@router.post(
    "/topologies/generate",
    response_model=GenerateResponse,
    responses={422: {"description": "Generation failed to produce a connected graph"}},
)
async def generate_topology(request: GenerateRequest) -> GenerateResponse:
    """Generate a layered mesh or a styled grid.

    Raises:
        HTTPException: 422 if no valid topology could be generated.
    """
    generator = TopologyGenerator(seed=request.seed, settings=get_settings())
    try:
        graph = generator.generate(request.policy, request.style)
    except TopologyError as e:
        logger.error("Topology generation failed (seed=%d): %s", generator.seed, e)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    reasoning = None
    if request.policy == "grid":
        reasoning = reasoning_for(request.style or GridStyle.BALANCED)
    return GenerateResponse(seed=generator.seed, reasoning=reasoning, graph=graph.to_dict())


@router.post(
    "/paths",
    response_model=PathResponse,
    responses={404: {"description": "Topology not found"}},
)
async def plan_path(request: PathRequest) -> PathResponse:
    """Plan an A* path between two nodes of a catalog topology.

    Unknown or unreachable nodes yield an empty path rather than an error.
    """
    graph = _load(request.topology)
    rng = random.Random(request.seed)
    path = find_path(
        graph,
        request.start,
        request.goal,
        jitter=request.jitter,
        rng=rng,
        jitter_amount=get_settings().path_jitter,
    )
    return PathResponse(path=path, reachable=bool(path), hops=max(0, len(path) - 1))
