"""API endpoints for creating and driving game sessions.

Sessions live in memory for the lifetime of the server process. The host
drives time explicitly through the tick endpoint.
"""

import logging
import threading
from collections import deque
from typing import Any

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from netdefender.catalog import MODES, get_mode
from netdefender.engine.events import Event, Handler
from netdefender.engine.session import Session, build_session
from netdefender.errors import NetDefenderError, PlacementError
from netdefender.model.defender import TowerType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["sessions"])

EVENT_LOG_SIZE = 100


class SessionEntry:
    """A session plus the notifications it has published."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self.events: deque[dict[str, Any]] = deque(maxlen=EVENT_LOG_SIZE)
        self.lock = threading.Lock()
        for event in Event:
            session.bus.subscribe(event, self._recorder(event))

    def _recorder(self, event: Event) -> Handler:
        def record(payload: dict[str, Any]) -> None:
            self.events.append({"event": str(event), "payload": payload})

        return record


class SessionRegistry:
    """Thread-safe map of session id to session."""

    def __init__(self) -> None:
        self._entries: dict[str, SessionEntry] = {}
        self._lock = threading.Lock()

    def add(self, session: Session) -> str:
        session_id = session.session_id
        with self._lock:
            self._entries[session_id] = SessionEntry(session)
        return session_id

    def get(self, session_id: str) -> SessionEntry:
        with self._lock:
            entry = self._entries.get(session_id)
        if entry is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Session '{session_id}' not found",
            )
        return entry

    def remove(self, session_id: str) -> SessionEntry:
        entry = self.get(session_id)
        with self._lock:
            self._entries.pop(session_id, None)
        return entry

    def stop_all(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            entry.session.stop()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


_registry = SessionRegistry()


def get_registry() -> SessionRegistry:
    return _registry


class CreateSessionRequest(BaseModel):
    """Request body for starting a session."""

    mode: str = Field(description="Built-in mode name")
    seed: int | None = Field(default=None, description="Session seed")


class SessionResponse(BaseModel):
    session_id: str
    status: dict[str, Any]


class PlaceTowerRequest(BaseModel):
    tower_type: TowerType = Field(alias="towerType")
    node: int

    model_config = {"populate_by_name": True}


class TickRequest(BaseModel):
    dt: float = Field(default=1 / 30, gt=0.0, le=10.0, description="Seconds per step")
    steps: int = Field(default=1, ge=1, le=10_000)


class EventsResponse(BaseModel):
    session_id: str
    events: list[dict[str, Any]]


class AdviceResponse(BaseModel):
    session_id: str
    cost_efficiency: dict[str, Any] = Field(alias="costEfficiency")
    placement: dict[str, Any]

    model_config = {"populate_by_name": True}


@router.get("/modes", response_model=list[str])
async def list_modes() -> list[str]:
    """Names of the built-in modes."""
    return list(MODES)


@router.post(
    "/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"description": "Unknown mode or invalid configuration"}},
)
async def create_session(request: CreateSessionRequest) -> SessionResponse:
    """Build and start a session for a built-in mode.

    Raises:
        HTTPException: 400 if the mode is unknown or cannot be built.
    """
    try:
        session = build_session(get_mode(request.mode), seed=request.seed)
    except (ValueError, NetDefenderError) as e:
        logger.warning("Could not create %s session: %s", request.mode, e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    registry = get_registry()
    session_id = registry.add(session)
    entry = registry.get(session_id)
    with entry.lock:
        session.start()
        state = session.status()
    logger.info("Session %s started (mode=%s)", session_id, request.mode)
    return SessionResponse(session_id=session_id, status=state)


@router.get(
    "/sessions/{session_id}",
    response_model=SessionResponse,
    responses={404: {"description": "Session not found"}},
)
async def get_session(session_id: str) -> SessionResponse:
    entry = get_registry().get(session_id)
    with entry.lock:
        return SessionResponse(session_id=session_id, status=entry.session.status())


@router.post(
    "/sessions/{session_id}/towers",
    response_model=SessionResponse,
    responses={
        400: {"description": "Placement rejected"},
        404: {"description": "Session not found"},
    },
)
async def place_tower(session_id: str, request: PlaceTowerRequest) -> SessionResponse:
    """Place a defense on a node.

    Raises:
        HTTPException: 400 if the session rejects the placement.
    """
    entry = get_registry().get(session_id)
    with entry.lock:
        try:
            entry.session.place_tower(request.tower_type, request.node)
        except PlacementError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=str(e),
            ) from e
        return SessionResponse(session_id=session_id, status=entry.session.status())


@router.post(
    "/sessions/{session_id}/tick",
    response_model=SessionResponse,
    responses={404: {"description": "Session not found"}},
)
async def tick_session(session_id: str, request: TickRequest) -> SessionResponse:
    """Advance the session by ``steps`` ticks of ``dt`` seconds."""
    entry = get_registry().get(session_id)
    with entry.lock:
        for _ in range(request.steps):
            entry.session.tick(request.dt)
        return SessionResponse(session_id=session_id, status=entry.session.status())


@router.get(
    "/sessions/{session_id}/events",
    response_model=EventsResponse,
    responses={404: {"description": "Session not found"}},
)
async def get_events(session_id: str) -> EventsResponse:
    """Most recent notifications published by the session."""
    entry = get_registry().get(session_id)
    return EventsResponse(session_id=session_id, events=list(entry.events))


@router.get(
    "/sessions/{session_id}/advice",
    response_model=AdviceResponse,
    responses={
        404: {"description": "Session not found"},
        409: {"description": "Session has not reached scoring"},
    },
)
async def get_advice(session_id: str) -> AdviceResponse:
    """Cost efficiency and placement advice for a scored phased session.

    Raises:
        HTTPException: 409 until the session reaches the scoring phase.
    """
    entry = get_registry().get(session_id)
    with entry.lock:
        advice = entry.session.advice()
    if advice is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Advice is available once a phased session reaches scoring",
        )
    return AdviceResponse(session_id=session_id, **advice)


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"description": "Session not found"}},
)
async def delete_session(session_id: str) -> None:
    """Stop a session and forget it."""
    entry = get_registry().remove(session_id)
    with entry.lock:
        entry.session.stop()
    logger.info("Session %s deleted", session_id)
