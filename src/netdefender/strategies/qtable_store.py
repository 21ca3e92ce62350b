"""Persistence for the learning strategy's Q-table.

A store is anything with ``save(blob)`` and ``load() -> blob | None``. The
blob is ``{"table": {...}, "episodeCount": int, "explorationRate": float}``.
Loading never raises: a missing or malformed blob yields ``None`` and the
strategy starts from a fresh table.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class QTableBlob(BaseModel):
    """Validated shape of a persisted Q-table.

    Attributes:
        table: State key -> action -> value.
        episode_count: Episodes played so far.
        exploration_rate: Epsilon at the time of saving.
    """

    table: dict[str, dict[str, float]] = Field(default_factory=dict)
    episode_count: int = Field(default=0, ge=0, alias="episodeCount")
    exploration_rate: float = Field(ge=0.0, le=1.0, alias="explorationRate")

    model_config = {"populate_by_name": True}


def parse_blob(blob: Any) -> QTableBlob | None:
    """Validate a raw blob, returning None (with a warning) when malformed."""
    if blob is None:
        return None
    try:
        return QTableBlob.model_validate(blob)
    except ValidationError as e:
        logger.warning("Ignoring malformed Q-table blob: %d validation errors", e.error_count())
        return None


class QTableStore(Protocol):
    def save(self, blob: dict[str, Any]) -> None: ...

    def load(self) -> dict[str, Any] | None: ...


class MemoryQTableStore:
    """Keeps the blob in memory (tests, throwaway sessions)."""

    def __init__(self, blob: dict[str, Any] | None = None) -> None:
        self.blob = blob
        self.saves = 0

    def save(self, blob: dict[str, Any]) -> None:
        self.blob = json.loads(json.dumps(blob))
        self.saves += 1

    def load(self) -> dict[str, Any] | None:
        return self.blob


class JsonFileQTableStore:
    """Stores the blob as a JSON file.

    Example:
        >>> store = JsonFileQTableStore("data/qtable.json")
        >>> store.save({"table": {}, "episodeCount": 0, "explorationRate": 0.1})
        >>> store.load()["explorationRate"]
        0.1
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def save(self, blob: dict[str, Any]) -> None:
        """Write the blob atomically (temp file, then rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(blob, f, indent=2)
        tmp_path.replace(self.path)
        logger.debug("Saved Q-table to %s", self.path)

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            logger.info("No saved Q-table at %s, starting fresh", self.path)
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Could not read Q-table from %s: %s", self.path, e)
            return None
        parsed = parse_blob(data)
        if parsed is None:
            return None
        return parsed.model_dump(by_alias=True)
