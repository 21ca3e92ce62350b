"""Engine settings loaded from environment variables and .env files.

Every tunable constant of the simulation lives here so a session can be
reproduced from its settings and seed alone.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class EngineSettings(BaseSettings):
    """Configuration for the strategy engine.

    Environment Variables (prefix ``NETDEFENDER_``):
        NETDEFENDER_SEED: Seed for the session random source (unset = random)
        NETDEFENDER_CHOKEPOINT_SAMPLES: Randomized BFS samples per analysis
        NETDEFENDER_RL_ALPHA / _RL_GAMMA / _RL_EPSILON: Q-learning parameters
        NETDEFENDER_QTABLE_PATH: Where the learned Q-table is stored
        NETDEFENDER_ANALYSIS_DELAY: Seconds the training analysis takes

    Example:
        >>> settings = EngineSettings()  # Loads from environment
        >>> settings = EngineSettings(seed=7, chokepoint_samples=20)
    """

    model_config = SettingsConfigDict(
        env_prefix="NETDEFENDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    seed: int | None = Field(default=None, description="Session random seed")

    # Chokepoint analysis
    chokepoint_samples: int = Field(default=50, ge=1, le=10_000)
    chokepoint_threshold: float = Field(default=0.4, ge=0.0, le=1.0)
    chokepoint_min_degree: int = Field(default=3, ge=1)

    # Path planning
    path_jitter: float = Field(
        default=0.2,
        ge=0.0,
        lt=1.0,
        description="Maximum relative edge-cost perturbation when jitter is on",
    )
    max_enumerated_paths: int = Field(default=64, ge=1, le=10_000)

    # Topology generation
    viewport_width: float = Field(default=1200.0, gt=0)
    viewport_height: float = Field(default=700.0, gt=0)
    generation_attempts: int = Field(default=5, ge=1, le=100)

    # Q-learning
    rl_alpha: float = Field(default=0.1, gt=0.0, le=1.0)
    rl_gamma: float = Field(default=0.95, ge=0.0, lt=1.0)
    rl_epsilon: float = Field(default=0.1, ge=0.0, le=1.0)
    rl_epsilon_decay: float = Field(default=0.995, gt=0.0, le=1.0)
    rl_min_epsilon: float = Field(default=0.05, ge=0.0, le=1.0)
    qtable_path: Path = Field(default=Path("data/qtable.json"))

    # Session timing (seconds)
    analysis_delay: float = Field(default=3.0, ge=0.0)
    attraction_duration: float = Field(default=3.0, gt=0.0)
    packet_speed_scale: float = Field(
        default=60.0,
        gt=0.0,
        description="Pixels per second per unit of enemy speed",
    )

    @model_validator(mode="after")
    def check_epsilon_floor(self) -> EngineSettings:
        """The exploration floor cannot exceed the starting exploration rate."""
        if self.rl_min_epsilon > self.rl_epsilon:
            raise ValueError("rl_min_epsilon must not exceed rl_epsilon")
        return self

    @property
    def viewport_center(self) -> tuple[float, float]:
        return self.viewport_width / 2, self.viewport_height / 2


@lru_cache
def get_settings() -> EngineSettings:
    """Get cached engine settings.

    To reload, call ``get_settings.cache_clear()`` first.
    """
    settings = EngineSettings()
    logger.info("Loaded engine settings: seed=%s", settings.seed)
    return settings
