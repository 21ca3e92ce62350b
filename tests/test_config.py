"""Tests for engine settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from netdefender.config import EngineSettings, get_settings


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Defaults match the documented engine constants."""
        monkeypatch.delenv("NETDEFENDER_SEED", raising=False)
        settings = EngineSettings(_env_file=None)
        assert settings.seed is None
        assert settings.chokepoint_samples == 50
        assert settings.chokepoint_threshold == 0.4
        assert settings.rl_alpha == 0.1
        assert settings.rl_gamma == 0.95
        assert settings.qtable_path == Path("data/qtable.json")
        assert settings.viewport_center == (600.0, 350.0)

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """NETDEFENDER_* variables override defaults."""
        monkeypatch.setenv("NETDEFENDER_SEED", "7")
        monkeypatch.setenv("NETDEFENDER_RL_ALPHA", "0.3")
        monkeypatch.setenv("NETDEFENDER_QTABLE_PATH", "/tmp/q.json")
        settings = EngineSettings(_env_file=None)
        assert settings.seed == 7
        assert settings.rl_alpha == 0.3
        assert settings.qtable_path == Path("/tmp/q.json")

    def test_epsilon_floor(self) -> None:
        """The exploration floor may not exceed the starting rate."""
        with pytest.raises(ValidationError, match="rl_min_epsilon"):
            EngineSettings(rl_epsilon=0.1, rl_min_epsilon=0.2)

    @pytest.mark.parametrize(
        "overrides",
        [{"chokepoint_samples": 0}, {"rl_gamma": 1.0}, {"path_jitter": 1.0}, {"analysis_delay": -1}],
    )
    def test_bounds(self, overrides: dict) -> None:
        """Out-of-range values fail validation."""
        with pytest.raises(ValidationError):
            EngineSettings(**overrides)


def test_get_settings_is_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    """get_settings returns one instance until the cache is cleared."""
    get_settings.cache_clear()
    monkeypatch.setenv("NETDEFENDER_SEED", "11")
    try:
        first = get_settings()
        assert first is get_settings()
        assert first.seed == 11
    finally:
        get_settings.cache_clear()
