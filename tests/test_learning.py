"""Tests for the Q-learning strategy and Q-table persistence."""

from __future__ import annotations

import json
import random

import pytest

from netdefender.catalog import make_tower
from netdefender.config import EngineSettings
from netdefender.engine.topology import GridStyle
from netdefender.model import Graph, snapshot
from netdefender.strategies.base import WaveContext, WaveResult
from netdefender.strategies.learning import (
    ACTION_MIXES,
    ACTIONS,
    LearningAI,
    credit_bucket,
    density_bucket,
    performance_bucket,
    state_key,
)
from netdefender.strategies.qtable_store import JsonFileQTableStore, MemoryQTableStore, parse_blob


@pytest.fixture
def settings() -> EngineSettings:
    """Greedy settings so action selection is deterministic."""
    return EngineSettings(rl_alpha=0.1, rl_gamma=0.95, rl_epsilon=0.0, rl_min_epsilon=0.0)


@pytest.fixture
def store() -> MemoryQTableStore:
    return MemoryQTableStore()


@pytest.fixture
def line() -> Graph:
    return Graph.build([(0, 0), (100, 0), (200, 0)], [(0, 1), (1, 2)], sources=[0], goals=[2])


@pytest.fixture
def ai(store: MemoryQTableStore, settings: EngineSettings, line: Graph) -> LearningAI:
    strategy = LearningAI(store=store, rng=random.Random(12), settings=settings)
    strategy.bind_topology(line, [[0, 1, 2]])
    return strategy


def firewalls(count: int):
    return snapshot(make_tower("Firewall", 0, 0) for _ in range(count))


class TestStateBuckets:
    """Tests for state discretization."""

    @pytest.mark.parametrize(
        ("credits", "bucket"),
        [(0, "LOW"), (499, "LOW"), (500, "MED"), (1499, "MED"), (1500, "HIGH")],
    )
    def test_credit_bucket(self, credits: int, bucket: str) -> None:
        """Credits split at 500 and 1500."""
        assert credit_bucket(credits) == bucket

    def test_density_bucket(self, line: Graph) -> None:
        """More than one chokepoint per five nodes is dense."""
        assert density_bucket(line) == "SPARSE"
        assert density_bucket(line.with_chokepoints([1])) == "DENSE"
        assert density_bucket(None) == "SPARSE"

    def test_performance_bucket(self) -> None:
        """Above 70% blocked the defender is strong."""
        assert performance_bucket(70.0) == "ATTACKER_STRONG"
        assert performance_bucket(70.1) == "DEFENDER_STRONG"

    def test_state_key(self, ai: LearningAI) -> None:
        """Low credits, sparse map, firewall posture, attacker winning."""
        ai.record_economy(credits=100, success_rate=40.0)
        key = ai.current_state_key(firewalls(2))
        assert key == "LOW_SPARSE_FW_HEAVY_ATTACKER_STRONG"
        assert key == state_key("LOW", "SPARSE", "FW_HEAVY", "ATTACKER_STRONG")


class TestQTable:
    """Tests for Q-value bookkeeping and the update rule."""

    def test_unseen_state_initialized(self, ai: LearningAI) -> None:
        """Unseen states get every action with a value in [0, 2]."""
        values = ai.q_values("NEW")
        assert set(values) == set(ACTIONS)
        assert all(0.0 <= v <= 2.0 for v in values.values())
        assert ai.q_values("NEW") == values

    def test_best_action_tie_break(self, ai: LearningAI) -> None:
        """Ties resolve to the first action."""
        ai.table["S"] = dict.fromkeys(ACTIONS, 1.0)
        assert ai.best_action("S") == "AGGRESSIVE"
        ai.table["S"]["DEFENSIVE"] = 3.0
        assert ai.best_action("S") == "DEFENSIVE"

    def test_greedy_when_epsilon_zero(self, ai: LearningAI) -> None:
        """Without exploration the best action is always chosen."""
        ai.table["S"] = {"AGGRESSIVE": 0.0, "BALANCED": 5.0, "DEFENSIVE": 1.0}
        assert all(ai.select_action("S") == "BALANCED" for _ in range(20))

    def test_update_rule(self, ai: LearningAI, store: MemoryQTableStore) -> None:
        """Q <- Q + alpha * (r + gamma * max Q(s') - Q), then persist."""
        ai.table["S"] = {"AGGRESSIVE": 1.0, "BALANCED": 0.0, "DEFENSIVE": 0.0}
        ai.table["T"] = {"AGGRESSIVE": 2.0, "BALANCED": 4.0, "DEFENSIVE": 0.0}
        value = ai.update("S", "AGGRESSIVE", 10.0, "T")
        assert value == pytest.approx(1.0 + 0.1 * (10.0 + 0.95 * 4.0 - 1.0))
        assert ai.table["S"]["AGGRESSIVE"] == value
        assert store.saves == 1
        assert store.blob["table"]["S"]["AGGRESSIVE"] == pytest.approx(value)

    def test_repeated_updates_converge(self, store: MemoryQTableStore) -> None:
        """A self-loop with constant reward converges to r / (1 - gamma)."""
        settings = EngineSettings(rl_alpha=0.5, rl_gamma=0.9, rl_epsilon=0.0, rl_min_epsilon=0.0)
        ai = LearningAI(store=store, rng=random.Random(3), settings=settings)
        for _ in range(1000):
            ai.update("S", "AGGRESSIVE", 10.0, "S")
        assert ai.table["S"]["AGGRESSIVE"] == pytest.approx(100.0, rel=1e-3)

    @pytest.mark.parametrize(
        ("leaked", "blocked", "credits", "reward"),
        [
            (3, 2, 100, 20),
            (0, 4, 0, 30),
            (1, 0, 2500, -10),
            (0, 0, 2000, 0),
        ],
    )
    def test_reward(self, ai: LearningAI, leaked: int, blocked: int, credits: int, reward: float) -> None:
        """+10 per leak, -5 per block, +50 when broke, -20 above 2000 credits."""
        result = WaveResult(blocked=blocked, leaked=leaked)
        assert ai.calculate_reward(result, credits) == reward


class TestPersistence:
    """Tests for loading, saving and resetting the table."""

    def test_load_decays_epsilon(self) -> None:
        """A saved rate is decayed on load, floored at the minimum."""
        settings = EngineSettings(rl_epsilon=0.3, rl_min_epsilon=0.05, rl_epsilon_decay=0.5)
        blob = {"table": {"S": {"AGGRESSIVE": 1.0}}, "episodeCount": 7, "explorationRate": 0.2}
        ai = LearningAI(store=MemoryQTableStore(blob), settings=settings)
        assert ai.exploration_rate == pytest.approx(0.1)
        assert ai.episode_count == 7
        assert ai.table["S"]["AGGRESSIVE"] == 1.0

        blob["explorationRate"] = 0.06
        ai = LearningAI(store=MemoryQTableStore(blob), settings=settings)
        assert ai.exploration_rate == pytest.approx(0.05)

    def test_malformed_blob_starts_fresh(self, settings: EngineSettings) -> None:
        """An invalid blob is ignored instead of raising."""
        ai = LearningAI(store=MemoryQTableStore({"table": "nope"}), settings=settings)
        assert ai.table == {}
        assert ai.episode_count == 0
        assert ai.exploration_rate == settings.rl_epsilon

    def test_reset_persists_empty_table(self, ai: LearningAI, store: MemoryQTableStore) -> None:
        """Reset clears memory and the store."""
        ai.update("S", "AGGRESSIVE", 1.0, "S")
        ai.reset()
        assert ai.table == {}
        assert store.blob["table"] == {}
        assert store.blob["episodeCount"] == 0

    def test_parse_blob(self) -> None:
        """Aliased and field names both validate; None passes through."""
        assert parse_blob(None) is None
        parsed = parse_blob({"table": {}, "episode_count": 2, "exploration_rate": 0.5})
        assert parsed is not None
        assert parsed.episode_count == 2
        assert parse_blob({"table": {}, "episodeCount": -1, "explorationRate": 0.5}) is None


class TestJsonFileQTableStore:
    """Tests for the JSON file store."""

    def test_roundtrip(self, tmp_path) -> None:
        """Saved blobs load back unchanged."""
        store = JsonFileQTableStore(tmp_path / "nested" / "qtable.json")
        blob = {"table": {"S": {"AGGRESSIVE": 1.5}}, "episodeCount": 3, "explorationRate": 0.1}
        store.save(blob)
        assert store.load() == blob
        assert not (tmp_path / "nested" / "qtable.json.tmp").exists()

    def test_missing_file(self, tmp_path) -> None:
        """A missing file loads as None."""
        assert JsonFileQTableStore(tmp_path / "absent.json").load() is None

    def test_corrupt_file(self, tmp_path) -> None:
        """Unparseable JSON loads as None."""
        path = tmp_path / "qtable.json"
        path.write_text("{not json", encoding="utf-8")
        assert JsonFileQTableStore(path).load() is None

    def test_undecodable_file(self, tmp_path, settings: EngineSettings) -> None:
        """Bytes that are not UTF-8 load as None and the strategy starts fresh."""
        path = tmp_path / "qtable.json"
        path.write_bytes(b"\xff\xfe\x00garbage")
        assert JsonFileQTableStore(path).load() is None
        ai = LearningAI(store=JsonFileQTableStore(path), settings=settings)
        assert ai.table == {}

    def test_failed_save_keeps_playing(
        self, tmp_path, settings: EngineSettings, caplog: pytest.LogCaptureFixture
    ) -> None:
        """An unwritable path is logged and the in-memory table keeps learning."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        ai = LearningAI(store=JsonFileQTableStore(blocker / "qtable.json"), settings=settings)
        context = WaveContext(wave=1, snapshot=(), topology="line", credits=100)
        observation, _ = ai.on_wave_start(context)
        before = ai.table[observation.state][observation.action]

        with caplog.at_level("WARNING", logger="netdefender.strategies.learning"):
            ai.on_wave_complete(context, WaveResult(leaked=2))

        assert ai.table[observation.state][observation.action] != before
        assert "Failed to save Q-table" in caplog.text

    def test_wrong_shape(self, tmp_path) -> None:
        """Valid JSON with the wrong shape loads as None."""
        path = tmp_path / "qtable.json"
        path.write_text(json.dumps({"explorationRate": 7}), encoding="utf-8")
        assert JsonFileQTableStore(path).load() is None

    def test_learning_ai_survives_restart(self, tmp_path, settings: EngineSettings) -> None:
        """A second strategy instance picks up the first one's table."""
        path = tmp_path / "qtable.json"
        first = LearningAI(store=JsonFileQTableStore(path), settings=settings)
        first.update("S", "BALANCED", 10.0, "S")
        second = LearningAI(store=JsonFileQTableStore(path), settings=settings)
        assert second.table["S"]["BALANCED"] == pytest.approx(first.table["S"]["BALANCED"])


class TestEpisodes:
    """Tests for the wave hooks."""

    def test_wave_cycle(self, ai: LearningAI, store: MemoryQTableStore) -> None:
        """Wave start picks an action; wave end updates and saves."""
        context = WaveContext(wave=1, snapshot=firewalls(2), topology="line", credits=100)
        observation, policy = ai.on_wave_start(context)
        assert observation.state == "LOW_SPARSE_FW_HEAVY_ATTACKER_STRONG"
        assert policy.enemy_mix == ACTION_MIXES[observation.action]
        assert policy.reasoning.startswith(observation.action)
        assert ai.episode_count == 1

        before = ai.table[observation.state][observation.action]
        ai.on_wave_complete(context, WaveResult(blocked=0, leaked=5))
        assert ai.waves_completed == 1
        assert ai.table[observation.state][observation.action] != before
        assert store.saves == 1

    def test_exploring_unseen_state(self, store: MemoryQTableStore) -> None:
        """Always exploring still fills the new state's row before reporting it."""
        settings = EngineSettings(rl_epsilon=1.0, rl_min_epsilon=0.0)
        for seed in range(10):
            ai = LearningAI(store=store, rng=random.Random(seed), settings=settings)
            observation = ai.observe(())
            assert observation.action in ACTIONS
            assert set(observation.q_values) == set(ACTIONS)
            assert observation.state in ai.table

    def test_complete_without_start(self, ai: LearningAI, store: MemoryQTableStore) -> None:
        """Nothing is learned before the first episode starts."""
        context = WaveContext(wave=1, snapshot=(), topology="line")
        ai.on_wave_complete(context, WaveResult(leaked=1))
        assert store.saves == 0


class TestTopologyStyle:
    """Tests for grid-style requests."""

    @pytest.mark.parametrize(
        ("action", "towers", "style"),
        [
            ("AGGRESSIVE", 0, GridStyle.DIRECT),
            ("DEFENSIVE", 3, GridStyle.SPREAD),
            ("DEFENSIVE", 0, GridStyle.EVASIVE),
            ("BALANCED", 3, GridStyle.BALANCED),
        ],
    )
    def test_style_for_action(self, ai: LearningAI, action: str, towers: int, style: GridStyle) -> None:
        """The style follows the last action and the firewall share."""
        ai.current_action = action
        assert ai.select_topology_style(firewalls(towers)) is style

    def test_requests_every_interval(self, store: MemoryQTableStore, settings: EngineSettings) -> None:
        """A grid is requested once every switch_interval waves."""
        ai = LearningAI(store=store, settings=settings, switch_interval=2)
        ai.current_action = "AGGRESSIVE"
        context = WaveContext(wave=1, snapshot=(), topology="line")
        ai.waves_completed = 1
        assert ai.select_topology(context) is None
        ai.waves_completed = 2
        request = ai.select_topology(context)
        assert request is not None
        assert request.grid_style is GridStyle.DIRECT
        assert request.catalog_name is None

    def test_disabled_without_interval(self, ai: LearningAI) -> None:
        """No interval means no rotation."""
        ai.waves_completed = 4
        assert ai.select_topology(WaveContext(wave=4, snapshot=(), topology="line")) is None
