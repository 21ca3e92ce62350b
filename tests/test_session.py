"""Tests for session assembly, waves, economy and topology rotation."""

from __future__ import annotations

import random

import pytest

from netdefender.catalog import ENEMIES, ModeConfig, PhaseDurations, get_mode
from netdefender.config import EngineSettings
from netdefender.engine.events import Event, EventBus
from netdefender.engine.phases import Phase
from netdefender.engine.session import LEAK_DAMAGE, build_session, build_strategy
from netdefender.engine.topology import GridStyle
from netdefender.errors import MissingTopologyError, PlacementError
from netdefender.strategies import (
    EquilibriumAI,
    JsonFileQTableStore,
    LearningAI,
    MemoryQTableStore,
    ReactiveCounterAI,
    TopologyRequest,
)


@pytest.fixture
def settings(tmp_path) -> EngineSettings:
    """Fast analysis settings with the Q-table kept under tmp_path."""
    return EngineSettings(chokepoint_samples=20, qtable_path=tmp_path / "qtable.json")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def quick_mode() -> ModeConfig:
    """Two-packet waves on level1, rotating to adaptive1 after every wave."""
    return ModeConfig(
        name="quick",
        strategy="reactive",
        topology="level1",
        topology_pool=["level1", "adaptive1"],
        spawn_interval=1.0,
        wave_size=2,
        switch_interval=1,
    )


def record(bus: EventBus, event: Event) -> list[dict]:
    seen: list[dict] = []
    bus.subscribe(event, seen.append)
    return seen


def tick_until(session, predicate, dt: float = 0.5, limit: int = 400) -> None:
    for _ in range(limit):
        if predicate():
            return
        session.tick(dt)
    raise AssertionError("condition never reached")


class TestBuildSession:
    """Tests for assembling sessions from modes."""

    def test_reactive_mode(self, settings: EngineSettings) -> None:
        """The adaptive mode plays the reactive strategy on its catalog map."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        assert isinstance(session.strategy, ReactiveCounterAI)
        assert session.topology_name == "adaptive1"
        assert session.phases is None
        assert session.credits == 1200
        assert session.paths
        for path in session.paths:
            assert session.graph.is_valid_path(path)

    def test_learning_mode_default_store(self, settings: EngineSettings) -> None:
        """Learning modes persist to the configured JSON path by default."""
        session = build_session(get_mode("economic"), settings=settings, seed=1)
        assert isinstance(session.strategy, LearningAI)
        assert isinstance(session.strategy.store, JsonFileQTableStore)
        assert session.strategy.store.path == settings.qtable_path

    def test_stackelberg_mode(self, settings: EngineSettings) -> None:
        """The equilibrium mode gets a generated mesh and a phase controller."""
        session = build_session(get_mode("stackelberg"), settings=settings, seed=2)
        assert isinstance(session.strategy, EquilibriumAI)
        assert session.phases is not None
        assert session.topology_name.startswith("Layered Mesh")

    def test_phases_need_equilibrium(self, settings: EngineSettings) -> None:
        """Phases paired with another strategy are rejected."""
        mode = ModeConfig(name="odd", strategy="reactive", phases=PhaseDurations())
        with pytest.raises(ValueError, match="has phases"):
            build_session(mode, settings=settings, seed=1)

    def test_unknown_strategy(self, settings: EngineSettings) -> None:
        """A mode whose strategy bypassed validation still fails loudly."""
        mode = get_mode("adaptive").model_copy(update={"strategy": "random"})
        with pytest.raises(ValueError, match="Unknown strategy"):
            build_strategy(mode, random.Random(1), settings)

    def test_same_seed_same_spawns(self, settings: EngineSettings) -> None:
        """Two sessions with one seed spawn identical packets."""
        def spawns(seed: int) -> list[tuple[str, list[int]]]:
            session = build_session(get_mode("adaptive"), settings=settings, seed=seed)
            session.start()
            packets = [session.spawn_packet() for _ in range(10)]
            return [(p.enemy_type, p.path) for p in packets if p is not None]

        assert spawns(5) == spawns(5)


class TestDefenses:
    """Tests for buying and placing towers."""

    def test_place_tower(self, settings: EngineSettings) -> None:
        """A placed tower sits on the node and is paid for."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        tower = session.place_tower("Firewall", 4)
        assert (tower.x, tower.y) == session.graph.position(4)
        assert session.credits == 900
        assert session.snapshot() == (tower,)

    def test_unknown_node(self, settings: EngineSettings) -> None:
        """Towers must go on existing nodes."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        with pytest.raises(PlacementError, match="Unknown node"):
            session.place_tower("IDS", 99)

    def test_insufficient_credits(self, settings: EngineSettings) -> None:
        """The fifth firewall is unaffordable with 1200 credits."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        for node_id in range(4):
            session.place_tower("Firewall", node_id)
        with pytest.raises(PlacementError, match="costs 300"):
            session.place_tower("Firewall", 5)
        assert session.credits == 0
        assert len(session.towers) == 4


class TestPackets:
    """Tests for spawning, kills and leaks."""

    def test_spawn_at_source(self, settings: EngineSettings) -> None:
        """Packets start at their path's source with their catalog speed."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        session.start()
        packet = session.spawn_packet()
        assert packet is not None
        assert (packet.x, packet.y) == session.graph.position(packet.path[0])
        assert packet.speed == ENEMIES[packet.enemy_type].speed
        assert session.wave_spawned == 1

    def test_destroy_credits_reward(self, settings: EngineSettings) -> None:
        """A kill pays the reward and counts as blocked exactly once."""
        mode = get_mode("adaptive").model_copy(update={"legitimate_ratio": 0.0})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        packet = session.spawn_packet()
        session.destroy_packet(packet)
        session.destroy_packet(packet)
        assert session.credits == 1200 + ENEMIES[packet.enemy_type].reward
        assert session.blocked == 1
        assert session.success_rate == 100.0

    def test_killing_legitimate_traffic_costs(self, settings: EngineSettings) -> None:
        """Destroying legitimate traffic deducts credits and is not a block."""
        mode = get_mode("adaptive").model_copy(update={"legitimate_ratio": 1.0})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        packet = session.spawn_packet()
        assert packet.enemy_type == "LEGITIMATE"
        session.destroy_packet(packet)
        assert session.credits == 1150
        assert session.blocked == 0

    def test_leak_damages_core(self, settings: EngineSettings) -> None:
        """A threat reaching the goal costs core health."""
        mode = get_mode("adaptive").model_copy(update={"legitimate_ratio": 0.0})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        tick_until(session, lambda: session.leaked > 0)
        assert session.core_health == 100 - LEAK_DAMAGE * session.leaked
        assert session.success_rate == 0.0

    def test_legitimate_traffic_never_leaks(self, settings: EngineSettings) -> None:
        """Legitimate packets pass through the goal harmlessly."""
        mode = get_mode("adaptive").model_copy(update={"legitimate_ratio": 1.0, "wave_size": 1})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        tick_until(session, lambda: session.wave >= 2)
        assert session.leaked == 0
        assert session.core_health == 100

    def test_core_destroyed_stops_session(self, settings: EngineSettings) -> None:
        """Losing the core ends a continuous session."""
        mode = get_mode("adaptive").model_copy(update={"legitimate_ratio": 0.0, "core_health": 10})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        tick_until(session, lambda: not session.running)
        assert session.core_health == 0


class TestWaves:
    """Tests for wave completion and topology rotation."""

    def test_wave_rotation(self, settings: EngineSettings, quick_mode: ModeConfig, bus: EventBus) -> None:
        """Finishing a wave rotates the map and starts the next wave."""
        switched = record(bus, Event.TOPOLOGY_SWITCHED)
        updates = record(bus, Event.STRATEGY_UPDATED)
        session = build_session(quick_mode, settings=settings, seed=4, bus=bus)
        session.start()
        tick_until(session, lambda: session.wave >= 2)

        assert switched[0] == {"from": "level1", "to": "adaptive1", "reasoning": "Adaptive change"}
        assert session.topology_name == "adaptive1"
        assert len(updates) == 2
        assert set(updates[0]) == {"policy", "analysis"}

    def test_maintenance_upkeep(self, settings: EngineSettings) -> None:
        """Economic modes charge tower upkeep when a wave closes."""
        session = build_session(get_mode("economic"), settings=settings, seed=1,
                                store=MemoryQTableStore())
        session.start()
        session.place_tower("Firewall", 1)
        session.complete_wave()
        assert session.credits == 1500 - 300 - 10
        assert session.wave == 2

    def test_learning_updates_each_wave(self, settings: EngineSettings) -> None:
        """Each completed wave writes the Q-table."""
        store = MemoryQTableStore()
        session = build_session(get_mode("economic"), settings=settings, seed=1, store=store)
        session.start()
        session.complete_wave()
        session.complete_wave()
        assert store.saves == 2
        assert session.strategy.episode_count == 3

    def test_switch_to_generated_grid(self, settings: EngineSettings) -> None:
        """Grid requests generate a new graph; towers stay, packets are dropped."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        session.start()
        session.place_tower("IDS", 1)
        session.spawn_packet()
        graph = session.switch_topology(TopologyRequest("test", grid_style=GridStyle.SPREAD))
        assert graph.name == "Smart SPREAD"
        assert session.packets == []
        assert len(session.towers) == 1
        assert session.strategy.graph is graph

    def test_switch_to_missing_topology(self, settings: EngineSettings) -> None:
        """Unknown catalog names raise MissingTopologyError."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        with pytest.raises(MissingTopologyError):
            session.switch_topology(TopologyRequest("test", catalog_name="nowhere"))


class TestLifecycle:
    """Tests for stop and restart."""

    def test_stop_freezes_ticks(self, settings: EngineSettings) -> None:
        """A stopped session ignores ticks."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        session.start()
        session.stop()
        session.tick(10.0)
        assert session.packets == []

    def test_restart_resets_economy(self, settings: EngineSettings) -> None:
        """Restart clears towers and packets and begins wave 1 again."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        session.start()
        session.place_tower("Firewall", 1)
        session.spawn_packet()
        session.restart()
        assert session.towers == []
        assert session.packets == []
        assert session.credits == 1200
        assert session.wave == 1
        assert session.running


class TestPhasedSession:
    """Tests for sessions driven by the phase controller."""

    def test_phase_gating(self, settings: EngineSettings, bus: EventBus) -> None:
        """No spawns before battle; no placement after commitment."""
        complete = record(bus, Event.EQUILIBRIUM_SESSION_COMPLETE)
        session = build_session(get_mode("stackelberg"), settings=settings, seed=3, bus=bus)
        session.start()
        node_id = session.graph.node_ids[1]
        session.place_tower("Firewall", node_id)

        for _ in range(34):
            session.tick(1.0)
        assert session.phases.phase is Phase.TRAINING
        assert session.packets == []
        with pytest.raises(PlacementError, match="locked"):
            session.place_tower("IDS", node_id)

        for _ in range(3):
            session.tick(1.0)
        assert session.phases.phase is Phase.BATTLE
        assert session.wave_spawned > 0

        for _ in range(40):
            session.tick(1.0)
        assert session.phases.phase is Phase.SCORING
        assert len(complete) == 1
        assert session.status()["phase"]["phase"] == "scoring"

    def test_restart_reopens_placement(self, settings: EngineSettings) -> None:
        """Restarting a phased session returns to commitment."""
        session = build_session(get_mode("stackelberg"), settings=settings, seed=3)
        session.start()
        for _ in range(31):
            session.tick(1.0)
        session.restart()
        assert session.phases.phase is Phase.COMMITMENT
        assert session.phases.can_place_defenses
        assert len(session.scheduler) == 0

    def test_advice_after_scoring(self, settings: EngineSettings, bus: EventBus) -> None:
        """Coaching is offered once scored; the completion payload keeps its keys."""
        complete = record(bus, Event.EQUILIBRIUM_SESSION_COMPLETE)
        session = build_session(get_mode("stackelberg"), settings=settings, seed=3, bus=bus)
        session.start()
        assert session.advice() is None

        tick_until(session, lambda: session.phases.phase is Phase.SCORING, dt=1.0)
        advice = session.advice()
        assert advice is not None
        assert advice["costEfficiency"]["rating"] == "POOR"
        assert "completely open" in advice["placement"]["recommendation"]
        assert advice["placement"]["weakest_path"]
        assert set(complete[0]) == {"score", "analysis", "survived", "rating"}

    def test_no_advice_without_phases(self, settings: EngineSettings) -> None:
        """Continuous sessions never offer coaching."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        session.start()
        assert session.advice() is None


class TestTimeAttack:
    """Tests for timed waves, shrinking spawn intervals and the target wave."""

    def test_builtin_mode(self) -> None:
        """Time attack gives 60s per wave and is won at wave 20."""
        mode = get_mode("time_attack")
        assert mode.wave_time_limit == 60.0
        assert mode.spawn_decay == 0.9
        assert mode.target_wave == 20
        assert mode.topology == "adaptive3"

    def test_spawn_interval_shrinks_to_floor(self, settings: EngineSettings) -> None:
        """Each wave spawns 10% faster, never faster than the floor."""
        mode = get_mode("time_attack").model_copy(update={"target_wave": None})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        assert session.spawn_interval == pytest.approx(2.0 * 0.9)
        session.complete_wave()
        assert session.spawn_interval == pytest.approx(2.0 * 0.9**2)
        for _ in range(30):
            session.complete_wave()
        assert session.spawn_interval == 0.5

    def test_other_modes_keep_their_interval(self, settings: EngineSettings) -> None:
        """Without decay the mode's interval is used for every wave."""
        session = build_session(get_mode("adaptive"), settings=settings, seed=1)
        session.start()
        session.complete_wave()
        assert session.spawn_interval == 1.2
        assert "waveTimeRemaining" not in session.status()

    def test_timeout_costs_core_and_forces_next_wave(self, settings: EngineSettings) -> None:
        """An unfinished wave times out, costs 10 core health and the next one starts."""
        mode = get_mode("time_attack").model_copy(
            update={"wave_time_limit": 5.0, "spawn_interval": 100.0, "wave_size": 50}
        )
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        for _ in range(4):
            session.tick(1.0)
        assert session.wave == 1
        assert session.status()["waveTimeRemaining"] == pytest.approx(1.0)

        session.tick(1.0)
        assert session.wave == 2
        assert session.core_health == 90
        assert session.wave_timer == 0.0
        assert session.running

    def test_timeout_can_destroy_core(self, settings: EngineSettings) -> None:
        """A timeout on a nearly dead core loses the game."""
        mode = get_mode("time_attack").model_copy(
            update={"wave_time_limit": 1.0, "spawn_interval": 100.0, "core_health": 10}
        )
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        session.tick(1.0)
        assert not session.running
        assert session.outcome == "lost"
        assert session.wave == 1

    def test_target_wave_wins(self, settings: EngineSettings) -> None:
        """Completing the target wave ends the session as a win."""
        mode = get_mode("time_attack").model_copy(update={"target_wave": 2})
        session = build_session(mode, settings=settings, seed=1)
        session.start()
        session.complete_wave()
        assert session.running
        session.complete_wave()
        assert session.wave == 2
        assert not session.running
        assert session.status()["outcome"] == "won"


def test_logs_carry_session_context(
    settings: EngineSettings, quick_mode: ModeConfig, caplog: pytest.LogCaptureFixture
) -> None:
    """Wave logs name the session and the tick they happened on."""
    session = build_session(quick_mode, settings=settings, seed=4)
    with caplog.at_level("INFO", logger="netdefender.engine.session"):
        session.start()
        tick_until(session, lambda: session.wave >= 2)

    completed = [r for r in caplog.records if r.getMessage().startswith("Wave 1 complete")]
    assert len(completed) == 1
    assert completed[0].session == session.session_id
    assert 0 < completed[0].tick <= session.ticks
