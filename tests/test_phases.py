"""Tests for the commitment / training / battle / scoring phase controller."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from netdefender.catalog import PhaseDurations, make_tower
from netdefender.engine.events import Event, EventBus
from netdefender.engine.phases import Phase, PhaseController, rating_for
from netdefender.engine.scheduler import TickScheduler
from netdefender.model import DefenderTower, Graph
from netdefender.strategies.equilibrium import EquilibriumAI


@dataclass
class FakeField:
    towers: list[DefenderTower] = field(default_factory=list)
    core_health: float = 100.0
    success_rate: float = 0.0


@pytest.fixture
def strategy() -> EquilibriumAI:
    graph = Graph.build([(0, 0), (100, 0), (200, 0)], [(0, 1), (1, 2)], sources=[0], goals=[2])
    ai = EquilibriumAI()
    ai.bind_topology(graph, [[0, 1, 2]])
    return ai


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def scheduler() -> TickScheduler:
    return TickScheduler()


@pytest.fixture
def controller(strategy: EquilibriumAI, scheduler: TickScheduler, bus: EventBus) -> PhaseController:
    durations = PhaseDurations(commitment=2, training=5, battle=3)
    ctrl = PhaseController(durations, strategy, scheduler, bus=bus, analysis_delay=3.0)
    ctrl.start()
    return ctrl


def run(ctrl: PhaseController, scheduler: TickScheduler, battlefield: FakeField, steps: int) -> None:
    """Advance the scheduler and the controller together, one second per step."""
    for _ in range(steps):
        scheduler.advance(1.0)
        ctrl.tick(1.0, battlefield)


class TestConstruction:
    """Tests for controller construction."""

    def test_training_shorter_than_analysis(self, strategy: EquilibriumAI) -> None:
        """The analysis must fit inside the training phase."""
        with pytest.raises(ValueError, match="shorter than the analysis delay"):
            PhaseController(PhaseDurations(training=2), strategy, TickScheduler(), analysis_delay=3.0)

    def test_starts_in_commitment(self, controller: PhaseController) -> None:
        """Placement is open and spawning closed at the start."""
        assert controller.phase is Phase.COMMITMENT
        assert controller.can_place_defenses
        assert not controller.can_spawn
        assert controller.duration(Phase.SCORING) == 0.0


class TestTransitions:
    """Tests for the phase sequence."""

    def test_commitment_locks_towers(self, controller: PhaseController, scheduler: TickScheduler) -> None:
        """Entering training snapshots the towers and blocks placement."""
        battlefield = FakeField(towers=[make_tower("Firewall", 100, 0)])
        run(controller, scheduler, battlefield, 2)
        assert controller.phase is Phase.TRAINING
        assert not controller.can_place_defenses
        battlefield.towers.append(make_tower("IDS", 0, 0))
        assert len(controller.committed) == 1

    def test_full_cycle(self, controller: PhaseController, scheduler: TickScheduler) -> None:
        """Commitment 2s, training 5s, battle 3s, then scoring."""
        battlefield = FakeField(towers=[make_tower("Firewall", 100, 0)])
        run(controller, scheduler, battlefield, 5)
        assert controller.phase is Phase.TRAINING
        assert controller.analysis is not None
        assert controller.policy is not None

        run(controller, scheduler, battlefield, 2)
        assert controller.phase is Phase.BATTLE
        assert controller.can_spawn

        run(controller, scheduler, battlefield, 3)
        assert controller.phase is Phase.SCORING
        assert not controller.can_spawn
        assert controller.score is not None

    def test_training_waits_for_analysis(self, controller: PhaseController,
                                         scheduler: TickScheduler) -> None:
        """Battle cannot begin before the analysis has completed."""
        battlefield = FakeField()
        run(controller, scheduler, battlefield, 2)
        assert controller.advance(battlefield) is False
        assert controller.phase is Phase.TRAINING

    def test_scoring_is_terminal(self, controller: PhaseController, scheduler: TickScheduler) -> None:
        """Ticks do nothing once scored."""
        battlefield = FakeField()
        run(controller, scheduler, battlefield, 10)
        assert controller.phase is Phase.SCORING
        run(controller, scheduler, battlefield, 5)
        assert controller.phase is Phase.SCORING
        assert controller.advance(battlefield) is False


class TestRestart:
    """Tests for restart and stale analysis."""

    def test_restart_returns_to_commitment(self, controller: PhaseController,
                                           scheduler: TickScheduler) -> None:
        """A restart clears the lock and the pending analysis."""
        run(controller, scheduler, FakeField(), 3)
        controller.restart()
        assert controller.phase is Phase.COMMITMENT
        assert controller.can_place_defenses
        assert len(scheduler) == 0

    def test_stale_analysis_discarded(self, controller: PhaseController,
                                      scheduler: TickScheduler) -> None:
        """An analysis scheduled before a restart never lands."""
        run(controller, scheduler, FakeField(), 2)
        stale = controller._pending
        assert stale is not None
        controller.restart()
        stale.callback(*stale.args)
        assert controller.analysis is None
        assert controller.policy is None


class TestScoring:
    """Tests for the score and rating formulas."""

    def test_optimal_baselines(self, controller: PhaseController) -> None:
        """One path and no chokepoints: 92% success, 95 health."""
        assert controller.optimal_baselines() == (92, 95)

    @pytest.mark.parametrize(
        ("health", "success", "score"),
        [(95.0, 92.0, 100), (0.0, 46.0, 25), (47.5, 0.0, 25)],
    )
    def test_calculate_score(self, controller: PhaseController, health: float,
                             success: float, score: int) -> None:
        """Survivability and success are measured against the baselines."""
        assert controller.calculate_score(health, success) == score

    @pytest.mark.parametrize(("score", "stars"), [(100, 3), (80, 3), (79, 2), (60, 2), (40, 1), (39, 0)])
    def test_rating(self, score: int, stars: int) -> None:
        """Star thresholds at 80, 60 and 40."""
        assert rating_for(score) == stars


class TestNotifications:
    """Tests for published events."""

    def test_events_over_a_cycle(self, strategy: EquilibriumAI, scheduler: TickScheduler,
                                 bus: EventBus) -> None:
        """Phase changes, the strategy update and the final score are published."""
        events: dict[str, list[dict]] = {e: [] for e in Event}
        for event in Event:
            bus.subscribe(event, events[event].append)

        ctrl = PhaseController(PhaseDurations(commitment=2, training=5, battle=3),
                               strategy, scheduler, bus=bus, analysis_delay=3.0)
        ctrl.start()
        run(ctrl, scheduler, FakeField(core_health=80.0, success_rate=50.0), 10)

        phases = [e["phase"] for e in events[Event.PHASE_CHANGED]]
        assert phases == ["commitment", "training", "battle", "scoring"]
        assert events[Event.PHASE_CHANGED][0]["canPlaceDefenses"] is True

        assert len(events[Event.STRATEGY_UPDATED]) == 1
        update = events[Event.STRATEGY_UPDATED][0]
        assert set(update) == {"policy", "analysis"}
        assert update["analysis"]["posture"] == "BALANCED"

        complete = events[Event.EQUILIBRIUM_SESSION_COMPLETE]
        assert len(complete) == 1
        assert complete[0]["survived"] is True
        assert complete[0]["rating"] == rating_for(complete[0]["score"])

        ticks = events[Event.PHASE_TIMER_TICK]
        assert ticks
        assert all(t["remainingSeconds"] >= 0 for t in ticks)
