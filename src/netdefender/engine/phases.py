"""Phase controller for the commit / observe / respond / score cycle.

COMMITMENT (defender places towers) -> TRAINING (placement locked, the
equilibrium strategy analyses the committed towers) -> BATTLE (spawning
allowed) -> SCORING (terminal until :meth:`PhaseController.restart`).

The training analysis is a deferred call on the session's
:class:`~netdefender.engine.scheduler.TickScheduler`. Each scheduled call
carries the epoch it was scheduled in; a restart bumps the epoch, so a stale
call that still fires is discarded.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from netdefender.engine.events import Event, EventBus
from netdefender.model.defender import snapshot

if TYPE_CHECKING:
    from collections.abc import Sequence

    from netdefender.catalog import PhaseDurations
    from netdefender.engine.scheduler import ScheduledCall, TickScheduler
    from netdefender.model.defender import DefenderSnapshot, DefenderTower
    from netdefender.strategies.base import SpawnPolicy
    from netdefender.strategies.equilibrium import EquilibriumAI, EquilibriumAnalysis

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    COMMITMENT = "commitment"
    TRAINING = "training"
    BATTLE = "battle"
    SCORING = "scoring"


class BattleField(Protocol):
    """What the controller reads from its session."""

    towers: Sequence[DefenderTower]
    core_health: float

    @property
    def success_rate(self) -> float: ...


def rating_for(score: int) -> int:
    """Stars for a session score: 3 at 80+, 2 at 60+, 1 at 40+."""
    if score >= 80:
        return 3
    if score >= 60:
        return 2
    if score >= 40:
        return 1
    return 0


class PhaseController:
    """Drives the four timed phases of an equilibrium session.

    Args:
        durations: Seconds for commitment, training and battle.
        strategy: Equilibrium strategy, already bound to the session topology.
        scheduler: Scheduler advanced by the same tick as this controller.
        bus: Where phase notifications are published.
        analysis_delay: Seconds the training analysis takes.

    Raises:
        ValueError: If training is shorter than the analysis delay.
    """

    def __init__(
        self,
        durations: PhaseDurations,
        strategy: EquilibriumAI,
        scheduler: TickScheduler,
        bus: EventBus | None = None,
        analysis_delay: float = 3.0,
    ) -> None:
        if durations.training < analysis_delay:
            raise ValueError(
                f"training phase ({durations.training}s) is shorter than the "
                f"analysis delay ({analysis_delay}s)"
            )
        self.durations = durations
        self.strategy = strategy
        self.scheduler = scheduler
        self.bus = bus or EventBus()
        self.analysis_delay = analysis_delay

        self.epoch = 0
        self._pending: ScheduledCall | None = None
        self._reset_state()

    def _reset_state(self) -> None:
        self.phase = Phase.COMMITMENT
        self.elapsed = 0.0
        self.towers_locked = False
        self.committed: DefenderSnapshot = ()
        self.analysis: EquilibriumAnalysis | None = None
        self.policy: SpawnPolicy | None = None
        self.battle_active = False
        self.score: int | None = None

    # -- Queries ---------------------------------------------------------------

    @property
    def can_place_defenses(self) -> bool:
        return self.phase is Phase.COMMITMENT and not self.towers_locked

    @property
    def can_spawn(self) -> bool:
        return self.phase is Phase.BATTLE and self.battle_active

    def duration(self, phase: Phase | None = None) -> float:
        phase = phase or self.phase
        if phase is Phase.SCORING:
            return 0.0
        return getattr(self.durations, phase.value)

    def optimal_baselines(self) -> tuple[float, float]:
        """Expected (success rate, health retention) for the bound topology."""
        paths = len(self.strategy.paths)
        graph = self.strategy.graph
        chokepoints = len(graph.chokepoints) if graph is not None else 0
        optimal_success = max(40, 100 - paths * 8 + chokepoints * 6)
        optimal_health = max(50, 100 - paths * 5)
        return optimal_success, optimal_health

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Enter COMMITMENT and announce it."""
        self._enter(Phase.COMMITMENT)

    def restart(self) -> None:
        """Drop any in-flight analysis and return to COMMITMENT."""
        self.stop()
        self._reset_state()
        self.start()

    def stop(self) -> None:
        """Cancel the pending analysis and invalidate stale callbacks."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self.epoch += 1
        self.battle_active = False

    def tick(self, dt: float, field: BattleField) -> None:
        """Advance the phase timer by ``dt`` seconds."""
        if self.phase is Phase.SCORING:
            return
        self.elapsed += dt
        elapsed_seconds = math.floor(self.elapsed)
        remaining = self.duration() - elapsed_seconds
        self.bus.publish(
            Event.PHASE_TIMER_TICK,
            {
                "phase": str(self.phase),
                "elapsedSeconds": elapsed_seconds,
                "remainingSeconds": max(0, remaining),
            },
        )
        if remaining <= 0:
            self.advance(field)

    def advance(self, field: BattleField) -> bool:
        """Move to the next phase if its entry condition holds.

        Returns:
            True if the phase changed.
        """
        if self.phase is Phase.COMMITMENT:
            self._start_training(field.towers)
        elif self.phase is Phase.TRAINING:
            if self.analysis is None:
                logger.debug("Training timer expired, waiting for analysis")
                return False
            self._start_battle()
        elif self.phase is Phase.BATTLE:
            self._start_scoring(field)
        else:
            return False
        return True

    # -- Transitions -----------------------------------------------------------

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        self.elapsed = 0.0
        logger.info("Phase -> %s", phase)
        self.bus.publish(
            Event.PHASE_CHANGED,
            {"phase": str(phase), "canPlaceDefenses": self.can_place_defenses},
        )

    def _start_training(self, towers: Sequence[DefenderTower]) -> None:
        self.towers_locked = True
        self.committed = snapshot(towers)
        self._pending = self.scheduler.call_later(
            self.analysis_delay, self._complete_analysis, self.epoch
        )
        self._enter(Phase.TRAINING)

    def _complete_analysis(self, epoch: int) -> None:
        if epoch != self.epoch:
            logger.debug("Discarding stale analysis from epoch %d", epoch)
            return
        self._pending = None
        self.analysis = self.strategy.observe(self.committed)
        self.policy = self.strategy.propose_spawn_policy(self.analysis)
        self.bus.publish(
            Event.STRATEGY_UPDATED,
            {"policy": self.policy.to_dict(), "analysis": asdict(self.analysis)},
        )

    def _start_battle(self) -> None:
        self._enter(Phase.BATTLE)
        self.battle_active = True

    def calculate_score(self, core_health: float, success_rate: float) -> int:
        optimal_success, optimal_health = self.optimal_baselines()
        defense_value = self.analysis.defense_value if self.analysis else 0.0
        survivability = core_health / optimal_health * 50
        success = success_rate / optimal_success * 100
        return math.floor(min(100, defense_value * 0.3 + max(0, survivability) + success * 0.5))

    def _start_scoring(self, field: BattleField) -> None:
        self.battle_active = False
        self._enter(Phase.SCORING)
        self.score = self.calculate_score(field.core_health, field.success_rate)
        rating = rating_for(self.score)
        logger.info("Session scored %d (%d stars)", self.score, rating)
        self.bus.publish(
            Event.EQUILIBRIUM_SESSION_COMPLETE,
            {
                "score": self.score,
                "analysis": asdict(self.analysis) if self.analysis else None,
                "survived": field.core_health > 0,
                "rating": rating,
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": str(self.phase),
            "elapsed": self.elapsed,
            "canPlaceDefenses": self.can_place_defenses,
            "battleActive": self.battle_active,
            "score": self.score,
        }
