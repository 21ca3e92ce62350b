"""LearningAI: tabular Q-learning over a discretized economy/defense state.

Each wave is one episode. At wave start the strategy buckets the situation
into a state key, picks an action epsilon-greedily, and spawns that action's
enemy mix. At wave end it scores the wave, updates Q(s, a) and persists the
table through its store.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from netdefender.config import get_settings
from netdefender.engine.topology import GridStyle, reasoning_for
from netdefender.model.defender import TowerType, classify_posture, count_types
from netdefender.strategies.base import (
    AttackStrategy,
    SpawnPolicy,
    TopologyRequest,
    WaveContext,
    WaveResult,
)
from netdefender.strategies.qtable_store import MemoryQTableStore, QTableBlob, parse_blob

if TYPE_CHECKING:
    from netdefender.config import EngineSettings
    from netdefender.model.defender import DefenderSnapshot
    from netdefender.model.graph import Graph
    from netdefender.strategies.qtable_store import QTableStore

logger = logging.getLogger(__name__)

ACTIONS = ("AGGRESSIVE", "BALANCED", "DEFENSIVE")

ACTION_MIXES: dict[str, dict[str, float]] = {
    "AGGRESSIVE": {"TANK": 0.4, "ENCRYPTED": 0.3, "ADAPTIVE": 0.2, "FAST": 0.1},
    "BALANCED": {"BASIC": 0.25, "FAST": 0.25, "TANK": 0.25, "STEALTH": 0.15, "ENCRYPTED": 0.1},
    "DEFENSIVE": {"BASIC": 0.5, "FAST": 0.4, "STEALTH": 0.1},
}

ACTION_REASONING = {
    "AGGRESSIVE": "High risk, high reward: heavy and encrypted threats.",
    "BALANCED": "Mixed approach across threat types.",
    "DEFENSIVE": "Cheap threats to wear down the defender's budget.",
}

INITIAL_Q_RANGE = (0.0, 2.0)


# -- State buckets -------------------------------------------------------------


def credit_bucket(credits: float) -> str:
    if credits < 500:
        return "LOW"
    if credits < 1500:
        return "MED"
    return "HIGH"


def density_bucket(graph: Graph | None) -> str:
    if graph is None or not graph.nodes:
        return "SPARSE"
    return "DENSE" if len(graph.chokepoints) / len(graph.nodes) > 0.2 else "SPARSE"


def performance_bucket(success_rate: float) -> str:
    return "DEFENDER_STRONG" if success_rate > 70 else "ATTACKER_STRONG"


def state_key(credits: str, density: str, ratio: str, performance: str) -> str:
    """Join the four buckets, e.g. ``LOW_SPARSE_FW_HEAVY_ATTACKER_STRONG``."""
    return "_".join((credits, density, ratio, performance))


@dataclass
class LearningObservation:
    """State and chosen action for one episode."""

    state: str
    action: str
    q_values: dict[str, float] = field(default_factory=dict)
    exploration_rate: float = 0.0


class LearningAI(AttackStrategy):
    """Epsilon-greedy Q-learning attacker.

    Args:
        store: Where the Q-table is persisted. Defaults to an in-memory store.
        rng: Random source for exploration, initial values and sampling.
        settings: Supplies alpha, gamma and the exploration schedule.
        switch_interval: Waves between generated-grid rotations (None disables).
    """

    name = "learning"

    def __init__(
        self,
        store: QTableStore | None = None,
        rng: random.Random | None = None,
        settings: EngineSettings | None = None,
        switch_interval: int | None = None,
    ) -> None:
        super().__init__(rng)
        self.settings = settings or get_settings()
        self.store = store if store is not None else MemoryQTableStore()
        self.alpha = self.settings.rl_alpha
        self.gamma = self.settings.rl_gamma
        self.switch_interval = switch_interval
        self.credits = 0
        self.success_rate = 0.0
        self.current_state: str | None = None
        self.current_action: str | None = None
        self.episode_reward = 0.0
        self.waves_completed = 0
        self._load()

    def _load(self) -> None:
        self.table: dict[str, dict[str, float]] = {}
        self.episode_count = 0
        self.exploration_rate = self.settings.rl_epsilon
        blob = parse_blob(self.store.load())
        if blob is None:
            return
        self.table = {s: dict(q) for s, q in blob.table.items()}
        self.episode_count = blob.episode_count
        self.exploration_rate = max(
            self.settings.rl_min_epsilon,
            blob.exploration_rate * self.settings.rl_epsilon_decay,
        )
        logger.info(
            "Loaded Q-table: %d states, %d episodes, epsilon=%.3f",
            len(self.table),
            self.episode_count,
            self.exploration_rate,
        )

    # -- Q-table ---------------------------------------------------------------

    def q_values(self, state: str) -> dict[str, float]:
        """Action values for a state, filling unseen states with U(0, 2)."""
        values = self.table.get(state)
        if values is None or any(a not in values for a in ACTIONS):
            values = dict(values or {})
            for action in ACTIONS:
                values.setdefault(action, self.rng.uniform(*INITIAL_Q_RANGE))
            self.table[state] = values
        return values

    def best_action(self, state: str) -> str:
        """Greedy action; ties resolve to the earliest action in ACTIONS."""
        values = self.q_values(state)
        best = ACTIONS[0]
        for action in ACTIONS[1:]:
            if values[action] > values[best]:
                best = action
        return best

    def select_action(self, state: str) -> str:
        """Epsilon-greedy choice. The state row is filled before either branch."""
        self.q_values(state)
        if self.rng.random() < self.exploration_rate:
            return self.rng.choice(ACTIONS)
        return self.best_action(state)

    def update(self, state: str, action: str, reward: float, next_state: str) -> float:
        """Apply ``Q <- Q + alpha * (r + gamma * max Q(s') - Q)`` and persist.

        Returns:
            The updated Q(s, a).
        """
        current = self.q_values(state)[action]
        max_next = max(self.q_values(next_state).values())
        new_value = current + self.alpha * (reward + self.gamma * max_next - current)
        self.table[state][action] = new_value
        self.save()
        logger.debug("Q[%s][%s] %.3f -> %.3f (reward=%.1f)", state, action, current, new_value, reward)
        return new_value

    def calculate_reward(self, result: WaveResult, credits: float) -> float:
        reward = 10 * result.leaked - 5 * result.blocked
        if credits <= 0:
            reward += 50
        if credits > 2000:
            reward -= 20
        return reward

    def to_blob(self) -> dict[str, Any]:
        blob = QTableBlob(
            table=self.table,
            episode_count=self.episode_count,
            exploration_rate=self.exploration_rate,
        )
        return blob.model_dump(by_alias=True)

    def save(self) -> None:
        """Persist the table. A failed write is logged and the in-memory table kept."""
        try:
            self.store.save(self.to_blob())
        except OSError as e:
            logger.warning("Failed to save Q-table: %s", e)

    def reset(self) -> None:
        """Forget everything learned and persist the empty table."""
        self.table = {}
        self.episode_count = 0
        self.episode_reward = 0.0
        self.exploration_rate = self.settings.rl_epsilon
        self.current_state = None
        self.current_action = None
        self.save()
        logger.info("Q-table reset")

    # -- State -----------------------------------------------------------------

    def record_economy(self, credits: float, success_rate: float) -> None:
        """Defender credits and success rate feeding the next state key."""
        self.credits = credits
        self.success_rate = success_rate

    def current_state_key(self, snapshot: DefenderSnapshot) -> str:
        return state_key(
            credit_bucket(self.credits),
            density_bucket(self.graph),
            classify_posture(snapshot),
            performance_bucket(self.success_rate),
        )

    # -- AttackStrategy --------------------------------------------------------

    def observe(self, snapshot: DefenderSnapshot) -> LearningObservation:
        """Start an episode: bucket the state and pick an action."""
        state = self.current_state_key(snapshot)
        action = self.select_action(state)
        self.current_state = state
        self.current_action = action
        self.episode_count += 1
        logger.info("Episode %d: state=%s action=%s", self.episode_count, state, action)
        return LearningObservation(
            state=state,
            action=action,
            q_values=dict(self.table[state]),
            exploration_rate=self.exploration_rate,
        )

    def propose_spawn_policy(self, analysis: LearningObservation) -> SpawnPolicy:
        return SpawnPolicy(
            enemy_mix=dict(ACTION_MIXES[analysis.action]),
            reasoning=f"{analysis.action}: {ACTION_REASONING[analysis.action]}",
        )

    def on_wave_start(self, context: WaveContext) -> tuple[LearningObservation, SpawnPolicy]:
        self.record_economy(context.credits, context.success_rate)
        return super().on_wave_start(context)

    def on_wave_complete(self, context: WaveContext, result: WaveResult) -> None:
        """Score the finished wave and update Q(s, a) toward the new state."""
        self.waves_completed += 1
        self.record_economy(context.credits, context.success_rate)
        if self.current_state is None or self.current_action is None:
            return
        reward = self.calculate_reward(result, context.credits)
        self.episode_reward += reward
        next_state = self.current_state_key(context.snapshot)
        self.update(self.current_state, self.current_action, reward, next_state)

    # -- Topology --------------------------------------------------------------

    def select_topology_style(self, snapshot: DefenderSnapshot) -> GridStyle:
        """Grid style matching the current action and the defender's layout."""
        if self.current_action == "AGGRESSIVE":
            return GridStyle.DIRECT
        if self.current_action == "DEFENSIVE":
            counts = count_types(snapshot)
            if snapshot and counts[TowerType.FIREWALL] / len(snapshot) > 0.5:
                return GridStyle.SPREAD
            return GridStyle.EVASIVE
        return GridStyle.BALANCED

    def select_topology(self, context: WaveContext) -> TopologyRequest | None:
        if not self.switch_interval or self.waves_completed % self.switch_interval != 0:
            return None
        style = self.select_topology_style(context.snapshot)
        logger.info("Learning strategy requesting %s grid after wave %d", style, context.wave)
        return TopologyRequest(reasoning=reasoning_for(style), grid_style=style)
