"""Attack strategies: reactive counter, leader/follower equilibrium and Q-learning."""

from netdefender.strategies.base import (
    AttackStrategy,
    SpawnPolicy,
    TopologyRequest,
    WaveContext,
    WaveResult,
)
from netdefender.strategies.equilibrium import EquilibriumAI, EquilibriumAnalysis
from netdefender.strategies.learning import LearningAI
from netdefender.strategies.qtable_store import JsonFileQTableStore, MemoryQTableStore
from netdefender.strategies.reactive import ReactiveCounterAI

__all__ = [
    "AttackStrategy",
    "EquilibriumAI",
    "EquilibriumAnalysis",
    "JsonFileQTableStore",
    "LearningAI",
    "MemoryQTableStore",
    "ReactiveCounterAI",
    "SpawnPolicy",
    "TopologyRequest",
    "WaveContext",
    "WaveResult",
]
