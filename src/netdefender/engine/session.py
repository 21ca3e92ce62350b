"""Session: one playable run composed from a mode, a strategy and an optional phase policy.

The host calls :meth:`Session.tick` with the elapsed seconds. Within a tick
the scheduler fires due calls, the phase controller (if any) advances, new
packets are spawned, honeypots attract packets, and packets move. Combat is
the host's concern: it reports kills through :meth:`Session.destroy_packet`.
"""

from __future__ import annotations

import itertools
import logging
import random
import uuid
from dataclasses import asdict, is_dataclass
from typing import TYPE_CHECKING, Any

from netdefender.catalog import ENEMIES, TOWERS, load_topology, make_tower
from netdefender.config import get_settings
from netdefender.engine.events import Event, EventBus
from netdefender.engine.pathfinding import compute_spawn_paths
from netdefender.engine.phases import Phase, PhaseController
from netdefender.engine.router import AgentRouter
from netdefender.engine.scheduler import TickScheduler
from netdefender.engine.topology import TopologyGenerator
from netdefender.errors import PlacementError
from netdefender.model.defender import snapshot
from netdefender.model.packet import Packet
from netdefender.strategies.base import WaveContext, WaveResult
from netdefender.strategies.equilibrium import EquilibriumAI
from netdefender.strategies.learning import LearningAI
from netdefender.strategies.qtable_store import JsonFileQTableStore
from netdefender.strategies.reactive import ReactiveCounterAI

if TYPE_CHECKING:
    from netdefender.catalog import ModeConfig
    from netdefender.config import EngineSettings
    from netdefender.model.defender import DefenderSnapshot, DefenderTower, TowerType
    from netdefender.model.graph import Graph, Path
    from netdefender.strategies.base import AttackStrategy, SpawnPolicy, TopologyRequest
    from netdefender.strategies.qtable_store import QTableStore

logger = logging.getLogger(__name__)

LEAK_DAMAGE = 10
TIMEOUT_DAMAGE = 10
LEGITIMATE = "LEGITIMATE"


def _payload(analysis: Any) -> Any:
    if analysis is not None and is_dataclass(analysis):
        return asdict(analysis)
    return analysis


class Session:
    """A running game: graph, packets, defenses and the attacking strategy.

    Args:
        mode: Mode the session was built from.
        strategy: Attack strategy, owned by this session only.
        graph: Starting topology.
        rng: Session random source (spawn rolls, path jitter, strategy sampling).
        settings: Engine settings.
        bus: Notification bus.
        scheduler: Deferred-call scheduler advanced by :meth:`tick`.
        phases: Phase controller, or None for continuous wave play.
        generator: Topology generator for generated rotations.
        session_id: Identifier used in log context (a random hex id if omitted).
    """

    def __init__(
        self,
        mode: ModeConfig,
        strategy: AttackStrategy,
        graph: Graph,
        rng: random.Random,
        settings: EngineSettings,
        bus: EventBus | None = None,
        scheduler: TickScheduler | None = None,
        phases: PhaseController | None = None,
        generator: TopologyGenerator | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.ticks = 0
        self.mode = mode
        self.strategy = strategy
        self.rng = rng
        self.settings = settings
        self.bus = bus or EventBus()
        self.scheduler = scheduler or TickScheduler()
        self.phases = phases
        self.generator = generator or TopologyGenerator(seed=rng.getrandbits(32), settings=settings)
        self.running = False
        self._packet_ids = itertools.count(1)
        self._reset_state()
        self._bind(graph)

    def _reset_state(self) -> None:
        self.towers: list[DefenderTower] = []
        self.packets: list[Packet] = []
        self.credits = self.mode.starting_credits
        self.core_health = self.mode.core_health
        self.wave = 0
        self.blocked = 0
        self.leaked = 0
        self.wave_spawned = 0
        self.wave_blocked = 0
        self.wave_leaked = 0
        self.spawn_timer = 0.0
        self.spawn_interval = self.mode.spawn_interval
        self.wave_timer = 0.0
        self.outcome: str | None = None
        self.policy: SpawnPolicy | None = None
        self.analysis: Any = None

    def _bind(self, graph: Graph) -> None:
        self.graph = graph
        self.paths: list[Path] = compute_spawn_paths(
            graph, jitter=True, rng=self.rng, jitter_amount=self.settings.path_jitter
        )
        self.router = AgentRouter(
            graph,
            attraction_duration=self.settings.attraction_duration,
            speed_scale=self.settings.packet_speed_scale,
        )
        self.strategy.bind_topology(graph, self.paths)

    @property
    def topology_name(self) -> str:
        return self.graph.name

    @property
    def success_rate(self) -> float:
        """Percentage of resolved threats the defender blocked (0 before any)."""
        total = self.blocked + self.leaked
        if total == 0:
            return 0.0
        return self.blocked / total * 100

    @property
    def active_packets(self) -> list[Packet]:
        return [p for p in self.packets if p.active]

    def snapshot(self) -> DefenderSnapshot:
        return snapshot(self.towers)

    @property
    def log_context(self) -> dict[str, Any]:
        """``extra=`` mapping rendered by the formatters as {session@tick}."""
        return {"session": self.session_id, "tick": self.ticks}

    # -- Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        self.running = True
        if self.phases is not None:
            self.phases.start()
        else:
            self.start_wave()

    def stop(self) -> None:
        """Halt ticking and cancel every pending deferred call."""
        self.running = False
        self.scheduler.cancel_all()
        if self.phases is not None:
            self.phases.stop()
        logger.info("Session stopped at wave %d", self.wave, extra=self.log_context)

    def restart(self) -> None:
        """Reset towers, packets and economy on the current topology and start again."""
        self.stop()
        self._reset_state()
        self.running = True
        if self.phases is not None:
            self.phases.restart()
        else:
            self.start_wave()

    def tick(self, dt: float) -> None:
        """Advance the whole simulation by ``dt`` seconds."""
        if not self.running:
            return
        self.ticks += 1
        self.scheduler.advance(dt)
        if self.phases is not None:
            self.phases.tick(dt, self)
            if not self.running:
                return

        if self._spawning_allowed():
            self.spawn_timer += dt
            while self.spawn_timer >= self.spawn_interval and self._spawning_allowed():
                self.spawn_timer -= self.spawn_interval
                self.spawn_packet()

        self.router.apply_attractors(self.active_packets, self.towers)
        for packet in self.active_packets:
            self.router.advance(packet, dt)
            if packet.reached_goal:
                self._on_goal(packet)
        self.packets = [p for p in self.packets if p.active]

        if not self.running or self.phases is not None:
            return
        self.wave_timer += dt
        limit = self.mode.wave_time_limit
        if limit is not None and self.wave_timer >= limit:
            self._on_timeout()
        elif self.wave_spawned >= self.mode.wave_size and not self.packets:
            self.complete_wave()

    def _spawning_allowed(self) -> bool:
        if self.phases is not None:
            return self.phases.can_spawn
        return self.wave_spawned < self.mode.wave_size

    # -- Defenses --------------------------------------------------------------

    def place_tower(self, tower_type: TowerType | str, node_id: int) -> DefenderTower:
        """Buy a tower and put it on a node.

        Raises:
            PlacementError: If placement is locked or the tower cannot be bought there.
        """
        if self.phases is not None and not self.phases.can_place_defenses:
            raise PlacementError(f"Defenses are locked during {self.phases.phase}")
        if node_id not in self.graph:
            raise PlacementError(f"Unknown node {node_id}")
        x, y = self.graph.position(node_id)
        tower = make_tower(tower_type, x, y)
        cost = TOWERS[tower.tower_type].cost
        if cost > self.credits:
            raise PlacementError(f"{tower.tower_type} costs {cost}, only {self.credits} credits left")
        self.credits -= cost
        self.towers.append(tower)
        logger.debug("Placed %s at node %d (%d credits left)", tower.tower_type, node_id, self.credits)
        return tower

    # -- Packets ---------------------------------------------------------------

    def _current_policy(self) -> SpawnPolicy | None:
        if self.phases is not None:
            return self.phases.policy
        return self.policy

    def spawn_packet(self) -> Packet | None:
        """Spawn one packet on a strategy-chosen path; None when no path exists."""
        policy = self._current_policy()
        path_index = self.strategy.select_path_index(policy, len(self.paths))
        if path_index is None or not self.paths[path_index]:
            logger.debug("No spawn path available, skipping spawn")
            return None
        path = list(self.paths[path_index])

        if self.rng.random() < self.mode.legitimate_ratio:
            enemy_type = LEGITIMATE
        else:
            enemy_type = self.strategy.sample_enemy_type(policy, path_index)

        x, y = self.graph.position(path[0])
        packet = Packet(
            id=f"p{next(self._packet_ids)}",
            enemy_type=enemy_type,
            path=path,
            x=x,
            y=y,
            speed=ENEMIES[enemy_type].speed,
        )
        self.packets.append(packet)
        self.wave_spawned += 1
        return packet

    def destroy_packet(self, packet: Packet) -> None:
        """Record a kill reported by the host's combat."""
        if not packet.active:
            return
        packet.alive = False
        spec = ENEMIES[packet.enemy_type]
        self.credits += spec.reward
        if spec.legitimate:
            return
        self.blocked += 1
        self.wave_blocked += 1

    def _on_goal(self, packet: Packet) -> None:
        if ENEMIES[packet.enemy_type].legitimate:
            return
        self.leaked += 1
        self.wave_leaked += 1
        self._damage_core(LEAK_DAMAGE)

    def _damage_core(self, amount: int) -> None:
        self.core_health = max(0, self.core_health - amount)
        if self.core_health == 0 and self.phases is None:
            logger.info("Core destroyed at wave %d", self.wave, extra=self.log_context)
            self.outcome = "lost"
            self.stop()

    def _on_timeout(self) -> None:
        """Penalize a wave that ran out of time and force the next one."""
        logger.info(
            "Wave %d timed out after %.1fs", self.wave, self.wave_timer, extra=self.log_context
        )
        self._damage_core(TIMEOUT_DAMAGE)
        if self.running:
            self.complete_wave()

    # -- Waves -----------------------------------------------------------------

    def wave_context(self) -> WaveContext:
        return WaveContext(
            wave=self.wave,
            snapshot=self.snapshot(),
            topology=self.topology_name,
            credits=self.credits,
            success_rate=self.success_rate,
        )

    def start_wave(self) -> SpawnPolicy:
        """Ask the strategy for the next wave's policy and announce it."""
        self.wave += 1
        self.wave_spawned = self.wave_blocked = self.wave_leaked = 0
        self.spawn_timer = 0.0
        self.wave_timer = 0.0
        if self.mode.spawn_decay < 1.0:
            self.spawn_interval = max(
                self.mode.min_spawn_interval,
                self.mode.spawn_interval * self.mode.spawn_decay**self.wave,
            )
        self.analysis, self.policy = self.strategy.on_wave_start(self.wave_context())
        logger.info("Wave %d: %s", self.wave, self.policy.reasoning, extra=self.log_context)
        self.bus.publish(
            Event.STRATEGY_UPDATED,
            {"policy": self.policy.to_dict(), "analysis": _payload(self.analysis)},
        )
        return self.policy

    def complete_wave(self) -> WaveResult:
        """Close the current wave, let the strategy learn, maybe rotate, start the next."""
        if self.mode.maintenance:
            upkeep = sum(TOWERS[t.tower_type].maintenance for t in self.towers)
            self.credits -= upkeep
        result = WaveResult(blocked=self.wave_blocked, leaked=self.wave_leaked)
        context = self.wave_context()
        self.strategy.on_wave_complete(context, result)
        logger.info(
            "Wave %d complete: blocked=%d leaked=%d",
            self.wave,
            result.blocked,
            result.leaked,
            extra=self.log_context,
        )
        if self.mode.target_wave is not None and self.wave >= self.mode.target_wave:
            logger.info("Target wave %d cleared", self.wave, extra=self.log_context)
            self.outcome = "won"
            self.stop()
            return result

        request = self.strategy.select_topology(context)
        if request is not None:
            self.switch_topology(request)
        if self.running:
            self.start_wave()
        return result

    # -- Topology --------------------------------------------------------------

    def switch_topology(self, request: TopologyRequest) -> Graph:
        """Load or generate the requested graph and rebind everything to it.

        Towers stay where they are; packets in flight are dropped.

        Raises:
            MissingTopologyError: If a catalog topology is not found.
        """
        if request.catalog_name is not None:
            graph = load_topology(request.catalog_name)
        else:
            graph = self.generator.generate("grid", request.grid_style)
        previous = self.topology_name
        self.packets.clear()
        self._bind(graph)
        logger.info(
            "Topology switched %s -> %s (%s)",
            previous,
            graph.name,
            request.reasoning,
            extra=self.log_context,
        )
        self.bus.publish(
            Event.TOPOLOGY_SWITCHED,
            {"from": previous, "to": graph.name, "reasoning": request.reasoning},
        )
        return graph

    def advice(self) -> dict[str, Any] | None:
        """Post-game coaching for phased sessions: budget efficiency and a placement tip.

        Returns None until the phase controller has reached scoring.
        """
        if self.phases is None or self.phases.phase is not Phase.SCORING:
            return None
        if not isinstance(self.strategy, EquilibriumAI):
            return None
        defenders = self.phases.committed
        return {
            "costEfficiency": asdict(self.strategy.analyze_cost_efficiency(defenders)),
            "placement": asdict(self.strategy.recommend_placement(defenders)),
        }

    def status(self) -> dict[str, Any]:
        status = {
            "mode": self.mode.name,
            "strategy": self.strategy.name,
            "topology": self.topology_name,
            "wave": self.wave,
            "credits": self.credits,
            "coreHealth": self.core_health,
            "successRate": self.success_rate,
            "activePackets": len(self.packets),
            "outcome": self.outcome,
        }
        if self.mode.wave_time_limit is not None:
            status["waveTimeRemaining"] = max(0.0, self.mode.wave_time_limit - self.wave_timer)
        if self.phases is not None:
            status["phase"] = self.phases.to_dict()
        return status


def build_strategy(
    mode: ModeConfig,
    rng: random.Random,
    settings: EngineSettings,
    store: QTableStore | None = None,
) -> AttackStrategy:
    """Construct the strategy a mode names.

    Raises:
        ValueError: If the strategy name is unknown.
    """
    if mode.strategy == "reactive":
        return ReactiveCounterAI(
            rng=rng,
            topology_pool=mode.topology_pool,
            current_topology=mode.topology or "",
            switch_interval=mode.switch_interval,
        )
    if mode.strategy == "equilibrium":
        return EquilibriumAI(rng=rng)
    if mode.strategy == "learning":
        return LearningAI(
            store=store if store is not None else JsonFileQTableStore(settings.qtable_path),
            rng=rng,
            settings=settings,
            switch_interval=mode.switch_interval,
        )
    raise ValueError(f"Unknown strategy: {mode.strategy}")


def build_session(
    mode: ModeConfig,
    settings: EngineSettings | None = None,
    seed: int | None = None,
    store: QTableStore | None = None,
    bus: EventBus | None = None,
) -> Session:
    """Assemble a session from mode data.

    Args:
        mode: Mode to play.
        settings: Engine settings (defaults to the cached environment settings).
        seed: Session seed; falls back to ``settings.seed``, then to a random one.
        store: Q-table store for learning modes (defaults to the JSON file store).
        bus: Notification bus to publish on.

    Raises:
        ValueError: If the mode pairs phases with a non-equilibrium strategy.
        MissingTopologyError: If the mode's topology is not in the catalog.
    """
    settings = settings or get_settings()
    if seed is None:
        seed = settings.seed
    rng = random.Random(seed)
    bus = bus or EventBus()
    scheduler = TickScheduler()
    generator = TopologyGenerator(seed=rng.getrandbits(32), settings=settings)

    if mode.topology is not None:
        graph = load_topology(mode.topology)
    else:
        graph = generator.generate("mesh")

    strategy = build_strategy(mode, rng, settings, store)
    phases = None
    if mode.phases is not None:
        if not isinstance(strategy, EquilibriumAI):
            raise ValueError(f"Mode '{mode.name}' has phases but uses the {strategy.name} strategy")
        phases = PhaseController(
            mode.phases, strategy, scheduler, bus, analysis_delay=settings.analysis_delay
        )

    session = Session(
        mode,
        strategy,
        graph,
        rng=rng,
        settings=settings,
        bus=bus,
        scheduler=scheduler,
        phases=phases,
        generator=generator,
    )
    logger.info(
        "Built %s session: strategy=%s topology=%s seed=%s",
        mode.name,
        strategy.name,
        session.topology_name,
        seed,
        extra=session.log_context,
    )
    return session
