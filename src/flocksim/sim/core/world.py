from __future__ import annotations

import logging
from functools import partial
from time import perf_counter
from typing import Any, Dict, List, Optional

from pygame.math import Vector2

from ...config import SimulationConfig
from ...rng import DeterministicRng
from ..index.refresh import RefreshingIndex, make_builder
from ..systems import integrator, metrics as metrics_system, spawn
from ..systems.flocking import FlockingRules, compute_delta
from ..systems.scheduler import BatchScheduler
from ..types.delta import VelocityDelta
from ..types.metrics import TickMetrics
from ..types.snapshot import Snapshot, SnapshotMetadata, SnapshotWorld
from .agent import Agent
from .store import AgentStore
from .viewport import Viewport

logger = logging.getLogger("flocksim.world")


class World:
    """One flock: agent store, spatial index, worker pool and the tick loop.

    Each tick runs a read phase (flocking deltas, in parallel) followed by a
    write phase (integration, sequential). The spatial index is refreshed from
    positions published after integration, either every ``refresh_ticks``
    ticks or on its own background thread.
    """

    def __init__(self, config: SimulationConfig, scheduler: Optional[BatchScheduler] = None):
        self._config = config.validate()
        self._rng = DeterministicRng(config.seed)
        self._rules = FlockingRules.from_config(config.flock)
        self._store = AgentStore()
        window = config.window
        self._viewport = Viewport(window.width, window.height, window.boundary_size)
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler if scheduler is not None else BatchScheduler(config.resolved_workers())
        self._index = RefreshingIndex(make_builder(config.index), config.index.refresh_interval)
        self._metrics: TickMetrics | None = None
        self._closed = False
        self._bootstrap_population()
        logger.info(
            "world created population=%d workers=%d index=%s background=%s seed=%d",
            len(self._store),
            self._scheduler.workers,
            config.index.kind,
            config.index.background,
            config.seed,
        )
        if config.index.background:
            self._index.start()

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def agents(self) -> List[Agent]:
        return self._store.agents

    @property
    def store(self) -> AgentStore:
        return self._store

    @property
    def viewport(self) -> Viewport:
        return self._viewport

    @property
    def index(self) -> RefreshingIndex:
        return self._index

    @property
    def rules(self) -> FlockingRules:
        return self._rules

    @property
    def metrics(self) -> TickMetrics | None:
        return self._metrics

    def set_pointer(self, point: Optional[Vector2]) -> None:
        self._viewport.set_pointer(point)

    def reset(self) -> None:
        self._store.clear()
        self._rng.reset()
        self._metrics = None
        self._bootstrap_population()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True
        self._index.stop()
        if self._owns_scheduler:
            self._scheduler.close()

    def compute_deltas(self, target: Optional[Vector2] = None) -> List[VelocityDelta]:
        evaluate = partial(
            compute_delta,
            neighbors=self._index.k_nearest,
            lookup=self._store.get,
            target=target,
            rules=self._rules,
        )
        return self._scheduler.run(self._store.agents, evaluate)

    def step(self, tick: int) -> TickMetrics:
        start = perf_counter()
        pointer = self._viewport.pointer
        target = None if pointer is None else Vector2(pointer)

        deltas = self.compute_deltas(target)
        stats = integrator.apply_deltas(self._store, deltas, self._viewport, self._config.flock)

        self._publish_positions()
        index_config = self._config.index
        if not index_config.background and (tick + 1) % index_config.refresh_ticks == 0:
            self._index.refresh()

        elapsed_ms = (perf_counter() - start) * 1000.0
        metrics = metrics_system.create_metrics(
            tick,
            stats,
            metrics_system.motion_stats(self._store.velocities_array()),
            self._index.generation,
            self._index.age * 1000.0,
            elapsed_ms,
        )
        self._metrics = metrics
        logger.debug(
            "tick=%d deltas=%d nudges=%d raised=%d lowered=%d ms=%.3f",
            tick,
            len(deltas),
            stats.boundary_nudges,
            stats.raised_to_min,
            stats.lowered_to_max,
            elapsed_ms,
        )
        return metrics

    def snapshot(self, tick: int) -> Snapshot:
        metrics = self._metrics if self._metrics is not None else self._snapshot_metrics_from_state(tick)
        half_width, half_height = self._viewport.half_extents()
        pointer = self._viewport.pointer
        return Snapshot(
            tick=tick,
            metrics=metrics,
            agents=[self._agent_snapshot(agent) for agent in self._store],
            world=SnapshotWorld(
                width=self._viewport.width,
                height=self._viewport.height,
                half_width=half_width,
                half_height=half_height,
                pointer=None if pointer is None else [pointer.x, pointer.y],
            ),
            metadata=SnapshotMetadata(
                sim_dt=self._config.time_step,
                tick_rate=self._config.tick_rate,
                seed=self._config.seed,
                config_version=self._config.config_version,
                workers=self._scheduler.workers,
                index_kind=self._config.index.kind,
            ),
        )

    def _bootstrap_population(self) -> None:
        config = self._config
        agents = spawn.spawn_agents(
            config.population,
            self._viewport.width,
            self._viewport.height,
            config.flock.initial_velocity_range,
            self._rng,
        )
        for agent in agents:
            self._store.add(agent)
        self._publish_positions()
        self._index.refresh()

    def _publish_positions(self) -> None:
        self._index.publish(*self._store.positions_array())

    @staticmethod
    def _agent_snapshot(agent: Agent) -> Dict[str, Any]:
        return {
            "id": agent.id,
            "x": agent.position.x,
            "y": agent.position.y,
            "vx": agent.velocity.x,
            "vy": agent.velocity.y,
            "heading": agent.heading,
            "speed": agent.velocity.length(),
        }

    def _snapshot_metrics_from_state(self, tick: int) -> TickMetrics:
        return metrics_system.create_metrics(
            tick,
            integrator.IntegrationStats(),
            metrics_system.motion_stats(self._store.velocities_array()),
            self._index.generation,
            self._index.age * 1000.0,
            0.0,
        )
