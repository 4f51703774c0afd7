from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable

from pygame.math import Vector2

from ...config import FlockConfig
from ..core.agent import Agent
from ..core.store import AgentStore
from ..core.viewport import Viewport
from ..types.delta import VelocityDelta
from ..utils.math2d import _heading_from_velocity

logger = logging.getLogger("flocksim.integrator")

_RAISED = 1
_LOWERED = 2
_AT_REST = 3


@dataclass(slots=True)
class IntegrationStats:
    integrated: int = 0
    stale: int = 0
    boundary_nudges: int = 0
    raised_to_min: int = 0
    lowered_to_max: int = 0
    at_rest: int = 0


def steer_within_bounds(
    position: Vector2, velocity: Vector2, half_width: float, half_height: float, turn_factor: float
) -> int:
    nudges = 0
    if position.x < -half_width:
        velocity.x += turn_factor
        nudges += 1
    if position.x > half_width:
        velocity.x -= turn_factor
        nudges += 1
    if position.y < -half_height:
        velocity.y += turn_factor
        nudges += 1
    if position.y > half_height:
        velocity.y -= turn_factor
        nudges += 1
    return nudges


def clamp_speed(velocity: Vector2, min_speed: float, max_speed: float) -> int:
    """Rescale ``velocity`` in place into [min_speed, max_speed].

    A zero velocity has no direction to rescale along and is left at rest.
    """
    speed = math.hypot(velocity.x, velocity.y)
    if speed == 0.0:
        return _AT_REST
    if speed < min_speed:
        velocity *= min_speed / speed
        return _RAISED
    if speed > max_speed:
        velocity *= max_speed / speed
        return _LOWERED
    return 0


def advance(agent: Agent) -> None:
    agent.heading = _heading_from_velocity(agent.velocity, agent.heading)
    agent.position += agent.velocity


def integrate_agent(agent: Agent, dv: Vector2, viewport: Viewport, config: FlockConfig, stats: IntegrationStats) -> None:
    velocity = agent.velocity
    velocity += dv

    half_width, half_height = viewport.half_extents()
    stats.boundary_nudges += steer_within_bounds(
        agent.position, velocity, half_width, half_height, config.turn_factor
    )

    outcome = clamp_speed(velocity, config.min_speed, config.max_speed)
    if outcome == _RAISED:
        stats.raised_to_min += 1
    elif outcome == _LOWERED:
        stats.lowered_to_max += 1
    elif outcome == _AT_REST:
        stats.at_rest += 1

    advance(agent)
    stats.integrated += 1


def apply_deltas(
    store: AgentStore, deltas: Iterable[VelocityDelta], viewport: Viewport, config: FlockConfig
) -> IntegrationStats:
    stats = IntegrationStats()
    for delta in deltas:
        agent = store.get(delta.agent_id)
        if agent is None:
            stats.stale += 1
            logger.debug("skipping delta for stale agent id=%d", delta.agent_id)
            continue
        integrate_agent(agent, delta.dv, viewport, config, stats)
    return stats
