from __future__ import annotations

from typing import List

from pygame.math import Vector2
from scipy.stats import qmc

from ...rng import DeterministicRng
from ..core.agent import Agent
from ..utils.math2d import _heading_from_velocity


def halton_positions(count: int, width: float, height: float) -> List[Vector2]:
    """Low-discrepancy spawn points covering the window, centred on the origin."""
    if count <= 0:
        return []
    sampler = qmc.Halton(d=2, scramble=False)
    # The first Halton point is the origin corner; skip it.
    sampler.fast_forward(1)
    points = sampler.random(count)
    return [Vector2(x * width - width / 2.0, y * height - height / 2.0) for x, y in points]


def spawn_agents(count: int, width: float, height: float, velocity_range: float, rng: DeterministicRng) -> List[Agent]:
    agents = []
    for agent_id, position in enumerate(halton_positions(count, width, height)):
        velocity = rng.next_velocity(velocity_range)
        agents.append(
            Agent(
                id=agent_id,
                position=position,
                velocity=velocity,
                heading=_heading_from_velocity(velocity),
            )
        )
    return agents
