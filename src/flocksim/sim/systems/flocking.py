from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from pygame.math import Vector2

from ...config import FlockConfig
from ..core.agent import Agent
from ..index.base import NeighborCandidate
from ..utils.math2d import _angle_off_heading

NeighborQuery = Callable[[Vector2, int], Iterable[NeighborCandidate]]
AgentLookup = Callable[[int], Optional[Agent]]


@dataclass(frozen=True, slots=True)
class FlockingRules:
    neighbor_cap: int
    visual_range_sq: float
    protected_range_sq: float
    half_fov: float
    centering_factor: float
    matching_factor: float
    avoid_factor: float
    chase_factor: float

    @classmethod
    def from_config(cls, config: FlockConfig) -> "FlockingRules":
        return cls(
            neighbor_cap=config.neighbor_cap,
            visual_range_sq=config.visual_range * config.visual_range,
            protected_range_sq=config.protected_range * config.protected_range,
            half_fov=math.radians(config.field_of_view_degrees) / 2.0,
            centering_factor=config.centering_factor,
            matching_factor=config.matching_factor,
            avoid_factor=config.avoid_factor,
            chase_factor=config.chase_factor,
        )


def compute_delta(
    agent: Agent,
    neighbors: NeighborQuery,
    lookup: AgentLookup,
    target: Optional[Vector2],
    rules: FlockingRules,
) -> Vector2:
    """Velocity change for ``agent`` from separation, cohesion, alignment and the target.

    Reads ``agent`` and the agents returned by ``lookup`` but never writes to
    them, so disjoint agents can be evaluated concurrently against the same
    store and index.
    """
    pos_x = agent.position.x
    pos_y = agent.position.y
    heading = agent.heading
    visual_range_sq = rules.visual_range_sq
    protected_range_sq = rules.protected_range_sq
    half_fov = rules.half_fov

    away_x = away_y = 0.0
    cohesion_x = cohesion_y = 0.0
    alignment_x = alignment_y = 0.0
    neighboring = 0
    close = 0

    for _, identity in neighbors(agent.position, rules.neighbor_cap):
        if identity == agent.id:
            continue
        other = lookup(identity)
        if other is None:
            continue

        to_x = other.position.x - pos_x
        to_y = other.position.y - pos_y
        dist_sq = to_x * to_x + to_y * to_y
        if dist_sq > visual_range_sq:
            continue

        # Coincident agents have no direction; they count as visible.
        if dist_sq > 0.0 and _angle_off_heading(heading, to_x, to_y) > half_fov:
            continue

        if dist_sq < protected_range_sq:
            away_x -= to_x
            away_y -= to_y
            close += 1
        else:
            cohesion_x += to_x
            cohesion_y += to_y
            alignment_x += other.velocity.x
            alignment_y += other.velocity.y
            neighboring += 1

    dv = Vector2()
    if neighboring > 0:
        dv.x += cohesion_x / neighboring * rules.centering_factor
        dv.y += cohesion_y / neighboring * rules.centering_factor
        dv.x += alignment_x / neighboring * rules.matching_factor
        dv.y += alignment_y / neighboring * rules.matching_factor

    if close > 0:
        dv.x += away_x / close * rules.avoid_factor
        dv.y += away_y / close * rules.avoid_factor

    if target is not None:
        dv.x += (target.x - pos_x) * rules.chase_factor
        dv.y += (target.y - pos_y) * rules.chase_factor

    return dv
