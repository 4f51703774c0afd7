from __future__ import annotations

from dataclasses import dataclass

from pygame.math import Vector2


@dataclass(frozen=True, slots=True)
class VelocityDelta:
    agent_id: int
    dv: Vector2
