from __future__ import annotations

from dataclasses import dataclass, field

from pygame.math import Vector2


@dataclass(slots=True)
class Agent:
    id: int
    position: Vector2 = field(default_factory=Vector2)
    velocity: Vector2 = field(default_factory=Vector2)
    # Radians. Only ever derived from velocity.
    heading: float = 0.0
