from __future__ import annotations

import math

from pygame.math import Vector2

TAU = 2.0 * math.pi


def _heading_from_velocity(vector: Vector2, fallback: float = 0.0) -> float:
    if vector.x == 0.0 and vector.y == 0.0:
        return fallback
    return math.atan2(vector.y, vector.x)


def _wrap_angle(angle: float) -> float:
    """Wrap an angle in radians into [-pi, pi)."""
    return (angle + math.pi) % TAU - math.pi


def _angle_off_heading(heading: float, x: float, y: float) -> float:
    return abs(_wrap_angle(math.atan2(y, x) - heading))
