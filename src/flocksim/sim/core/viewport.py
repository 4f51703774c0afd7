from __future__ import annotations

from typing import Optional, Tuple

from pygame.math import Vector2


class Viewport:
    """Visible-region dimensions and the optional pointer, in world space.

    World space has its origin at the centre of the window with y pointing up.
    """

    def __init__(self, width: float, height: float, boundary_size: float, pointer: Optional[Vector2] = None):
        self.width = float(width)
        self.height = float(height)
        self.boundary_size = float(boundary_size)
        self._pointer = None if pointer is None else Vector2(pointer)

    @property
    def pointer(self) -> Optional[Vector2]:
        return self._pointer

    def set_pointer(self, point: Optional[Vector2]) -> None:
        self._pointer = None if point is None else Vector2(point)

    def resize(self, width: float, height: float) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"viewport dimensions must be positive, got {width}x{height}")
        self.width = float(width)
        self.height = float(height)

    def half_extents(self) -> Tuple[float, float]:
        return (
            (self.width - self.boundary_size) / 2.0,
            (self.height - self.boundary_size) / 2.0,
        )

    def screen_to_world(self, screen_x: float, screen_y: float) -> Vector2:
        return Vector2(screen_x - self.width / 2.0, self.height / 2.0 - screen_y)
