from __future__ import annotations

from typing import List, NamedTuple, Protocol

import numpy as np
from pygame.math import Vector2


class NeighborCandidate(NamedTuple):
    distance: float
    identity: int


class SpatialIndex(Protocol):
    """Nearest-neighbour oracle over a snapshot of agent positions.

    Results are ascending by distance and hold at most ``k`` entries. An
    identity may refer to an agent that has since left the store.
    """

    def k_nearest(self, point: Vector2, k: int) -> List[NeighborCandidate]:
        ...


class IndexBuilder(Protocol):
    def __call__(self, ids: np.ndarray, positions: np.ndarray) -> SpatialIndex:
        ...
