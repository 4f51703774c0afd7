from __future__ import annotations

from typing import List

import numpy as np
from pygame.math import Vector2
from scipy.spatial import cKDTree

from .base import NeighborCandidate


class KDTreeIndex:
    def __init__(self, ids: np.ndarray, positions: np.ndarray) -> None:
        self._ids = np.asarray(ids, dtype=np.int64)
        points = np.asarray(positions, dtype=np.float64).reshape(-1, 2)
        if len(self._ids) != len(points):
            raise ValueError(f"ids ({len(self._ids)}) and positions ({len(points)}) differ in length")
        self._tree = cKDTree(points) if len(points) else None

    def __len__(self) -> int:
        return len(self._ids)

    def k_nearest(self, point: Vector2, k: int) -> List[NeighborCandidate]:
        if self._tree is None or k <= 0:
            return []
        k = min(k, len(self._ids))
        distances, indices = self._tree.query((point.x, point.y), k=k)
        distances = np.atleast_1d(distances)
        indices = np.atleast_1d(indices)
        ids = self._ids
        return [NeighborCandidate(float(d), int(ids[i])) for d, i in zip(distances, indices)]
