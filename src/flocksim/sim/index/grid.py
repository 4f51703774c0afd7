from __future__ import annotations

import math
from typing import Dict, List, Tuple

import numpy as np
from pygame.math import Vector2

from .base import NeighborCandidate

_Entry = Tuple[int, int, float, float]


class GridIndex:
    """Uniform bucket grid answering k-nearest queries by ring expansion."""

    def __init__(self, cell_size: float) -> None:
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        self._cell_size = cell_size
        self._cells: Dict[Tuple[int, int], List[_Entry]] = {}
        self._count = 0
        self._min_key = (0, 0)
        self._max_key = (0, 0)

    @classmethod
    def build(cls, cell_size: float, ids: np.ndarray, positions: np.ndarray) -> "GridIndex":
        grid = cls(cell_size)
        for order, (agent_id, (x, y)) in enumerate(zip(ids, positions)):
            grid.insert(int(agent_id), float(x), float(y), order)
        return grid

    def __len__(self) -> int:
        return self._count

    def insert(self, agent_id: int, x: float, y: float, order: int) -> None:
        key = self._cell_key(x, y)
        self._cells.setdefault(key, []).append((order, agent_id, x, y))
        if self._count == 0:
            self._min_key = key
            self._max_key = key
        else:
            self._min_key = (min(self._min_key[0], key[0]), min(self._min_key[1], key[1]))
            self._max_key = (max(self._max_key[0], key[0]), max(self._max_key[1], key[1]))
        self._count += 1

    def k_nearest(self, point: Vector2, k: int) -> List[NeighborCandidate]:
        if k <= 0 or self._count == 0:
            return []
        pos_x = point.x
        pos_y = point.y
        base_x, base_y = self._cell_key(pos_x, pos_y)
        max_ring = max(
            abs(base_x - self._min_key[0]),
            abs(self._max_key[0] - base_x),
            abs(base_y - self._min_key[1]),
            abs(self._max_key[1] - base_y),
        )
        cells = self._cells
        found: List[Tuple[float, int, int]] = []
        append = found.append

        ring = 0
        while ring <= max_ring:
            for dx, dy in self._ring_offsets(ring):
                bucket = cells.get((base_x + dx, base_y + dy))
                if not bucket:
                    continue
                for order, agent_id, x, y in bucket:
                    offset_x = x - pos_x
                    offset_y = y - pos_y
                    append((offset_x * offset_x + offset_y * offset_y, order, agent_id))
            if len(found) >= k:
                found.sort()
                # Anything in ring + 1 or beyond is at least ring * cell_size away.
                reach = ring * self._cell_size
                if found[k - 1][0] <= reach * reach:
                    break
            ring += 1

        found.sort()
        return [NeighborCandidate(math.sqrt(dist_sq), agent_id) for dist_sq, _, agent_id in found[:k]]

    @staticmethod
    def _ring_offsets(ring: int) -> List[Tuple[int, int]]:
        if ring == 0:
            return [(0, 0)]
        offsets = []
        for dx in range(-ring, ring + 1):
            offsets.append((dx, -ring))
            offsets.append((dx, ring))
        for dy in range(-ring + 1, ring):
            offsets.append((-ring, dy))
            offsets.append((ring, dy))
        return offsets

    def _cell_key(self, x: float, y: float) -> Tuple[int, int]:
        return (int(x // self._cell_size), int(y // self._cell_size))
