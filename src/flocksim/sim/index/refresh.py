from __future__ import annotations

import logging
import threading
from time import perf_counter
from typing import Callable, List, Optional, Tuple

import numpy as np
from pygame.math import Vector2

from ...config import IndexConfig
from .base import IndexBuilder, NeighborCandidate, SpatialIndex
from .grid import GridIndex
from .kdtree import KDTreeIndex

logger = logging.getLogger("flocksim.index")


def make_builder(config: IndexConfig) -> IndexBuilder:
    if config.kind == "kdtree":
        return KDTreeIndex
    if config.kind == "grid":
        cell_size = config.cell_size
        return lambda ids, positions: GridIndex.build(cell_size, ids, positions)
    raise ValueError(f"Unknown index kind: {config.kind}")


class RefreshingIndex:
    """Eventually-consistent index over the most recently published positions.

    The owner publishes immutable position snapshots; ``refresh`` rebuilds from
    the latest one and swaps the queried index in a single assignment. In
    background mode a daemon thread refreshes every ``interval`` seconds, so
    queries may see positions up to one interval old.
    """

    def __init__(self, builder: IndexBuilder, interval: float, clock: Callable[[], float] = perf_counter) -> None:
        self._builder = builder
        self._interval = interval
        self._clock = clock
        self._published: Optional[Tuple[np.ndarray, np.ndarray]] = None
        self._current: SpatialIndex = builder(np.empty(0, dtype=np.int64), np.empty((0, 2)))
        self._built_at = clock()
        self._generation = 0
        self._build_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def age(self) -> float:
        return max(0.0, self._clock() - self._built_at)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def publish(self, ids: np.ndarray, positions: np.ndarray) -> None:
        ids = np.array(ids, dtype=np.int64, copy=True)
        positions = np.array(positions, dtype=np.float64, copy=True).reshape(-1, 2)
        ids.setflags(write=False)
        positions.setflags(write=False)
        self._published = (ids, positions)

    def refresh(self) -> bool:
        published = self._published
        if published is None:
            return False
        with self._build_lock:
            index = self._builder(*published)
            self._current = index
            self._built_at = self._clock()
            self._generation += 1
        return True

    def k_nearest(self, point: Vector2, k: int) -> List[NeighborCandidate]:
        return self._current.k_nearest(point, k)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="flocksim-index-refresh", daemon=True)
        self._thread.start()
        logger.info("index refresh thread started interval=%.3fs", self._interval)

    def stop(self, timeout: float | None = 1.0) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop.set()
        thread.join(timeout)
        self._thread = None
        logger.info("index refresh thread stopped generation=%d", self._generation)

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            self.refresh()
