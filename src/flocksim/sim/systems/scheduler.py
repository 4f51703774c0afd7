from __future__ import annotations

import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Sequence

from pygame.math import Vector2

from ..core.agent import Agent
from ..types.delta import VelocityDelta

logger = logging.getLogger("flocksim.scheduler")

Evaluate = Callable[[Agent], Vector2]


def chunk_agents(agents: Sequence[Agent], workers: int) -> List[Sequence[Agent]]:
    if not agents:
        return []
    size = math.ceil(len(agents) / max(1, workers))
    return [agents[start : start + size] for start in range(0, len(agents), size)]


def _evaluate_chunk(chunk: Sequence[Agent], evaluate: Evaluate) -> List[VelocityDelta]:
    return [VelocityDelta(agent.id, evaluate(agent)) for agent in chunk]


class BatchScheduler:
    """Fork/join fan-out of a per-agent evaluation over a fixed thread pool.

    ``run`` returns only after every chunk has finished, so callers may mutate
    agents as soon as it returns.
    """

    def __init__(self, workers: Optional[int] = None) -> None:
        self._workers = max(1, workers or os.cpu_count() or 1)
        self._executor = ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="flocksim-batch")
        self._closed = False

    @property
    def workers(self) -> int:
        return self._workers

    def run(self, agents: Sequence[Agent], evaluate: Evaluate) -> List[VelocityDelta]:
        if self._closed:
            raise RuntimeError("BatchScheduler is closed")
        chunks = chunk_agents(agents, self._workers)
        futures = [self._executor.submit(_evaluate_chunk, chunk, evaluate) for chunk in chunks]
        wait(futures)
        batch: List[VelocityDelta] = []
        for future in futures:
            batch.extend(future.result())
        logger.debug("batch complete agents=%d chunks=%d workers=%d", len(agents), len(chunks), self._workers)
        return batch

    def close(self) -> None:
        if not self._closed:
            self._executor.shutdown(wait=True)
            self._closed = True

    def __enter__(self) -> "BatchScheduler":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
