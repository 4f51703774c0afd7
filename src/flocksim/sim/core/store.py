from __future__ import annotations

from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from .agent import Agent


class AgentStore:
    """Authoritative set of agents, addressed by stable id.

    Lookups of an id that is no longer present return ``None``; callers treat
    that as a stale reference and skip it.
    """

    def __init__(self) -> None:
        self._agents: List[Agent] = []
        self._id_to_index: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._agents)

    def __iter__(self) -> Iterator[Agent]:
        return iter(self._agents)

    def __contains__(self, agent_id: int) -> bool:
        return agent_id in self._id_to_index

    @property
    def agents(self) -> List[Agent]:
        return self._agents

    def add(self, agent: Agent) -> None:
        if agent.id in self._id_to_index:
            raise ValueError(f"Agent id {agent.id} already present")
        self._id_to_index[agent.id] = len(self._agents)
        self._agents.append(agent)

    def get(self, agent_id: int) -> Optional[Agent]:
        index = self._id_to_index.get(agent_id)
        if index is None:
            return None
        return self._agents[index]

    def remove(self, agent_id: int) -> Optional[Agent]:
        index = self._id_to_index.pop(agent_id, None)
        if index is None:
            return None
        removed = self._agents.pop(index)
        self._refresh_index_map()
        return removed

    def clear(self) -> None:
        self._agents.clear()
        self._id_to_index.clear()

    def positions_array(self) -> Tuple[np.ndarray, np.ndarray]:
        count = len(self._agents)
        ids = np.empty(count, dtype=np.int64)
        positions = np.empty((count, 2), dtype=np.float64)
        for i, agent in enumerate(self._agents):
            ids[i] = agent.id
            positions[i, 0] = agent.position.x
            positions[i, 1] = agent.position.y
        return ids, positions

    def velocities_array(self) -> np.ndarray:
        velocities = np.empty((len(self._agents), 2), dtype=np.float64)
        for i, agent in enumerate(self._agents):
            velocities[i, 0] = agent.velocity.x
            velocities[i, 1] = agent.velocity.y
        return velocities

    def _refresh_index_map(self) -> None:
        self._id_to_index = {agent.id: i for i, agent in enumerate(self._agents)}
