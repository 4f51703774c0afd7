from __future__ import annotations

from typing import Tuple

import numpy as np

from ..types.metrics import TickMetrics
from .integrator import IntegrationStats


def motion_stats(velocities: np.ndarray) -> Tuple[int, float, float]:
    """Population, mean speed and polarization from an (n, 2) velocity array.

    Polarization is the norm of the mean unit velocity. Agents at rest count
    toward the population but contribute no direction.
    """
    population = len(velocities)
    if population == 0:
        return 0, 0.0, 0.0
    speeds = np.linalg.norm(velocities, axis=1)
    moving = speeds > 0.0
    headings = velocities[moving] / speeds[moving, None]
    polarization = np.linalg.norm(headings.sum(0)) / population
    return population, float(speeds.mean()), float(polarization)


def create_metrics(
    tick: int,
    stats: IntegrationStats,
    motion: Tuple[int, float, float],
    index_generation: int,
    index_age_ms: float,
    duration_ms: float,
) -> TickMetrics:
    population, average_speed, polarization = motion
    return TickMetrics(
        tick=tick,
        population=population,
        average_speed=average_speed,
        polarization=polarization,
        boundary_nudges=stats.boundary_nudges,
        raised_to_min=stats.raised_to_min,
        lowered_to_max=stats.lowered_to_max,
        at_rest=stats.at_rest,
        index_generation=index_generation,
        index_age_ms=index_age_ms,
        tick_duration_ms=duration_ms,
    )
