from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class TickMetrics:
    tick: int
    population: int
    average_speed: float
    polarization: float
    boundary_nudges: int
    raised_to_min: int
    lowered_to_max: int
    at_rest: int
    index_generation: int
    index_age_ms: float = 0.0
    tick_duration_ms: float = 0.0
