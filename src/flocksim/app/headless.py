from __future__ import annotations

import argparse
import csv
import json
import logging
import math
from pathlib import Path
from typing import Optional, Sequence

from pygame.math import Vector2

from ..config import SimulationConfig
from ..sim.core.world import World
from ..sim.types.metrics import TickMetrics

logger = logging.getLogger("flocksim.headless")

_BASIC_HEADER = [
    "tick",
    "population",
    "avg_speed",
    "polarization",
    "tick_ms",
]

_DETAILED_HEADER = [
    "tick",
    "population",
    "avg_speed",
    "polarization",
    "boundary_nudges",
    "raised_to_min",
    "lowered_to_max",
    "at_rest",
    "index_generation",
    "index_age_ms",
    "tick_ms",
    "tick_ms_per_agent",
    "min_speed",
    "max_speed",
    "centroid_x",
    "centroid_y",
    "outside_region",
]


def _format_basic_row(metrics: TickMetrics, tick_ms: float) -> list[object]:
    return [
        metrics.tick,
        metrics.population,
        f"{metrics.average_speed:.4f}",
        f"{metrics.polarization:.4f}",
        f"{tick_ms:.3f}",
    ]


def _format_detailed_row(world: World, metrics: TickMetrics, tick_ms: float, index_age_ms: float) -> list[object]:
    population = metrics.population
    if population <= 0:
        tick_ms_per_agent = 0.0
        min_speed = 0.0
        max_speed = 0.0
        centroid_x = 0.0
        centroid_y = 0.0
        outside_region = 0
    else:
        tick_ms_per_agent = tick_ms / population
        half_width, half_height = world.viewport.half_extents()
        min_speed = math.inf
        max_speed = 0.0
        sum_x = 0.0
        sum_y = 0.0
        outside_region = 0
        for agent in world.agents:
            speed = math.hypot(agent.velocity.x, agent.velocity.y)
            min_speed = min(min_speed, speed)
            max_speed = max(max_speed, speed)
            sum_x += agent.position.x
            sum_y += agent.position.y
            if abs(agent.position.x) > half_width or abs(agent.position.y) > half_height:
                outside_region += 1
        centroid_x = sum_x / population
        centroid_y = sum_y / population

    return [
        metrics.tick,
        population,
        f"{metrics.average_speed:.4f}",
        f"{metrics.polarization:.4f}",
        metrics.boundary_nudges,
        metrics.raised_to_min,
        metrics.lowered_to_max,
        metrics.at_rest,
        metrics.index_generation,
        f"{index_age_ms:.3f}",
        f"{tick_ms:.3f}",
        f"{tick_ms_per_agent:.4f}",
        f"{min_speed:.4f}",
        f"{max_speed:.4f}",
        f"{centroid_x:.4f}",
        f"{centroid_y:.4f}",
        outside_region,
    ]


def _percentile(sorted_values: list[float], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return float(sorted_values[0])
    pos = (len(sorted_values) - 1) * percentile
    low = int(math.floor(pos))
    high = int(math.ceil(pos))
    if low == high:
        return float(sorted_values[low])
    weight = pos - low
    return float(sorted_values[low] + (sorted_values[high] - sorted_values[low]) * weight)


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p90": 0.0, "p95": 0.0, "p99": 0.0}
    sorted_values = sorted(values)
    return {
        "min": float(sorted_values[0]),
        "max": float(sorted_values[-1]),
        "avg": float(sum(values) / len(values)),
        "p50": _percentile(sorted_values, 0.50),
        "p90": _percentile(sorted_values, 0.90),
        "p95": _percentile(sorted_values, 0.95),
        "p99": _percentile(sorted_values, 0.99),
    }


def run_headless(
    steps: int,
    seed: Optional[int],
    log_path: Optional[Path],
    deterministic_log: bool = False,
    log_format: str = "detailed",
    summary_path: Optional[Path] = None,
    summary_window: int = 5000,
    config_path: Optional[Path] = None,
    target: Optional[Sequence[float]] = None,
    workers: Optional[int] = None,
) -> Optional[TickMetrics]:
    log_mode = log_format.lower().strip()
    if log_mode not in {"basic", "detailed"}:
        raise ValueError(f"Unknown log format: {log_format}")

    config = SimulationConfig.from_yaml(config_path) if config_path else SimulationConfig()
    if seed is not None:
        config.seed = seed
    if workers is not None:
        config.workers = workers
    if deterministic_log:
        # Background refresh timing would make neighbour data run-dependent.
        config.index.background = False

    world = World(config)
    if target is not None:
        world.set_pointer(Vector2(float(target[0]), float(target[1])))
    logger.info("headless run start steps=%d seed=%d population=%d", steps, config.seed, config.population)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(_DETAILED_HEADER if log_mode == "detailed" else _BASIC_HEADER)

    tick_ms_series: list[float] = []
    speed_series: list[float] = []
    polarization_series: list[float] = []
    max_tick_ms = (-1.0, -1)
    max_polarization = (-1.0, -1)
    metrics: Optional[TickMetrics] = None

    try:
        for tick in range(steps):
            metrics = world.step(tick)
            tick_ms = 0.0 if deterministic_log else metrics.tick_duration_ms
            index_age_ms = 0.0 if deterministic_log else metrics.index_age_ms

            if summary_path:
                tick_ms_series.append(tick_ms)
                speed_series.append(metrics.average_speed)
                polarization_series.append(metrics.polarization)
                if tick_ms > max_tick_ms[0]:
                    max_tick_ms = (tick_ms, tick)
                if metrics.polarization > max_polarization[0]:
                    max_polarization = (metrics.polarization, tick)

            if writer:
                if log_mode == "detailed":
                    writer.writerow(_format_detailed_row(world, metrics, tick_ms, index_age_ms))
                else:
                    writer.writerow(_format_basic_row(metrics, tick_ms))
    finally:
        if csv_file:
            csv_file.close()
        world.close()

    if summary_path:
        window = max(1, int(summary_window))
        tail_slice = slice(max(0, len(tick_ms_series) - window), len(tick_ms_series))
        summary = {
            "steps": steps,
            "seed": config.seed,
            "population": config.population,
            "workers": config.resolved_workers(),
            "index_kind": config.index.kind,
            "log_format": log_mode,
            "deterministic_log": deterministic_log,
            "tick_ms": _summary_stats(tick_ms_series),
            "avg_speed": _summary_stats(speed_series),
            "polarization": _summary_stats(polarization_series),
            "over_threshold": {
                "tick_ms_gt_16": sum(1 for value in tick_ms_series if value > 16.0),
                "tick_ms_gt_33": sum(1 for value in tick_ms_series if value > 33.0),
            },
            "peaks": {
                "tick_ms": {"value": float(max_tick_ms[0]), "tick": max_tick_ms[1]},
                "polarization": {"value": float(max_polarization[0]), "tick": max_polarization[1]},
            },
            "tail_window": {
                "window": window,
                "tick_ms": _summary_stats(tick_ms_series[tail_slice]),
                "avg_speed": _summary_stats(speed_series[tail_slice]),
                "polarization": _summary_stats(polarization_series[tail_slice]),
            },
        }
        Path(summary_path).write_text(json.dumps(summary, indent=2))

    logger.info("headless run done steps=%d", steps)
    return metrics


def main() -> None:
    parser = argparse.ArgumentParser(description="Headless boids simulation")
    parser.add_argument("--steps", type=int, default=3000)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (0 = one per CPU)")
    parser.add_argument(
        "--target",
        type=float,
        nargs=2,
        metavar=("X", "Y"),
        default=None,
        help="Fixed attraction point in world coordinates.",
    )
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write metrics")
    parser.add_argument(
        "--log-format",
        choices=["basic", "detailed"],
        default="detailed",
        help="CSV format to write when --log is provided.",
    )
    parser.add_argument(
        "--summary",
        type=Path,
        default=None,
        help="Optional JSON file to write summary stats for the run.",
    )
    parser.add_argument(
        "--summary-window",
        type=int,
        default=5000,
        help="Tail window size (ticks) for summary stats.",
    )
    parser.add_argument(
        "--deterministic-log",
        action="store_true",
        help="Write deterministic CSV (timings are forced to 0.000 so identical seeds match).",
    )
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    args = parser.parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_headless(
        args.steps,
        args.seed,
        args.log,
        deterministic_log=args.deterministic_log,
        log_format=args.log_format,
        summary_path=args.summary,
        summary_window=args.summary_window,
        config_path=args.config,
        target=args.target,
        workers=args.workers,
    )


if __name__ == "__main__":
    main()
