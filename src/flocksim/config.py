from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigError(ValueError):
    """Raised when a configuration value is outside its valid range."""


@dataclass
class WindowConfig:
    width: float = 800.0
    height: float = 400.0
    # Margin subtracted from the window bounds to get the steering region.
    boundary_size: float = 150.0


@dataclass
class FlockConfig:
    neighbor_cap: int = 100
    visual_range: float = 40.0
    protected_range: float = 8.0
    # Bird vision: roughly 120 degrees of forward coverage.
    field_of_view_degrees: float = 120.0
    centering_factor: float = 0.0005
    matching_factor: float = 0.05
    avoid_factor: float = 0.05
    turn_factor: float = 0.2
    chase_factor: float = 0.0005
    min_speed: float = 2.0
    max_speed: float = 4.0
    initial_velocity_range: float = 1.0


@dataclass
class IndexConfig:
    kind: str = "kdtree"
    cell_size: float = 40.0
    background: bool = False
    refresh_interval: float = 0.016
    refresh_ticks: int = 1


@dataclass
class SimulationConfig:
    seed: int = 42
    population: int = 256
    tick_rate: float = 60.0
    workers: int = 0
    config_version: str = "v1"
    window: WindowConfig = field(default_factory=WindowConfig)
    flock: FlockConfig = field(default_factory=FlockConfig)
    index: IndexConfig = field(default_factory=IndexConfig)

    @property
    def time_step(self) -> float:
        return 0.0 if self.tick_rate <= 0 else 1.0 / self.tick_rate

    def resolved_workers(self) -> int:
        if self.workers and self.workers > 0:
            return self.workers
        return os.cpu_count() or 1

    def validate(self) -> "SimulationConfig":
        flock = self.flock
        if self.population < 0:
            raise ConfigError(f"population must be >= 0, got {self.population}")
        if self.tick_rate <= 0:
            raise ConfigError(f"tick_rate must be positive, got {self.tick_rate}")
        if self.workers < 0:
            raise ConfigError(f"workers must be >= 0, got {self.workers}")
        if self.window.width <= 0 or self.window.height <= 0:
            raise ConfigError("window dimensions must be positive")
        if flock.neighbor_cap < 0:
            raise ConfigError(f"neighbor_cap must be >= 0, got {flock.neighbor_cap}")
        if flock.visual_range < 0 or flock.protected_range < 0:
            raise ConfigError("visual_range and protected_range must be >= 0")
        if flock.protected_range > flock.visual_range:
            raise ConfigError(
                f"protected_range ({flock.protected_range}) must not exceed visual_range ({flock.visual_range})"
            )
        if not 0.0 < flock.field_of_view_degrees <= 360.0:
            raise ConfigError(f"field_of_view_degrees must be in (0, 360], got {flock.field_of_view_degrees}")
        if flock.min_speed < 0 or flock.min_speed > flock.max_speed:
            raise ConfigError(f"invalid speed bounds: min={flock.min_speed} max={flock.max_speed}")
        if self.index.kind not in {"kdtree", "grid"}:
            raise ConfigError(f"Unknown index kind: {self.index.kind}")
        if self.index.cell_size <= 0:
            raise ConfigError(f"index cell_size must be positive, got {self.index.cell_size}")
        if self.index.refresh_interval <= 0 or self.index.refresh_ticks < 1:
            raise ConfigError("index refresh_interval must be positive and refresh_ticks >= 1")
        return self

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_config(data)


def load_config(raw: dict) -> SimulationConfig:
    window = WindowConfig(**raw.get("window", {}))
    flock = FlockConfig(**raw.get("flock", {}))
    index = IndexConfig(**raw.get("index", {}))
    sim_values = {k: v for k, v in raw.items() if k not in {"window", "flock", "index"}}
    return SimulationConfig(window=window, flock=flock, index=index, **sim_values).validate()
