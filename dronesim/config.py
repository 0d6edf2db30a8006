"""Server configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: DRONESIM_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from dronesim.core.models import (
    DEFAULT_BASE_ALTITUDE,
    DEFAULT_BASE_MOVE_DURATION,
    DEFAULT_DRONE_FLY_SPEED,
    DEFAULT_DRONE_UPDATE_INTERVAL,
    DEFAULT_DRONE_VERTICAL_SPEED,
    DEFAULT_HEARTBEAT_INTERVAL,
    Position,
    SimulationSettings,
)


@dataclass
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 8080  # 0 picks a free port
    env: str = "dev"  # "dev" or "prod"


@dataclass
class SimulationConfig:
    base_lat: float = 37.2939
    base_lng: float = 126.8349
    base_move_duration: float = DEFAULT_BASE_MOVE_DURATION  # ms
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL  # ms
    drone_update_interval: float = DEFAULT_DRONE_UPDATE_INTERVAL  # ms
    drone_vertical_speed: float = DEFAULT_DRONE_VERTICAL_SPEED  # m/s
    drone_fly_speed: float = DEFAULT_DRONE_FLY_SPEED  # m/s
    base_altitude: float = DEFAULT_BASE_ALTITUDE  # m
    initial_drone_count: int = 0

    @property
    def base_position(self) -> Position:
        return Position(lat=self.base_lat, lng=self.base_lng)

    def to_settings(self) -> SimulationSettings:
        return SimulationSettings(
            base_move_duration=self.base_move_duration,
            heartbeat_interval=self.heartbeat_interval,
            drone_update_interval=self.drone_update_interval,
            drone_vertical_speed=self.drone_vertical_speed,
            drone_fly_speed=self.drone_fly_speed,
            base_altitude=self.base_altitude,
        )


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    sim = config.simulation
    mapping = {
        "DRONESIM_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "DRONESIM_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "DRONESIM_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "DRONESIM_SIMULATION_BASE_LAT": lambda v: setattr(sim, "base_lat", float(v)),
        "DRONESIM_SIMULATION_BASE_LNG": lambda v: setattr(sim, "base_lng", float(v)),
        "DRONESIM_SIMULATION_BASE_MOVE_DURATION": lambda v: setattr(sim, "base_move_duration", float(v)),
        "DRONESIM_SIMULATION_HEARTBEAT_INTERVAL": lambda v: setattr(sim, "heartbeat_interval", float(v)),
        "DRONESIM_SIMULATION_DRONE_UPDATE_INTERVAL": lambda v: setattr(sim, "drone_update_interval", float(v)),
        "DRONESIM_SIMULATION_DRONE_VERTICAL_SPEED": lambda v: setattr(sim, "drone_vertical_speed", float(v)),
        "DRONESIM_SIMULATION_DRONE_FLY_SPEED": lambda v: setattr(sim, "drone_fly_speed", float(v)),
        "DRONESIM_SIMULATION_BASE_ALTITUDE": lambda v: setattr(sim, "base_altitude", float(v)),
        "DRONESIM_SIMULATION_INITIAL_DRONE_COUNT": lambda v: setattr(sim, "initial_drone_count", int(v)),
        "DRONESIM_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "DRONESIM_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    if config_path is None:
        config_path = Path("config.yaml")
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section in ("server", "simulation", "logging"):
            target = getattr(config, section)
            for k, v in (raw.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
