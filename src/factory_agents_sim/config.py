"""Configuration management for the simulator."""

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError
from .fleet import FactoryConfig, default_factories


@dataclass
class MQTTConfig:
    """MQTT broker configuration."""

    broker: str = "localhost"
    port: int = 1883
    username: str = ""
    password: str = ""
    client_id: str = "factory-agents-sim"
    qos: int = 1
    topic_prefix: str = "factory-ai/v1"


@dataclass
class Thresholds:
    """Fleet-wide safety thresholds. A reading breaches when strictly above."""

    temperature: float = 80.0
    vibration: float = 80.0
    power_usage: float = 80.0


@dataclass
class SimulationConfig:
    """Simulation parameters."""

    tick_interval_ms: int = 2000
    history_limit: int = 20
    recovery_duration_ms: int = 10000
    agent_restart_delay_ms: int = 1000
    log_capacity: int = 100
    anomaly_probability: float = 0.015  # Per machine, per tick
    random_seed: Optional[int] = None


@dataclass
class Config:
    """Main configuration container."""

    mqtt: MQTTConfig = field(default_factory=MQTTConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    thresholds: Thresholds = field(default_factory=Thresholds)
    factories: List[FactoryConfig] = field(default_factory=default_factories)

    @property
    def machine_count(self) -> int:
        return sum(f.machine_count for f in self.factories)

    def validate(self) -> "Config":
        """Raise ConfigError for values the simulation cannot run with."""
        sim = self.simulation
        for name in (
            "tick_interval_ms",
            "history_limit",
            "recovery_duration_ms",
            "log_capacity",
        ):
            if getattr(sim, name) <= 0:
                raise ConfigError(f"simulation.{name} must be positive")
        if sim.agent_restart_delay_ms < 0:
            raise ConfigError("simulation.agent_restart_delay_ms must not be negative")
        if not 0.0 <= sim.anomaly_probability <= 1.0:
            raise ConfigError("simulation.anomaly_probability must be within [0, 1]")

        for name in ("temperature", "vibration", "power_usage"):
            if not math.isfinite(getattr(self.thresholds, name)):
                raise ConfigError(f"thresholds.{name} must be finite")

        if not self.factories:
            raise ConfigError("at least one factory is required")
        seen = set()
        for factory in self.factories:
            if factory.id in seen:
                raise ConfigError(f"duplicate factory id: {factory.id}")
            seen.add(factory.id)
            if factory.machine_count <= 0:
                raise ConfigError(f"factory {factory.id} needs at least one machine")
        return self

    @classmethod
    def default(cls) -> "Config":
        """Create default configuration: 3 factories x 3 machines."""
        return cls()

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Config":
        """Load configuration from YAML file."""
        if not config_path.exists():
            return cls.default()

        with open(config_path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"{config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{config_path}: top level must be a mapping")
        return cls._from_dict(data).validate()

    @classmethod
    def from_env(cls, base: Optional["Config"] = None, env_file: Optional[Path] = None) -> "Config":
        """Apply environment variable overrides (a .env file is honoured)."""
        load_dotenv(env_file)
        config = base or cls.default()

        # Override MQTT settings from env
        config.mqtt.broker = os.getenv("MQTT_BROKER", config.mqtt.broker)
        config.mqtt.port = _coerce(int, os.getenv("MQTT_PORT", config.mqtt.port), "MQTT_PORT")
        config.mqtt.username = os.getenv("MQTT_USERNAME", config.mqtt.username)
        config.mqtt.password = os.getenv("MQTT_PASSWORD", config.mqtt.password)

        # Override simulation settings
        seed = os.getenv("SIM_SEED")
        if seed:
            config.simulation.random_seed = _coerce(int, seed, "SIM_SEED")
        interval = os.getenv("SIM_TICK_INTERVAL_MS")
        if interval:
            config.simulation.tick_interval_ms = _coerce(int, interval, "SIM_TICK_INTERVAL_MS")

        return config.validate()

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary, coercing numeric fields."""
        config = cls.default()

        # MQTT config
        if "mqtt" in data:
            mqtt_data = _section(data, "mqtt")
            config.mqtt = MQTTConfig(
                broker=str(mqtt_data.get("broker", config.mqtt.broker)),
                port=_coerce(int, mqtt_data.get("port", config.mqtt.port), "mqtt.port"),
                username=mqtt_data.get("username", config.mqtt.username) or "",
                password=mqtt_data.get("password", config.mqtt.password) or "",
                client_id=str(mqtt_data.get("client_id", config.mqtt.client_id)),
                qos=_coerce(int, mqtt_data.get("qos", config.mqtt.qos), "mqtt.qos"),
                topic_prefix=str(mqtt_data.get("topic_prefix", config.mqtt.topic_prefix)),
            )

        # Simulation config
        if "simulation" in data:
            sim_data = _section(data, "simulation")
            defaults = SimulationConfig()
            kwargs: Dict[str, Any] = {}
            for name, kind in (
                ("tick_interval_ms", int),
                ("history_limit", int),
                ("recovery_duration_ms", int),
                ("agent_restart_delay_ms", int),
                ("log_capacity", int),
                ("anomaly_probability", float),
            ):
                kwargs[name] = _coerce(
                    kind, sim_data.get(name, getattr(defaults, name)), f"simulation.{name}"
                )
            seed = sim_data.get("random_seed")
            if seed is not None:
                seed = _coerce(int, seed, "simulation.random_seed")
            config.simulation = SimulationConfig(random_seed=seed, **kwargs)

        if "thresholds" in data:
            th_data = _section(data, "thresholds")
            config.thresholds = Thresholds(
                **{
                    name: _coerce(
                        float,
                        th_data.get(name, getattr(config.thresholds, name)),
                        f"thresholds.{name}",
                    )
                    for name in ("temperature", "vibration", "power_usage")
                }
            )

        if "factories" in data:
            entries = data["factories"] or []
            if not isinstance(entries, list):
                raise ConfigError("factories must be a list")
            try:
                config.factories = [FactoryConfig.from_dict(f) for f in entries]
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise ConfigError(f"invalid factory entry: {e}") from e

        return config

    def to_yaml(self, path: Path) -> None:
        """Save configuration to YAML file."""
        data = {
            "mqtt": {
                "broker": self.mqtt.broker,
                "port": self.mqtt.port,
                "username": self.mqtt.username,
                "password": self.mqtt.password,
                "client_id": self.mqtt.client_id,
                "qos": self.mqtt.qos,
                "topic_prefix": self.mqtt.topic_prefix,
            },
            "simulation": {
                "tick_interval_ms": self.simulation.tick_interval_ms,
                "history_limit": self.simulation.history_limit,
                "recovery_duration_ms": self.simulation.recovery_duration_ms,
                "agent_restart_delay_ms": self.simulation.agent_restart_delay_ms,
                "log_capacity": self.simulation.log_capacity,
                "anomaly_probability": self.simulation.anomaly_probability,
                "random_seed": self.simulation.random_seed,
            },
            "thresholds": {
                "temperature": self.thresholds.temperature,
                "vibration": self.thresholds.vibration,
                "power_usage": self.thresholds.power_usage,
            },
            "factories": [f.to_meta_dict() for f in self.factories],
        }

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Return a config section; an empty section means all defaults."""
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"{name} must be a mapping")
    return section


def _coerce(kind: type, value: Any, name: str) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: expected {kind.__name__}, got {value!r}") from e
