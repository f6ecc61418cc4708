"""
prodcon.config - Simulation configuration models.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, is_dataclass
from pathlib import Path
from typing import Any, Literal, Mapping, cast

BufferBackend = Literal["condition", "semaphore"]
PacingMode = Literal["delay", "deadline"]

_BUFFER_BACKENDS = ("condition", "semaphore")
_PACING_MODES = ("delay", "deadline")


class ConfigurationError(ValueError):
    """Raised for malformed simulation configuration (non-numeric or out of range)."""


def _coerce(cls_name: str, key: str, value: Any, kind: type) -> Any:
    if value is None:
        return None
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ConfigurationError(f"{cls_name}.{key} must be an integer, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"{cls_name}.{key} must be {kind.__name__}, got {value!r}"
        ) from exc


def _from_mapping(cls: type, data: Mapping[str, Any], numeric: Mapping[str, type]) -> Any:
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"{cls.__name__} expects a mapping, got {type(data).__name__}")
    valid_keys = {f.name for f in fields(cls)}
    unknown = sorted(str(k) for k in data if k not in valid_keys)
    if unknown:
        raise ConfigurationError(f"Unknown {cls.__name__} keys: {', '.join(unknown)}")
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key in numeric:
            value = _coerce(cls.__name__, key, value, numeric[key])
        kwargs[key] = value
    return cls(**kwargs)


@dataclass(frozen=True)
class BufferSimulationConfig:
    """In-process bounded-buffer simulation settings."""

    capacity: int = 5
    producers: int = 1
    consumers: int = 1
    production_interval_s: float = 1.0
    consumption_interval_s: float = 1.0
    backend: BufferBackend = "condition"
    pacing: PacingMode = "delay"
    items_per_producer: int | None = None

    def __post_init__(self) -> None:
        if self.capacity <= 0:
            raise ConfigurationError("capacity must be > 0")
        if self.producers <= 0:
            raise ConfigurationError("producers must be > 0")
        if self.consumers <= 0:
            raise ConfigurationError("consumers must be > 0")
        if self.production_interval_s < 0:
            raise ConfigurationError("production_interval_s must be >= 0")
        if self.consumption_interval_s < 0:
            raise ConfigurationError("consumption_interval_s must be >= 0")
        if self.backend not in _BUFFER_BACKENDS:
            raise ConfigurationError(
                f"Unsupported buffer backend {self.backend!r}. "
                f"Expected one of: {', '.join(_BUFFER_BACKENDS)}."
            )
        if self.pacing not in _PACING_MODES:
            raise ConfigurationError(
                f"Unsupported pacing mode {self.pacing!r}. "
                f"Expected one of: {', '.join(_PACING_MODES)}."
            )
        if self.items_per_producer is not None and self.items_per_producer <= 0:
            raise ConfigurationError("items_per_producer must be > 0 when set")

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "BufferSimulationConfig":
        return _from_mapping(
            cls,
            d,
            {
                "capacity": int,
                "producers": int,
                "consumers": int,
                "production_interval_s": float,
                "consumption_interval_s": float,
                "items_per_producer": int,
            },
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "BufferSimulationConfig":
        return load_simulation_config(path)["buffer"]


@dataclass(frozen=True)
class StreamSimulationConfig:
    """Networked producer/consumer simulation settings."""

    host: str = "localhost"
    base_port: int = 5000
    producers: int = 1
    consumers: int = 1
    producer_rate: float = 1.0
    consumer_rate: float = 1.0
    items_per_producer: int = 5
    startup_delay_s: float = 0.0

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigurationError("host must be non-empty")
        if not 0 <= self.base_port <= 65535:
            raise ConfigurationError("base_port must be within 0..65535")
        if self.producers <= 0:
            raise ConfigurationError("producers must be > 0")
        if self.consumers <= 0:
            raise ConfigurationError("consumers must be > 0")
        if self.base_port != 0 and self.base_port + self.consumers - 1 > 65535:
            raise ConfigurationError("base_port + consumers exceeds the port range")
        if self.producer_rate <= 0:
            raise ConfigurationError("producer_rate must be > 0")
        if self.consumer_rate <= 0:
            raise ConfigurationError("consumer_rate must be > 0")
        if self.items_per_producer <= 0:
            raise ConfigurationError("items_per_producer must be > 0")
        if self.startup_delay_s < 0:
            raise ConfigurationError("startup_delay_s must be >= 0")

    @property
    def production_period_s(self) -> float:
        return 1.0 / self.producer_rate

    @property
    def consumption_period_s(self) -> float:
        return 1.0 / self.consumer_rate

    def consumer_port(self, consumer_index: int) -> int:
        """Listening port of consumer `consumer_index` (0 means ephemeral)."""
        if self.base_port == 0:
            return 0
        return self.base_port + consumer_index

    def consumer_for_producer(self, producer_index: int) -> int:
        return producer_index % self.consumers

    def producer_target_port(self, producer_index: int) -> int:
        return self.consumer_port(self.consumer_for_producer(producer_index))

    def peers_for_consumer(self, consumer_index: int) -> int:
        """Number of producers assigned to a consumer by round-robin."""
        return sum(
            1
            for producer_index in range(self.producers)
            if self.consumer_for_producer(producer_index) == consumer_index
        )

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "StreamSimulationConfig":
        return _from_mapping(
            cls,
            d,
            {
                "base_port": int,
                "producers": int,
                "consumers": int,
                "producer_rate": float,
                "consumer_rate": float,
                "items_per_producer": int,
                "startup_delay_s": float,
            },
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "StreamSimulationConfig":
        return load_simulation_config(path)["stream"]


def load_simulation_config(path: str | Path) -> dict[str, Any]:
    """
    Load a YAML file with optional `buffer:` and `stream:` sections.

    Missing sections fall back to defaults.
    """
    import yaml  # type: ignore[import-untyped]

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    data = data or {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    unknown = sorted(str(k) for k in data if k not in ("buffer", "stream"))
    if unknown:
        raise ConfigurationError(f"Unknown config sections: {', '.join(unknown)}")

    return {
        "buffer": BufferSimulationConfig.from_dict(data.get("buffer") or {}),
        "stream": StreamSimulationConfig.from_dict(data.get("stream") or {}),
    }


def to_serializable(value: Any) -> Any:
    """Convert dataclasses and Paths into JSON-serializable values."""
    if isinstance(value, Path):
        return str(value)
    if is_dataclass(value) and not isinstance(value, type):
        return to_serializable(asdict(cast(Any, value)))
    if isinstance(value, Mapping):
        return {str(k): to_serializable(v) for k, v in value.items()}
    if isinstance(value, (tuple, list)):
        return [to_serializable(v) for v in value]
    return value
