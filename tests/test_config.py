from __future__ import annotations

import json
from pathlib import Path

import pytest

from prodcon import (
    BufferSimulationConfig,
    ConfigurationError,
    StreamSimulationConfig,
    load_simulation_config,
)
from prodcon.config import to_serializable


def test_defaults_match_simulator_form() -> None:
    buffer = BufferSimulationConfig()
    assert buffer.capacity == 5
    assert buffer.production_interval_s == 1.0
    assert buffer.consumption_interval_s == 1.0
    assert buffer.backend == "condition"
    assert buffer.items_per_producer is None

    stream = StreamSimulationConfig()
    assert (stream.host, stream.base_port) == ("localhost", 5000)
    assert stream.items_per_producer == 5
    assert stream.startup_delay_s == 0.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"capacity": 0},
        {"producers": 0},
        {"consumers": -1},
        {"production_interval_s": -0.1},
        {"backend": "ring"},
        {"pacing": "burst"},
        {"items_per_producer": 0},
    ],
)
def test_buffer_config_rejects_out_of_range_values(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        BufferSimulationConfig(**kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"host": ""},
        {"base_port": 70000},
        {"base_port": 65535, "consumers": 2},
        {"producer_rate": 0},
        {"consumer_rate": -2.0},
        {"items_per_producer": 0},
        {"startup_delay_s": -1.0},
    ],
)
def test_stream_config_rejects_out_of_range_values(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        StreamSimulationConfig(**kwargs)


def test_from_dict_coerces_numeric_strings() -> None:
    config = BufferSimulationConfig.from_dict(
        {"capacity": "3", "production_interval_s": "0.25", "backend": "semaphore"}
    )
    assert config.capacity == 3
    assert config.production_interval_s == 0.25
    assert config.backend == "semaphore"


@pytest.mark.parametrize(
    "data",
    [
        {"capacity": "five"},
        {"capacity": 2.5},
        {"producer_count": 2},
    ],
)
def test_from_dict_rejects_malformed_values(data) -> None:
    with pytest.raises(ConfigurationError):
        BufferSimulationConfig.from_dict(data)


def test_stream_from_dict_rejects_non_numeric_rate() -> None:
    with pytest.raises(ConfigurationError, match="producer_rate"):
        StreamSimulationConfig.from_dict({"producer_rate": "fast"})


def test_round_robin_port_mapping() -> None:
    config = StreamSimulationConfig(base_port=5000, producers=5, consumers=2)

    assert config.consumer_port(0) == 5000
    assert config.consumer_port(1) == 5001
    assert [config.producer_target_port(j) for j in range(5)] == [5000, 5001, 5000, 5001, 5000]
    assert config.peers_for_consumer(0) == 3
    assert config.peers_for_consumer(1) == 2


def test_more_consumers_than_producers_leaves_some_unassigned() -> None:
    config = StreamSimulationConfig(producers=1, consumers=3)
    assert [config.peers_for_consumer(i) for i in range(3)] == [1, 0, 0]


def test_ephemeral_base_port() -> None:
    config = StreamSimulationConfig(base_port=0, consumers=3)
    assert {config.consumer_port(i) for i in range(3)} == {0}


def test_rates_convert_to_periods() -> None:
    config = StreamSimulationConfig(producer_rate=4.0, consumer_rate=0.5)
    assert config.production_period_s == pytest.approx(0.25)
    assert config.consumption_period_s == pytest.approx(2.0)


def test_load_yaml_sections(tmp_path: Path) -> None:
    path = tmp_path / "sim.yaml"
    path.write_text(
        "buffer:\n"
        "  capacity: 8\n"
        "  producers: 3\n"
        "  backend: semaphore\n"
        "stream:\n"
        "  base_port: 6000\n"
        "  consumers: 2\n"
    )

    loaded = load_simulation_config(path)
    assert loaded["buffer"].capacity == 8
    assert loaded["buffer"].backend == "semaphore"
    assert loaded["stream"].consumer_port(1) == 6001
    assert StreamSimulationConfig.from_yaml(path).consumers == 2
    assert BufferSimulationConfig.from_yaml(path).producers == 3


def test_empty_yaml_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")
    loaded = load_simulation_config(path)
    assert loaded["buffer"] == BufferSimulationConfig()
    assert loaded["stream"] == StreamSimulationConfig()


def test_load_yaml_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_simulation_config(tmp_path / "missing.yaml")

    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("gui:\n  theme: dark\n")
    with pytest.raises(ConfigurationError, match="gui"):
        load_simulation_config(unknown)

    broken = tmp_path / "broken.yaml"
    broken.write_text("buffer: [capacity: 1\n")
    with pytest.raises(ConfigurationError):
        load_simulation_config(broken)

    scalar = tmp_path / "scalar.yaml"
    scalar.write_text("42\n")
    with pytest.raises(ConfigurationError):
        load_simulation_config(scalar)


def test_to_serializable_handles_dataclasses_and_paths() -> None:
    payload = to_serializable({"config": BufferSimulationConfig(), "path": Path("/tmp/x.yaml")})
    assert payload["config"]["capacity"] == 5
    assert payload["path"] == "/tmp/x.yaml"
    json.dumps(payload)
