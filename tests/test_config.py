import copy
from ipaddress import IPv4Address
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from dhcpd.config.config import DEFAULT_CONFIG_PATH, Config
from dhcpd.services.dhcp.models import AllocationPolicy


@pytest.fixture
def real_config() -> Config:
    try:
        config = Config(path=DEFAULT_CONFIG_PATH)
    except yaml.YAMLError as e:
        pytest.fail(f"Error parsin YAML {e}.")
    except Exception as e:
        pytest.fail(f"Failed loading config {e}.")
    return config


@pytest.fixture
def raw_config() -> dict:
    with open(DEFAULT_CONFIG_PATH, mode="r", encoding="utf-8") as file_handle:
        return yaml.safe_load(file_handle)


def write_config(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_config_path(real_config):
    assert isinstance(real_config._path, Path), f"Invalid type: {type(real_config._path).__name__}."
    assert real_config._path.is_file(), f"Not a filepath: {real_config._path}."


def test_config_is_valid(real_config):
    assert isinstance(real_config._config, dict), f"Wrong type {type(real_config._config).__name__}."
    assert real_config._config != {}, "Config dictionary is empty"
    assert "dhcp" in real_config._config
    assert "logging" in real_config._config


def test_config_get(real_config):
    logging_config = real_config.get("logging")
    logging_config["version"] = 99
    assert real_config.get("logging")["version"] == 1

    with pytest.raises(ValueError):
        real_config.get("")
    with pytest.raises(RuntimeError):
        real_config.get("missing")


def test_config_reload(real_config):
    _previous_config = copy.deepcopy(real_config._config)
    real_config.reload()
    assert real_config._config == _previous_config


def test_pool_config(real_config):
    pool_config = real_config.pool_config()
    assert pool_config.start_address == IPv4Address("192.168.0.1")
    assert pool_config.end_address == IPv4Address("192.168.0.10")
    assert pool_config.subnet_mask == IPv4Address("255.255.255.0")
    assert pool_config.lease_duration == 7200
    assert pool_config.allocation == AllocationPolicy.SEQUENTIAL


def test_server_config(real_config):
    server_config = real_config.server_config()
    assert server_config.server_ip == IPv4Address("192.168.0.254")
    assert server_config.port == 67
    assert server_config.routers == (IPv4Address("192.168.0.254"),)
    assert server_config.min_reply_size == 300
    assert server_config.dedup_ttl == 2.0


def test_invalid_range(tmp_path, raw_config):
    raw_config["dhcp"]["pool"]["start"] = "192.168.0.20"
    with pytest.raises(ValidationError):
        Config(path=write_config(tmp_path, raw_config))


def test_invalid_address(tmp_path, raw_config):
    raw_config["dhcp"]["server_ip"] = "not-an-ip"
    with pytest.raises(ValidationError):
        Config(path=write_config(tmp_path, raw_config))


def test_defaults_applied(tmp_path, raw_config):
    del raw_config["dhcp"]["dedup"]
    del raw_config["dhcp"]["timeouts"]
    del raw_config["dhcp"]["pool"]["allocation"]
    config = Config(path=write_config(tmp_path, raw_config))

    assert config.server_config().reclaim_interval == 30.0
    assert config.pool_config().allocation == AllocationPolicy.SEQUENTIAL


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config(path=tmp_path / "absent.yaml")


def test_lease_time_limit(tmp_path, raw_config):
    raw_config["dhcp"]["pool"]["lease_time_seconds"] = 0xFFFFFFFF
    assert Config(path=write_config(tmp_path, raw_config)).pool_config().lease_duration == 0xFFFFFFFF

    raw_config["dhcp"]["pool"]["lease_time_seconds"] = 2**32
    with pytest.raises(ValidationError):
        Config(path=write_config(tmp_path, raw_config))
