import os
from copy import deepcopy
from pathlib import Path
from threading import RLock
from typing import Any

from yaml import safe_load

from dhcpd.config.config_yaml_schema import ConfigSchema
from dhcpd.services.dhcp.models import PoolConfig, ServerConfig

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"
CONFIG_PATH = Path(os.environ.get("DHCPD_CONFIG", DEFAULT_CONFIG_PATH))


class Config:
    """Defines application level Config"""

    def __init__(self, path: Path = CONFIG_PATH):
        self._lock = RLock()
        self._path: Path = Path(path)
        self._config: dict = {}
        self._schema: ConfigSchema
        self._load()

    def _load(self):
        """Read YAML from fs and validate it, raises pydantic.ValidationError."""
        with self._lock:
            with open(self._path, mode="r", encoding="utf-8") as _file_handle:
                _raw = safe_load(_file_handle)
            self._schema = ConfigSchema.model_validate(_raw)
            self._config = _raw

    def reload(self):
        """Reload config"""
        self._load()

    def get(self, key: str) -> Any:
        """Get parameter from config obj"""

        if not isinstance(key, str) or not key:
            raise ValueError("Key must be a non-empty str.")

        if key not in self._config:
            raise RuntimeError("Unknown key.")

        with self._lock:
            return deepcopy(self._config[key])

    def pool_config(self) -> PoolConfig:
        """Immutable pool settings from the dhcp.pool section."""
        with self._lock:
            _pool = self._schema.dhcp.pool
            return PoolConfig(
                start_address=_pool.start,
                end_address=_pool.end,
                subnet_mask=_pool.subnet_mask,
                lease_duration=_pool.lease_time_seconds,
                offer_timeout=_pool.offer_timeout_seconds,
                allocation=_pool.allocation,
            )

    def server_config(self) -> ServerConfig:
        """Immutable socket, reply and worker settings from the dhcp section."""
        with self._lock:
            _dhcp = self._schema.dhcp
            return ServerConfig(
                server_ip=_dhcp.server_ip,
                host=_dhcp.host,
                port=_dhcp.port,
                routers=tuple(_dhcp.routers),
                mtu=_dhcp.mtu,
                renewal_time_ratio=_dhcp.renewal_time_ratio,
                rebinding_time_ratio=_dhcp.rebinding_time_ratio,
                min_reply_size=_dhcp.min_reply_size,
                msg_size=_dhcp.msg_size,
                rcvbuf_size=_dhcp.rcvbuf_size,
                workers=_dhcp.workers,
                rcvd_queue_size=_dhcp.rcvd_queue_size,
                dedup_ttl=_dhcp.dedup.ttl,
                dedup_size=_dhcp.dedup.size,
                reclaim_interval=_dhcp.timeouts.reclaim_interval,
                worker_get_timeout=_dhcp.timeouts.worker_get,
                worker_join_timeout=_dhcp.timeouts.worker_join,
                receive_timeout=_dhcp.timeouts.receive,
            )


config = Config()
