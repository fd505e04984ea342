from ipaddress import IPv4Address
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, model_validator


class DHCPPool(BaseModel):
    start: IPv4Address
    end: IPv4Address
    subnet_mask: IPv4Address
    lease_time_seconds: int = Field(gt=0, le=0xFFFFFFFF)
    offer_timeout_seconds: int = Field(default=60, gt=0)
    allocation: Literal["sequential", "random"] = "sequential"

    @model_validator(mode="after")
    def check_range(self) -> "DHCPPool":
        if self.start > self.end:
            raise ValueError(f"pool start {self.start} is after end {self.end}")
        return self


class DHCPDedup(BaseModel):
    ttl: float = Field(default=2.0, ge=0)
    size: int = Field(default=1024, gt=0)


class DHCPTimeouts(BaseModel):
    reclaim_interval: float = Field(default=30.0, gt=0)
    worker_get: float = Field(default=0.2, gt=0)
    worker_join: float = Field(default=1.0, gt=0)
    receive: float = Field(default=0.2, gt=0)


class DHCP(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=67, ge=0, le=65535)
    server_ip: IPv4Address
    routers: List[IPv4Address] = []
    mtu: int = Field(default=0, ge=0, le=65535)
    renewal_time_ratio: float = Field(default=0.5, gt=0, le=1)
    rebinding_time_ratio: float = Field(default=0.875, gt=0, le=1)
    min_reply_size: int = Field(default=300, ge=0)
    msg_size: int = Field(default=1500, gt=0)
    rcvbuf_size: int = Field(default=1_048_576, gt=0)
    workers: int = Field(default=2, gt=0)
    rcvd_queue_size: int = Field(default=100, gt=0)
    pool: DHCPPool
    dedup: DHCPDedup = DHCPDedup()
    timeouts: DHCPTimeouts = DHCPTimeouts()


class ConfigSchema(BaseModel):
    dhcp: DHCP
    logging: Dict[str, Any]
