import select
import socket
import threading
from dataclasses import dataclass
from enum import Enum, IntEnum, unique
from ipaddress import IPv4Address

MAX_LEASE_SECONDS = 0xFFFFFFFF


@unique
class BootpOpCode(IntEnum):
    REQUEST = 1
    REPLY = 2

    def __str__(self) -> str:
        return str(self.value)


@unique
class DHCPType(IntEnum):
    """Option 53 values (RFC 2132, 9.6)"""

    DISCOVER = 1
    OFFER = 2
    REQUEST = 3
    DECLINE = 4
    ACK = 5
    NAK = 6
    RELEASE = 7
    INFORM = 8

    def __str__(self) -> str:
        return str(self.value)


@unique
class LeaseState(str, Enum):
    """Lease lifecycle"""

    FREE = "free"
    OFFERED = "offered"
    BOUND = "bound"
    EXPIRED = "expired"
    RELEASED = "released"


@unique
class AllocationPolicy(str, Enum):
    """How the pool picks a free address"""

    SEQUENTIAL = "sequential"
    RANDOM = "random"


@dataclass
class Lease:
    """Binding of one address to one client identity.

    Attributes:
        client_id (bytes): raw hardware address of the client.
        address (IPv4Address): leased address.
        state (LeaseState): lifecycle state.
        expiry (float): epoch seconds after which the lease is reclaimable.
    """

    client_id: bytes
    address: IPv4Address
    state: LeaseState = LeaseState.FREE
    expiry: float = 0.0

    @property
    def is_active(self) -> bool:
        return self.state in (LeaseState.OFFERED, LeaseState.BOUND)

    def is_expired(self, now: float) -> bool:
        return self.expiry <= now

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id.hex(":"),
            "address": str(self.address),
            "state": self.state.value,
            "expiry": self.expiry,
        }


@dataclass(frozen=True)
class PoolConfig:
    """Address range and lease timing, fixed for the process lifetime."""

    start_address: IPv4Address
    end_address: IPv4Address
    subnet_mask: IPv4Address
    lease_duration: int
    offer_timeout: int = 60
    allocation: AllocationPolicy = AllocationPolicy.SEQUENTIAL

    def __post_init__(self):
        object.__setattr__(self, "start_address", IPv4Address(self.start_address))
        object.__setattr__(self, "end_address", IPv4Address(self.end_address))
        object.__setattr__(self, "subnet_mask", IPv4Address(self.subnet_mask))
        object.__setattr__(self, "allocation", AllocationPolicy(self.allocation))
        if self.start_address > self.end_address:
            raise ValueError(f"Pool start {self.start_address} is after end {self.end_address}.")
        if self.lease_duration <= 0 or self.offer_timeout <= 0:
            raise ValueError("Lease duration and offer timeout must be positive.")
        if self.lease_duration > MAX_LEASE_SECONDS:
            raise ValueError(f"Lease duration exceeds {MAX_LEASE_SECONDS} seconds, the option 51 range.")

    @property
    def size(self) -> int:
        return int(self.end_address) - int(self.start_address) + 1

    def contains(self, address: IPv4Address) -> bool:
        return self.start_address <= IPv4Address(address) <= self.end_address


@dataclass(frozen=True)
class ServerConfig:
    """Socket, reply and worker settings of the DHCP server."""

    server_ip: IPv4Address
    host: str = "0.0.0.0"
    port: int = 67
    routers: tuple[IPv4Address, ...] = ()
    mtu: int = 0
    renewal_time_ratio: float = 0.5
    rebinding_time_ratio: float = 0.875
    min_reply_size: int = 300
    msg_size: int = 1500
    rcvbuf_size: int = 1_048_576
    workers: int = 2
    rcvd_queue_size: int = 100
    dedup_ttl: float = 2.0
    dedup_size: int = 1024
    reclaim_interval: float = 30.0
    worker_get_timeout: float = 0.2
    worker_join_timeout: float = 1.0
    receive_timeout: float = 0.2

    def __post_init__(self):
        object.__setattr__(self, "server_ip", IPv4Address(self.server_ip))
        object.__setattr__(self, "routers", tuple(IPv4Address(_router) for _router in self.routers))


class DHCPSocket:
    """UDP socket with a bounded receive so the caller can observe shutdown."""

    def __init__(self, host: str = "0.0.0.0", port: int = 67, buffer_size: int = 1_048_576) -> None:
        self._lock = threading.RLock()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, buffer_size)
            self._sock.setblocking(False)
            self._sock.bind((host, port))
        except OSError:
            self._sock.close()
            raise
        self._closed = False

    @property
    def address(self) -> tuple[str, int]:
        return self._sock.getsockname()

    def receive(self, msg_size: int = 1500, timeout: float = 0.2) -> tuple[bytes, tuple[str, int]] | None:
        if self._closed:
            return None
        try:
            readable, _, _ = select.select([self._sock], [], [], timeout)
            if not readable:
                return None
            return self._sock.recvfrom(msg_size)
        except (OSError, ValueError):
            return None

    def send(self, data: bytes, addr: tuple[str, int]) -> None:
        with self._lock:
            if not self._closed:
                self._sock.sendto(data, addr)

    def close(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                self._sock.close()

    @property
    def closed(self) -> bool:
        return self._closed
