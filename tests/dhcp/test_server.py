import socket
from ipaddress import IPv4Address

import pytest

from dhcpd.services.dhcp.message import Message
from dhcpd.services.dhcp.models import BootpOpCode, DHCPType, LeaseState, PoolConfig, ServerConfig
from dhcpd.services.dhcp.options import OptionCode, OptionCollection, OptionEntry
from dhcpd.services.dhcp.server import DHCPServer
from dhcpd.services.dhcp.stats import DHCPStats

MAC = bytes.fromhex("aabbccddeeff")
SERVER_IP = IPv4Address("127.0.0.1")


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_pool_config() -> PoolConfig:
    return PoolConfig(
        start_address=IPv4Address("192.168.0.1"),
        end_address=IPv4Address("192.168.0.10"),
        subnet_mask=IPv4Address("255.255.255.0"),
        lease_duration=3600,
        offer_timeout=60,
    )


def make_server_config(**kwargs) -> ServerConfig:
    kwargs.setdefault("host", "127.0.0.1")
    kwargs.setdefault("port", 0)
    return ServerConfig(
        server_ip=SERVER_IP,
        workers=1,
        receive_timeout=0.05,
        worker_get_timeout=0.05,
        reclaim_interval=0.5,
        **kwargs,
    )


def make_discover(xid: int = 0xCAFE, chaddr: bytes = MAC) -> bytes:
    options = OptionCollection([OptionEntry.from_int(OptionCode.MESSAGE_TYPE, DHCPType.DISCOVER, size=1)])
    return Message(op=BootpOpCode.REQUEST, xid=xid, chaddr=chaddr, options=options).encode()


@pytest.fixture
def server():
    DHCPStats.clear()
    DHCPServer.init(pool_config=make_pool_config(), server_config=make_server_config())
    DHCPServer.start()
    yield DHCPServer
    if DHCPServer.is_running():
        DHCPServer.stop()


@pytest.fixture
def client():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.settimeout(2.0)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


def test_discover_over_udp(server, client) -> None:
    client.sendto(make_discover(), server.address())
    raw, _ = client.recvfrom(1500)

    assert len(raw) >= 300
    reply = Message.decode(raw)
    assert reply.op == BootpOpCode.REPLY
    assert reply.xid == 0xCAFE
    assert reply.message_type == DHCPType.OFFER
    assert reply.yiaddr == IPv4Address("192.168.0.1")
    assert reply.server_id == SERVER_IP
    assert server.pool.lease_for(MAC).state == LeaseState.OFFERED


def test_malformed_does_not_stop_server(server, client) -> None:
    client.sendto(b"\x01\x02\x03", server.address())
    client.sendto(make_discover()[:-1], server.address())
    client.sendto(make_discover(xid=0xBEEF), server.address())

    raw, _ = client.recvfrom(1500)
    assert Message.decode(raw).xid == 0xBEEF
    assert DHCPStats.get("received_malformed") == 2
    assert server.is_running()


def test_start_stop(server) -> None:
    with pytest.raises(RuntimeError):
        server.start()
    with pytest.raises(RuntimeError):
        server.init()

    server.stop()
    assert not server.is_running()
    assert server.address() is None
    with pytest.raises(RuntimeError):
        server.stop()


def test_bind_failure() -> None:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    blocker.bind(("127.0.0.1", 0))
    try:
        # Blocker lacks SO_REUSEADDR, the port cannot be shared
        port = blocker.getsockname()[1]
        DHCPServer.init(pool_config=make_pool_config(), server_config=make_server_config(port=port))
        with pytest.raises(OSError):
            DHCPServer.start()
        assert not DHCPServer.is_running()
    finally:
        blocker.close()


def test_process_datagram_dedup() -> None:
    DHCPStats.clear()
    clock = FakeClock()
    DHCPServer.init(
        pool_config=make_pool_config(),
        server_config=make_server_config(dedup_ttl=2.0),
        clock=clock,
    )
    addr = ("127.0.0.1", 68)

    first = DHCPServer.process_datagram(make_discover(), addr)
    assert first is not None and first.message_type == DHCPType.OFFER

    assert DHCPServer.process_datagram(make_discover(), addr) is None
    assert DHCPStats.get("dropped_duplicate") == 1

    clock.now += 3
    again = DHCPServer.process_datagram(make_discover(), addr)
    assert again is not None and again.yiaddr == first.yiaddr


def test_process_datagram_drops() -> None:
    DHCPStats.clear()
    DHCPServer.init(pool_config=make_pool_config(), server_config=make_server_config(dedup_ttl=0))
    addr = ("127.0.0.1", 68)

    assert DHCPServer.process_datagram(b"", addr) is None
    no_type = Message(op=BootpOpCode.REQUEST, xid=1, chaddr=MAC).encode()
    assert DHCPServer.process_datagram(no_type, addr) is None
    assert DHCPStats.get("received_malformed") == 2
    assert DHCPStats.get("received_total") == 2

    # Dedup disabled
    assert DHCPServer.process_datagram(make_discover(), addr) is not None
    assert DHCPServer.process_datagram(make_discover(), addr) is not None
