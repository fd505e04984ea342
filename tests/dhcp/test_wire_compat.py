from ipaddress import IPv4Address
from unittest.mock import MagicMock

from scapy.layers.dhcp import BOOTP, DHCP

from dhcpd.services.dhcp.lease_pool import LeasePool
from dhcpd.services.dhcp.message import Message
from dhcpd.services.dhcp.message_handler import DHCPMessageHandler
from dhcpd.services.dhcp.models import BootpOpCode, DHCPType, PoolConfig, ServerConfig

MAC = bytes.fromhex("aabbccddeeff")


def scapy_options(pkt) -> dict:
    return {opt[0]: opt[1] for opt in pkt[DHCP].options if isinstance(opt, tuple)}


def init_handler() -> LeasePool:
    pool = LeasePool(
        PoolConfig(
            start_address=IPv4Address("192.168.0.1"),
            end_address=IPv4Address("192.168.0.10"),
            subnet_mask=IPv4Address("255.255.255.0"),
            lease_duration=3600,
        ),
        logger=MagicMock(),
    )
    DHCPMessageHandler.init(
        logger=MagicMock(),
        pool=pool,
        server_config=ServerConfig(server_ip=IPv4Address("192.168.0.254")),
    )
    return pool


def test_decode_scapy_discover() -> None:
    raw = bytes(
        BOOTP(op=1, xid=0x11223344, chaddr=MAC, flags=0x8000)
        / DHCP(options=[("message-type", "discover"), ("requested_addr", "192.168.0.5"), "end"])
    )

    msg = Message.decode(raw)
    assert msg.op == BootpOpCode.REQUEST
    assert msg.xid == 0x11223344
    assert msg.flags == 0x8000
    assert msg.client_id == MAC
    assert msg.message_type == DHCPType.DISCOVER
    assert msg.requested_address == IPv4Address("192.168.0.5")


def test_scapy_parses_offer() -> None:
    init_handler()
    request = Message.decode(
        bytes(BOOTP(op=1, xid=0x55, chaddr=MAC) / DHCP(options=[("message-type", "discover"), "end"]))
    )
    offer = DHCPMessageHandler.handle_message(request)

    pkt = BOOTP(offer.encode(min_size=300))
    assert pkt[BOOTP].op == 2
    assert pkt[BOOTP].xid == 0x55
    assert pkt[BOOTP].yiaddr == "192.168.0.1"
    assert pkt[BOOTP].chaddr[:6] == MAC

    options = scapy_options(pkt)
    assert options["message-type"] == 2
    assert options["server_id"] == "192.168.0.254"
    assert options["lease_time"] == 3600
    assert options["subnet_mask"] == "255.255.255.0"
