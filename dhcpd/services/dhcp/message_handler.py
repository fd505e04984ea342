from ipaddress import IPv4Address
from logging import Logger

from dhcpd.services.dhcp.errors import MissingTypeOption, NoSuchOffer, PoolExhausted
from dhcpd.services.dhcp.lease_pool import LeasePool
from dhcpd.services.dhcp.message import NO_ADDRESS, Message
from dhcpd.services.dhcp.models import BootpOpCode, DHCPType, ServerConfig
from dhcpd.services.dhcp.options import OptionCode, OptionEntry
from dhcpd.services.dhcp.stats import DHCPStats, measure_latency_decorator

# WORKFLOW
# | Message      | Server action                                   | Reply  |
# |--------------|-------------------------------------------------|--------|
# | DHCPDISCOVER | LeasePool.offer, address goes to OFFERED        | OFFER  |
# | DHCPREQUEST  | LeasePool.confirm (or renew), address to BOUND  | ACK    |
# | DHCPREQUEST  | no matching offer or binding                    | NAK    |
# | DHCPREQUEST  | server id names another server, offer withdrawn | -      |
# | DHCPRELEASE  | LeasePool.release, address back to FREE         | -      |
# | other        | logged and ignored                              | -      |


def type_name(dhcp_type: int | None) -> str:
    """Lowercase name of an option 53 value, 'unknown' if not a DHCPType."""
    if dhcp_type in DHCPType._value2member_map_:
        return DHCPType(dhcp_type).name.lower()
    return "unknown"


class DHCPMessageHandler:
    """Negotiation state machine: one decoded request in, one reply or None out."""

    logger: Logger
    pool: LeasePool
    server_config: ServerConfig

    @classmethod
    def init(cls, logger: Logger, pool: LeasePool, server_config: ServerConfig):
        """Initilise
        Args:
            logger: Logger instance where to log.
            pool: Lease pool the handler drives.
            server_config: Server address and reply option settings.
        """
        cls.logger = logger
        cls.pool = pool
        cls.server_config = server_config

    @classmethod
    @measure_latency_decorator(metrics=DHCPStats)
    def handle_message(cls, dhcp_msg: Message) -> Message | None:
        """Process a decoded DHCP message based on its option 53 type.

        Behavior:
            - DISCOVER -> _handle_discover, OFFER or nothing when exhausted.
            - REQUEST  -> _handle_request, ACK or NAK.
            - RELEASE  -> _handle_release, never answered.
            - Anything else is logged and ignored.

        Returns:
            Message | None: reply to send back, None for no reply.

        Raises:
            MissingTypeOption: option 53 absent or not one byte long.
        """
        if dhcp_msg.op != BootpOpCode.REQUEST:
            cls.logger.debug("Ignoring BOOTREPLY XID=%s MAC=%s.", dhcp_msg.xid, dhcp_msg.mac)
            return None

        _dhcp_type = dhcp_msg.message_type
        if _dhcp_type is None:
            raise MissingTypeOption(f"XID={dhcp_msg.xid} MAC={dhcp_msg.mac} has no option 53.")

        DHCPStats.increment(key=f"received_{type_name(_dhcp_type)}")

        match _dhcp_type:
            case DHCPType.DISCOVER:
                return cls._handle_discover(dhcp_msg)
            case DHCPType.REQUEST:
                return cls._handle_request(dhcp_msg)
            case DHCPType.RELEASE:
                cls._handle_release(dhcp_msg)
                return None
            case _:
                cls.logger.warning(
                    "Unsupported dhcp type %s XID=%s MAC=%s, ignoring.",
                    _dhcp_type,
                    dhcp_msg.xid,
                    dhcp_msg.mac,
                )
                return None

    @classmethod
    def _handle_discover(cls, dhcp_msg: Message) -> Message | None:
        """DHCPDISCOVER (RFC 2131, 4.3.1): offer an address or stay silent."""
        cls.logger.debug("DISCOVER XID=%s, MAC=%s.", dhcp_msg.xid, dhcp_msg.mac)

        try:
            _offered_ip = cls.pool.offer(dhcp_msg.client_id)
        except PoolExhausted as err:
            cls.logger.warning("No available IP to offer MAC=%s: %s", dhcp_msg.mac, err)
            return None

        return Message.build_reply(
            dhcp_msg,
            DHCPType.OFFER,
            yiaddr=_offered_ip,
            siaddr=cls.server_config.server_ip,
            options=cls._lease_options(),
        )

    @classmethod
    def _handle_request(cls, dhcp_msg: Message) -> Message | None:
        """DHCPREQUEST (RFC 2131, 4.3.2): bind the offered address or NAK."""
        _requested_ip = cls._requested_address(dhcp_msg)
        cls.logger.debug(
            "REQUEST XID=%s MAC=%s IPreq=%s SERVER=%s.",
            dhcp_msg.xid,
            dhcp_msg.mac,
            _requested_ip,
            dhcp_msg.server_id,
        )

        _server_id = dhcp_msg.server_id
        if _server_id is not None and _server_id != cls.server_config.server_ip:
            cls.pool.withdraw_offer(dhcp_msg.client_id)
            cls.logger.debug("MAC=%s selected server %s.", dhcp_msg.mac, _server_id)
            return None

        if _requested_ip is None:
            cls.logger.debug("Invalid REQUEST: missing address XID=%s.", dhcp_msg.xid)
            return cls._build_nak(dhcp_msg)

        try:
            cls.pool.confirm(dhcp_msg.client_id, _requested_ip)
        except NoSuchOffer:
            try:
                cls.pool.renew(dhcp_msg.client_id, _requested_ip)
            except NoSuchOffer as err:
                cls.logger.debug("NAK XID=%s: %s", dhcp_msg.xid, err)
                return cls._build_nak(dhcp_msg)

        return Message.build_reply(
            dhcp_msg,
            DHCPType.ACK,
            yiaddr=_requested_ip,
            siaddr=cls.server_config.server_ip,
            options=cls._lease_options(),
        )

    @classmethod
    def _handle_release(cls, dhcp_msg: Message) -> None:
        """DHCPRELEASE (RFC 2131, 4.3.4): fire and forget."""
        cls.logger.debug(
            "RELEASE XID=%s, IP=%s, MAC=%s.", dhcp_msg.xid, dhcp_msg.ciaddr, dhcp_msg.mac
        )
        cls.pool.release(dhcp_msg.client_id)

    @classmethod
    def _requested_address(cls, dhcp_msg: Message) -> IPv4Address | None:
        """Option 50, else yiaddr, else ciaddr."""
        if dhcp_msg.requested_address is not None:
            return dhcp_msg.requested_address
        for _address in (dhcp_msg.yiaddr, dhcp_msg.ciaddr):
            if _address != NO_ADDRESS:
                return _address
        return None

    @classmethod
    def _build_nak(cls, dhcp_msg: Message) -> Message:
        return Message.build_reply(
            dhcp_msg,
            DHCPType.NAK,
            options=[OptionEntry.from_addresses(OptionCode.SERVER_ID, cls.server_config.server_ip)],
        )

    @classmethod
    def _lease_options(cls) -> list[OptionEntry]:
        """Options carried by OFFER and ACK."""
        _cfg = cls.server_config
        _lease_time = cls.pool.config.lease_duration

        _options = [
            OptionEntry.from_addresses(OptionCode.SERVER_ID, _cfg.server_ip),
            OptionEntry.from_int(OptionCode.LEASE_TIME, _lease_time),
            OptionEntry.from_addresses(OptionCode.SUBNET_MASK, cls.pool.config.subnet_mask),
            OptionEntry.from_int(OptionCode.RENEWAL_TIME, int(_lease_time * _cfg.renewal_time_ratio)),
            OptionEntry.from_int(OptionCode.REBINDING_TIME, int(_lease_time * _cfg.rebinding_time_ratio)),
        ]
        if _cfg.routers:
            _options.append(OptionEntry.from_addresses(OptionCode.ROUTER, *_cfg.routers))
        if _cfg.mtu:
            _options.append(OptionEntry.from_int(OptionCode.INTERFACE_MTU, _cfg.mtu, size=2))
        return _options
