from dataclasses import dataclass, field
from ipaddress import IPv4Address
from struct import Struct
from typing import Iterable

from dhcpd.services.dhcp.errors import MalformedMessage
from dhcpd.services.dhcp.models import BootpOpCode, DHCPType
from dhcpd.services.dhcp.options import OptionCode, OptionCollection, OptionEntry

#  op | htype | hlen | hops | xid | secs | flags | ciaddr | yiaddr | siaddr | giaddr | chaddr | sname | file
#   0 |   1   |   2  |   3  | 4-7 | 8-9  | 10-11 | 12-15  | 16-19  | 20-23  | 24-27  | 28-43  | 44-107| 108-235
HEADER = Struct("!BBBBIHH4s4s4s4s16s64s128s")
HEADER_SIZE = HEADER.size  # 236

CHADDR_SIZE = 16
SNAME_SIZE = 64
FILE_SIZE = 128
NO_ADDRESS = IPv4Address("0.0.0.0")


@dataclass
class Message:
    """BOOTP/DHCP message: fixed 236 byte header plus option run.

    Attributes:
        op (int): 1 = BOOTREQUEST, 2 = BOOTREPLY.
        htype (int): hardware address type, 1 = ethernet.
        hlen (int): hardware address length, 6 for ethernet.
        hops (int): relay hop count.
        xid (int): transaction id chosen by the client.
        secs (int): seconds since the client began acquisition.
        flags (int): 0x8000 requests a broadcast reply.
        ciaddr (IPv4Address): client address, set only when already bound.
        yiaddr (IPv4Address): 'your' address, assigned by the server.
        siaddr (IPv4Address): next server address.
        giaddr (IPv4Address): relay agent address, passed through untouched.
        chaddr (bytes): client hardware address, 16 raw bytes.
        sname (bytes): server host name slot, 64 raw bytes.
        file (bytes): boot file slot, 128 raw bytes.
        options (OptionCollection): option run.
    """

    op: int = BootpOpCode.REQUEST
    htype: int = 1
    hlen: int = 6
    hops: int = 0
    xid: int = 0
    secs: int = 0
    flags: int = 0
    ciaddr: IPv4Address = NO_ADDRESS
    yiaddr: IPv4Address = NO_ADDRESS
    siaddr: IPv4Address = NO_ADDRESS
    giaddr: IPv4Address = NO_ADDRESS
    chaddr: bytes = bytes(CHADDR_SIZE)
    sname: bytes = bytes(SNAME_SIZE)
    file: bytes = bytes(FILE_SIZE)
    options: OptionCollection = field(default_factory=OptionCollection)

    def __post_init__(self):
        self.ciaddr = IPv4Address(self.ciaddr)
        self.yiaddr = IPv4Address(self.yiaddr)
        self.siaddr = IPv4Address(self.siaddr)
        self.giaddr = IPv4Address(self.giaddr)
        self.chaddr = bytes(self.chaddr).ljust(CHADDR_SIZE, b"\x00")
        self.sname = bytes(self.sname).ljust(SNAME_SIZE, b"\x00")
        self.file = bytes(self.file).ljust(FILE_SIZE, b"\x00")
        if len(self.chaddr) > CHADDR_SIZE or len(self.sname) > SNAME_SIZE or len(self.file) > FILE_SIZE:
            raise ValueError("chaddr, sname or file exceeds its fixed slot.")

    @classmethod
    def decode(cls, raw: bytes) -> "Message":
        """Parse a datagram.

        Raises:
            MalformedMessage: shorter than the fixed header, or the option
                run is invalid (BadMagicCookie, TruncatedOption).
        """
        if len(raw) < HEADER_SIZE:
            raise MalformedMessage(f"Datagram of {len(raw)} bytes, header needs {HEADER_SIZE}.")

        (
            _op,
            _htype,
            _hlen,
            _hops,
            _xid,
            _secs,
            _flags,
            _ciaddr,
            _yiaddr,
            _siaddr,
            _giaddr,
            _chaddr,
            _sname,
            _file,
        ) = HEADER.unpack_from(raw)

        return cls(
            op=_op,
            htype=_htype,
            hlen=_hlen,
            hops=_hops,
            xid=_xid,
            secs=_secs,
            flags=_flags,
            ciaddr=IPv4Address(_ciaddr),
            yiaddr=IPv4Address(_yiaddr),
            siaddr=IPv4Address(_siaddr),
            giaddr=IPv4Address(_giaddr),
            chaddr=_chaddr,
            sname=_sname,
            file=_file,
            options=OptionCollection.decode(raw[HEADER_SIZE:]),
        )

    def encode(self, min_size: int = 0) -> bytes:
        """Serialize header and options.

        Args:
            min_size: zero-pad after the end option up to this many bytes.
        """
        _header = HEADER.pack(
            self.op,
            self.htype,
            self.hlen,
            self.hops,
            self.xid,
            self.secs,
            self.flags,
            self.ciaddr.packed,
            self.yiaddr.packed,
            self.siaddr.packed,
            self.giaddr.packed,
            self.chaddr,
            self.sname,
            self.file,
        )
        return (_header + self.options.encode()).ljust(min_size, b"\x00")

    @property
    def client_id(self) -> bytes:
        """Hardware address bytes used as the lease key."""
        return self.chaddr[: min(self.hlen, CHADDR_SIZE)]

    @property
    def mac(self) -> str:
        return self.client_id.hex(":")

    @property
    def message_type(self) -> int | None:
        """Raw value of option 53, None when absent or malformed."""
        return self.options.get_int(OptionCode.MESSAGE_TYPE)

    @property
    def requested_address(self) -> IPv4Address | None:
        return self.options.get_address(OptionCode.REQUESTED_ADDRESS)

    @property
    def server_id(self) -> IPv4Address | None:
        return self.options.get_address(OptionCode.SERVER_ID)

    @property
    def dedup_key(self) -> tuple[int, bytes, int | None]:
        return (self.xid, self.client_id, self.message_type)

    @classmethod
    def build_reply(
        cls,
        request: "Message",
        dhcp_type: DHCPType,
        yiaddr: IPv4Address = NO_ADDRESS,
        siaddr: IPv4Address = NO_ADDRESS,
        options: Iterable[OptionEntry] = (),
    ) -> "Message":
        """Reply skeleton correlated with `request`.

        xid, htype, hlen, flags, giaddr and chaddr are copied verbatim; the
        message type option always comes first.
        """
        _options = OptionCollection([OptionEntry.from_int(OptionCode.MESSAGE_TYPE, dhcp_type, size=1)])
        for _entry in options:
            _options.add(_entry)

        return cls(
            op=BootpOpCode.REPLY,
            htype=request.htype,
            hlen=request.hlen,
            hops=0,
            xid=request.xid,
            secs=0,
            flags=request.flags,
            ciaddr=request.ciaddr if dhcp_type == DHCPType.ACK else NO_ADDRESS,
            yiaddr=yiaddr,
            siaddr=siaddr,
            giaddr=request.giaddr,
            chaddr=request.chaddr,
            options=_options,
        )
