from dataclasses import dataclass
from enum import IntEnum, unique
from ipaddress import IPv4Address
from typing import Iterable, Iterator

from dhcpd.services.dhcp.errors import BadMagicCookie, TruncatedOption

MAGIC_COOKIE = bytes((99, 130, 83, 99))
MAX_OPTION_LENGTH = 255


@unique
class OptionCode(IntEnum):
    """RFC 2132 option codes used by the server"""

    PAD = 0
    SUBNET_MASK = 1
    ROUTER = 3
    DOMAIN_NAME_SERVER = 6
    HOSTNAME = 12
    INTERFACE_MTU = 26
    REQUESTED_ADDRESS = 50
    LEASE_TIME = 51
    MESSAGE_TYPE = 53
    SERVER_ID = 54
    PARAM_REQUEST_LIST = 55
    MAX_MESSAGE_SIZE = 57
    RENEWAL_TIME = 58
    REBINDING_TIME = 59
    VENDOR_CLASS_ID = 60
    CLIENT_ID = 61
    END = 255

    def __str__(self) -> str:
        return str(self.value)


# code -> exact data length
FIXED_LENGTH_CODES: dict[int, int] = {
    1: 4,
    2: 4,
    13: 2,
    19: 1,
    20: 1,
    22: 2,
    23: 1,
    24: 4,
    26: 2,
    27: 1,
    28: 4,
    29: 1,
    30: 1,
    31: 1,
    32: 4,
    34: 1,
    35: 4,
    36: 1,
    37: 1,
    38: 4,
    39: 1,
    46: 1,
    50: 4,
    51: 4,
    52: 1,
    53: 1,
    54: 4,
    57: 2,
    58: 4,
    59: 4,
}

# codes carrying one or more IPv4 addresses
ADDRESS_LIST_CODES: frozenset[int] = frozenset(
    {3, 4, 5, 6, 7, 8, 9, 10, 11, 41, 42, 44, 45, 48, 49, 65, *range(68, 77)}
)

# code -> minimum data length
MIN_LENGTH_CODES: dict[int, int] = {
    12: 1,
    14: 1,
    15: 1,
    17: 1,
    18: 1,
    40: 1,
    55: 1,
    56: 1,
    60: 1,
    61: 2,
}


@dataclass(frozen=True)
class OptionEntry:
    """One tag-length-value option.

    The declared length is always len(data), so a decoded or constructed
    entry cannot disagree with itself.
    """

    code: int
    data: bytes = b""

    def __post_init__(self):
        if not 0 < int(self.code) < OptionCode.END:
            raise ValueError(f"Option code {self.code} is reserved or out of range.")
        if len(self.data) > MAX_OPTION_LENGTH:
            raise ValueError(f"Option {self.code} data exceeds {MAX_OPTION_LENGTH} bytes.")
        object.__setattr__(self, "code", int(self.code))
        object.__setattr__(self, "data", bytes(self.data))

    @property
    def length(self) -> int:
        return len(self.data)

    def is_well_formed(self) -> bool:
        """Check the data length against the RFC 2132 rule for this code."""
        if self.code in FIXED_LENGTH_CODES:
            return self.length == FIXED_LENGTH_CODES[self.code]
        if self.code in ADDRESS_LIST_CODES:
            return self.length > 0 and self.length % 4 == 0
        if self.code in MIN_LENGTH_CODES:
            return self.length >= MIN_LENGTH_CODES[self.code]
        return True

    def to_bytes(self) -> bytes:
        return bytes((self.code, self.length)) + self.data

    @classmethod
    def from_int(cls, code: int, value: int, size: int = 4) -> "OptionEntry":
        return cls(code, int(value).to_bytes(size, "big"))

    @classmethod
    def from_addresses(cls, code: int, *addresses: IPv4Address | str) -> "OptionEntry":
        return cls(code, b"".join(IPv4Address(_addr).packed for _addr in addresses))

    def __repr__(self) -> str:
        return f"OptionEntry(code={self.code}, length={self.length}, data={self.data.hex()})"


class OptionCollection:
    """Ordered option run of a DHCP message.

    Insertion order is kept on encode; some clients rely on it. Lookups by
    code return the first matching entry.
    """

    def __init__(self, entries: Iterable[OptionEntry] | None = None):
        self._entries: list[OptionEntry] = list(entries or [])

    @classmethod
    def decode(cls, raw: bytes) -> "OptionCollection":
        """Parse the option run that follows the fixed header.

        Args:
            raw: bytes starting at the magic cookie.

        Returns:
            OptionCollection: entries in wire order, pads dropped.

        Raises:
            BadMagicCookie: first four bytes are not the cookie.
            TruncatedOption: an option overruns the buffer, or the buffer
                ends before the end marker.
        """
        if bytes(raw[:4]) != MAGIC_COOKIE:
            raise BadMagicCookie(f"Expected cookie {MAGIC_COOKIE.hex()}, got {bytes(raw[:4]).hex()}.")

        _entries: list[OptionEntry] = []
        _offset = len(MAGIC_COOKIE)
        _size = len(raw)

        while _offset < _size:
            _code = raw[_offset]
            if _code == OptionCode.END:
                return cls(_entries)
            if _code == OptionCode.PAD:
                _offset += 1
                continue
            if _offset + 2 > _size:
                raise TruncatedOption(f"Option {_code} at offset {_offset} has no length byte.")
            _length = raw[_offset + 1]
            if _offset + 2 + _length > _size:
                raise TruncatedOption(
                    f"Option {_code} declares {_length} bytes, {_size - _offset - 2} remain."
                )
            _entries.append(OptionEntry(_code, bytes(raw[_offset + 2:_offset + 2 + _length])))
            _offset += 2 + _length

        raise TruncatedOption("Option run ended without end marker.")

    def encode(self) -> bytes:
        """Cookie, entries in order, end marker."""
        return b"".join(
            (MAGIC_COOKIE, *(_entry.to_bytes() for _entry in self._entries), bytes((OptionCode.END,)))
        )

    def add(self, entry: OptionEntry) -> "OptionCollection":
        self._entries.append(entry)
        return self

    def get(self, code: int) -> OptionEntry | None:
        for _entry in self._entries:
            if _entry.code == code:
                return _entry
        return None

    def get_int(self, code: int) -> int | None:
        """Integer value of a well-formed fixed-length option, or None."""
        _entry = self.get(code)
        if _entry is None or not _entry.data or not _entry.is_well_formed():
            return None
        return int.from_bytes(_entry.data, "big")

    def get_address(self, code: int) -> IPv4Address | None:
        """First address of a well-formed 4-byte or address-list option, or None."""
        _entry = self.get(code)
        if _entry is None or _entry.length < 4 or not _entry.is_well_formed():
            return None
        return IPv4Address(_entry.data[:4])

    def codes(self) -> list[int]:
        return [_entry.code for _entry in self._entries]

    def __contains__(self, code: object) -> bool:
        return any(_entry.code == code for _entry in self._entries)

    def __iter__(self) -> Iterator[OptionEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OptionCollection):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"OptionCollection({self._entries!r})"
