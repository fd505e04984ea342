"""DHCP error taxonomy.

Codec errors (MalformedMessage and its subclasses) and pool errors are
recoverable: the server drops the datagram or answers with a NAK and carries
on with the next one.
"""


class DHCPError(Exception):
    """Base class for DHCP errors"""


class MalformedMessage(DHCPError):
    """Datagram too short or without a terminated option run."""


class BadMagicCookie(MalformedMessage):
    """Option run does not start with 99.130.83.99."""


class TruncatedOption(MalformedMessage):
    """Option run ends before an option's data or before the end marker."""


class MissingTypeOption(DHCPError):
    """Message carries no usable option 53."""


class PoolExhausted(DHCPError):
    """No free address left in the configured range."""


class NoSuchOffer(DHCPError):
    """Client/address pair does not match an active offer or binding."""
