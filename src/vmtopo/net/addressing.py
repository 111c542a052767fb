"""
IPv4 address arithmetic.

Addresses are plain ints in 0..2**32-1. Everything here is pure; the
provisioners and the orchestrator are the only callers with side effects.

Sibling subnet example (10.0.5.17/24):
- Bit 32 - 24 = 8 is flipped: 10.0.5.17 -> 10.0.4.17
- Prefix shrinks by one: /24 -> /23
- Guest keeps 10.0.5.17/24, container moves to 10.0.4.17/23
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from dataclasses import dataclass

from vmtopo.net.exceptions import (
    AddressFormatError,
    AddressNotFoundError,
    PrefixRangeError,
)

MAX_ADDRESS = 0xFFFFFFFF


def parse_address(text: str) -> int:
    """Convert dotted-decimal text to its 32-bit integer value."""
    if not isinstance(text, str):
        raise AddressFormatError(f"Expected dotted-decimal text, got {text!r}")
    try:
        return int(ipaddress.IPv4Address(text.strip()))
    except ipaddress.AddressValueError as e:
        raise AddressFormatError(f"Invalid IPv4 address '{text}': {e}")


def format_address(value: int) -> str:
    """Convert a 32-bit integer back to dotted-decimal text."""
    try:
        return str(ipaddress.IPv4Address(value))
    except ipaddress.AddressValueError as e:
        raise AddressFormatError(f"Invalid IPv4 address value {value!r}: {e}")


def _check_prefix(prefix_len: int, low: int = 0) -> None:
    if isinstance(prefix_len, bool) or not isinstance(prefix_len, int):
        raise PrefixRangeError(prefix_len, "must be an integer")
    if prefix_len < low or prefix_len > 32:
        raise PrefixRangeError(prefix_len, f"must be between {low} and 32")


def mask_from_prefix(prefix_len: int) -> int:
    """Return the 32-bit mask with ``prefix_len`` leading one-bits."""
    _check_prefix(prefix_len)
    return (MAX_ADDRESS << (32 - prefix_len)) & MAX_ADDRESS


def cidr_to_netmask(prefix_len: int) -> str:
    """Dotted-decimal netmask for a prefix length (20 -> 255.255.240.0)."""
    return format_address(mask_from_prefix(prefix_len))


def sibling_subnet(addr: int, prefix_len: int) -> tuple[int, int]:
    """
    Flip the lowest network bit of ``addr`` and widen the prefix by one.

    The returned address lies in the equal-sized subnet adjacent to the
    original one, and the returned /(prefix_len - 1) covers both halves so
    the two stay mutually routable.

    Raises:
        PrefixRangeError: If prefix_len is outside [1, 32]; /0 has no sibling.
    """
    _check_prefix(prefix_len, low=1)
    flipped = addr ^ (1 << (32 - prefix_len))
    return flipped, prefix_len - 1


@dataclass(frozen=True)
class Cidr:
    """An IPv4 address together with its prefix length."""

    address: int
    prefix_len: int

    def __post_init__(self):
        _check_prefix(self.prefix_len)
        if not 0 <= self.address <= MAX_ADDRESS:
            raise AddressFormatError(f"Address value out of range: {self.address}")

    @classmethod
    def parse(cls, text: str) -> Cidr:
        """
        Parse ``address/prefix_len`` text.

        A bare address is accepted as a /32.
        """
        if not isinstance(text, str):
            raise AddressFormatError(f"Expected CIDR text, got {text!r}")
        addr_text, sep, prefix_text = text.strip().partition("/")
        if not sep:
            return cls(parse_address(addr_text), 32)
        try:
            prefix_len = int(prefix_text)
        except ValueError:
            raise AddressFormatError(
                f"Invalid CIDR '{text}': prefix '{prefix_text}' is not an integer"
            )
        return cls(parse_address(addr_text), prefix_len)

    @property
    def mask(self) -> int:
        return mask_from_prefix(self.prefix_len)

    @property
    def network(self) -> int:
        return self.address & self.mask

    @property
    def broadcast(self) -> int:
        return self.network | (~self.mask & MAX_ADDRESS)

    @property
    def netmask(self) -> str:
        return format_address(self.mask)

    @property
    def ip(self) -> str:
        return format_address(self.address)

    def contains_host(self, addr: int) -> bool:
        """True if ``addr`` is strictly between network and broadcast."""
        return self.network < addr < self.broadcast

    def sibling(self) -> Cidr:
        """The container-side address this CIDR migrates to."""
        return Cidr(*sibling_subnet(self.address, self.prefix_len))

    def __str__(self) -> str:
        return f"{self.ip}/{self.prefix_len}"


def select_address_in_range(candidates: Iterable[int], range_cidr: Cidr) -> int:
    """
    Return the first candidate inside the host range of ``range_cidr``.

    Network and broadcast addresses never match. With several matches the
    earliest one in candidate order wins.

    Raises:
        AddressNotFoundError: If no candidate matches.
    """
    for candidate in candidates:
        if range_cidr.contains_host(candidate):
            return candidate
    raise AddressNotFoundError(str(range_cidr))
