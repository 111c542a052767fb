"""Virtual device naming conventions and utilities."""

import secrets
from collections.abc import Callable, Collection

from vmtopo.net.exceptions import NameExhaustedError

# Prefixes
BRIDGE_PREFIX = "bridge"
MACVTAP_PREFIX = "macvtap"
MACVLAN_PREFIX = "macvlan"

# Kernel IFNAMSIZ is 16 including the trailing NUL
MAX_IFNAME_LEN = 15
ID_HEX_LEN = 8
DEFAULT_MAX_ATTEMPTS = 1000


def random_hex(length: int) -> str:
    """Random lowercase hex string of exactly ``length`` characters."""
    return secrets.token_hex((length + 1) // 2)[:length]


def generate_name(
    kind: str,
    existing_names: Collection[str],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    token_fn: Callable[[int], str] = random_hex,
) -> str:
    """
    Generate a device identifier so that ``kind + identifier`` is unused.

    Args:
        kind: Device name prefix, e.g. "macvtap"
        existing_names: Snapshot of device names currently on the host
        max_attempts: Retry bound before giving up
        token_fn: Source of random hex identifiers

    Returns:
        The identifier only; callers prepend ``kind`` themselves.

    Raises:
        NameExhaustedError: If every attempt collided.
    """
    length = min(ID_HEX_LEN, MAX_IFNAME_LEN - len(kind))
    if length < 1:
        raise ValueError(f"Device kind '{kind}' leaves no room for an identifier")

    taken = set(existing_names)
    for _ in range(max_attempts):
        identifier = token_fn(length)
        if f"{kind}{identifier}" not in taken:
            return identifier
    raise NameExhaustedError(kind, max_attempts)


def generate_pair_name(
    kinds: tuple[str, ...],
    existing_names: Collection[str],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    token_fn: Callable[[int], str] = random_hex,
) -> str:
    """
    Generate one identifier that is free under every prefix in ``kinds``.

    Used for the macvtap/macvlan pair, which share an identifier.
    """
    primary = kinds[0]
    # Project every kind's names onto the primary prefix
    taken = set(existing_names)
    for kind in kinds[1:]:
        taken.update(
            primary + name[len(kind) :] for name in existing_names if name.startswith(kind)
        )
    return generate_name(primary, taken, max_attempts, token_fn)


def generate_mac() -> str:
    """Random locally administered unicast MAC address."""
    octets = bytearray(secrets.token_bytes(6))
    octets[0] = (octets[0] | 0x02) & 0xFE
    return ":".join(f"{b:02x}" for b in octets)


def device_name(kind: str, identifier: str) -> str:
    """Full interface name for a kind and identifier."""
    return f"{kind}{identifier}"
