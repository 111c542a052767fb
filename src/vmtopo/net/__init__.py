"""
Network topology computation and device wiring.

Provides:
- IPv4 arithmetic and sibling subnet computation (addressing)
- Collision-free virtual device naming (naming)
- Bridge and macvtap provisioning (provisioner)
- Per-interface orchestration (orchestrator)
- DHCP option generation (dhcp)

Only the pure modules are re-exported here; the provisioner and
orchestrator depend on vmtopo.models, which itself imports addressing.
"""

from vmtopo.net.addressing import (
    Cidr,
    cidr_to_netmask,
    format_address,
    mask_from_prefix,
    parse_address,
    select_address_in_range,
    sibling_subnet,
)
from vmtopo.net.exceptions import (
    AddressFormatError,
    AddressMigrationError,
    AddressNotFoundError,
    DeviceCreationError,
    LauncherError,
    LinkStateError,
    NameExhaustedError,
    PrefixRangeError,
    ProvisioningError,
    TopologyError,
)
from vmtopo.net.naming import generate_mac, generate_name

__all__ = [
    # Addressing
    "Cidr",
    "parse_address",
    "format_address",
    "mask_from_prefix",
    "cidr_to_netmask",
    "sibling_subnet",
    "select_address_in_range",
    # Naming
    "generate_name",
    "generate_mac",
    # Exceptions
    "TopologyError",
    "AddressFormatError",
    "PrefixRangeError",
    "AddressNotFoundError",
    "NameExhaustedError",
    "ProvisioningError",
    "DeviceCreationError",
    "AddressMigrationError",
    "LinkStateError",
    "LauncherError",
]
