"""
Enumeration types for vmtopo.

This module defines the enumerations shared by the configuration layer,
the link provisioners and the CLI.
"""

from enum import Enum


# =============================================================================
# Network-Related Enums
# =============================================================================


class LinkMode(str, Enum):
    """
    How each container interface is exposed to the guest.

    - BRIDGE: interface becomes a port of a kernel bridge; the launcher
      creates its own tap device on that bridge
    - MACVTAP: a macvtap device carries the guest, a sibling macvlan
      carries the container's own traffic
    """

    BRIDGE = "bridge"
    MACVTAP = "macvtap"


class ProvisionState(str, Enum):
    """
    Per-interface provisioning progress.

    State transitions:
        UNCONFIGURED -> DEVICE_CREATED -> ADDRESS_MIGRATED -> UP
        DEVICE_CREATED -> UP (interface had no address to migrate)
    """

    UNCONFIGURED = "unconfigured"
    DEVICE_CREATED = "device_created"
    ADDRESS_MIGRATED = "address_migrated"
    UP = "up"


# =============================================================================
# Configuration Enums
# =============================================================================


class LogLevel(str, Enum):
    """
    Logging verbosity levels.

    Levels (from most to least verbose):
        - FULL: Complete trace with detailed stack information
        - DEBUG: Debug messages and above
        - INFO: Informational messages and above
        - WARNING: Only warnings and errors
    """

    FULL = "full"
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
