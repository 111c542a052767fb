"""Network topology exception classes."""


class TopologyError(Exception):
    """Base exception for topology computation and wiring."""

    pass


class AddressFormatError(TopologyError, ValueError):
    """Malformed dotted-decimal address or CIDR text."""

    pass


class PrefixRangeError(TopologyError, ValueError):
    """Prefix length outside the domain of the requested operation."""

    def __init__(self, prefix_len, message: str = "must be between 0 and 32"):
        self.prefix_len = prefix_len
        super().__init__(f"Invalid prefix length {prefix_len}: {message}")


class AddressNotFoundError(TopologyError, LookupError):
    """No candidate address falls inside the requested subnet."""

    def __init__(self, network: str):
        self.network = network
        super().__init__(f"No assigned address inside {network}")


class NameExhaustedError(TopologyError):
    """Could not generate a device name that is not already taken."""

    def __init__(self, kind: str, attempts: int):
        self.kind = kind
        self.attempts = attempts
        super().__init__(
            f"No free {kind} device name after {attempts} attempts"
        )


class ProvisioningError(TopologyError):
    """Base exception for kernel-side device provisioning failures."""

    pass


class DeviceCreationError(ProvisioningError):
    """Kernel refused to create a virtual device."""

    def __init__(self, message: str, device: str):
        self.device = device
        super().__init__(f"Failed to create {device}: {message}")


class AddressMigrationError(ProvisioningError):
    """Moving an address from an interface to its bridging device failed."""

    def __init__(self, message: str, interface: str):
        self.interface = interface
        super().__init__(f"Address migration failed for {interface}: {message}")


class LinkStateError(ProvisioningError):
    """Bringing a device up/down or changing its MAC failed."""

    def __init__(self, message: str, device: str):
        self.device = device
        super().__init__(f"Link state change failed for {device}: {message}")


class LauncherError(TopologyError):
    """DHCP server or VM launcher could not be started."""

    pass


class DiscoveryError(TopologyError):
    """Reading links, addresses or routes from the kernel failed."""

    pass
