"""Data models for one topology configuration pass."""

from __future__ import annotations

from dataclasses import dataclass, field

from vmtopo.models.enums import LinkMode, ProvisionState
from vmtopo.net.addressing import Cidr


@dataclass
class NetworkInterface:
    """A container-visible link as discovered before configuration."""

    name: str  # e.g., "eth0"
    index: int  # kernel ifindex
    mac_address: str  # e.g., "02:42:ac:11:00:02"
    addresses: list[Cidr] = field(default_factory=list)

    @property
    def address_values(self) -> list[int]:
        return [cidr.address for cidr in self.addresses]

    def find_address(self, addr: int) -> Cidr | None:
        for cidr in self.addresses:
            if cidr.address == addr:
                return cidr
        return None


@dataclass
class DeviceBinding:
    """Result of provisioning one interface."""

    interface: str  # original interface name, e.g., "eth0"
    identifier: str  # generated hex id, e.g., "3fa9c01b"
    mode: LinkMode
    guest_mac: str  # MAC handed to the guest-facing tap
    bridge_device: str  # "bridge<id>" or "macvlan<id>", carries container traffic
    tap_device: str | None = None  # "macvtap<id>" in macvtap mode
    tap_node: str | None = None  # "/dev/macvtap<id>" in macvtap mode
    container_address: Cidr | None = None  # migrated sibling address
    bridge_acl: str | None = None  # "allow bridge<id>" in bridge mode
    state: ProvisionState = ProvisionState.UNCONFIGURED


@dataclass
class DhcpReservation:
    """A single-address DHCP lease for the guest."""

    mac_address: str
    ip: Cidr | None
    hostname: str
    lease: str = "infinite"


@dataclass
class InterfacePlan:
    """Everything the orchestrator decided and did for one interface."""

    interface: NetworkInterface
    guest_address: Cidr | None
    container_mac: str
    binding: DeviceBinding
    reservation: DhcpReservation | None = None


@dataclass
class TopologyResult:
    """Outcome of a full configuration pass."""

    plans: list[InterfacePlan] = field(default_factory=list)
    launcher_args: list[str] = field(default_factory=list)
    dhcp_options: list[str] = field(default_factory=list)

    @property
    def reservations(self) -> list[DhcpReservation]:
        return [p.reservation for p in self.plans if p.reservation is not None]

    def to_dict(self) -> dict:
        """JSON-friendly summary."""
        return {
            "interfaces": [
                {
                    "name": p.interface.name,
                    "guest_address": str(p.guest_address) if p.guest_address else None,
                    "guest_mac": p.binding.guest_mac,
                    "container_mac": p.container_mac,
                    "mode": p.binding.mode.value,
                    "bridge_device": p.binding.bridge_device,
                    "tap_device": p.binding.tap_device,
                    "container_address": (
                        str(p.binding.container_address)
                        if p.binding.container_address
                        else None
                    ),
                }
                for p in self.plans
            ],
            "launcher_args": self.launcher_args,
            "dhcp_options": self.dhcp_options,
        }
