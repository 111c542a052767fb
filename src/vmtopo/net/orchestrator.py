"""
Per-interface orchestration of the container-to-guest network handover.

For each container interface, in discovery order:
1. Pick the address the guest will own (operator override or first address)
2. Give the interface a fresh MAC; its old MAC goes to the guest
3. Provision bridge or macvtap devices and migrate the container's address
4. Record the launcher tap argument and, with DHCP, the guest's reservation

The pass stops at the first error other than an unmatched override; there
is no rollback of interfaces that were already wired.
"""

from __future__ import annotations

import socket
from collections.abc import Callable

from pyroute2.netlink.exceptions import NetlinkError

from vmtopo.models.topology import (
    DhcpReservation,
    InterfacePlan,
    NetworkInterface,
    TopologyResult,
)
from vmtopo.net.addressing import Cidr, select_address_in_range
from vmtopo.net.dhcp import (
    build_options,
    get_default_gateway,
    get_domain_name,
    get_short_hostname,
    read_resolv_conf,
)
from vmtopo.net.exceptions import AddressNotFoundError, DiscoveryError
from vmtopo.net.launcher import tap_device_arg
from vmtopo.net.naming import generate_mac
from vmtopo.net.provisioner import LinkProvisioner, set_link_mac
from vmtopo.utils.logger import get_logger

logger = get_logger(__name__)

# Links created by us or by earlier runs are never handed to the guest
SKIP_KINDS = {"bridge", "macvtap", "macvlan"}


def _link_kind(link) -> str | None:
    linkinfo = link.get_attr("IFLA_LINKINFO")
    if linkinfo is not None:
        return linkinfo.get_attr("IFLA_INFO_KIND")
    return None


def discover_interfaces(ipr) -> list[NetworkInterface]:
    """
    Snapshot the container interfaces eligible for handover.

    Loopback and bridge/macvtap/macvlan links are skipped. Order follows
    the kernel's ifindex order.

    Raises:
        DiscoveryError: If the kernel refuses to list links or addresses.
    """
    try:
        links = ipr.get_links()
    except NetlinkError as e:
        raise DiscoveryError(f"Cannot list links: {e}") from e

    interfaces = []
    for link in sorted(links, key=lambda msg: msg["index"]):
        name = link.get_attr("IFLA_IFNAME")
        kind = _link_kind(link)
        if name == "lo" or kind in SKIP_KINDS:
            logger.debug(f"Skipping {name} (kind={kind})")
            continue

        try:
            raw_addrs = ipr.get_addr(index=link["index"], family=socket.AF_INET)
        except NetlinkError as e:
            raise DiscoveryError(f"Cannot list addresses of {name}: {e}") from e
        addresses = [
            Cidr.parse(f"{addr.get_attr('IFA_ADDRESS')}/{addr['prefixlen']}")
            for addr in raw_addrs
        ]
        interfaces.append(
            NetworkInterface(
                name=name,
                index=link["index"],
                mac_address=link.get_attr("IFLA_ADDRESS"),
                addresses=addresses,
            )
        )
    return interfaces


class InterfaceOrchestrator:
    """Runs one configuration pass over every discovered interface."""

    def __init__(
        self,
        ipr,
        provisioner: LinkProvisioner,
        selected_network: Cidr | None = None,
        dhcp_enabled: bool = False,
        hostname: str | None = None,
        resolv_conf: str = "/etc/resolv.conf",
        mac_factory: Callable[[], str] = generate_mac,
    ):
        self.ipr = ipr
        self.provisioner = provisioner
        self.selected_network = selected_network
        self.dhcp_enabled = dhcp_enabled
        self.hostname = hostname or get_short_hostname()
        self.resolv_conf = resolv_conf
        self._mac_factory = mac_factory

    def run(self) -> TopologyResult:
        """Configure every interface and collect launcher/DHCP parameters."""
        interfaces = discover_interfaces(self.ipr)
        if not interfaces:
            logger.warning("No container interfaces found to hand over")

        # Removing an address drops its routes, so read the gateway first
        router = get_default_gateway(self.ipr) if self.dhcp_enabled else None

        result = TopologyResult()
        for interface in interfaces:
            plan = self.configure_interface(interface)
            result.plans.append(plan)
            result.launcher_args.append(tap_device_arg(plan.binding))

        if self.dhcp_enabled:
            resolv = read_resolv_conf(self.resolv_conf)
            result.dhcp_options = build_options(
                result.reservations,
                dns_servers=resolv.nameservers,
                router=router,
                search_domains=resolv.search,
                domain_name=get_domain_name(resolv),
            )
        logger.info(f"Configured {len(result.plans)} interface(s)")
        return result

    def select_guest_address(self, interface: NetworkInterface) -> Cidr | None:
        """Address to hand to the guest, or None."""
        if not interface.addresses:
            if self.selected_network is not None:
                logger.warning(
                    f"{interface.name} has no IPv4 address inside "
                    f"{self.selected_network}; guest gets no address on this interface"
                )
            else:
                logger.info(f"{interface.name} has no IPv4 address")
            return None

        if self.selected_network is None:
            return interface.addresses[0]

        try:
            chosen = select_address_in_range(
                interface.address_values, self.selected_network
            )
        except AddressNotFoundError:
            logger.warning(
                f"No address of {interface.name} is inside {self.selected_network}; "
                f"guest gets no address on this interface"
            )
            return None
        return interface.find_address(chosen)

    def configure_interface(self, interface: NetworkInterface) -> InterfacePlan:
        """Hand one interface over to the guest."""
        guest_address = self.select_guest_address(interface)
        guest_mac = interface.mac_address
        container_mac = self._mac_factory()

        logger.info(
            f"{interface.name}: guest gets {guest_address or 'no address'} "
            f"with MAC {guest_mac}, container takes MAC {container_mac}"
        )
        set_link_mac(self.ipr, interface.index, interface.name, container_mac)
        interface.mac_address = container_mac

        binding = self.provisioner.provision(interface, guest_mac, guest_address)

        reservation = None
        if self.dhcp_enabled and guest_address is not None:
            reservation = DhcpReservation(
                mac_address=guest_mac,
                ip=guest_address,
                hostname=self.hostname,
            )
        return InterfacePlan(
            interface=interface,
            guest_address=guest_address,
            container_mac=container_mac,
            binding=binding,
            reservation=reservation,
        )
