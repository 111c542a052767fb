"""
Link provisioning for container interfaces.

Two modes, chosen once per run:
- Macvtap mode (default): the interface gets a macvtap device carrying
  the guest (with the guest's MAC) and a macvlan device carrying the
  container's own traffic. The macvtap's /dev node is created by hand since
  no device manager runs inside the container.
- Bridge mode: the interface becomes a port of a new kernel bridge and the
  bridge is registered in the launcher's bridge ACL file so the launcher
  can attach its own tap device to it.

In both modes the interface's original address moves to its sibling
subnet on the bridging device (bridge or macvlan), which is then brought up.
"""

from __future__ import annotations

import glob
import os
import stat
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from pyroute2.netlink.exceptions import NetlinkError

from vmtopo.models.enums import LinkMode, ProvisionState
from vmtopo.models.topology import DeviceBinding, NetworkInterface
from vmtopo.net.addressing import Cidr
from vmtopo.net.exceptions import (
    AddressMigrationError,
    DeviceCreationError,
    LinkStateError,
)
from vmtopo.net.naming import (
    BRIDGE_PREFIX,
    MACVLAN_PREFIX,
    MACVTAP_PREFIX,
    device_name,
    generate_name,
    generate_pair_name,
)
from vmtopo.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# pyroute2 helpers
# =============================================================================


def list_link_names(ipr) -> list[str]:
    """Names of every link currently visible in the namespace."""
    return [link.get_attr("IFLA_IFNAME") for link in ipr.get_links()]


def find_link_index(ipr, name: str) -> int | None:
    """Find a link's ifindex by name."""
    for link in ipr.get_links():
        if link.get_attr("IFLA_IFNAME") == name:
            return link["index"]
    return None


def set_link_state(ipr, index: int, name: str, state: str) -> None:
    """Bring a link up or down."""
    try:
        ipr.link("set", index=index, state=state)
    except NetlinkError as e:
        raise LinkStateError(f"cannot set state {state}: {e}", name)
    logger.info(f"Link {name} is {state}")


def set_link_mac(ipr, index: int, name: str, mac: str) -> None:
    """
    Replace a link's MAC address, toggling it down and back up.

    The kernel may reject MAC changes on a running device.
    """
    set_link_state(ipr, index, name, "down")
    try:
        ipr.link("set", index=index, address=mac)
    except NetlinkError as e:
        raise LinkStateError(f"cannot set MAC {mac}: {e}", name)
    logger.info(f"Link {name} MAC set to {mac}")
    set_link_state(ipr, index, name, "up")


# =============================================================================
# Provisioners
# =============================================================================


class LinkProvisioner(ABC):
    """
    Creates the virtual devices for one interface and moves its address.

    Subclasses only implement device creation; address migration and the
    final link-up are shared.
    """

    mode: LinkMode

    def __init__(
        self,
        ipr,
        retries: int = 30,
        retry_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.ipr = ipr
        self.retries = retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    def provision(
        self,
        interface: NetworkInterface,
        guest_mac: str,
        guest_address: Cidr | None,
    ) -> DeviceBinding:
        """
        Wire one interface for the guest.

        Args:
            interface: The container interface (already carrying its new MAC)
            guest_mac: The interface's original MAC, handed to the guest
            guest_address: Address reserved for the guest, or None

        Returns:
            DeviceBinding describing what was created.

        Raises:
            DeviceCreationError: Device creation kept failing.
            AddressMigrationError: Address could not be moved.
            LinkStateError: Bridging device could not be brought up.
        """
        existing = list_link_names(self.ipr)
        binding = self._create_devices(interface, guest_mac, existing)
        binding.state = ProvisionState.DEVICE_CREATED
        bridge_idx = find_link_index(self.ipr, binding.bridge_device)
        if bridge_idx is None:
            raise DeviceCreationError("device vanished after creation", binding.bridge_device)

        if guest_address is not None:
            binding.container_address = self._migrate_address(
                interface, bridge_idx, binding.bridge_device, guest_address
            )
            binding.state = ProvisionState.ADDRESS_MIGRATED

        # Interfaces without an address still need a link-layer path
        set_link_state(self.ipr, bridge_idx, binding.bridge_device, "up")
        binding.state = ProvisionState.UP
        logger.info(
            f"Interface {interface.name} provisioned in {self.mode.value} mode "
            f"via {binding.bridge_device}"
        )
        return binding

    @abstractmethod
    def _create_devices(
        self, interface: NetworkInterface, guest_mac: str, existing: list[str]
    ) -> DeviceBinding:
        """Create the mode-specific devices and return their binding."""

    def _create_link(self, name: str, **kwargs) -> int:
        """
        Create a link, retrying with a fixed delay while the kernel refuses.

        Returns the new link's ifindex.
        """
        last_error: NetlinkError | None = None
        for attempt in range(1, self.retries + 1):
            try:
                self.ipr.link("add", ifname=name, **kwargs)
                break
            except NetlinkError as e:
                last_error = e
                logger.warning(
                    f"Creating {name} failed (attempt {attempt}/{self.retries}): {e}"
                )
                if attempt < self.retries:
                    self._sleep(self.retry_delay)
        else:
            raise DeviceCreationError(
                f"gave up after {self.retries} attempts: {last_error}", name
            )

        index = find_link_index(self.ipr, name)
        if index is None:
            raise DeviceCreationError("device not found after creation", name)
        logger.info(f"Created {kwargs.get('kind', 'link')} device {name}")
        return index

    def _migrate_address(
        self,
        interface: NetworkInterface,
        bridge_idx: int,
        bridge_name: str,
        guest_address: Cidr,
    ) -> Cidr:
        """Move the interface's address to its sibling on the bridging device."""
        new_address = guest_address.sibling()
        try:
            self.ipr.addr(
                "del",
                index=interface.index,
                address=guest_address.ip,
                prefixlen=guest_address.prefix_len,
            )
            logger.info(f"Removed {guest_address} from {interface.name}")
            if guest_address in interface.addresses:
                interface.addresses.remove(guest_address)
            self.ipr.addr(
                "add",
                index=bridge_idx,
                address=new_address.ip,
                prefixlen=new_address.prefix_len,
            )
        except NetlinkError as e:
            raise AddressMigrationError(str(e), interface.name)
        logger.info(f"Assigned {new_address} to {bridge_name}")
        return new_address


class BridgeProvisioner(LinkProvisioner):
    """Enslaves the interface to a fresh kernel bridge."""

    mode = LinkMode.BRIDGE

    def __init__(self, ipr, acl_file: str = "/etc/qemu/bridge.conf", **kwargs):
        super().__init__(ipr, **kwargs)
        self.acl_file = acl_file

    def _create_devices(
        self, interface: NetworkInterface, guest_mac: str, existing: list[str]
    ) -> DeviceBinding:
        identifier = generate_name(BRIDGE_PREFIX, existing)
        bridge = device_name(BRIDGE_PREFIX, identifier)
        bridge_idx = self._create_link(bridge, kind="bridge")

        try:
            self.ipr.link("set", index=interface.index, master=bridge_idx)
        except NetlinkError as e:
            raise LinkStateError(f"cannot attach to {bridge}: {e}", interface.name)
        logger.info(f"Attached {interface.name} to bridge {bridge}")

        acl = register_bridge_acl(self.acl_file, bridge)
        return DeviceBinding(
            interface=interface.name,
            identifier=identifier,
            mode=self.mode,
            guest_mac=guest_mac,
            bridge_device=bridge,
            bridge_acl=acl,
        )


class MacvtapProvisioner(LinkProvisioner):
    """Pairs the interface with a macvtap (guest) and a macvlan (container)."""

    mode = LinkMode.MACVTAP

    def __init__(
        self,
        ipr,
        dev_dir: str = "/dev",
        sysfs_net_dir: str = "/sys/class/net",
        **kwargs,
    ):
        super().__init__(ipr, **kwargs)
        self.dev_dir = dev_dir
        self.sysfs_net_dir = sysfs_net_dir

    def _create_devices(
        self, interface: NetworkInterface, guest_mac: str, existing: list[str]
    ) -> DeviceBinding:
        identifier = generate_pair_name((MACVTAP_PREFIX, MACVLAN_PREFIX), existing)
        tap = device_name(MACVTAP_PREFIX, identifier)
        vlan = device_name(MACVLAN_PREFIX, identifier)

        tap_idx = self._create_link(
            tap,
            kind="macvtap",
            link=interface.index,
            macvtap_mode="bridge",
            address=guest_mac,
        )
        set_link_state(self.ipr, tap_idx, tap, "up")

        vlan_idx = self._create_link(
            vlan, kind="macvlan", link=interface.index, macvlan_mode="bridge"
        )
        set_link_state(self.ipr, vlan_idx, vlan, "up")

        node = create_tap_node(tap, tap_idx, self.sysfs_net_dir, self.dev_dir)
        return DeviceBinding(
            interface=interface.name,
            identifier=identifier,
            mode=self.mode,
            guest_mac=guest_mac,
            bridge_device=vlan,
            tap_device=tap,
            tap_node=node,
        )


# =============================================================================
# Filesystem side effects
# =============================================================================


def register_bridge_acl(acl_file: str, bridge: str) -> str:
    """
    Allow the launcher's bridge helper to use ``bridge``.

    Returns the ACL line that was written.
    """
    line = f"allow {bridge}"
    try:
        parent = os.path.dirname(acl_file)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(acl_file, "a") as f:
            f.write(line + "\n")
    except OSError as e:
        raise DeviceCreationError(f"cannot register in {acl_file}: {e}", bridge)
    logger.info(f"Registered '{line}' in {acl_file}")
    return line


def read_tap_dev_numbers(tap: str, tap_idx: int, sysfs_net_dir: str) -> tuple[int, int]:
    """Read the macvtap character device's major/minor from sysfs."""
    path = os.path.join(sysfs_net_dir, tap, "macvtap", f"tap{tap_idx}", "dev")
    if not os.path.exists(path):
        # Fall back to whatever tapN entry the kernel exposes
        matches = glob.glob(os.path.join(sysfs_net_dir, tap, "macvtap", "tap*", "dev"))
        if not matches:
            raise DeviceCreationError(f"no sysfs dev entry under {sysfs_net_dir}", tap)
        path = matches[0]

    try:
        with open(path) as f:
            major, minor = f.read().strip().split(":")
        return int(major), int(minor)
    except (OSError, ValueError) as e:
        raise DeviceCreationError(f"cannot read {path}: {e}", tap)


def create_tap_node(tap: str, tap_idx: int, sysfs_net_dir: str, dev_dir: str) -> str:
    """Create /dev/<tap> for a macvtap device. Returns the node path."""
    major, minor = read_tap_dev_numbers(tap, tap_idx, sysfs_net_dir)
    node = os.path.join(dev_dir, tap)
    try:
        if os.path.exists(node):
            os.remove(node)
        os.mknod(node, stat.S_IFCHR | 0o600, os.makedev(major, minor))
    except OSError as e:
        raise DeviceCreationError(f"cannot create {node}: {e}", tap)
    logger.info(f"Created character device {node} ({major}:{minor})")
    return node


def get_provisioner(mode: LinkMode, ipr, config) -> LinkProvisioner:
    """Build the provisioner for this run's mode from a NetConfig."""
    common = {
        "retries": config.DEVICE_CREATE_RETRIES,
        "retry_delay": config.DEVICE_CREATE_RETRY_DELAY,
    }
    if mode == LinkMode.BRIDGE:
        return BridgeProvisioner(ipr, acl_file=config.BRIDGE_ACL_FILE, **common)
    return MacvtapProvisioner(
        ipr,
        dev_dir=config.DEV_DIR,
        sysfs_net_dir=config.SYSFS_NET_DIR,
        **common,
    )
