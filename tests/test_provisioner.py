import os
import stat

import pytest

from vmtopo.models.enums import LinkMode, ProvisionState
from vmtopo.models.topology import DeviceBinding, NetworkInterface
from vmtopo.net.addressing import Cidr
from vmtopo.net.exceptions import (
    AddressMigrationError,
    DeviceCreationError,
    LinkStateError,
)
from vmtopo.net import provisioner as provisioner_mod
from vmtopo.net.provisioner import (
    BridgeProvisioner,
    MacvtapProvisioner,
    find_link_index,
    get_provisioner,
    register_bridge_acl,
    set_link_mac,
)

from tests.conftest import FakeIPRoute

GUEST_MAC = "02:42:0a:00:05:11"


def _eth0(ipr):
    return NetworkInterface(
        name="eth0",
        index=ipr.index_of("eth0"),
        mac_address="06:00:00:00:00:01",
        addresses=[Cidr.parse("10.0.5.17/24")],
    )


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def macvtap(fake_ipr, dev_dir, sysfs_dir, sleeps, mknod_calls):
    return MacvtapProvisioner(
        fake_ipr, dev_dir=dev_dir, sysfs_net_dir=sysfs_dir,
        retries=3, retry_delay=0.5, sleep=sleeps.append)


@pytest.fixture
def bridge(fake_ipr, tmp_path, sleeps):
    return BridgeProvisioner(
        fake_ipr, acl_file=str(tmp_path / "qemu" / "bridge.conf"),
        retries=3, retry_delay=0.5, sleep=sleeps.append)


################
# Macvtap mode #
################

def testBindingStartsUnconfigured():
    binding = DeviceBinding(interface="eth0", identifier="0000beef",
                            mode=LinkMode.MACVTAP, guest_mac=GUEST_MAC,
                            bridge_device="macvlan0000beef")
    assert binding.state == ProvisionState.UNCONFIGURED


def testMacvtapCreatesPair(fake_ipr, macvtap, dev_dir, mknod_calls):
    iface = _eth0(fake_ipr)
    binding = macvtap.provision(iface, GUEST_MAC, iface.addresses[0])

    assert binding.mode == LinkMode.MACVTAP
    assert binding.interface == "eth0"
    assert binding.tap_device == "macvtap" + binding.identifier
    assert binding.bridge_device == "macvlan" + binding.identifier
    assert binding.state == ProvisionState.UP

    tap = fake_ipr.link_by_name(binding.tap_device)
    assert tap["kind"] == "macvtap"
    assert tap["mac"] == GUEST_MAC
    assert tap["params"] == {"link": iface.index, "macvtap_mode": "bridge"}
    assert tap["state"] == "up"

    vlan = fake_ipr.link_by_name(binding.bridge_device)
    assert vlan["kind"] == "macvlan"
    assert vlan["params"] == {"link": iface.index, "macvlan_mode": "bridge"}
    assert vlan["state"] == "up"

    tap_idx = fake_ipr.index_of(binding.tap_device)
    node = os.path.join(dev_dir, binding.tap_device)
    assert binding.tap_node == node
    assert len(mknod_calls) == 1
    path, mode, major, minor = mknod_calls[0]
    assert path == node
    assert stat.S_ISCHR(mode)
    assert (major, minor) == (240, tap_idx)


def testMacvtapMigratesAddress(fake_ipr, macvtap):
    iface = _eth0(fake_ipr)
    binding = macvtap.provision(iface, GUEST_MAC, iface.addresses[0])

    assert fake_ipr.addresses_of("eth0") == []
    assert fake_ipr.addresses_of(binding.bridge_device) == ["10.0.4.17/23"]
    assert str(binding.container_address) == "10.0.4.17/23"
    assert iface.addresses == []


def testMacvtapOrdering(fake_ipr, macvtap):
    iface = _eth0(fake_ipr)
    binding = macvtap.provision(iface, GUEST_MAC, iface.addresses[0])
    vlan_idx = fake_ipr.index_of(binding.bridge_device)

    steps = [(kind, cmd) for kind, cmd, _ in fake_ipr.calls]
    assert steps.index(("addr", "del")) < steps.index(("addr", "add"))
    assert fake_ipr.calls[-1] == ("link", "set", {"index": vlan_idx, "state": "up"})
    add_names = [kw["ifname"] for kind, cmd, kw in fake_ipr.calls
                 if kind == "link" and cmd == "add"]
    assert add_names == [binding.tap_device, binding.bridge_device]


def testMacvtapWithoutAddress(fake_ipr, macvtap):
    iface = _eth0(fake_ipr)
    binding = macvtap.provision(iface, GUEST_MAC, None)

    assert binding.container_address is None
    assert binding.state == ProvisionState.UP
    assert not [c for c in fake_ipr.calls if c[0] == "addr"]
    assert fake_ipr.addresses_of("eth0") == ["10.0.5.17/24"]
    assert fake_ipr.link_by_name(binding.bridge_device)["state"] == "up"


def testMacvtapRetriesCreation(fake_ipr, macvtap, sleeps):
    fake_ipr.add_failures = {"macvtap": 2}
    binding = macvtap.provision(_eth0(fake_ipr), GUEST_MAC, None)
    assert sleeps == [0.5, 0.5]
    assert fake_ipr.index_of(binding.tap_device) is not None


def testMacvtapCreationGivesUp(fake_ipr, macvtap, sleeps):
    fake_ipr.add_failures = {"macvtap": 10}
    with pytest.raises(DeviceCreationError) as excinfo:
        macvtap.provision(_eth0(fake_ipr), GUEST_MAC, None)
    assert excinfo.value.device.startswith("macvtap")
    assert len(sleeps) == 2


def testMacvtapMissingSysfs(dev_dir, mknod_calls):
    ipr = FakeIPRoute(sysfs_dir=None)
    ipr.add_interface("eth0", GUEST_MAC, ["10.0.5.17/24"])
    provisioner = MacvtapProvisioner(
        ipr, dev_dir=dev_dir, sysfs_net_dir=dev_dir, retries=1)
    with pytest.raises(DeviceCreationError):
        provisioner.provision(_eth0(ipr), GUEST_MAC, None)
    assert mknod_calls == []


def testMacvtapAddressFailureIsFatal(fake_ipr, macvtap):
    fake_ipr.fail_addr = True
    with pytest.raises(AddressMigrationError) as excinfo:
        macvtap.provision(_eth0(fake_ipr), GUEST_MAC, Cidr.parse("10.0.5.17/24"))
    assert excinfo.value.interface == "eth0"


def testMacvtapLinkUpFailureIsFatal(fake_ipr, macvtap):
    fake_ipr.fail_state_for = {"macvlan"}
    with pytest.raises(LinkStateError):
        macvtap.provision(_eth0(fake_ipr), GUEST_MAC, None)


def testMacvtapAvoidsExistingNames(fake_ipr, macvtap, monkeypatch):
    fake_ipr.add_interface("macvtap00000001", "aa:aa:aa:aa:aa:01", kind="macvtap")
    tokens = iter(["00000001", "00000002"])
    original = provisioner_mod.generate_pair_name
    monkeypatch.setattr(
        provisioner_mod, "generate_pair_name",
        lambda kinds, existing: original(
            kinds, existing, token_fn=lambda n: next(tokens)))

    binding = macvtap.provision(_eth0(fake_ipr), GUEST_MAC, None)
    assert binding.identifier == "00000002"


###############
# Bridge mode #
###############

def testBridgeEnslavesInterface(fake_ipr, bridge, tmp_path):
    iface = _eth0(fake_ipr)
    binding = bridge.provision(iface, GUEST_MAC, iface.addresses[0])

    assert binding.mode == LinkMode.BRIDGE
    assert binding.bridge_device == "bridge" + binding.identifier
    assert binding.tap_device is None
    assert binding.state == ProvisionState.UP

    bridge_idx = fake_ipr.index_of(binding.bridge_device)
    assert fake_ipr.link_by_name(binding.bridge_device)["kind"] == "bridge"
    assert fake_ipr.link_by_name("eth0")["master"] == bridge_idx
    assert fake_ipr.link_by_name(binding.bridge_device)["state"] == "up"

    assert fake_ipr.addresses_of("eth0") == []
    assert fake_ipr.addresses_of(binding.bridge_device) == ["10.0.4.17/23"]

    acl = (tmp_path / "qemu" / "bridge.conf").read_text()
    assert binding.bridge_acl == f"allow {binding.bridge_device}"
    assert acl == f"allow {binding.bridge_device}\n"


def testBridgeWithoutAddress(fake_ipr, bridge):
    binding = bridge.provision(_eth0(fake_ipr), GUEST_MAC, None)
    assert binding.container_address is None
    assert fake_ipr.link_by_name(binding.bridge_device)["state"] == "up"


def testBridgeCreationGivesUp(fake_ipr, bridge, sleeps):
    fake_ipr.add_failures = {"bridge": 3}
    with pytest.raises(DeviceCreationError):
        bridge.provision(_eth0(fake_ipr), GUEST_MAC, None)
    assert len(sleeps) == 2


def testRegisterBridgeAclAppends(tmp_path):
    acl_file = str(tmp_path / "bridge.conf")
    register_bridge_acl(acl_file, "bridge0001")
    register_bridge_acl(acl_file, "bridge0002")
    with open(acl_file) as f:
        assert f.read() == "allow bridge0001\nallow bridge0002\n"


###########
# Helpers #
###########

def testSetLinkMacTogglesState(fake_ipr):
    index = fake_ipr.index_of("eth0")
    set_link_mac(fake_ipr, index, "eth0", "06:11:22:33:44:55")

    assert fake_ipr.calls == [
        ("link", "set", {"index": index, "state": "down"}),
        ("link", "set", {"index": index, "address": "06:11:22:33:44:55"}),
        ("link", "set", {"index": index, "state": "up"}),
    ]
    assert fake_ipr.link_by_name("eth0")["mac"] == "06:11:22:33:44:55"


def testSetLinkMacFailure(fake_ipr):
    fake_ipr.fail_state_for = {"eth0"}
    with pytest.raises(LinkStateError):
        set_link_mac(fake_ipr, fake_ipr.index_of("eth0"), "eth0", "06:11:22:33:44:55")


def testFindLinkIndex(fake_ipr):
    assert find_link_index(fake_ipr, "eth0") == 2
    assert find_link_index(fake_ipr, "eth9") is None


def testGetProvisioner(fake_ipr, net_config):
    provisioner = get_provisioner(LinkMode.MACVTAP, fake_ipr, net_config)
    assert isinstance(provisioner, MacvtapProvisioner)
    assert provisioner.retries == 3
    assert provisioner.dev_dir == net_config.DEV_DIR

    provisioner = get_provisioner(LinkMode.BRIDGE, fake_ipr, net_config)
    assert isinstance(provisioner, BridgeProvisioner)
    assert provisioner.acl_file == net_config.BRIDGE_ACL_FILE
