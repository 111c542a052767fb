import os

import pytest
from pyroute2.netlink.exceptions import NetlinkError

from vmtopo.config import NetConfig


class FakeMsg(dict):
    """Stand-in for a pyroute2 netlink message."""

    def __init__(self, attrs=None, **fields):
        # nlmsg keeps NLA pairs under "attrs", so a message is never empty
        super().__init__(attrs=[[k, v] for k, v in (attrs or {}).items()], **fields)

    def get_attr(self, name):
        for key, value in self["attrs"]:
            if key == name:
                return value
        return None


class FakeIPRoute:
    """
    In-memory namespace speaking the subset of pyroute2.IPRoute we use.

    Every mutating call is appended to ``calls`` so tests can assert on
    ordering.
    """

    def __init__(self, sysfs_dir=None):
        self.links = {}
        self.addrs = []
        self.calls = []
        self.gateway = None
        self.sysfs_dir = sysfs_dir
        self.add_failures = {}  # name prefix -> remaining failures
        self.fail_addr = False
        self.fail_state_for = set()  # name prefixes whose state change fails
        self.closed = False
        self._next_index = 1

    # -- setup helpers -----------------------------------------------------

    def add_interface(self, name, mac, addresses=(), kind=None):
        index = self._next_index
        self._next_index += 1
        self.links[index] = {
            "name": name,
            "mac": mac,
            "kind": kind,
            "state": "up",
            "master": None,
            "params": {},
        }
        for cidr in addresses:
            address, prefixlen = cidr.split("/")
            self.addrs.append((index, address, int(prefixlen)))
        return index

    def index_of(self, name):
        for index, link in self.links.items():
            if link["name"] == name:
                return index
        return None

    def link_by_name(self, name):
        return self.links[self.index_of(name)]

    def addresses_of(self, name):
        index = self.index_of(name)
        return [f"{a}/{p}" for i, a, p in self.addrs if i == index]

    # -- IPRoute surface -----------------------------------------------------

    def get_links(self):
        msgs = []
        for index, link in self.links.items():
            linkinfo = None
            if link["kind"]:
                linkinfo = FakeMsg(attrs={"IFLA_INFO_KIND": link["kind"]})
            msgs.append(
                FakeMsg(
                    index=index,
                    attrs={
                        "IFLA_IFNAME": link["name"],
                        "IFLA_ADDRESS": link["mac"],
                        "IFLA_LINKINFO": linkinfo,
                    },
                )
            )
        return msgs

    def get_addr(self, index=None, family=None):
        return [
            FakeMsg(index=i, prefixlen=p, attrs={"IFA_ADDRESS": a})
            for i, a, p in self.addrs
            if index is None or i == index
        ]

    def get_default_routes(self, family=None):
        if self.gateway is None:
            return []
        return [FakeMsg(attrs={"RTA_GATEWAY": self.gateway})]

    def link(self, cmd, **kwargs):
        self.calls.append(("link", cmd, kwargs))
        if cmd == "add":
            return self._link_add(**kwargs)
        if cmd == "set":
            return self._link_set(**kwargs)
        if cmd == "del":
            del self.links[kwargs["index"]]
            return None
        raise ValueError(cmd)

    def addr(self, cmd, index, address, prefixlen):
        self.calls.append(
            ("addr", cmd, {"index": index, "address": address, "prefixlen": prefixlen})
        )
        if self.fail_addr:
            raise NetlinkError(99, "Cannot assign requested address")
        entry = (index, address, prefixlen)
        if cmd == "add":
            self.addrs.append(entry)
        elif cmd == "del":
            self.addrs.remove(entry)

    def close(self):
        self.closed = True

    # -- internals -----------------------------------------------------------

    def _link_add(self, ifname, kind, address=None, **params):
        for prefix, remaining in self.add_failures.items():
            if ifname.startswith(prefix) and remaining > 0:
                self.add_failures[prefix] = remaining - 1
                raise NetlinkError(16, "Device or resource busy")
        index = self.add_interface(ifname, address or "aa:bb:cc:dd:ee:ff", kind=kind)
        self.links[index]["state"] = "down"
        self.links[index]["params"] = params
        if kind == "macvtap" and self.sysfs_dir is not None:
            tap_dir = os.path.join(self.sysfs_dir, ifname, "macvtap", f"tap{index}")
            os.makedirs(tap_dir)
            with open(os.path.join(tap_dir, "dev"), "w") as f:
                f.write(f"240:{index}\n")

    def _link_set(self, index, state=None, address=None, master=None):
        link = self.links[index]
        if state is not None:
            if any(link["name"].startswith(p) for p in self.fail_state_for):
                raise NetlinkError(19, "No such device")
            link["state"] = state
        if address is not None:
            link["mac"] = address
        if master is not None:
            link["master"] = master


@pytest.fixture
def sysfs_dir(tmp_path):
    path = tmp_path / "sys"
    path.mkdir()
    return str(path)


@pytest.fixture
def dev_dir(tmp_path):
    path = tmp_path / "dev"
    path.mkdir()
    return str(path)


@pytest.fixture
def fake_ipr(sysfs_dir):
    ipr = FakeIPRoute(sysfs_dir=sysfs_dir)
    ipr.add_interface("lo", "00:00:00:00:00:00", ["127.0.0.1/8"])
    ipr.add_interface("eth0", "02:42:0a:00:05:11", ["10.0.5.17/24"])
    ipr.gateway = "10.0.5.1"
    return ipr


@pytest.fixture
def mknod_calls(monkeypatch):
    """Record os.mknod instead of needing CAP_MKNOD."""
    calls = []

    def fake_mknod(path, mode, device):
        calls.append((path, mode, os.major(device), os.minor(device)))
        with open(path, "w"):
            pass

    monkeypatch.setattr(os, "mknod", fake_mknod)
    return calls


@pytest.fixture
def net_config(tmp_path, sysfs_dir, dev_dir):
    resolv = tmp_path / "resolv.conf"
    resolv.write_text(
        "nameserver 10.0.0.2\n"
        "nameserver 10.0.0.3\n"
        "search corp.example example\n"
        "domain corp.example\n"
    )
    return NetConfig(
        BRIDGE_ACL_FILE=str(tmp_path / "qemu" / "bridge.conf"),
        RESOLV_CONF=str(resolv),
        DEV_DIR=dev_dir,
        SYSFS_NET_DIR=sysfs_dir,
        DEVICE_CREATE_RETRIES=3,
        DEVICE_CREATE_RETRY_DELAY=0,
    )
