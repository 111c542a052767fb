"""
DHCP server option generation.

The option list is handed verbatim to dnsmasq, so the flag grammar here
(``--dhcp-range=``, ``--dhcp-host=``, ``--dhcp-option=option:<name>,<value>``)
must not change.
"""

from __future__ import annotations

import ipaddress
import socket
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from pyroute2.netlink.exceptions import NetlinkError

from vmtopo.models.topology import DhcpReservation
from vmtopo.net.addressing import cidr_to_netmask
from vmtopo.net.exceptions import DiscoveryError
from vmtopo.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ResolvConf:
    """The parts of /etc/resolv.conf the guest should inherit."""

    nameservers: list[str] = field(default_factory=list)
    search: list[str] = field(default_factory=list)
    domain: str = ""


def build_options(
    reservations: Iterable[DhcpReservation],
    dns_servers: Sequence[str],
    router: str | None,
    search_domains: Sequence[str],
    domain_name: str | None,
) -> list[str]:
    """
    Build dnsmasq arguments pinning each guest to its reserved address.

    Raises:
        ValueError: If a reservation has no IP.
    """
    options: list[str] = []
    for res in reservations:
        if res.ip is None:
            raise ValueError(f"DHCP reservation for {res.mac_address} has no IP")
        ip = res.ip.ip
        options.append(f"--dhcp-range={ip},{ip}")
        options.append(
            f"--dhcp-host={res.mac_address},,{ip},{res.hostname},{res.lease}"
        )
        options.append(
            f"--dhcp-option=option:netmask,{cidr_to_netmask(res.ip.prefix_len)}"
        )

    # Shared block; empty values are left to dnsmasq's defaults
    if dns_servers:
        options.append(f"--dhcp-option=option:dns-server,{','.join(dns_servers)}")
    if router:
        options.append(f"--dhcp-option=option:router,{router}")
    if search_domains:
        options.append(
            f"--dhcp-option=option:domain-search,{','.join(search_domains)}"
        )
    if domain_name:
        options.append(f"--dhcp-option=option:domain-name,{domain_name}")
    return options


def format_options(options: Iterable[str]) -> str:
    """Join options into the single string form."""
    return " ".join(options)


def read_resolv_conf(path: str = "/etc/resolv.conf") -> ResolvConf:
    """Parse nameserver, search and domain directives; missing file is empty."""
    conf = ResolvConf()
    try:
        with open(path) as f:
            lines = f.readlines()
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return conf

    for line in lines:
        parts = line.split("#", 1)[0].split(";", 1)[0].split()
        if not parts:
            continue
        key, values = parts[0], parts[1:]
        if key == "nameserver" and values:
            # IPv6 nameservers are of no use to an IPv4-only guest
            if ":" in values[0]:
                continue
            try:
                server = ipaddress.IPv4Address(values[0])
            except ValueError:
                logger.warning(f"Ignoring malformed nameserver '{values[0]}'")
                continue
            # Loopback stubs (docker's 127.0.0.11) are unreachable from the guest
            if server.is_loopback:
                logger.warning(f"Skipping local DNS stub {server}")
                continue
            conf.nameservers.append(values[0])
        elif key == "search":
            conf.search = values
        elif key == "domain" and values:
            conf.domain = values[0]
    return conf


def get_default_gateway(ipr) -> str | None:
    """Gateway of the IPv4 default route, if there is one."""
    try:
        routes = ipr.get_default_routes(family=socket.AF_INET)
    except NetlinkError as e:
        raise DiscoveryError(f"Cannot read default route: {e}") from e
    for route in routes:
        gateway = route.get_attr("RTA_GATEWAY")
        if gateway:
            return gateway
    return None


def get_short_hostname() -> str:
    """Hostname without domain, as ``hostname -s`` prints it."""
    return socket.gethostname().split(".", 1)[0]


def get_domain_name(resolv: ResolvConf) -> str:
    """Domain from resolv.conf, falling back to the host's FQDN."""
    if resolv.domain:
        return resolv.domain
    fqdn = socket.getfqdn()
    _, _, domain = fqdn.partition(".")
    return domain
