"""
vmtopo configuration.

A global Config instance that can be modified at runtime. Values come from
the container environment (see ``NetConfig.from_env``); CLI options
override individual fields afterwards.
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from vmtopo.models.enums import LinkMode, LogLevel
from vmtopo.net.addressing import Cidr

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def parse_bool(name: str, value: str) -> bool:
    """Parse a boolean toggle the way the container entrypoint writes them."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid value for {name}: '{value}' (expected 1/0, true/false)")


@dataclass
class NetConfig:
    """Network wiring configuration."""

    # Feature toggles
    ENABLE_DHCP: bool = True
    USE_NET_BRIDGES: bool = False  # False = macvtap mode

    # Operator override: only hand the guest an address inside this subnet
    SELECTED_NETWORK: str = ""

    # External programs
    DHCP_SERVER: str = "dnsmasq"
    VM_LAUNCHER: str = "vm-launcher"

    # Paths
    BRIDGE_ACL_FILE: str = "/etc/qemu/bridge.conf"
    RESOLV_CONF: str = "/etc/resolv.conf"
    DEV_DIR: str = "/dev"
    SYSFS_NET_DIR: str = "/sys/class/net"

    # Device creation retry (kernel may refuse while links settle)
    DEVICE_CREATE_RETRIES: int = 30
    DEVICE_CREATE_RETRY_DELAY: float = 1.0

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "NetConfig":
        """
        Build a config from environment variables.

        Unset variables keep their defaults. Invalid values raise ValueError.
        """
        env = os.environ if environ is None else environ
        cfg = cls()

        for name in ("ENABLE_DHCP", "USE_NET_BRIDGES"):
            if env.get(name, "").strip():
                setattr(cfg, name, parse_bool(name, env[name]))

        for name in (
            "SELECTED_NETWORK",
            "DHCP_SERVER",
            "VM_LAUNCHER",
            "BRIDGE_ACL_FILE",
            "RESOLV_CONF",
        ):
            if name in env:
                setattr(cfg, name, env[name].strip())

        if env.get("DEVICE_CREATE_RETRIES", "").strip():
            cfg.DEVICE_CREATE_RETRIES = int(env["DEVICE_CREATE_RETRIES"])
        if env.get("DEVICE_CREATE_RETRY_DELAY", "").strip():
            cfg.DEVICE_CREATE_RETRY_DELAY = float(env["DEVICE_CREATE_RETRY_DELAY"])
        if env.get("LOG_LEVEL", "").strip():
            cfg.LOG_LEVEL = LogLevel(env["LOG_LEVEL"].strip().lower())

        cfg.validate()
        return cfg

    def validate(self) -> None:
        """Check cross-field constraints."""
        if self.SELECTED_NETWORK:
            Cidr.parse(self.SELECTED_NETWORK)
        if self.DEVICE_CREATE_RETRIES < 1:
            raise ValueError("DEVICE_CREATE_RETRIES must be at least 1")
        if self.DEVICE_CREATE_RETRY_DELAY < 0:
            raise ValueError("DEVICE_CREATE_RETRY_DELAY must not be negative")

    def get_link_mode(self) -> LinkMode:
        """Get the provisioning mode for this run."""
        return LinkMode.BRIDGE if self.USE_NET_BRIDGES else LinkMode.MACVTAP

    def get_selected_network(self) -> Cidr | None:
        """Get the operator override subnet, if any."""
        if not self.SELECTED_NETWORK:
            return None
        return Cidr.parse(self.SELECTED_NETWORK)


# Global config instance
config = NetConfig()
