"""
Handoff to the external DHCP server and VM launcher processes.

Neither process is managed beyond starting it: dnsmasq runs undaemonized
as a child, and the launcher replaces the current process.
"""

import os
import shutil
import subprocess
from collections.abc import Iterable, Sequence

from vmtopo.models.topology import DeviceBinding
from vmtopo.net.exceptions import LauncherError
from vmtopo.utils.logger import get_logger

logger = get_logger(__name__)

# dnsmasq flags for a DHCP-only server that stays a child of this process
DNSMASQ_BASE_ARGS = [
    "--keep-in-foreground",
    "--port=0",
    "--bind-dynamic",
    "--log-dhcp",
]


def tap_device_arg(binding: DeviceBinding) -> str:
    """Launcher argument binding the guest MAC to the original interface."""
    return f"--tap-device={binding.interface}/{binding.guest_mac}"


def build_launcher_args(bindings: Iterable[DeviceBinding]) -> list[str]:
    """One tap argument per binding, in configuration order."""
    return [tap_device_arg(b) for b in bindings]


def build_dhcp_server_command(options: Sequence[str], binary: str = "dnsmasq") -> list[str]:
    """Full DHCP server command line."""
    return [binary, *DNSMASQ_BASE_ARGS, *options]


def start_dhcp_server(options: Sequence[str], binary: str = "dnsmasq") -> subprocess.Popen:
    """
    Start the DHCP server in the background.

    Raises:
        LauncherError: If the binary is missing or fails to start.
    """
    if shutil.which(binary) is None:
        raise LauncherError(f"DHCP server '{binary}' not found in PATH")

    cmd = build_dhcp_server_command(options, binary)
    logger.info(f"Starting DHCP server: {' '.join(cmd)}")
    try:
        return subprocess.Popen(cmd)
    except OSError as e:
        raise LauncherError(f"Failed to start {binary}: {e}")


def build_launcher_command(
    launcher: str, tap_args: Sequence[str], extra_args: Sequence[str] = ()
) -> list[str]:
    """Launcher command line: tap arguments first, then kernel/rootdrive args."""
    return [launcher, *tap_args, *extra_args]


def exec_launcher(
    launcher: str, tap_args: Sequence[str], extra_args: Sequence[str] = ()
) -> None:
    """
    Replace this process with the VM launcher. Only returns by raising.

    Raises:
        LauncherError: If the launcher cannot be executed.
    """
    cmd = build_launcher_command(launcher, tap_args, extra_args)
    logger.info(f"Starting VM launcher: {' '.join(cmd)}")
    try:
        os.execvp(launcher, cmd)
    except OSError as e:
        raise LauncherError(f"Failed to exec {launcher}: {e}")
