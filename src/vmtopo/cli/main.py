"""
vmtopo CLI entry point.

Usage:
    vmtopo [OPTIONS] COMMAND [ARGS]...

Commands:
    setup       Wire every container interface and print the result
    run         Wire interfaces, start the DHCP server, exec the VM launcher
    interfaces  Show the interfaces a pass would hand over
    sibling     Show the sibling subnet for a CIDR
"""

import json
from typing import Annotated

import typer
from rich.table import Table

from vmtopo.cli.output import console, print_error, print_success
from vmtopo.config import NetConfig
from vmtopo.models.enums import LogLevel
from vmtopo.models.topology import TopologyResult
from vmtopo.net.addressing import Cidr
from vmtopo.net.exceptions import TopologyError
from vmtopo.utils.logger import configure_logging, format_traceback, get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="vmtopo",
    help="Hand a container's network identity to a microVM",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

DhcpOption = Annotated[
    bool | None,
    typer.Option("--dhcp/--no-dhcp", help="Serve the guest its address over DHCP"),
]
BridgeOption = Annotated[
    bool | None,
    typer.Option("--bridge/--macvtap", help="Link mode (default from USE_NET_BRIDGES)"),
]
NetworkOption = Annotated[
    str | None,
    typer.Option(
        "--selected-network",
        "-n",
        help="Only hand over addresses inside this subnet (address/prefix)",
    ),
]
LogLevelOption = Annotated[
    LogLevel | None,
    typer.Option("--log-level", "-l", help="Log verbosity"),
]


def open_iproute():
    """Open a netlink handle on the current namespace."""
    from pyroute2 import IPRoute

    return IPRoute()


def load_config(
    dhcp: bool | None,
    bridge: bool | None,
    selected_network: str | None,
    log_level: LogLevel | None,
) -> NetConfig:
    """Environment config with CLI overrides applied."""
    try:
        cfg = NetConfig.from_env()
        if dhcp is not None:
            cfg.ENABLE_DHCP = dhcp
        if bridge is not None:
            cfg.USE_NET_BRIDGES = bridge
        if selected_network is not None:
            cfg.SELECTED_NETWORK = selected_network
        if log_level is not None:
            cfg.LOG_LEVEL = log_level
        cfg.validate()
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        raise typer.Exit(2)

    configure_logging(cfg.LOG_LEVEL)
    return cfg


def run_pass(cfg: NetConfig) -> TopologyResult:
    """Run one configuration pass; fatal errors exit non-zero."""
    from vmtopo.net.orchestrator import InterfaceOrchestrator
    from vmtopo.net.provisioner import get_provisioner

    ipr = open_iproute()
    try:
        orchestrator = InterfaceOrchestrator(
            ipr,
            get_provisioner(cfg.get_link_mode(), ipr, cfg),
            selected_network=cfg.get_selected_network(),
            dhcp_enabled=cfg.ENABLE_DHCP,
            resolv_conf=cfg.RESOLV_CONF,
        )
        return orchestrator.run()
    except TopologyError as e:
        logger.error(f"Network configuration failed: {e}")
        logger.debug(format_traceback(e))
        print_error(str(e))
        raise typer.Exit(1)
    finally:
        ipr.close()


def render_result(result: TopologyResult) -> None:
    table = Table(title="Network Handover", show_header=True)
    table.add_column("Interface", style="cyan")
    table.add_column("Mode")
    table.add_column("Guest IP", style="green")
    table.add_column("Guest MAC")
    table.add_column("Bridging Device")
    table.add_column("Container IP")

    for plan in result.plans:
        binding = plan.binding
        table.add_row(
            plan.interface.name,
            binding.mode.value,
            str(plan.guest_address) if plan.guest_address else "-",
            binding.guest_mac,
            binding.bridge_device,
            str(binding.container_address) if binding.container_address else "-",
        )
    console.print(table)

    console.print("[bold]Launcher arguments:[/bold]")
    console.print(" ".join(result.launcher_args) or "[dim](none)[/dim]", markup=False)
    if result.dhcp_options:
        console.print("[bold]DHCP options:[/bold]")
        for option in result.dhcp_options:
            console.print(option, markup=False)


@app.command("setup")
def setup(
    dhcp: DhcpOption = None,
    bridge: BridgeOption = None,
    selected_network: NetworkOption = None,
    log_level: LogLevelOption = None,
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON")] = False,
):
    """Wire every container interface for the guest and print the result."""
    cfg = load_config(dhcp, bridge, selected_network, log_level)
    result = run_pass(cfg)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        render_result(result)
        print_success(f"Configured {len(result.plans)} interface(s)")


@app.command(
    "run",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def run(
    launcher_args: Annotated[
        list[str] | None,
        typer.Argument(help="Extra kernel/rootdrive arguments for the launcher"),
    ] = None,
    dhcp: DhcpOption = None,
    bridge: BridgeOption = None,
    selected_network: NetworkOption = None,
    log_level: LogLevelOption = None,
):
    """Wire interfaces, start the DHCP server and exec the VM launcher."""
    from vmtopo.net.launcher import exec_launcher, start_dhcp_server

    cfg = load_config(dhcp, bridge, selected_network, log_level)
    result = run_pass(cfg)

    try:
        if cfg.ENABLE_DHCP and result.reservations:
            start_dhcp_server(result.dhcp_options, cfg.DHCP_SERVER)
        exec_launcher(cfg.VM_LAUNCHER, result.launcher_args, launcher_args or [])
    except TopologyError as e:
        print_error(str(e))
        raise typer.Exit(1)


@app.command("interfaces")
def interfaces(log_level: LogLevelOption = None):
    """Show the interfaces a configuration pass would hand over."""
    from vmtopo.net.orchestrator import discover_interfaces

    load_config(None, None, None, log_level)
    ipr = open_iproute()
    try:
        found = discover_interfaces(ipr)
    except TopologyError as e:
        print_error(str(e))
        raise typer.Exit(1)
    finally:
        ipr.close()

    table = Table(title="Container Interfaces", show_header=True)
    table.add_column("Index", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("MAC")
    table.add_column("Addresses", style="green")
    for iface in found:
        table.add_row(
            str(iface.index),
            iface.name,
            iface.mac_address or "-",
            ", ".join(str(a) for a in iface.addresses) or "-",
        )
    console.print(table)


@app.command("sibling")
def sibling(
    cidr: Annotated[str, typer.Argument(help="Address/prefix, e.g. 10.0.5.17/24")],
):
    """Show where the container moves when handing CIDR to the guest."""
    try:
        original = Cidr.parse(cidr)
        moved = original.sibling()
    except TopologyError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(f"guest:     {original} (netmask {original.netmask})", markup=False)
    console.print(f"container: {moved} (netmask {moved.netmask})", markup=False)


@app.command("version")
def version():
    """Show version information."""
    from vmtopo import __version__

    console.print(f"vmtopo v{__version__}")


def main():
    """Entry point for the vmtopo command."""
    app()


if __name__ == "__main__":
    main()
