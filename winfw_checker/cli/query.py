"""CLI for querying firewall rule decisions for a single packet."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..analysis import FirewallChecker
from ..logging_setup import setup_logging
from ..model import PacketQueryResult
from ..parser import ParserError, packet_from_cli_args

app = typer.Typer(help="Evaluate a single packet against a firewall rule dump")
console = Console()
logger = logging.getLogger(__name__)


@app.command()
def main(
    firewall: Path = typer.Option(..., exists=True, readable=True, help="Path to tab-separated firewall rule file"),
    block_by_default: bool = typer.Option(
        True,
        "--block-by-default/--allow-by-default",
        envvar="WINFW_BLOCK_BY_DEFAULT",
        help="Whether firewall blocks packets by default",
    ),
    src_address: str = typer.Option(..., help="Source IP address of test packet [127.0.0.1, Any, ...]"),
    src_port: str = typer.Option(..., help="Source port of test packet [80, 8080, Any, ...]"),
    dst_port: str = typer.Option(..., help="Destination port of test packet [80, 8080, Any, ...]"),
    protocol: Optional[str] = typer.Option(None, help="Network protocol of test packet [TCP, UDP, 23, Any, ...]"),
    separator: str = typer.Option("\t", envvar="WINFW_SEPARATOR", help="Column separator of the rule file"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of text"),
    verbose: bool = typer.Option(False, "--verbose", "-v", envvar="WINFW_VERBOSE", help="Log parser details"),
) -> None:
    setup_logging(verbose)
    try:
        logger.info("Parsing firewall rules...")
        checker = FirewallChecker.from_file(firewall, block_by_default=block_by_default, separator=separator)
        packet = packet_from_cli_args(src=src_address, sport=src_port, dport=dst_port, protocol=protocol)
        logger.info("Checking action of firewall on packet...")
        result = checker.query(packet)
    except (ParserError, ValueError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2) from exc

    if json_output:
        typer.echo(_result_to_json(result))
        return
    if result.allowed:
        console.print("[green]Packet is allowed by firewall.[/green]")
    else:
        console.print("[red]Packet is NOT allowed by firewall.[/red]")
    if not result.matches:
        console.print("No firewall rules match the test packet.")
        return
    table = Table(title="Firewall rules matching the test packet")
    table.add_column("Action")
    table.add_column("Rule Name", overflow="ellipsis", max_width=60)
    for rule in result.matches:
        table.add_row(rule.action, escape(rule.name))
    console.print(table)


def _result_to_json(result: PacketQueryResult) -> str:
    payload = {
        "allowed": result.allowed,
        "matches": [{"name": rule.name, "action": rule.action} for rule in result.matches],
    }
    return json.dumps(payload, indent=2)
