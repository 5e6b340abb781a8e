"""CLI tool for equivalence checking between two firewalls."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..analysis import EquivalenceCheck
from ..logging_setup import setup_logging
from ..model import Inconsistency, protocol_name
from ..parser import ParserError, read_firewall
from ..solver import SolverUnknownError

app = typer.Typer(help="Find packets two firewall rule dumps treat differently")
console = Console()
logger = logging.getLogger(__name__)


@app.command()
def main(
    firewall1: Path = typer.Option(..., exists=True, readable=True, help="Path to first tab-separated firewall rule file"),
    firewall2: Path = typer.Option(..., exists=True, readable=True, help="Path to second tab-separated firewall rule file"),
    block_by_default1: bool = typer.Option(
        True,
        "--block-by-default1/--allow-by-default1",
        envvar="WINFW_BLOCK_BY_DEFAULT1",
        help="Whether first firewall blocks packets by default",
    ),
    block_by_default2: bool = typer.Option(
        True,
        "--block-by-default2/--allow-by-default2",
        envvar="WINFW_BLOCK_BY_DEFAULT2",
        help="Whether second firewall blocks packets by default",
    ),
    inconsistency_count: int = typer.Option(
        10,
        min=1,
        envvar="WINFW_INCONSISTENCY_COUNT",
        help="Number of inconsistencies to find",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        min=0,
        envvar="WINFW_TIMEOUT",
        help="Stop searching after this many seconds",
    ),
    separator: str = typer.Option("\t", envvar="WINFW_SEPARATOR", help="Column separator of the rule files"),
    json_output: bool = typer.Option(False, "--json", help="Emit JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", envvar="WINFW_VERBOSE", help="Log solver progress"),
) -> None:
    setup_logging(verbose)
    try:
        logger.info("Parsing first firewall...")
        fw1 = read_firewall(firewall1, name="First", block_by_default=block_by_default1, separator=separator)
        logger.info("Parsing second firewall...")
        fw2 = read_firewall(firewall2, name="Second", block_by_default=block_by_default2, separator=separator)
        logger.info("Running equivalence check...")
        check = EquivalenceCheck(fw1, fw2, limit=inconsistency_count, timeout=timeout)
        inconsistencies = list(check)
    except (ParserError, SolverUnknownError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=2) from exc

    equivalent = not inconsistencies and check.exhausted
    if json_output:
        typer.echo(_to_json(equivalent, check.exhausted, inconsistencies))
    elif equivalent:
        console.print("[green]Firewalls are equivalent.[/green]")
    elif not inconsistencies:
        console.print("[yellow]No inconsistencies found before the search was stopped.[/yellow]")
    else:
        console.print("[red]Firewalls are NOT equivalent.[/red]")
        console.print()
        console.print(_packet_table(inconsistencies))
        console.print()
        console.print(_rule_table(inconsistencies))
    if not equivalent:
        raise typer.Exit(code=1)


def _any(value: object) -> str:
    return "Any" if value is None else str(value)


def _packet_table(inconsistencies: List[Inconsistency]) -> Table:
    table = Table(title="Inconsistently-handled packets")
    table.add_column("PID", justify="right")
    table.add_column("Src Address", justify="right")
    table.add_column("Src Port", justify="right")
    table.add_column("Dest Port", justify="right")
    table.add_column("Protocol", justify="right")
    table.add_column("Allowed By", justify="right")
    for pid, inconsistency in enumerate(inconsistencies):
        packet = inconsistency.packet
        table.add_row(
            str(pid),
            _any(packet.source_address),
            _any(packet.source_port),
            _any(packet.destination_port),
            "Any" if packet.protocol is None else protocol_name(packet.protocol),
            inconsistency.allowed_by.name,
        )
    return table


def _rule_table(inconsistencies: List[Inconsistency]) -> Table:
    table = Table(title="Firewall rules matching inconsistently-handled packets")
    table.add_column("PID", justify="right")
    table.add_column("Firewall")
    table.add_column("Action")
    table.add_column("Rule Name", overflow="ellipsis", max_width=42)
    for pid, inconsistency in enumerate(inconsistencies):
        for firewall, rules in zip(inconsistency.firewalls, inconsistency.rule_matches):
            for rule in rules:
                table.add_row(str(pid), firewall.name, rule.action, escape(rule.name))
    return table


def _to_json(equivalent: bool, exhausted: bool, inconsistencies: List[Inconsistency]) -> str:
    payload = {
        "equivalent": equivalent,
        "exhausted": exhausted,
        "inconsistencies": [
            {
                "source_address": None if item.packet.source_address is None else str(item.packet.source_address),
                "source_port": item.packet.source_port,
                "destination_port": item.packet.destination_port,
                "protocol": item.packet.protocol,
                "allowed": list(item.allowed),
                "rule_matches": [
                    [{"name": rule.name, "action": rule.action} for rule in rules]
                    for rules in item.rule_matches
                ],
            }
            for item in inconsistencies
        ],
    }
    return json.dumps(payload, indent=2)
