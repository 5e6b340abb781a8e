"""Parser for tabular firewall rule dumps (one rule per line, header first)."""
from __future__ import annotations

import logging
from ipaddress import IPv4Address, ip_address
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .model import (
    AddressRange,
    AddressSet,
    Firewall,
    FirewallRule,
    NetworkProtocol,
    Packet,
    PortRange,
    PortSet,
    protocol_number,
)

logger = logging.getLogger(__name__)

NAME_HEADER = "Name"
ENABLED_HEADER = "Enabled"
ACTION_HEADER = "Action"
LOCAL_PORT_HEADER = "Local Port"
REMOTE_ADDRESS_HEADER = "Remote Address"
REMOTE_PORT_HEADER = "Remote Port"
PROTOCOL_HEADER = "Protocol"

REQUIRED_HEADERS: Tuple[str, ...] = (
    NAME_HEADER,
    ENABLED_HEADER,
    ACTION_HEADER,
    LOCAL_PORT_HEADER,
    REMOTE_ADDRESS_HEADER,
    REMOTE_PORT_HEADER,
    PROTOCOL_HEADER,
)

ANY_TOKEN = "Any"

# Named port sets Windows Firewall resolves at runtime.
PORT_MACROS = frozenset(
    {
        "RPC Endpoint Mapper",
        "RPC Dynamic Ports",
        "IPHTTPS",
        "Edge Traversal",
        "PlayTo Discovery",
    }
)


class ParserError(RuntimeError):
    pass


def read_firewall(
    path: Path,
    name: Optional[str] = None,
    block_by_default: bool = True,
    separator: str = "\t",
) -> Firewall:
    """Load a rule dump file into a :class:`Firewall` named after the file."""
    return parse_firewall(
        Path(path).read_text(),
        name=name if name is not None else Path(path).stem,
        block_by_default=block_by_default,
        separator=separator,
    )


def parse_firewall(
    text: str,
    name: str = "",
    block_by_default: bool = True,
    separator: str = "\t",
) -> Firewall:
    firewall = Firewall(name=name, block_by_default=block_by_default)
    firewall.rules, firewall.warnings = parse_rules(text, separator)
    logger.info("Parsed %d rules for firewall %s", len(firewall.rules), name or "<unnamed>")
    return firewall


def parse_rules(text: str, separator: str = "\t") -> Tuple[List[FirewallRule], List[str]]:
    """Parse every record, skipping malformed lines with a warning."""
    lines = text.splitlines()
    header_index = parse_header(REQUIRED_HEADERS, lines[0] if lines else "", separator)
    rules: List[FirewallRule] = []
    warnings: List[str] = []
    for line_number, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        try:
            rules.append(parse_record(header_index, line, separator))
        except ParserError as exc:
            message = f"Skipping line {line_number} - {exc}"
            logger.warning("%s", message)
            warnings.append(message)
    return rules, warnings


def parse_header(required: Sequence[str], header_line: str, separator: str) -> Dict[str, int]:
    if not header_line.strip():
        raise ParserError("Missing header line")
    index = {column.strip(): position for position, column in enumerate(header_line.split(separator))}
    missing = [header for header in required if header not in index]
    if missing:
        raise ParserError(f"Failed to find required headers: {', '.join(missing)}")
    return index


def parse_record(header_index: Dict[str, int], line: str, separator: str) -> FirewallRule:
    record = line.split(separator)
    try:
        return FirewallRule(
            name=record[header_index[NAME_HEADER]].strip(),
            remote_addresses=parse_address_set(record[header_index[REMOTE_ADDRESS_HEADER]]),
            remote_ports=parse_port_set(record[header_index[REMOTE_PORT_HEADER]]),
            local_ports=parse_port_set(record[header_index[LOCAL_PORT_HEADER]]),
            protocol=parse_protocol(record[header_index[PROTOCOL_HEADER]]),
            enabled=record[header_index[ENABLED_HEADER]].strip() == "Yes",
            allow=parse_action(record[header_index[ACTION_HEADER]]),
        )
    except IndexError as exc:
        raise ParserError(f"Expected at least {max(header_index.values()) + 1} columns, found {len(record)}") from exc
    except ValueError as exc:
        raise ParserError(str(exc)) from exc


def parse_address_set(text: str) -> AddressSet:
    trimmed = text.strip()
    if trimmed == ANY_TOKEN:
        return AddressSet.all()
    # e.g. "127.0.0.1-127.0.0.10, 192.168.0.0/24, 255.255.255.255"
    ranges = [_parse_address_range(token.strip()) for token in trimmed.split(",") if token.strip()]
    return AddressSet.of(*ranges)


def _parse_address_range(token: str) -> AddressRange:
    if "/" in token:
        return AddressRange.from_cidr(token)
    if "-" in token:
        low, high = token.split("-", 1)
        return AddressRange.from_addresses(_parse_ipv4(low), _parse_ipv4(high))
    return AddressRange.single(_parse_ipv4(token))


def _parse_ipv4(text: str) -> IPv4Address:
    address = ip_address(text.strip())
    if address.version != 4:
        raise ValueError("IPv6 not supported.")
    return address


def parse_port_set(text: str) -> PortSet:
    trimmed = text.strip()
    if not trimmed:
        raise ValueError("Port is null or empty.")
    if trimmed == ANY_TOKEN:
        return PortSet.all()
    if trimmed in PORT_MACROS:
        raise ValueError(f"Port macros are not supported: {trimmed}")
    # e.g. "80, 8080, 20000-20008"
    ranges = [_parse_port_range(token.strip()) for token in trimmed.split(",") if token.strip()]
    return PortSet.of(*ranges)


def _parse_port_range(token: str) -> PortRange:
    if "-" in token:
        low, high = token.split("-", 1)
        return PortRange(int(low), int(high))
    return PortRange.single(int(token))


def parse_protocol(text: str) -> NetworkProtocol:
    return NetworkProtocol.from_token(text)


def parse_action(text: str) -> bool:
    trimmed = text.strip()
    if trimmed == "Allow":
        return True
    if trimmed == "Block":
        return False
    raise ValueError(f"Invalid rule action: {trimmed}")


def _is_any(value: Optional[str]) -> bool:
    return value is None or value.strip().lower() == ANY_TOKEN.lower()


def packet_from_cli_args(**kwargs: Optional[str]) -> Packet:
    """Build a query packet; every field accepts ``Any`` to leave it open."""
    src = kwargs.get("src")
    sport = kwargs.get("sport")
    dport = kwargs.get("dport")
    protocol = kwargs.get("protocol")
    if not _is_any(protocol):
        number = protocol_number(protocol)
        protocol_value: Optional[int] = number if number is not None else int(protocol)
    else:
        protocol_value = None
    return Packet(
        source_address=None if _is_any(src) else _parse_ipv4(src),
        source_port=None if _is_any(sport) else int(sport),
        destination_port=None if _is_any(dport) else int(dport),
        protocol=protocol_value,
    )
