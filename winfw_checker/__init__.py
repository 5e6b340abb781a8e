"""Firewall equivalence checker public API surface."""

from .analysis import (
    EquivalenceCheck,
    FirewallChecker,
    admits,
    check_equivalence,
    matching_rules,
    query_packet,
)
from .model import (
    AddressRange,
    AddressSet,
    Firewall,
    FirewallRule,
    Inconsistency,
    NetworkProtocol,
    Packet,
    PacketQueryResult,
    PortRange,
    PortSet,
)
from .parser import ParserError, parse_firewall, read_firewall
from .solver import SolverUnknownError

__all__ = [
    "AddressRange",
    "AddressSet",
    "EquivalenceCheck",
    "Firewall",
    "FirewallChecker",
    "FirewallRule",
    "Inconsistency",
    "NetworkProtocol",
    "Packet",
    "PacketQueryResult",
    "ParserError",
    "PortRange",
    "PortSet",
    "SolverUnknownError",
    "admits",
    "check_equivalence",
    "matching_rules",
    "parse_firewall",
    "query_packet",
    "read_firewall",
]
