"""Data structures shared by the firewall checker stack."""
from __future__ import annotations

from dataclasses import dataclass, field
from ipaddress import IPv4Address, ip_network
from typing import Callable, List, Optional, Tuple

from .formula import (
    TRUE,
    Equals,
    Formula,
    InRange,
    Variable,
    check_value,
    check_width,
    conjunction,
    disjunction,
    negation,
)

ADDRESS_WIDTH = 32
PORT_WIDTH = 16
PROTOCOL_WIDTH = 8

MAX_ADDRESS = (1 << ADDRESS_WIDTH) - 1
MAX_PORT = (1 << PORT_WIDTH) - 1
MAX_PROTOCOL = (1 << PROTOCOL_WIDTH) - 1

# Numbers from http://www.iana.org/assignments/protocol-numbers/protocol-numbers.xhtml
PROTOCOL_NAMES: dict[int, str] = {
    0: "HOPOPT",
    1: "ICMP",
    2: "IGMP",
    6: "TCP",
    17: "UDP",
    41: "IPv6",
    43: "IPv6-Route",
    44: "IPv6-Frag",
    47: "GRE",
    58: "IPv6-ICMP",
    59: "IPv6-NoNxt",
    60: "IPv6-Opts",
    112: "VRRP",
    113: "PGM",
    115: "L2TP",
}

# Windows Firewall spells two of the ICMP variants differently.
_PROTOCOL_ALIASES: dict[str, int] = {
    "ICMPV4": 1,
    "ICMPV6": 58,
}

PROTOCOL_NUMBERS: dict[str, int] = {
    **{name.upper(): number for number, name in PROTOCOL_NAMES.items()},
    **_PROTOCOL_ALIASES,
}


def protocol_name(number: int) -> str:
    return PROTOCOL_NAMES.get(number, str(number))


def protocol_number(name: str) -> Optional[int]:
    return PROTOCOL_NUMBERS.get(name.strip().upper())


def _check_bounds(kind: str, value: int, maximum: int) -> None:
    if not 0 <= value <= maximum:
        raise ValueError(f"{kind} {value} is outside 0..{maximum}")


@dataclass(frozen=True)
class AddressRange:
    """Inclusive IPv4 interval held as big-endian unsigned integers.

    A range whose ``low`` exceeds ``high`` is legal and contains no address.
    """

    low: int
    high: int

    def __post_init__(self) -> None:
        _check_bounds("Address", self.low, MAX_ADDRESS)
        _check_bounds("Address", self.high, MAX_ADDRESS)

    @staticmethod
    def from_addresses(low: IPv4Address | str, high: IPv4Address | str) -> "AddressRange":
        return AddressRange(int(IPv4Address(low)), int(IPv4Address(high)))

    @staticmethod
    def single(address: IPv4Address | str) -> "AddressRange":
        value = int(IPv4Address(address))
        return AddressRange(value, value)

    @staticmethod
    def from_cidr(text: str) -> "AddressRange":
        network = ip_network(text, strict=False)
        if network.version != 4:
            raise ValueError("IPv6 not supported.")
        return AddressRange(
            int(network.network_address),
            int(network.broadcast_address),
        )

    @staticmethod
    def any() -> "AddressRange":
        return AddressRange(0, MAX_ADDRESS)

    def contains(self, address: Variable) -> Formula:
        check_width(address, ADDRESS_WIDTH)
        return InRange(address, self.low, self.high)

    def __str__(self) -> str:
        if self.low == self.high:
            return str(IPv4Address(self.low))
        return f"{IPv4Address(self.low)}-{IPv4Address(self.high)}"


@dataclass(frozen=True)
class PortRange:
    low: int
    high: int

    def __post_init__(self) -> None:
        _check_bounds("Port", self.low, MAX_PORT)
        _check_bounds("Port", self.high, MAX_PORT)

    @staticmethod
    def single(port: int) -> "PortRange":
        return PortRange(port, port)

    @staticmethod
    def any() -> "PortRange":
        return PortRange(0, MAX_PORT)

    def contains(self, port: Variable) -> Formula:
        check_width(port, PORT_WIDTH)
        return InRange(port, self.low, self.high)

    def __str__(self) -> str:
        return str(self.low) if self.low == self.high else f"{self.low}-{self.high}"


@dataclass(frozen=True)
class AddressSet:
    contains_all: bool = False
    ranges: Tuple[AddressRange, ...] = ()

    @staticmethod
    def all() -> "AddressSet":
        return AddressSet(contains_all=True)

    @staticmethod
    def of(*ranges: AddressRange) -> "AddressSet":
        return AddressSet(contains_all=False, ranges=tuple(ranges))

    def contains(self, address: Variable) -> Formula:
        if self.contains_all:
            return TRUE
        return disjunction(r.contains(address) for r in self.ranges)


@dataclass(frozen=True)
class PortSet:
    contains_all: bool = False
    ranges: Tuple[PortRange, ...] = ()

    @staticmethod
    def all() -> "PortSet":
        return PortSet(contains_all=True)

    @staticmethod
    def of(*ranges: PortRange) -> "PortSet":
        return PortSet(contains_all=False, ranges=tuple(ranges))

    def contains(self, port: Variable) -> Formula:
        if self.contains_all:
            return TRUE
        return disjunction(r.contains(port) for r in self.ranges)


@dataclass(frozen=True)
class NetworkProtocol:
    any: bool = False
    number: int = 0

    def __post_init__(self) -> None:
        if not self.any:
            _check_bounds("Protocol", self.number, MAX_PROTOCOL)

    @staticmethod
    def wildcard() -> "NetworkProtocol":
        return NetworkProtocol(any=True)

    @staticmethod
    def from_token(token: str) -> "NetworkProtocol":
        text = token.strip()
        if text.lower() == "any":
            return NetworkProtocol.wildcard()
        number = protocol_number(text)
        if number is None:
            try:
                number = int(text)
            except ValueError as exc:
                raise ValueError(f"Unsupported protocol token: {token}") from exc
        return NetworkProtocol(any=False, number=number)

    def matches(self, protocol: Variable) -> Formula:
        check_width(protocol, PROTOCOL_WIDTH)
        if self.any:
            return TRUE
        return Equals(protocol, self.number)

    def __str__(self) -> str:
        return "Any" if self.any else protocol_name(self.number)


SOURCE_ADDRESS_VARIABLE = "sourceAddress"
SOURCE_PORT_VARIABLE = "sourcePort"
DESTINATION_PORT_VARIABLE = "destinationPort"
PROTOCOL_VARIABLE = "protocol"


@dataclass(frozen=True)
class PacketVariables:
    """Free variables standing for an arbitrary packet in one solver query."""

    source_address: Variable
    source_port: Variable
    destination_port: Variable
    protocol: Variable

    @staticmethod
    def fresh() -> "PacketVariables":
        return PacketVariables(
            source_address=Variable(SOURCE_ADDRESS_VARIABLE, ADDRESS_WIDTH),
            source_port=Variable(SOURCE_PORT_VARIABLE, PORT_WIDTH),
            destination_port=Variable(DESTINATION_PORT_VARIABLE, PORT_WIDTH),
            protocol=Variable(PROTOCOL_VARIABLE, PROTOCOL_WIDTH),
        )


@dataclass(frozen=True)
class FirewallRule:
    name: str
    remote_addresses: AddressSet = field(default_factory=AddressSet.all)
    remote_ports: PortSet = field(default_factory=PortSet.all)
    local_ports: PortSet = field(default_factory=PortSet.all)
    protocol: NetworkProtocol = field(default_factory=NetworkProtocol.wildcard)
    enabled: bool = True
    allow: bool = True

    def matches(self, packet_vars: PacketVariables) -> Formula:
        return conjunction(
            [
                self.remote_addresses.contains(packet_vars.source_address),
                self.remote_ports.contains(packet_vars.source_port),
                self.local_ports.contains(packet_vars.destination_port),
                self.protocol.matches(packet_vars.protocol),
            ]
        )

    @property
    def action(self) -> str:
        return "Allow" if self.allow else "Block"


@dataclass
class Firewall:
    name: str = ""
    block_by_default: bool = True
    rules: List[FirewallRule] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def enabled_rules(self, allow: bool) -> List[FirewallRule]:
        return [rule for rule in self.rules if rule.enabled and rule.allow == allow]

    def admits(self, packet_vars: PacketVariables) -> Formula:
        """Formula true exactly when this firewall lets the packet through.

        Any matching enabled block rule wins over every matching allow rule.
        """
        block_match = disjunction(rule.matches(packet_vars) for rule in self.enabled_rules(allow=False))
        if not self.block_by_default:
            return negation(block_match)
        allow_match = disjunction(rule.matches(packet_vars) for rule in self.enabled_rules(allow=True))
        return conjunction([allow_match, negation(block_match)])

    def matching_rules(
        self,
        packet_vars: PacketVariables,
        holds: Callable[[Formula], bool],
    ) -> List[FirewallRule]:
        return [rule for rule in self.rules if rule.enabled and holds(rule.matches(packet_vars))]


@dataclass
class Packet:
    """A concrete packet; ``None`` fields match any value of that field."""

    source_address: IPv4Address | None = None
    source_port: int | None = None
    destination_port: int | None = None
    protocol: int | None = None

    def matches_pattern(self, packet_vars: PacketVariables) -> Formula:
        conjuncts: List[Formula] = []
        if self.source_address is not None:
            conjuncts.append(_pinned(packet_vars.source_address, int(self.source_address)))
        if self.source_port is not None:
            conjuncts.append(_pinned(packet_vars.source_port, self.source_port))
        if self.destination_port is not None:
            conjuncts.append(_pinned(packet_vars.destination_port, self.destination_port))
        if self.protocol is not None:
            conjuncts.append(_pinned(packet_vars.protocol, self.protocol))
        return conjunction(conjuncts)

    def __str__(self) -> str:
        address = str(self.source_address) if self.source_address is not None else "Any"
        source_port = str(self.source_port) if self.source_port is not None else "Any"
        destination_port = str(self.destination_port) if self.destination_port is not None else "Any"
        protocol = protocol_name(self.protocol) if self.protocol is not None else "Any"
        return (
            f"Src Address: {address} | Src Port: {source_port} "
            f"| Dest Port: {destination_port} | Protocol: {protocol}"
        )


def _pinned(variable: Variable, value: int) -> Formula:
    check_value(variable, value)
    return Equals(variable, value)


@dataclass(frozen=True)
class Inconsistency:
    """A packet the two firewalls treat differently, with the rules involved."""

    packet: Packet
    firewalls: Tuple[Firewall, Firewall]
    allowed: Tuple[bool, bool]
    rule_matches: Tuple[List[FirewallRule], List[FirewallRule]]

    @property
    def allowed_by(self) -> Firewall:
        return self.firewalls[0] if self.allowed[0] else self.firewalls[1]


@dataclass
class PacketQueryResult:
    allowed: bool
    matches: List[FirewallRule] = field(default_factory=list)


