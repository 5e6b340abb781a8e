from ipaddress import IPv4Address

import pytest

from winfw_checker.model import AddressRange, PortRange
from winfw_checker.parser import (
    REQUIRED_HEADERS,
    ParserError,
    packet_from_cli_args,
    parse_firewall,
    parse_header,
    parse_record,
    parse_rules,
    read_firewall,
)

_HEADER = "Name\tEnabled\tAction\tLocal Port\tRemote Address\tRemote Port\tProtocol"
_INDEX = {header: position for position, header in enumerate(_HEADER.split("\t"))}


def test_parse_header():
    assert parse_header(REQUIRED_HEADERS, _HEADER, "\t") == _INDEX


def test_parse_header_allows_extra_columns_in_any_order():
    header = "Profile\tProtocol\tName\tRemote Port\tAction\tGroup\tEnabled\tRemote Address\tLocal Port"
    index = parse_header(REQUIRED_HEADERS, header, "\t")
    assert index["Name"] == 2
    assert index["Local Port"] == 8


def test_parse_header_missing_columns():
    with pytest.raises(ParserError, match="Remote Port, Protocol"):
        parse_header(REQUIRED_HEADERS, "Name\tEnabled\tAction\tLocal Port\tRemote Address", "\t")


def test_missing_header_line():
    with pytest.raises(ParserError):
        parse_rules("")


def test_parse_rule_single():
    rule = parse_record(_INDEX, "X\tYes\tAllow\t80\t192.168.1.1\t128\tTCP", "\t")
    assert rule.name == "X"
    assert rule.enabled
    assert rule.allow
    assert rule.local_ports.ranges == (PortRange(80, 80),)
    assert rule.remote_ports.ranges == (PortRange(128, 128),)
    assert rule.remote_addresses.ranges == (AddressRange.single("192.168.1.1"),)
    assert rule.protocol.number == 6


def test_parse_rule_ranges():
    record = "Y\tNo\tBlock\t80, 8080, 20000-20008\t127.0.0.1-127.0.0.10, 10.0.0.0/8, 255.255.255.255\tAny\tAny"
    rule = parse_record(_INDEX, record, "\t")
    assert not rule.enabled
    assert not rule.allow
    assert rule.local_ports.ranges == (PortRange(80, 80), PortRange(8080, 8080), PortRange(20000, 20008))
    assert rule.remote_ports.contains_all
    assert rule.protocol.any
    assert rule.remote_addresses.ranges == (
        AddressRange.from_addresses("127.0.0.1", "127.0.0.10"),
        AddressRange.from_addresses("10.0.0.0", "10.255.255.255"),
        AddressRange.single("255.255.255.255"),
    )


def test_parse_rule_any_addresses():
    rule = parse_record(_INDEX, "Z\tYes\tAllow\tAny\tAny\tAny\tICMPv4", "\t")
    assert rule.remote_addresses.contains_all
    assert rule.local_ports.contains_all
    assert rule.protocol.number == 1


@pytest.mark.parametrize(
    "record, reason",
    [
        ("X\tYes\tAllow\t80\tfe80::1\t128\tTCP", "IPv6 not supported"),
        ("X\tYes\tAllow\tRPC Dynamic Ports\tAny\tAny\tTCP", "Port macros are not supported"),
        ("X\tYes\tAllow\t \tAny\tAny\tTCP", "Port is null or empty"),
        ("X\tYes\tBypass\t80\tAny\tAny\tTCP", "Invalid rule action: Bypass"),
        ("X\tYes\tAllow\t80\tLocalSubnet\tAny\tTCP", ""),
        ("X\tYes\tAllow\t70000\tAny\tAny\tTCP", "outside"),
        ("X\tYes\tAllow", "columns"),
    ],
)
def test_parse_record_errors(record, reason):
    with pytest.raises(ParserError, match=reason):
        parse_record(_INDEX, record, "\t")


def test_bad_lines_are_skipped_with_warning():
    text = "\n".join(
        [
            _HEADER,
            "good\tYes\tAllow\t80\tAny\tAny\tTCP",
            "bad\tYes\tMaybe\t80\tAny\tAny\tTCP",
            "",
            "also good\tYes\tBlock\t22\t10.0.0.1\tAny\t6",
        ]
    )
    firewall = parse_firewall(text, name="fw", block_by_default=False)
    assert [rule.name for rule in firewall.rules] == ["good", "also good"]
    assert firewall.warnings == ["Skipping line 3 - Invalid rule action: Maybe"]
    assert firewall.name == "fw"
    assert not firewall.block_by_default


def test_custom_separator():
    text = "Name,Enabled,Action,Local Port,Remote Address,Remote Port,Protocol\nX,Yes,Allow,80,Any,Any,UDP"
    rules, warnings = parse_rules(text, separator=",")
    assert warnings == []
    assert rules[0].protocol.number == 17


def test_read_firewall_names_after_file(tmp_path):
    path = tmp_path / "edge.tsv"
    path.write_text(f"{_HEADER}\nX\tYes\tAllow\t80\tAny\tAny\tTCP\n")
    firewall = read_firewall(path)
    assert firewall.name == "edge"
    assert len(firewall.rules) == 1


def test_packet_from_cli_args():
    packet = packet_from_cli_args(src="10.0.0.1", sport="Any", dport="443", protocol="tcp")
    assert packet.source_address == IPv4Address("10.0.0.1")
    assert packet.source_port is None
    assert packet.destination_port == 443
    assert packet.protocol == 6

    packet = packet_from_cli_args(src="any", sport="1", dport="2", protocol=None)
    assert packet.source_address is None
    assert packet.protocol is None
    assert packet_from_cli_args(protocol="50").protocol == 50
