import json

from typer.testing import CliRunner

from winfw_checker.cli import equivalence, query

_HEADER = "Name\tEnabled\tAction\tLocal Port\tRemote Address\tRemote Port\tProtocol"

runner = CliRunner()


def _write(tmp_path, name, *records):
    path = tmp_path / name
    path.write_text("\n".join([_HEADER, *records]) + "\n")
    return path


def _json_payload(output: str) -> dict:
    return json.loads(output[output.index("{"):])


def test_equivalence_cli_reports_equivalent(tmp_path):
    a = _write(tmp_path, "a.tsv", "X\tYes\tAllow\t80\t192.168.1.0-192.168.1.10\t128\t6")
    b = _write(
        tmp_path,
        "b.tsv",
        "X\tYes\tAllow\t80\t192.168.1.0-192.168.1.5\t128\t6",
        "Y\tYes\tAllow\t80\t192.168.1.6-192.168.1.10\t128\t6",
    )
    result = runner.invoke(equivalence.app, ["--firewall1", str(a), "--firewall2", str(b)])
    assert result.exit_code == 0
    assert "Firewalls are equivalent." in result.stdout


def test_equivalence_cli_json_lists_inconsistencies(tmp_path):
    a = _write(tmp_path, "a.tsv", "X\tYes\tAllow\t80\t192.168.1.0-192.168.1.10\t128\t6")
    b = _write(tmp_path, "b.tsv", "X\tYes\tAllow\t80\t192.168.1.0-192.168.1.4\t128\t6")
    result = runner.invoke(
        equivalence.app,
        ["--firewall1", str(a), "--firewall2", str(b), "--inconsistency-count", "20", "--json"],
    )
    assert result.exit_code == 1
    payload = _json_payload(result.stdout)
    assert payload["equivalent"] is False
    assert payload["exhausted"] is True
    addresses = {item["source_address"] for item in payload["inconsistencies"]}
    assert addresses == {f"192.168.1.{i}" for i in range(5, 11)}
    assert all(item["allowed"] == [True, False] for item in payload["inconsistencies"])


def test_equivalence_cli_default_policies(tmp_path):
    a = _write(tmp_path, "a.tsv")
    b = _write(tmp_path, "b.tsv")
    result = runner.invoke(
        equivalence.app,
        ["--firewall1", str(a), "--firewall2", str(b), "--allow-by-default1", "--json"],
    )
    assert result.exit_code == 1
    payload = _json_payload(result.stdout)
    assert payload["inconsistencies"][0]["source_address"] is None
    assert payload["inconsistencies"][0]["allowed"] == [True, False]


def test_query_cli(tmp_path):
    rules = _write(
        tmp_path,
        "fw.tsv",
        "web\tYes\tAllow\t443\tAny\tAny\tTCP",
        "bad\tYes\tBlock\tAny\t203.0.113.0/24\tAny\tAny",
    )
    args = ["--firewall", str(rules), "--src-port", "Any", "--dst-port", "443", "--protocol", "TCP", "--json"]
    result = runner.invoke(query.app, [*args, "--src-address", "198.51.100.1"])
    assert result.exit_code == 0
    assert _json_payload(result.stdout) == {"allowed": True, "matches": [{"name": "web", "action": "Allow"}]}

    result = runner.invoke(query.app, [*args, "--src-address", "203.0.113.5"])
    payload = _json_payload(result.stdout)
    assert payload["allowed"] is False
    assert [match["name"] for match in payload["matches"]] == ["web", "bad"]
