"""Tests for the scan cycle: enumeration merge, naming and fingerprinting."""

import threading

import pytest

from netscout.core import port_scanner
from netscout.core.external_scanner import ExternalPortInfo
from netscout.core.listing import ListingPort, parse_windows_netstat
from netscout.core.port_scanner import PortScanner, ScanPhase, parse_port_spec
from netscout.core.socket_probe import PortState


def _listing(*ports):
    return lambda: [ListingPort(port, pid) for port, pid in ports]


@pytest.fixture
def all_timeouts(monkeypatch):
    probed = []

    async def fake_probe(host, port, timeout=0.8):
        probed.append(port)
        return PortState.TIMED_OUT

    monkeypatch.setattr(port_scanner, "probe_async", fake_probe)
    return probed


def test_windows_listing_line_becomes_ssh_record():
    line = "  TCP    0.0.0.0:22     0.0.0.0:0     LISTENING     1234"
    scanner = PortScanner(
        listing_source=lambda: parse_windows_netstat(line),
        process_resolver=lambda pid: "sshd" if pid == 1234 else "",
    )
    result = scanner.scan()

    assert len(result.records) == 1
    record = result.records[0]
    assert (record.port, record.service, record.state) == (22, "SSH", "open")
    assert record.pid == 1234
    assert record.version == "sshd"
    assert record.method == "netstat"
    assert result.phase is ScanPhase.FINALIZE


def test_listed_port_survives_connect_timeouts(all_timeouts):
    scanner = PortScanner(
        connect_scan=True,
        candidate_ports=[22, 80, 443],
        listing_source=_listing((22, None)),
        process_resolver=lambda pid: "",
    )
    result = scanner.scan()

    assert [r.port for r in result.records] == [22]
    assert result.records[0].state == "open"
    assert result.total_scanned == 3
    assert result.open_ports == 1
    # Ports already reported by the OS are not probed again
    assert sorted(all_timeouts) == [80, 443]


def test_include_closed_reports_unreachable_candidates(all_timeouts):
    scanner = PortScanner(
        connect_scan=True,
        candidate_ports=[443, 80],
        include_closed=True,
        listing_source=_listing(),
    )
    records = scanner.scan().records

    assert [(r.port, r.state, r.method) for r in records] == [
        (80, "closed", "connect"),
        (443, "closed", "connect"),
    ]


def test_records_sorted_and_unique():
    scanner = PortScanner(
        listing_source=_listing((8080, 5), (22, 7), (8080, None), (443, 9)),
        process_resolver=lambda pid: "",
    )
    result = scanner.scan()

    assert [r.port for r in result.records] == [22, 443, 8080]
    assert result.to_dict()["tableData"][0]["key"] == "port-22"


def test_unmapped_port_named_unknown():
    scanner = PortScanner(listing_source=_listing((40123, None)), process_resolver=lambda pid: "")
    record = scanner.scan().records[0]
    assert record.service == "Unknown"
    assert record.version == ""


def test_connect_scan_finds_live_server(tcp_server, closed_port):
    port = tcp_server(lambda conn: None)
    scanner = PortScanner(
        connect_scan=True,
        candidate_ports=[port, closed_port],
        listing_source=_listing(),
        fingerprint_timeout=0.5,
    )
    result = scanner.scan()

    assert [(r.port, r.method) for r in result.records] == [(port, "connect")]
    assert result.total_scanned == 2


def test_detect_versions_fingerprints_mapped_ports(tcp_server):
    def handler(conn):
        conn.recv(64)
        conn.sendall(b"$80\r\n# Server\r\nredis_version:7.2.4\r\n")

    port = tcp_server(handler)
    scanner = PortScanner(
        detect_versions=True,
        listing_source=_listing((port, 4242)),
        process_resolver=lambda pid: "redis-server",
        fingerprint_timeout=2.0,
    )
    record = scanner.scan().records[0]

    assert record.service == "Redis"
    assert record.version == "Redis 7.2.4"
    assert record.process == "redis-server"


def test_failed_listing_degrades_to_empty_result():
    def broken():
        raise OSError("netstat exploded")

    result = PortScanner(listing_source=broken).scan()
    assert result.records == []
    assert result.to_dict()["success"] is True


def test_blocking_stages_run_off_the_event_loop(monkeypatch):
    threads = {}

    def listing():
        threads["listing"] = threading.get_ident()
        return [ListingPort(22, None)]

    def fake_external(target, ports, timeout=120):
        threads["external"] = threading.get_ident()
        return {22: ExternalPortInfo(22, "tcp", "ssh", "OpenSSH 9.6")}

    monkeypatch.setattr(port_scanner, "run_external_scan", fake_external)
    result = PortScanner(
        use_external_scanner=True, listing_source=listing, process_resolver=lambda pid: ""
    ).scan()

    assert result.records[0].version == "OpenSSH 9.6"
    assert set(threads) == {"listing", "external"}
    assert threading.get_ident() not in threads.values()


def test_parse_port_spec():
    assert parse_port_spec("80, 22,8000-8002") == [22, 80, 8000, 8001, 8002]


@pytest.mark.parametrize("spec", ["0", "70000", "90-80", "abc", "1-x"])
def test_parse_port_spec_rejects(spec):
    with pytest.raises(ValueError):
        parse_port_spec(spec)
