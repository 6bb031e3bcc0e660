"""Tests for signal fusion and the detection engine."""

from netscout.core.geolocation import EgressIdentity
from netscout.core.parallel_engine import ParallelTaskEngine
from netscout.core.proxy_detection import DetectionEngine, VerdictMode, fuse_signals
from netscout.core.proxy_signals import (
    InterfacePresence,
    OpenCommonPort,
    ProcessMatch,
    SoftwareConfigFile,
    SystemProxyConfig,
)
from netscout.core.signatures import SoftwareCategory

CLASH = ProcessMatch("clash-verge", "Clash", SoftwareCategory.PROXY, 20)
OPENVPN = ProcessMatch("openvpn", "OpenVPN", SoftwareCategory.VPN, 30)
WG0 = InterfacePresence("wg0", ("10.8.0.2",), active=True)


def test_no_signals_no_verdict():
    verdict = fuse_signals([SystemProxyConfig(False)])
    assert verdict.is_active is False
    assert verdict.mode is VerdictMode.NONE
    assert verdict.to_dict()["vpnType"] == "None"


def test_tunnel_beats_software():
    verdict = fuse_signals([OPENVPN, WG0])
    assert verdict.mode is VerdictMode.TUN
    assert verdict.tunnel_interface is WG0
    assert verdict.to_dict()["tunInterface"] == {"detected": True, "name": "wg0", "ip": "10.8.0.2"}


def test_inactive_tunnel_ignored():
    verdict = fuse_signals([InterfacePresence("utun3", (), active=False)])
    assert verdict.is_active is False
    assert verdict.tunnel_interface is None


def test_first_software_category_decides():
    assert fuse_signals([CLASH, OPENVPN]).mode is VerdictMode.PROXY
    assert fuse_signals([OPENVPN, CLASH]).mode is VerdictMode.VPN


def test_open_port_alone_is_proxy():
    verdict = fuse_signals([
        OpenCommonPort(7890, "Clash (mixed)"),
        OpenCommonPort(1080, "SOCKS5"),
    ])
    assert verdict.is_active
    assert verdict.mode is VerdictMode.PROXY
    assert (verdict.egress_port, verdict.egress_label) == (7890, "Clash (mixed)")


def test_software_with_port_keeps_software_mode():
    verdict = fuse_signals([OPENVPN, OpenCommonPort(7890, "Clash (mixed)")])
    assert verdict.mode is VerdictMode.VPN
    assert verdict.to_dict()["proxy"] == {"enabled": True, "port": 7890, "type": "Clash (mixed)"}


def _engine(open_ports=(), processes=(), interfaces=(), egress=None, configs=(), **options):
    lookups = []
    timeouts = {}

    def egress_lookup(port, timeout):
        lookups.append(port)
        timeouts[port] = timeout
        return (egress or {}).get(port)

    engine = DetectionEngine(
        engine=ParallelTaskEngine(max_workers=4, timeout=5.0),
        process_source=lambda: list(processes),
        interface_source=lambda: list(interfaces),
        system_proxy_source=lambda: SystemProxyConfig(False),
        config_source=lambda: list(configs),
        port_check=lambda port: port in open_ports,
        egress_lookup=egress_lookup,
        local_details=lambda: {"local_ip": "192.168.1.5", "local_mac": "aa:bb:cc:dd:ee:ff",
                               "interface_name": "eth0"},
        **options
    )
    engine.timeouts = timeouts
    return engine, lookups


def test_detect_looks_up_proxied_and_direct_egress():
    identities = {
        None: EgressIdentity("203.0.113.7", country="Germany"),
        7890: EgressIdentity("198.51.100.9", country="Japan"),
    }
    engine, lookups = _engine(open_ports={7890}, processes=[CLASH], egress=identities)
    report = engine.detect()

    assert sorted(lookups, key=str) == [7890, None]
    assert report.verdict.mode is VerdictMode.PROXY
    assert report.proxy_identity.country == "Japan"
    assert report.direct_identity.country == "Germany"
    assert report.exit_differs is True

    data = report.to_dict()
    assert data["isVPN"] is True
    assert data["proxyIP"]["ip"] == "198.51.100.9"
    assert data["localInterface"] == "eth0"


def test_detect_without_proxy_port_only_direct_lookup():
    engine, lookups = _engine(egress={None: EgressIdentity("203.0.113.7")})
    report = engine.detect()

    assert lookups == [None]
    assert report.proxy_identity is None
    assert report.exit_differs is None
    assert report.verdict.is_active is False


def test_same_exit_ip_reported():
    same = EgressIdentity("203.0.113.7")
    engine, _ = _engine(open_ports={1080}, egress={None: same, 1080: same})
    report = engine.detect()
    assert report.exit_differs is False
    assert report.verdict.egress_port == 1080


def test_config_port_probed_before_table():
    config = SoftwareConfigFile("Clash", "/tmp/config.yaml", 17890, None)
    engine, lookups = _engine(open_ports={17890, 7890}, configs=[config])
    report = engine.detect()

    assert report.verdict.egress_port == 17890
    assert report.verdict.egress_label == "Clash"
    assert 17890 in lookups
    assert report.to_dict()["configFiles"][0]["http_port"] == 17890


def test_failing_collector_does_not_abort():
    def broken():
        raise RuntimeError("no process table")

    engine, _ = _engine(interfaces=[WG0])
    engine.process_source = broken
    report = engine.detect()

    assert report.verdict.mode is VerdictMode.TUN


def test_configured_egress_timeouts_used():
    engine, _ = _engine(open_ports={7890}, processes=[CLASH], direct_timeout=2.5, proxied_timeout=20.0)
    engine.detect()
    assert engine.timeouts == {None: 2.5, 7890: 20.0}


def test_configured_worker_count():
    assert DetectionEngine(workers=3).engine.max_workers == 3
