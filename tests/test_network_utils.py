"""Tests for address classification and interface helpers."""

import pytest

from netscout.core.network_utils import (
    InterfaceInfo,
    get_dns_servers,
    get_primary_interface,
    is_private_address,
    is_valid_ip,
    parse_adapter_descriptions,
)
from netscout.core.signatures import (
    is_tunnel_interface,
    match_software,
    proxy_port_label,
    service_for_port,
    service_for_process,
)


@pytest.mark.parametrize("ip", [
    "10.1.2.3", "172.31.255.1", "192.168.0.10", "169.254.1.1", "127.0.0.53",
    "::1", "fe80::1%eth0", "fc00::1", "0.0.0.0", "::", "*", "", "not-an-ip",
    "::ffff:192.168.1.1",
])
def test_private_addresses(ip):
    assert is_private_address(ip)


@pytest.mark.parametrize("ip", ["8.8.8.8", "140.82.112.3", "2606:4700:4700::1111", "[2001:4860:4860::8888]"])
def test_public_addresses(ip):
    assert not is_private_address(ip)


def test_is_valid_ip():
    assert is_valid_ip("192.168.1.1")
    assert is_valid_ip("::1")
    assert not is_valid_ip("999.1.1.1")


def test_primary_interface_skips_loopback_and_down():
    interfaces = [
        InterfaceInfo("lo", ipv4=["127.0.0.1"], is_up=True),
        InterfaceInfo("eth1", ipv4=["10.0.0.4"], is_up=False),
        InterfaceInfo("eth0", ipv4=["192.168.1.5"], is_up=True),
    ]
    assert get_primary_interface(interfaces).name == "eth0"
    assert get_primary_interface(interfaces[:2]) is None


def test_dns_servers(tmp_path):
    resolv = tmp_path / "resolv.conf"
    resolv.write_text("# generated\nnameserver 1.1.1.1\nsearch lan\nnameserver 9.9.9.9\n", encoding="utf-8")
    assert get_dns_servers(str(resolv)) == ["1.1.1.1", "9.9.9.9"]
    assert get_dns_servers(str(tmp_path / "missing")) == []


def test_signature_tables():
    assert service_for_port(22) == "SSH"
    assert service_for_port(40123) is None
    assert service_for_process("/usr/sbin/mysqld") == "MySQL"
    assert service_for_process("") is None
    assert match_software("WireGuard.exe").display_name == "WireGuard"
    assert match_software("bash") is None
    assert is_tunnel_interface("utun4")
    assert not is_tunnel_interface("en0")
    assert proxy_port_label(7890) == "Clash (mixed)"


def test_parse_adapter_descriptions():
    text = ('[{"Name": "Ethernet", "InterfaceDescription": "Intel(R) Ethernet I219-V"},'
            ' {"Name": "Ethernet 3", "InterfaceDescription": "Wintun Userspace Tunnel"}]')
    assert parse_adapter_descriptions(text) == {
        "Ethernet": "Intel(R) Ethernet I219-V",
        "Ethernet 3": "Wintun Userspace Tunnel",
    }
    single = '{"Name": "Wi-Fi", "InterfaceDescription": "Intel(R) Wi-Fi 6 AX201"}'
    assert parse_adapter_descriptions(single) == {"Wi-Fi": "Intel(R) Wi-Fi 6 AX201"}
    assert parse_adapter_descriptions("") == {}
