"""Tests for the listening-socket report parsers."""

from netscout.core import listing
from netscout.core.listing import (
    ListingPort,
    dedupe_listing,
    enumerate_listening_ports,
    parse_linux_netstat,
    parse_lsof,
    parse_ss,
    parse_windows_netstat,
)

WINDOWS_NETSTAT = """
Active Connections

  Proto  Local Address          Foreign Address        State           PID
  TCP    0.0.0.0:135            0.0.0.0:0              LISTENING       1104
  TCP    0.0.0.0:445            0.0.0.0:0              LISTENING       4
  TCP    127.0.0.1:7890         0.0.0.0:0              LISTENING       9876
  TCP    192.168.1.20:52344     140.82.112.3:443       ESTABLISHED     5520
  TCP    [::]:135               [::]:0                 LISTENING       1104
"""

LINUX_NETSTAT = """Active Internet connections (only servers)
Proto Recv-Q Send-Q Local Address           Foreign Address         State       PID/Program name
tcp        0      0 127.0.0.53:53           0.0.0.0:*               LISTEN      812/systemd-resolve
tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN      1021/sshd: /usr/sbin
tcp        0      0 127.0.0.1:6379          0.0.0.0:*               LISTEN      -
tcp6       0      0 :::22                   :::*                    LISTEN      1021/sshd: /usr/sbin
"""

SS_OUTPUT = """State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
LISTEN 0      4096   127.0.0.53%lo:53       0.0.0.0:*     users:(("systemd-resolve",pid=812,fd=14))
LISTEN 0      128    0.0.0.0:22             0.0.0.0:*     users:(("sshd",pid=1021,fd=3))
LISTEN 0      511    [::]:80                [::]:*
"""

LSOF_OUTPUT = """COMMAND     PID   USER   FD   TYPE             DEVICE SIZE/OFF NODE NAME
rapportd    512   me    4u  IPv4 0x1234567890abcdef      0t0  TCP *:49152 (LISTEN)
ControlCe   601   me    9u  IPv6 0xabcdef1234567890      0t0  TCP *:7000 (LISTEN)
postgres    733   me    7u  IPv4 0x1111111111111111      0t0  TCP 127.0.0.1:5432 (LISTEN)
"""


def test_windows_single_line():
    line = "TCP    0.0.0.0:22    0.0.0.0:0    LISTENING    1234"
    assert parse_windows_netstat(line) == [ListingPort(22, 1234)]


def test_windows_listening_rows_only():
    ports = parse_windows_netstat(WINDOWS_NETSTAT)
    assert ListingPort(7890, 9876) in ports
    assert all(p.port != 52344 for p in ports)
    assert [p.port for p in dedupe_listing(ports)] == [135, 445, 7890]


def test_linux_netstat_pid_optional():
    ports = dedupe_listing(parse_linux_netstat(LINUX_NETSTAT))
    assert ports == [ListingPort(22, 1021), ListingPort(53, 812), ListingPort(6379, None)]


def test_ss_output():
    ports = dedupe_listing(parse_ss(SS_OUTPUT))
    assert ports == [ListingPort(22, 1021), ListingPort(53, 812), ListingPort(80, None)]


def test_lsof_output():
    ports = parse_lsof(LSOF_OUTPUT)
    assert [p.port for p in ports] == [49152, 7000, 5432]
    assert ports[2].pid == 733


def test_dedupe_prefers_entry_with_pid():
    assert dedupe_listing([ListingPort(80), ListingPort(80, 42)]) == [ListingPort(80, 42)]


def test_enumerate_falls_back_to_psutil(monkeypatch):
    monkeypatch.setattr(listing, "_run_listing_command", lambda command, timeout: None)
    monkeypatch.setattr(listing, "listing_from_psutil", lambda: [ListingPort(8080, 7)])
    assert enumerate_listening_ports(platform="linux") == [ListingPort(8080, 7)]


def test_enumerate_tries_ss_after_empty_netstat(monkeypatch):
    outputs = {"netstat": "", "ss": SS_OUTPUT}
    monkeypatch.setattr(listing, "_run_listing_command", lambda command, timeout: outputs[command[0]])
    assert [p.port for p in enumerate_listening_ports(platform="linux")] == [22, 53, 80]
