"""
Listening Socket Enumeration
============================

Runs the platform's native listening-socket report and turns it into
``ListingPort(port, pid)`` pairs. Every text format has its own small
parser so each can be tested against recorded output. When the command is
missing, denied or returns nothing, ``psutil`` is used instead.

Version: 1.0.0
"""

import logging
import re
import subprocess  # nosec B404 - subprocess needed for netstat/ss/lsof
import sys
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import psutil

logger = logging.getLogger(__name__)

LISTING_COMMAND_TIMEOUT = 30


@dataclass(frozen=True)
class ListingPort:
    """A locally listening TCP port and its owning pid, if known."""
    port: int
    pid: Optional[int] = None


# Windows: "  TCP    0.0.0.0:22     0.0.0.0:0     LISTENING     1234"
_WINDOWS_NETSTAT = re.compile(
    r"^\s*TCP\s+(\S+):(\d+)\s+\S+\s+LISTENING\s+(\d+)\s*$", re.IGNORECASE
)

# Linux netstat -tlnp: "tcp  0  0 0.0.0.0:22  0.0.0.0:*  LISTEN  1234/sshd"
_LINUX_NETSTAT = re.compile(
    r"^\s*tcp6?\s+\d+\s+\d+\s+(\S+):(\d+)\s+\S+\s+LISTEN\s+(?:(\d+)/\S*|-)?"
)

# ss -tlnp: "LISTEN 0 128 0.0.0.0:22 0.0.0.0:* users:(("sshd",pid=1234,fd=3))"
_SS_LINE = re.compile(r"^\s*LISTEN\s+\d+\s+\d+\s+(\S+):(\d+)\s+\S+")
_SS_PID = re.compile(r"pid=(\d+)")

# lsof -nP -iTCP -sTCP:LISTEN: "sshd 1234 root 3u IPv4 0x.. 0t0 TCP *:22 (LISTEN)"
_LSOF_LINE = re.compile(r"^\S+\s+(\d+)\s+.*\sTCP\s+(\S+):(\d+)\s+\(LISTEN\)")


def _valid_port(value: str) -> Optional[int]:
    port = int(value)
    if 0 < port <= 65535:
        return port
    return None


def parse_windows_netstat(text: str) -> List[ListingPort]:
    """Parse ``netstat -ano`` output."""
    ports = []
    for line in text.splitlines():
        match = _WINDOWS_NETSTAT.match(line)
        if not match:
            continue
        port = _valid_port(match.group(2))
        if port is not None:
            ports.append(ListingPort(port, int(match.group(3))))
    return ports


def parse_linux_netstat(text: str) -> List[ListingPort]:
    """Parse ``netstat -tlnp`` output; the pid column is ``-`` without root."""
    ports = []
    for line in text.splitlines():
        match = _LINUX_NETSTAT.match(line)
        if not match:
            continue
        port = _valid_port(match.group(2))
        if port is not None:
            pid = int(match.group(3)) if match.group(3) else None
            ports.append(ListingPort(port, pid))
    return ports


def parse_ss(text: str) -> List[ListingPort]:
    """Parse ``ss -tlnp`` output."""
    ports = []
    for line in text.splitlines():
        match = _SS_LINE.match(line)
        if not match:
            continue
        port = _valid_port(match.group(2))
        if port is None:
            continue
        pid_match = _SS_PID.search(line)
        ports.append(ListingPort(port, int(pid_match.group(1)) if pid_match else None))
    return ports


def parse_lsof(text: str) -> List[ListingPort]:
    """Parse ``lsof -nP -iTCP -sTCP:LISTEN`` output (macOS)."""
    ports = []
    for line in text.splitlines():
        match = _LSOF_LINE.match(line)
        if not match:
            continue
        port = _valid_port(match.group(3))
        if port is not None:
            ports.append(ListingPort(port, int(match.group(1))))
    return ports


# (command, parser) pairs tried in order per platform
LISTING_COMMANDS: Dict[str, List[Tuple[Sequence[str], Callable[[str], List[ListingPort]]]]] = {
    "win32": [(["netstat", "-ano", "-p", "TCP"], parse_windows_netstat)],
    "linux": [
        (["netstat", "-tlnp"], parse_linux_netstat),
        (["ss", "-tlnp"], parse_ss),
    ],
    "darwin": [(["lsof", "-nP", "-iTCP", "-sTCP:LISTEN"], parse_lsof)],
}


def dedupe_listing(ports: List[ListingPort]) -> List[ListingPort]:
    """
    Keep one entry per port, preferring the first one that carries a pid.

    IPv4 and IPv6 sockets on the same port collapse to one entry.
    """
    by_port: Dict[int, ListingPort] = {}
    for entry in ports:
        existing = by_port.get(entry.port)
        if existing is None or (existing.pid is None and entry.pid is not None):
            by_port[entry.port] = entry
    return [by_port[port] for port in sorted(by_port)]


def _run_listing_command(command: Sequence[str], timeout: float) -> Optional[str]:
    try:
        # nosec B603 - fixed argument vectors, no shell
        result = subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            timeout=timeout,
            errors="ignore"
        )
    except FileNotFoundError:
        logger.debug(f"{command[0]} not available")
        return None
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning(f"{command[0]} failed: {e}")
        return None

    if result.returncode != 0 and not result.stdout:
        logger.debug(f"{command[0]} exited with {result.returncode}")
        return None
    return result.stdout


def listing_from_psutil() -> List[ListingPort]:
    """Listening TCP sockets straight from psutil."""
    try:
        connections = psutil.net_connections(kind="tcp")
    except (psutil.AccessDenied, OSError) as e:
        logger.warning(f"psutil connection table unavailable: {e}")
        return []

    return dedupe_listing([
        ListingPort(conn.laddr.port, conn.pid)
        for conn in connections
        if conn.status == psutil.CONN_LISTEN and conn.laddr
    ])


def enumerate_listening_ports(
    platform: Optional[str] = None,
    timeout: float = LISTING_COMMAND_TIMEOUT
) -> List[ListingPort]:
    """
    Enumerate locally listening TCP ports.

    Args:
        platform: ``sys.platform`` style key (defaults to the running one)
        timeout: Per-command timeout in seconds

    Returns:
        Deduplicated ListingPort list sorted by port; empty if every
        method failed
    """
    platform = platform or sys.platform
    key = "linux" if platform.startswith("linux") else platform

    for command, parser in LISTING_COMMANDS.get(key, []):
        output = _run_listing_command(command, timeout)
        if not output:
            continue
        ports = dedupe_listing(parser(output))
        if ports:
            logger.debug(f"{command[0]} reported {len(ports)} listening port(s)")
            return ports

    logger.warning("Native listing command unavailable or empty, falling back to psutil")
    return listing_from_psutil()


__all__ = [
    'ListingPort',
    'parse_windows_netstat',
    'parse_linux_netstat',
    'parse_ss',
    'parse_lsof',
    'dedupe_listing',
    'listing_from_psutil',
    'enumerate_listening_ports',
]
