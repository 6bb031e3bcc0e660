"""
Network Utilities Module
========================

Address classification, local interface enumeration and default gateway
lookup for NetScout.

Version: 1.0.0
"""

import ipaddress
import json
import logging
import os
import socket
import subprocess  # nosec B404 - subprocess needed for interface enumeration fallback
import sys
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any

import psutil

logger = logging.getLogger(__name__)

# Interface name fragments that never represent the operator's uplink
VIRTUAL_ADAPTER_HINTS = ("vmware", "virtualbox", "vboxnet", "veth", "docker", "br-")

# Peer values some connection tables use for "no address"
_WILDCARD_PEERS = {"", "*", "-", "0.0.0.0", "::", "[::]"}


@dataclass
class InterfaceInfo:
    """A single local network interface."""
    name: str
    ipv4: List[str] = field(default_factory=list)
    ipv6: List[str] = field(default_factory=list)
    mac: str = ""
    netmask: str = ""
    is_up: bool = False
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ipv4": list(self.ipv4),
            "ipv6": list(self.ipv6),
            "mac": self.mac,
            "netmask": self.netmask,
            "is_up": self.is_up,
            "description": self.description,
        }


def _normalize_ip(ip: str) -> str:
    """Strip brackets and IPv6 zone ids (``fe80::1%eth0``)."""
    value = ip.strip()
    if value.startswith("[") and value.endswith("]"):
        value = value[1:-1]
    return value.split("%", 1)[0]


def is_private_address(ip: Optional[str]) -> bool:
    """
    Check whether an address must be kept out of geolocation.

    Private, loopback, link-local, unspecified and unique-local addresses
    all count, as do empty or unparseable peer values.

    Args:
        ip: Address string as reported by a connection table

    Returns:
        True if the address is not publicly routable
    """
    if ip is None or ip.strip() in _WILDCARD_PEERS:
        return True

    try:
        addr = ipaddress.ip_address(_normalize_ip(ip))
    except ValueError:
        return True

    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped

    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_unspecified
        or addr.is_multicast
        or addr.is_reserved
    )


def is_valid_ip(ip: str) -> bool:
    """
    Check if a string is a valid IPv4 or IPv6 address.

    Args:
        ip: IP address string to validate

    Returns:
        True if valid IP, False otherwise
    """
    try:
        ipaddress.ip_address(_normalize_ip(ip))
        return True
    except ValueError:
        return False


def list_network_interfaces() -> List[InterfaceInfo]:
    """
    List all network interfaces with addresses and operational state.

    Returns:
        List of InterfaceInfo, empty if nothing could be enumerated
    """
    try:
        addrs = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (OSError, psutil.Error) as e:
        logger.warning(f"psutil interface enumeration failed ({e}), falling back to ip command")
        return _fallback_list_interfaces()

    descriptions = _windows_adapter_descriptions() if sys.platform == "win32" else {}
    interfaces = []
    for name, entries in addrs.items():
        info = InterfaceInfo(name=name, description=descriptions.get(name, ""))
        for entry in entries:
            if entry.family == socket.AF_INET:
                info.ipv4.append(entry.address)
                if not info.netmask and entry.netmask:
                    info.netmask = entry.netmask
            elif entry.family == socket.AF_INET6:
                info.ipv6.append(_normalize_ip(entry.address))
            elif entry.family == psutil.AF_LINK:
                info.mac = entry.address
        stat = stats.get(name)
        info.is_up = bool(stat and stat.isup)
        interfaces.append(info)

    return interfaces


def parse_adapter_descriptions(text: str) -> Dict[str, str]:
    """
    Map adapter name to driver description from ``Get-NetAdapter`` JSON.

    Windows names adapters "Ethernet 3" and the like, so tunnel drivers
    (Wintun, TAP-Windows) only show up in the description.
    """
    try:
        rows = json.loads(text)
    except json.JSONDecodeError:
        return {}
    if isinstance(rows, dict):
        rows = [rows]
    if not isinstance(rows, list):
        return {}
    return {
        row["Name"]: row.get("InterfaceDescription") or ""
        for row in rows
        if isinstance(row, dict) and row.get("Name")
    }


def _windows_adapter_descriptions() -> Dict[str, str]:
    try:
        # nosec B603 B607 - powershell with hardcoded args
        result = subprocess.run(
            ["powershell", "-NoProfile", "-Command",
             "Get-NetAdapter | Select-Object Name,InterfaceDescription | ConvertTo-Json"],
            capture_output=True,
            text=True,
            timeout=10
        )
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as e:
        logger.debug(f"Adapter descriptions unavailable: {e}")
        return {}
    if result.returncode != 0:
        return {}
    return parse_adapter_descriptions(result.stdout)


def _fallback_list_interfaces() -> List[InterfaceInfo]:
    """
    Fallback method to list interfaces using ``ip -j addr show``.

    Returns:
        List of InterfaceInfo
    """
    interfaces = []

    try:
        # nosec B603 B607 - ip command with hardcoded args
        result = subprocess.run(
            ["ip", "-j", "addr", "show"],
            capture_output=True,
            text=True,
            timeout=5
        )
        if result.returncode != 0:
            return interfaces

        for iface in json.loads(result.stdout):
            info = InterfaceInfo(
                name=iface.get("ifname", "unknown"),
                mac=iface.get("address", ""),
                is_up=iface.get("operstate", "").upper() == "UP",
            )
            for addr_info in iface.get("addr_info", []):
                if addr_info.get("family") == "inet":
                    info.ipv4.append(addr_info.get("local", ""))
                elif addr_info.get("family") == "inet6":
                    info.ipv6.append(addr_info.get("local", ""))
            interfaces.append(info)
    except (subprocess.TimeoutExpired, json.JSONDecodeError, FileNotFoundError, OSError) as e:
        logger.warning(f"Interface enumeration unavailable: {e}")

    return interfaces


def get_default_gateway() -> Optional[str]:
    """
    Look up the default gateway from the routing table.

    Returns:
        Gateway address or None if there is no default route
    """
    try:
        from scapy.all import conf  # heavy import, only when needed

        _iface, _src, gateway = conf.route.route("0.0.0.0")
    except Exception as e:  # scapy raises a variety of platform errors
        logger.debug(f"Default gateway lookup failed: {e}")
        return None

    if not gateway or gateway == "0.0.0.0":
        return None
    return gateway


def get_dns_servers(resolv_conf: str = "/etc/resolv.conf") -> List[str]:
    """Read nameservers from resolv.conf (POSIX only)."""
    servers = []
    if not os.path.exists(resolv_conf):
        return servers
    try:
        with open(resolv_conf, "r", encoding="utf-8", errors="ignore") as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2 and parts[0] == "nameserver":
                    servers.append(parts[1])
    except OSError as e:
        logger.debug(f"Could not read {resolv_conf}: {e}")
    return servers


def get_primary_interface(interfaces: Optional[List[InterfaceInfo]] = None) -> Optional[InterfaceInfo]:
    """
    Pick the interface carrying the operator's uplink.

    Skips loopback and common hypervisor/container adapters.
    """
    if interfaces is None:
        interfaces = list_network_interfaces()

    for iface in interfaces:
        lowered = iface.name.lower()
        if any(hint in lowered for hint in VIRTUAL_ADAPTER_HINTS):
            continue
        usable = [ip for ip in iface.ipv4 if not ip.startswith("127.")]
        if usable and iface.is_up:
            return iface

    return None


def get_local_interface_details() -> Dict[str, Any]:
    """
    Collect local IP, MAC, gateway and DNS for the primary interface.

    Returns:
        Dictionary with ``Unknown`` placeholders for anything unavailable
    """
    details = {
        "local_ip": "Unknown",
        "local_mac": "Unknown",
        "interface_name": "Unknown",
        "subnet_mask": "Unknown",
        "gateway": "Unknown",
        "dns_servers": [],
    }

    primary = get_primary_interface()
    if primary is None:
        logger.warning("No usable network interface found")
        return details

    details["local_ip"] = next(ip for ip in primary.ipv4 if not ip.startswith("127."))
    details["local_mac"] = primary.mac or "Unknown"
    details["interface_name"] = primary.name
    details["subnet_mask"] = primary.netmask or "Unknown"
    details["gateway"] = get_default_gateway() or "Unknown"
    details["dns_servers"] = get_dns_servers()
    return details


__all__ = [
    'InterfaceInfo',
    'is_private_address',
    'is_valid_ip',
    'list_network_interfaces',
    'parse_adapter_descriptions',
    'get_default_gateway',
    'get_dns_servers',
    'get_primary_interface',
    'get_local_interface_details',
]
