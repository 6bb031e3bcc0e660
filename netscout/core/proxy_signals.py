"""
Proxy/VPN Signal Collectors
===========================

Each collector inspects one evidence source and returns typed signals:

- running processes matched against the software signature table
- virtual tunnel interfaces (TUN/TAP/WireGuard)
- the system proxy setting (Windows registry or proxy env variables)
- proxy software config files (Clash YAML, V2Ray JSON)
- local proxy ports that accept connections

Collectors never raise; an unreadable source yields no signals.

Version: 1.0.0
"""

import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import urlsplit

import psutil

from .network_utils import InterfaceInfo, list_network_interfaces
from .signatures import COMMON_PROXY_PORTS, SoftwareCategory, is_tunnel_interface, match_software
from .socket_probe import is_port_open

logger = logging.getLogger(__name__)


class SignalKind(Enum):
    """Evidence source of a signal"""
    PROCESS = "process"
    INTERFACE = "interface"
    SYSTEM_PROXY = "system_proxy"
    CONFIG_FILE = "config_file"
    OPEN_PORT = "open_port"


@dataclass(frozen=True)
class ProcessMatch:
    """A running process recognised as proxy/VPN software."""
    process_name: str
    display_name: str
    category: SoftwareCategory
    pid: Optional[int] = None
    kind: SignalKind = field(default=SignalKind.PROCESS, init=False)

    def to_dict(self):
        return {
            "name": self.display_name,
            "process": self.process_name,
            "type": self.category.value,
            "pid": self.pid,
        }


@dataclass(frozen=True)
class InterfacePresence:
    """A virtual tunnel interface."""
    name: str
    addresses: Tuple[str, ...] = ()
    active: bool = False
    kind: SignalKind = field(default=SignalKind.INTERFACE, init=False)

    def to_dict(self):
        return {"name": self.name, "addresses": list(self.addresses), "active": self.active}


@dataclass(frozen=True)
class SystemProxyConfig:
    """The OS-level proxy setting."""
    enabled: bool
    server: Optional[str] = None
    port: Optional[int] = None
    kind: SignalKind = field(default=SignalKind.SYSTEM_PROXY, init=False)

    def to_dict(self):
        return {"enabled": self.enabled, "server": self.server, "port": self.port}


@dataclass(frozen=True)
class SoftwareConfigFile:
    """Proxy software config file with its declared listener ports."""
    software: str
    path: str
    http_port: Optional[int] = None
    socks_port: Optional[int] = None
    kind: SignalKind = field(default=SignalKind.CONFIG_FILE, init=False)

    def ports(self) -> List[int]:
        return [p for p in (self.http_port, self.socks_port) if p]

    def to_dict(self):
        return {
            "software": self.software,
            "path": self.path,
            "http_port": self.http_port,
            "socks_port": self.socks_port,
        }


@dataclass(frozen=True)
class OpenCommonPort:
    """A local proxy port accepting connections."""
    port: int
    label: str
    source: str = "table"
    kind: SignalKind = field(default=SignalKind.OPEN_PORT, init=False)

    def to_dict(self):
        return {"port": self.port, "label": self.label, "source": self.source}


ProxySignal = Union[ProcessMatch, InterfacePresence, SystemProxyConfig, SoftwareConfigFile, OpenCommonPort]


# =============================================================================
# PROCESSES
# =============================================================================

def collect_process_matches(processes: Optional[Iterable[Mapping]] = None) -> List[ProcessMatch]:
    """
    Match running processes against the software signature table.

    Args:
        processes: Iterable of ``{"name", "pid", "cmdline"}`` mappings
            (defaults to the live process list)

    Returns:
        One ProcessMatch per product, in discovery order
    """
    if processes is None:
        processes = _live_processes()

    matches: List[ProcessMatch] = []
    seen = set()
    for proc in processes:
        name = proc.get("name") or ""
        cmdline = proc.get("cmdline") or ""
        if isinstance(cmdline, (list, tuple)):
            cmdline = " ".join(cmdline)

        signature = match_software(name, cmdline)
        if signature is None or signature.display_name in seen:
            continue
        seen.add(signature.display_name)
        matches.append(ProcessMatch(name, signature.display_name, signature.category, proc.get("pid")))

    if matches:
        logger.debug(f"Proxy/VPN processes: {', '.join(m.display_name for m in matches)}")
    return matches


def _live_processes() -> List[Mapping]:
    found = []
    try:
        for proc in psutil.process_iter(["pid", "name", "cmdline"]):
            found.append(proc.info)
    except (psutil.Error, OSError) as e:
        logger.warning(f"Process enumeration failed: {e}")
    return found


# =============================================================================
# INTERFACES
# =============================================================================

def collect_tunnel_interfaces(interfaces: Optional[List[InterfaceInfo]] = None) -> List[InterfacePresence]:
    """
    Find virtual tunnel interfaces.

    An interface is active when it is up or carries an IPv4 address.
    """
    if interfaces is None:
        interfaces = list_network_interfaces()

    return [
        InterfacePresence(
            name=iface.name,
            addresses=tuple(iface.ipv4 + iface.ipv6),
            active=iface.is_up or bool(iface.ipv4),
        )
        for iface in interfaces
        if is_tunnel_interface(iface.name, iface.description)
    ]


# =============================================================================
# SYSTEM PROXY
# =============================================================================

_PROXY_ENV_VARS = ("HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY")
_WINDOWS_INTERNET_SETTINGS = r"Software\Microsoft\Windows\CurrentVersion\Internet Settings"


def _port_from_server(server: str) -> Optional[int]:
    entry = server.strip().split(";")[0]
    if "://" not in entry:
        # host:port or Windows per-scheme http=host:port
        entry = "//" + entry.rpartition("=")[2]
    try:
        return urlsplit(entry).port
    except ValueError:
        return None


def read_env_proxy(environ: Optional[Mapping[str, str]] = None) -> SystemProxyConfig:
    """System proxy from ``HTTP_PROXY``/``HTTPS_PROXY``/``ALL_PROXY`` (either case)."""
    environ = os.environ if environ is None else environ
    for name in _PROXY_ENV_VARS:
        server = environ.get(name) or environ.get(name.lower())
        if server:
            return SystemProxyConfig(True, server, _port_from_server(server))
    return SystemProxyConfig(False)


def read_windows_proxy() -> SystemProxyConfig:
    """System proxy from the current user's Internet Settings registry key."""
    import winreg

    try:
        with winreg.OpenKey(winreg.HKEY_CURRENT_USER, _WINDOWS_INTERNET_SETTINGS) as key:
            enabled, _ = winreg.QueryValueEx(key, "ProxyEnable")
            if not enabled:
                return SystemProxyConfig(False)
            try:
                server, _ = winreg.QueryValueEx(key, "ProxyServer")
            except FileNotFoundError:
                return SystemProxyConfig(True)
    except OSError as e:
        logger.debug(f"Registry proxy settings unreadable: {e}")
        return SystemProxyConfig(False)

    server = str(server).strip()
    return SystemProxyConfig(True, server or None, _port_from_server(server))


def read_system_proxy(platform: Optional[str] = None) -> SystemProxyConfig:
    """Read the system proxy setting for the running platform."""
    platform = platform or sys.platform
    if platform == "win32":
        return read_windows_proxy()
    return read_env_proxy()


# =============================================================================
# CONFIG FILES
# =============================================================================

_CLASH_PATTERNS = {
    "mixed": re.compile(r"^mixed-port:\s*(\d+)", re.MULTILINE),
    "http": re.compile(r"^port:\s*(\d+)", re.MULTILINE),
    "socks": re.compile(r"^socks-port:\s*(\d+)", re.MULTILINE),
}

CLASH_CONFIG_PATHS = (
    (".config", "clash", "config.yaml"),
    ("AppData", "Roaming", "clash", "config.yaml"),
    ("AppData", "Local", "Clash for Windows", "config.yaml"),
    (".config", "clash-verge", "config.yaml"),
)

V2RAY_CONFIG_PATHS = (
    (".config", "v2ray", "config.json"),
    ("AppData", "Roaming", "v2rayN", "guiNConfig.json"),
)
V2RAY_SYSTEM_CONFIG = Path("/etc/v2ray/config.json")


def parse_clash_config(text: str, path: str = "") -> Optional[SoftwareConfigFile]:
    """
    Extract listener ports from a Clash YAML config.

    ``mixed-port`` serves both HTTP and SOCKS and takes priority.
    """
    ports = {}
    for key, pattern in _CLASH_PATTERNS.items():
        match = pattern.search(text)
        if match:
            ports[key] = int(match.group(1))

    if not ports:
        return None

    mixed = ports.get("mixed")
    return SoftwareConfigFile(
        software="Clash",
        path=path,
        http_port=mixed or ports.get("http"),
        socks_port=mixed or ports.get("socks"),
    )


def parse_v2ray_config(text: str, path: str = "") -> Optional[SoftwareConfigFile]:
    """Extract HTTP/SOCKS inbound ports from a V2Ray JSON config."""
    try:
        data = json.loads(text)
    except ValueError:
        return None

    inbounds = data.get("inbounds") if isinstance(data, dict) else None
    if not isinstance(inbounds, list):
        return None

    http_port = socks_port = None
    for inbound in inbounds:
        if not isinstance(inbound, dict):
            continue
        protocol, port = inbound.get("protocol"), inbound.get("port")
        if not isinstance(port, int):
            continue
        if protocol == "http" and http_port is None:
            http_port = port
        elif protocol == "socks" and socks_port is None:
            socks_port = port

    if http_port is None and socks_port is None:
        return None
    return SoftwareConfigFile("V2Ray", path, http_port, socks_port)


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.debug(f"Cannot read {path}: {e}")
        return None


def collect_config_files(home: Optional[Path] = None) -> List[SoftwareConfigFile]:
    """
    Look for Clash and V2Ray configs in their usual locations.

    Args:
        home: Home directory to search (defaults to the current user's)
    """
    home = Path(home) if home is not None else Path.home()
    candidates: List[Tuple[Path, Callable[[str, str], Optional[SoftwareConfigFile]]]] = []
    candidates += [(home.joinpath(*parts), parse_clash_config) for parts in CLASH_CONFIG_PATHS]
    candidates += [(home.joinpath(*parts), parse_v2ray_config) for parts in V2RAY_CONFIG_PATHS]
    candidates.append((V2RAY_SYSTEM_CONFIG, parse_v2ray_config))

    found = []
    for path, parser in candidates:
        if not path.is_file():
            continue
        text = _read_text(path)
        if text is None:
            continue
        config = parser(text, str(path))
        if config is not None:
            logger.debug(f"Found {config.software} config at {path}")
            found.append(config)
    return found


# =============================================================================
# PROXY PORTS
# =============================================================================

def proxy_port_candidates(
    system_proxy: Optional[SystemProxyConfig],
    config_files: Iterable[SoftwareConfigFile] = ()
) -> List[Tuple[int, str, str]]:
    """
    Ordered, de-duplicated ``(port, label, source)`` candidates.

    The system proxy port comes first, then config-file ports, then the
    common proxy port table.
    """
    ordered: List[Tuple[int, str, str]] = []
    seen = set()

    def _add(port: Optional[int], label: str, source: str) -> None:
        if port and port not in seen:
            seen.add(port)
            ordered.append((port, label, source))

    if system_proxy is not None and system_proxy.enabled:
        _add(system_proxy.port, "System", "system")
    for config in config_files:
        _add(config.http_port, config.software, "config")
        _add(config.socks_port, config.software, "config")
    for port, label in COMMON_PROXY_PORTS:
        _add(port, label, "table")
    return ordered


def probe_proxy_ports(
    candidates: List[Tuple[int, str, str]],
    is_open: Callable[[int], bool] = is_port_open,
    runner: Optional[Callable[[dict], dict]] = None
) -> List[OpenCommonPort]:
    """
    Check which candidate ports accept connections.

    Args:
        candidates: Output of ``proxy_port_candidates``
        is_open: Port check, ``port -> bool``
        runner: Parallel runner taking ``{key: callable}`` (sequential if None)

    Returns:
        Open ports, in candidate order
    """
    tasks = {port: (lambda port=port: is_open(port)) for port, _, _ in candidates}
    if runner is not None:
        states = runner(tasks)
    else:
        states = {port: task() for port, task in tasks.items()}

    return [
        OpenCommonPort(port, label, source)
        for port, label, source in candidates
        if states.get(port)
    ]


__all__ = [
    'SignalKind',
    'ProcessMatch',
    'InterfacePresence',
    'SystemProxyConfig',
    'SoftwareConfigFile',
    'OpenCommonPort',
    'ProxySignal',
    'collect_process_matches',
    'collect_tunnel_interfaces',
    'read_env_proxy',
    'read_windows_proxy',
    'read_system_proxy',
    'parse_clash_config',
    'parse_v2ray_config',
    'collect_config_files',
    'proxy_port_candidates',
    'probe_proxy_ports',
]
