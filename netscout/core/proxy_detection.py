"""
VPN/Proxy Detection Engine
==========================

Collects proxy/VPN signals from independent sources in parallel and fuses
them into a single ``NetworkVerdict``. Fusion is a pure function over the
signal list; mode precedence lives in ``MODE_PRECEDENCE``:

    TUN > VPN/Proxy (first matched software) > Proxy (open port only) > None

When a local proxy port is active, the public egress identity is looked up
both through that port and directly, in separate HTTP sessions.

Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .geolocation import DIRECT_LOOKUP_TIMEOUT, PROXIED_LOOKUP_TIMEOUT, EgressIdentity, lookup_egress
from .network_utils import get_local_interface_details
from .parallel_engine import ParallelTaskEngine
from .proxy_signals import (
    InterfacePresence,
    OpenCommonPort,
    ProcessMatch,
    ProxySignal,
    SoftwareConfigFile,
    SystemProxyConfig,
    collect_config_files,
    collect_process_matches,
    collect_tunnel_interfaces,
    probe_proxy_ports,
    proxy_port_candidates,
    read_system_proxy,
)
from .signatures import SoftwareCategory
from .socket_probe import is_port_open

logger = logging.getLogger(__name__)

COLLECTOR_TIMEOUT = 10.0
EGRESS_DEADLINE_MARGIN = 2.0


class VerdictMode(Enum):
    """How outbound traffic leaves the machine"""
    NONE = "None"
    PROXY = "Proxy"
    VPN = "VPN"
    TUN = "TUN"


class Evidence(Enum):
    """Evidence kinds that can decide the verdict mode"""
    TUNNEL = "tunnel"
    SOFTWARE = "software"
    PORT = "port"

# Strongest first; the first evidence kind present decides the mode
MODE_PRECEDENCE = (Evidence.TUNNEL, Evidence.SOFTWARE, Evidence.PORT)


@dataclass(frozen=True)
class NetworkVerdict:
    """Fused proxy/VPN verdict."""
    is_active: bool = False
    mode: VerdictMode = VerdictMode.NONE
    software: tuple = ()
    egress_port: Optional[int] = None
    egress_label: Optional[str] = None
    tunnel_interface: Optional[InterfacePresence] = None
    system_proxy: Optional[SystemProxyConfig] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isVPN": self.is_active,
            "vpnType": self.mode.value,
            "vpnSoftware": [match.to_dict() for match in self.software],
            "proxy": {
                "enabled": self.egress_port is not None,
                "port": self.egress_port,
                "type": self.egress_label,
            },
            "tunInterface": {
                "detected": self.tunnel_interface is not None,
                "name": self.tunnel_interface.name if self.tunnel_interface else None,
                "ip": self.tunnel_interface.addresses[0]
                if self.tunnel_interface and self.tunnel_interface.addresses else None,
            },
            "systemProxy": {
                "enabled": bool(self.system_proxy and self.system_proxy.enabled),
                "server": self.system_proxy.server if self.system_proxy else None,
            },
        }


def _software_mode(category: SoftwareCategory) -> VerdictMode:
    return VerdictMode.VPN if category is SoftwareCategory.VPN else VerdictMode.PROXY


def fuse_signals(signals: List[ProxySignal]) -> NetworkVerdict:
    """
    Fuse collected signals into a verdict.

    Args:
        signals: Signals in collection order

    Returns:
        NetworkVerdict; the mode is the highest-precedence candidate
    """
    processes = [s for s in signals if isinstance(s, ProcessMatch)]
    tunnels = [s for s in signals if isinstance(s, InterfacePresence) and s.active]
    ports = [s for s in signals if isinstance(s, OpenCommonPort)]
    system_proxy = next((s for s in signals if isinstance(s, SystemProxyConfig)), None)

    active_tunnel = tunnels[0] if tunnels else None
    active_port = ports[0] if ports else None

    proposals = {}
    if active_tunnel is not None:
        proposals[Evidence.TUNNEL] = VerdictMode.TUN
    if processes:
        proposals[Evidence.SOFTWARE] = _software_mode(processes[0].category)
    if active_port is not None:
        proposals[Evidence.PORT] = VerdictMode.PROXY

    mode = next((proposals[e] for e in MODE_PRECEDENCE if e in proposals), VerdictMode.NONE)

    return NetworkVerdict(
        is_active=bool(processes or active_tunnel or active_port),
        mode=mode,
        software=tuple(processes),
        egress_port=active_port.port if active_port else None,
        egress_label=active_port.label if active_port else None,
        tunnel_interface=active_tunnel,
        system_proxy=system_proxy,
    )


@dataclass
class DetectionReport:
    """Verdict plus egress identities and the evidence behind it."""
    verdict: NetworkVerdict
    proxy_identity: Optional[EgressIdentity] = None
    direct_identity: Optional[EgressIdentity] = None
    signals: List[ProxySignal] = field(default_factory=list)
    local_interface: Dict[str, Any] = field(default_factory=dict)

    @property
    def exit_differs(self) -> Optional[bool]:
        """Whether proxied and direct egress IPs differ (None if either is missing)."""
        if self.proxy_identity is None or self.direct_identity is None:
            return None
        return self.proxy_identity.ip != self.direct_identity.ip

    def to_dict(self) -> Dict[str, Any]:
        data = self.verdict.to_dict()
        data.update({
            "proxyIP": self.proxy_identity.to_dict() if self.proxy_identity else None,
            "directIP": self.direct_identity.to_dict() if self.direct_identity else None,
            "exitDiffers": self.exit_differs,
            "configFiles": [s.to_dict() for s in self.signals if isinstance(s, SoftwareConfigFile)],
            "localIP": self.local_interface.get("local_ip"),
            "localMAC": self.local_interface.get("local_mac"),
            "localInterface": self.local_interface.get("interface_name"),
        })
        return data


class DetectionEngine:
    """
    Runs all collectors and fuses their signals.

    Every collaborator is injectable so detection can run against recorded
    evidence.

    Args:
        engine: Thread fan-out for collectors and egress lookups
        process_source: Returns ProcessMatch signals
        interface_source: Returns InterfacePresence signals
        system_proxy_source: Returns the SystemProxyConfig
        config_source: Returns SoftwareConfigFile signals
        port_check: ``port -> bool`` local port check
        egress_lookup: ``(proxy_port or None, timeout) -> EgressIdentity or None``
        local_details: Returns local interface details
        config_home: Home directory searched for proxy configs
        direct_timeout: Direct egress lookup timeout, in seconds
        proxied_timeout: Proxied egress lookup timeout, in seconds
        workers: Worker count for the default fan-out engine
    """

    def __init__(
        self,
        engine: Optional[ParallelTaskEngine] = None,
        process_source: Callable[[], List[ProcessMatch]] = collect_process_matches,
        interface_source: Callable[[], List[InterfacePresence]] = collect_tunnel_interfaces,
        system_proxy_source: Callable[[], SystemProxyConfig] = read_system_proxy,
        config_source: Optional[Callable[[], List[SoftwareConfigFile]]] = None,
        port_check: Callable[[int], bool] = is_port_open,
        egress_lookup: Callable[[Optional[int], float], Optional[EgressIdentity]] = lookup_egress,
        local_details: Callable[[], Dict[str, Any]] = get_local_interface_details,
        config_home: Optional[Path] = None,
        direct_timeout: float = DIRECT_LOOKUP_TIMEOUT,
        proxied_timeout: float = PROXIED_LOOKUP_TIMEOUT,
        workers: int = 8,
    ):
        self.engine = engine or ParallelTaskEngine(max_workers=workers, timeout=COLLECTOR_TIMEOUT)
        self.process_source = process_source
        self.interface_source = interface_source
        self.system_proxy_source = system_proxy_source
        self.config_source = config_source or (lambda: collect_config_files(config_home))
        self.port_check = port_check
        self.egress_lookup = egress_lookup
        self.local_details = local_details
        self.direct_timeout = direct_timeout
        self.proxied_timeout = proxied_timeout
        self._local_details: Dict[str, Any] = {}

    def collect(self) -> List[ProxySignal]:
        """Run every collector and return signals in a stable order."""
        results = self.engine.run({
            "processes": self.process_source,
            "interfaces": self.interface_source,
            "system_proxy": self.system_proxy_source,
            "configs": self.config_source,
            "local": self.local_details,
        })
        self._local_details = results.get("local") or {}

        processes = results.get("processes") or []
        interfaces = results.get("interfaces") or []
        system_proxy = results.get("system_proxy") or SystemProxyConfig(False)
        configs = results.get("configs") or []

        candidates = proxy_port_candidates(system_proxy, configs)
        open_ports = probe_proxy_ports(candidates, self.port_check, runner=self.engine.run)

        signals: List[ProxySignal] = []
        signals.extend(processes)
        signals.extend(interfaces)
        signals.append(system_proxy)
        signals.extend(configs)
        signals.extend(open_ports)
        return signals

    def _lookup_identities(self, verdict: NetworkVerdict):
        tasks = {"direct": lambda: self.egress_lookup(None, self.direct_timeout)}
        if verdict.egress_port is not None:
            port = verdict.egress_port
            tasks["proxy"] = lambda: self.egress_lookup(port, self.proxied_timeout)

        deadline = max(self.direct_timeout, self.proxied_timeout) + EGRESS_DEADLINE_MARGIN
        identities = self.engine.run(tasks, timeout=deadline)
        proxy_identity = identities.get("proxy")
        direct_identity = identities.get("direct")

        if proxy_identity is not None:
            logger.info(f"Proxy egress: {proxy_identity.ip} ({proxy_identity.country} {proxy_identity.city})")
        if direct_identity is not None:
            logger.info(f"Direct egress: {direct_identity.ip} ({direct_identity.country} {direct_identity.city})")
        return proxy_identity, direct_identity

    def detect(self) -> DetectionReport:
        """
        Run one detection pass.

        Returns:
            DetectionReport; a failed pass yields an inactive verdict
        """
        try:
            signals = self.collect()
        except Exception as e:
            logger.error(f"Proxy/VPN detection failed: {e}")
            return DetectionReport(verdict=NetworkVerdict())

        verdict = fuse_signals(signals)
        logger.info(f"Network verdict: {verdict.mode.value} (active={verdict.is_active})")

        proxy_identity, direct_identity = self._lookup_identities(verdict)
        return DetectionReport(
            verdict=verdict,
            proxy_identity=proxy_identity,
            direct_identity=direct_identity,
            signals=signals,
            local_interface=self._local_details,
        )


__all__ = [
    'VerdictMode',
    'Evidence',
    'MODE_PRECEDENCE',
    'NetworkVerdict',
    'fuse_signals',
    'DetectionReport',
    'DetectionEngine',
]
