"""
Local Port Scanner
==================

One scan cycle runs through ``INIT -> ENUMERATE -> FINGERPRINT -> FINALIZE``:

- ENUMERATE merges the OS listening-socket report with an optional
  connect-scan. Ports confirmed by the OS are never re-probed.
- FINGERPRINT runs protocol probes on open ports lacking a static service
  mapping (or on all open ports with ``detect_versions``).
- FINALIZE names services, sorts by port and attaches scan metadata.

Nothing in a cycle is fatal: failed lookups degrade to partial results.

Version: 1.0.0
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set

import psutil

from .external_scanner import EXTERNAL_SCAN_TIMEOUT, ExternalPortInfo, run_external_scan
from .fingerprint import DEFAULT_FINGERPRINT_TIMEOUT, FingerprintEngine, FingerprintResult
from .listing import ListingPort, enumerate_listening_ports
from .signatures import COMMON_PORTS, service_for_port, service_for_process
from .socket_probe import DEFAULT_PROBE_TIMEOUT, PortState, probe_async

logger = logging.getLogger(__name__)

DEFAULT_TARGET = "127.0.0.1"
DEFAULT_CONNECT_CONCURRENCY = 100


class ScanPhase(Enum):
    """Scan cycle state"""
    INIT = "init"
    ENUMERATE = "enumerate"
    FINGERPRINT = "fingerprint"
    FINALIZE = "finalize"


@dataclass(frozen=True)
class PortRecord:
    """One port observed during a scan cycle."""
    port: int
    protocol: str = "TCP"
    state: str = "open"
    service: str = "Unknown"
    version: str = ""
    pid: Optional[int] = None
    process: str = ""
    method: str = "netstat"

    def to_dict(self) -> Dict[str, object]:
        return {
            "key": f"port-{self.port}",
            "port": self.port,
            "protocol": self.protocol,
            "state": self.state,
            "service": self.service,
            "version": self.version,
            "pid": self.pid,
            "process": self.process,
            "method": self.method,
        }


@dataclass
class ScanResult:
    """Finalized records plus scan metadata."""
    target: str
    records: List[PortRecord] = field(default_factory=list)
    total_scanned: int = 0
    open_ports: int = 0
    phase: ScanPhase = ScanPhase.INIT
    external_scanner_used: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": True,
            "target": self.target,
            "tableData": [record.to_dict() for record in self.records],
            "totalScanned": self.total_scanned,
            "openPorts": self.open_ports,
            "externalScanner": self.external_scanner_used,
        }


@dataclass
class _Observation:
    """Mutable per-port working state, only alive inside one cycle."""
    port: int
    state: str
    method: str
    pid: Optional[int] = None
    process: str = ""
    version: str = ""
    service: Optional[str] = None


def resolve_process_name(pid: Optional[int]) -> str:
    """Executable name for a pid; empty when it cannot be resolved."""
    if pid is None or pid <= 0:
        return ""
    try:
        return psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return ""
    except (OSError, ValueError) as e:
        logger.debug(f"Process lookup for pid {pid} failed: {e}")
        return ""


def parse_port_spec(spec: str) -> List[int]:
    """
    Parse ``22,80,8000-8100`` into a sorted port list.

    Raises:
        ValueError: On malformed entries or out-of-range ports
    """
    ports: Set[int] = set()
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_text, end_text = part.split("-", 1)
            start, end = int(start_text), int(end_text)
            if start > end:
                raise ValueError(f"Invalid port range: {part}")
            ports.update(range(start, end + 1))
        else:
            ports.add(int(part))

    if any(p < 1 or p > 65535 for p in ports):
        raise ValueError("Ports must be within 1-65535")
    return sorted(ports)


class PortScanner:
    """
    Scans the local host's TCP ports.

    Args:
        target: Host to scan (the local machine)
        connect_scan: Also connect-scan ``candidate_ports``
        candidate_ports: Ports for the connect-scan (defaults to common ports)
        detect_versions: Fingerprint every open port, not only unmapped ones
        include_closed: Emit records for connect-scanned ports found closed
        use_external_scanner: Try the nmap enhancement after enumeration
        connect_timeout: Per-port connect timeout
        fingerprint_timeout: Per-probe fingerprint deadline
        concurrency: Simultaneous connect probes
        listing_source: Replaces OS enumeration (used for recorded reports)
        process_resolver: Maps pid to executable name
    """

    def __init__(
        self,
        target: str = DEFAULT_TARGET,
        connect_scan: bool = False,
        candidate_ports: Optional[Iterable[int]] = None,
        detect_versions: bool = False,
        include_closed: bool = False,
        use_external_scanner: bool = False,
        connect_timeout: float = DEFAULT_PROBE_TIMEOUT,
        fingerprint_timeout: float = DEFAULT_FINGERPRINT_TIMEOUT,
        external_timeout: int = EXTERNAL_SCAN_TIMEOUT,
        concurrency: int = DEFAULT_CONNECT_CONCURRENCY,
        listing_source: Optional[Callable[[], List[ListingPort]]] = None,
        process_resolver: Callable[[Optional[int]], str] = resolve_process_name,
    ):
        self.target = target
        self.connect_scan = connect_scan
        self.candidate_ports = sorted(set(candidate_ports)) if candidate_ports else list(COMMON_PORTS)
        self.detect_versions = detect_versions
        self.include_closed = include_closed
        self.use_external_scanner = use_external_scanner
        self.connect_timeout = connect_timeout
        self.external_timeout = external_timeout
        self.concurrency = max(1, concurrency)
        self.listing_source = listing_source or enumerate_listening_ports
        self.process_resolver = process_resolver
        self.fingerprinter = FingerprintEngine(timeout=fingerprint_timeout)
        self.phase = ScanPhase.INIT

    def _enter(self, phase: ScanPhase) -> None:
        logger.debug(f"Scan {self.target}: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def scan(self) -> ScanResult:
        """
        Run one complete scan cycle.

        Returns:
            ScanResult with records sorted ascending by port
        """
        self.phase = ScanPhase.INIT
        try:
            return asyncio.run(self._scan())
        except Exception as e:
            logger.error(f"Scan cycle on {self.target} failed: {e}")
            return ScanResult(target=self.target, phase=self.phase)

    async def _scan(self) -> ScanResult:
        self._enter(ScanPhase.ENUMERATE)
        observations = await asyncio.to_thread(self._enumerate_listing)
        observed: Set[int] = set(observations)

        if self.connect_scan:
            to_probe = [p for p in self.candidate_ports if p not in observations]
            observed.update(to_probe)
            for port, state in (await self._connect_scan(to_probe)).items():
                if state.is_open:
                    observations[port] = _Observation(port, "open", "connect")
                elif self.include_closed:
                    observations[port] = _Observation(port, "closed", "connect")

        external_used = False
        if self.use_external_scanner:
            external_used = await asyncio.to_thread(self._apply_external_scan, observations)

        self._enter(ScanPhase.FINGERPRINT)
        await self._fingerprint(observations)

        self._enter(ScanPhase.FINALIZE)
        records = [self._finalize_record(obs) for obs in observations.values()]
        records.sort(key=lambda r: r.port)

        result = ScanResult(
            target=self.target,
            records=records,
            total_scanned=len(observed),
            open_ports=sum(1 for r in records if r.state == "open"),
            phase=ScanPhase.FINALIZE,
            external_scanner_used=external_used,
        )
        logger.info(f"Scan of {self.target} complete: {result.open_ports} open of {result.total_scanned}")
        return result

    def _enumerate_listing(self) -> Dict[int, _Observation]:
        try:
            listing = self.listing_source()
        except Exception as e:
            logger.warning(f"Listening-socket enumeration failed: {e}")
            listing = []

        observations: Dict[int, _Observation] = {}
        for entry in listing:
            if entry.port in observations:
                continue
            observations[entry.port] = _Observation(
                port=entry.port,
                state="open",
                method="netstat",
                pid=entry.pid,
                process=self.process_resolver(entry.pid),
            )
        return observations

    async def _connect_scan(self, ports: List[int]) -> Dict[int, PortState]:
        if not ports:
            return {}
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(port: int) -> PortState:
            async with semaphore:
                return await probe_async(self.target, port, self.connect_timeout)

        states = await asyncio.gather(*(_bounded(p) for p in ports), return_exceptions=True)
        return {
            port: state if isinstance(state, PortState) else PortState.CLOSED
            for port, state in zip(ports, states)
        }

    def _apply_external_scan(self, observations: Dict[int, _Observation]) -> bool:
        ports = sorted(observations) or self.candidate_ports
        external: Optional[Dict[int, ExternalPortInfo]] = run_external_scan(
            self.target, ports, timeout=self.external_timeout
        )
        if external is None:
            return False

        for port, info in external.items():
            obs = observations.get(port)
            if obs is None:
                obs = observations[port] = _Observation(port, "open", "nmap")
            obs.state = "open"
            obs.version = obs.version or info.version
        return True

    async def _fingerprint(self, observations: Dict[int, _Observation]) -> None:
        targets = []
        for obs in observations.values():
            if obs.state != "open":
                continue
            obs.service = service_for_port(obs.port) or service_for_process(obs.process)
            if obs.version:
                continue
            if obs.service is None:
                targets.append((obs.port, obs.process))
            elif self.detect_versions:
                targets.append((obs.port, obs.service))

        if not targets:
            return

        identified: Dict[int, FingerprintResult] = await self.fingerprinter.fingerprint_many(
            self.target, targets
        )
        for port, result in identified.items():
            obs = observations[port]
            obs.version = result.version_string
            if obs.service is None:
                obs.service = result.protocol.value

    def _finalize_record(self, obs: _Observation) -> PortRecord:
        service = obs.service or service_for_port(obs.port) or "Unknown"
        return PortRecord(
            port=obs.port,
            protocol="TCP",
            state=obs.state,
            service=service,
            version=obs.version or obs.process,
            pid=obs.pid,
            process=obs.process,
            method=obs.method,
        )


__all__ = [
    'ScanPhase',
    'PortRecord',
    'ScanResult',
    'PortScanner',
    'resolve_process_name',
    'parse_port_spec',
]
