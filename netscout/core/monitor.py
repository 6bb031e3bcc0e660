"""
Network Monitor
===============

Runs one full cycle (port scan, proxy/VPN detection, connection
geolocation, throughput) and returns a ``MonitorSnapshot``. Cross-cycle
state (throughput baseline, geolocation cache) lives in ``MonitorState``;
cycles are serialized by its lock so two can never interleave.

Version: 1.0.0
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .connections import ConnectionAggregator, ConnectionMap, ConnectionRecord, read_connection_table
from .geolocation import GeoCache, GeoResolver, IPApiClient, OfflineGeoDatabase
from .port_scanner import PortScanner, ScanResult
from .proxy_detection import DetectionEngine, DetectionReport
from .throughput import ThroughputBaseline, ThroughputSample, read_counters, sample_throughput
from ..security.rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


@dataclass
class MonitorState:
    """State carried between cycles."""
    geo_cache: GeoCache = field(default_factory=GeoCache)
    baseline: Optional[ThroughputBaseline] = None
    cycles: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


@dataclass
class MonitorSnapshot:
    scan: ScanResult
    detection: DetectionReport
    connections: ConnectionMap
    throughput: Optional[ThroughputSample]
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "ports": self.scan.to_dict(),
            "vpnStatus": self.detection.to_dict(),
            "connections": self.connections.to_dict(),
            "throughput": self.throughput.to_dict() if self.throughput else None,
        }


def build_resolver(
    cache: GeoCache,
    geoip_database: Optional[str] = None,
    live_lookups: bool = True,
    requests_per_minute: int = 45,
    lookup_timeout: float = 3.0
) -> GeoResolver:
    """Resolver over the shared cache with the configured sources."""
    offline = OfflineGeoDatabase.open(geoip_database)
    live = IPApiClient(rate_limiter=TokenBucket.per_minute(requests_per_minute)) if live_lookups else None
    return GeoResolver(cache=cache, offline=offline, live=live, lookup_timeout=lookup_timeout)


class NetworkMonitor:
    """
    Serialized scan-and-aggregate cycles.

    Args:
        state: Cross-cycle state (a fresh one if None)
        scanner_factory: Builds the PortScanner for a cycle
        detector: Proxy/VPN detection engine
        aggregator: Connection aggregator (built over ``state.geo_cache`` if None)
        connection_source: Returns the connection table
        counters: Returns (rx_bytes, tx_bytes)
        clock: Monotonic clock for throughput
    """

    def __init__(
        self,
        state: Optional[MonitorState] = None,
        scanner_factory: Callable[[], PortScanner] = PortScanner,
        detector: Optional[DetectionEngine] = None,
        aggregator: Optional[ConnectionAggregator] = None,
        connection_source: Callable[[], List[ConnectionRecord]] = read_connection_table,
        counters: Callable[[], Any] = read_counters,
        clock: Callable[[], float] = time.monotonic,
        geoip_database: Optional[str] = None,
    ):
        self.state = state or MonitorState()
        self.scanner_factory = scanner_factory
        self.detector = detector or DetectionEngine()
        self.aggregator = aggregator or ConnectionAggregator(
            build_resolver(self.state.geo_cache, geoip_database)
        )
        self.connection_source = connection_source
        self.counters = counters
        self.clock = clock

    def run_cycle(self) -> MonitorSnapshot:
        """Run one complete cycle while holding the state lock."""
        with self.state.lock:
            started = time.time()

            scan = self.scanner_factory().scan()
            detection = self.detector.detect()

            try:
                connections = self.connection_source()
            except Exception as e:
                logger.error(f"Connection table unavailable: {e}")
                connections = []
            connection_map = self.aggregator.aggregate(
                connections, detection.proxy_identity, detection.direct_identity
            )

            sample, baseline = sample_throughput(self.state.baseline, self.counters, self.clock)
            self.state.baseline = baseline
            self.state.cycles += 1

            logger.info(
                f"Cycle {self.state.cycles}: {scan.open_ports} open port(s), "
                f"{detection.verdict.mode.value}, {connection_map.unique_ips} peer IP(s) "
                f"in {time.time() - started:.1f}s"
            )
            return MonitorSnapshot(scan, detection, connection_map, sample, started)

    def watch(
        self,
        interval: float,
        on_snapshot: Callable[[MonitorSnapshot], None],
        stop: Optional[threading.Event] = None,
        max_cycles: Optional[int] = None
    ) -> None:
        """
        Run cycles every ``interval`` seconds until ``stop`` is set.

        Args:
            interval: Seconds between cycle starts
            on_snapshot: Called with each snapshot
            stop: Event ending the loop
            max_cycles: Stop after this many cycles
        """
        stop = stop or threading.Event()
        done = 0
        while not stop.is_set():
            on_snapshot(self.run_cycle())
            done += 1
            if max_cycles is not None and done >= max_cycles:
                break
            stop.wait(interval)


__all__ = [
    'MonitorState',
    'MonitorSnapshot',
    'NetworkMonitor',
    'build_resolver',
]
