"""
Connection Geolocation Aggregator
=================================

Reads the host's active connection table, drops non-routable peers, groups
the rest by peer IP, geolocates the busiest peers and rolls them up per
country and per organisation. Every aggregate is recomputed from scratch
on each pass; only the geolocation cache persists between passes.

Version: 1.0.0
"""

import logging
import re
import subprocess  # nosec B404 - subprocess needed for netstat fallback
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import psutil

from .geolocation import EgressIdentity, GeoResolver
from .network_utils import is_private_address
from .parallel_engine import ParallelTaskEngine

logger = logging.getLogger(__name__)

MAX_GEOLOCATED_IPS = 100
MAX_ORG_STATS = 30
LOOKUP_BATCH_TIMEOUT = 15.0

# Shown when no egress identity is known (Beijing)
DEFAULT_LOCATION = (116.4074, 39.9042)


@dataclass(frozen=True)
class ConnectionRecord:
    """One row of the connection table."""
    peer_ip: str
    peer_port: Optional[int] = None
    process: str = ""
    timestamp: float = 0.0
    local_port: Optional[int] = None
    state: str = ""
    pid: Optional[int] = None


@dataclass
class PeerGroup:
    """Connections sharing one peer IP."""
    ip: str
    connections: int = 0
    processes: List[str] = field(default_factory=list)
    ports: List[int] = field(default_factory=list)

    def add(self, record: ConnectionRecord) -> None:
        self.connections += 1
        if record.process and record.process not in self.processes:
            self.processes.append(record.process)
        if record.peer_port and record.peer_port not in self.ports:
            self.ports.append(record.peer_port)


@dataclass
class CountryAggregate:
    country: str
    connections: int = 0
    ips: List[str] = field(default_factory=list)
    cities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "country": self.country,
            "connections": self.connections,
            "ips": len(self.ips),
            "cities": list(self.cities),
        }


@dataclass
class OrgAggregate:
    org: str
    connections: int = 0
    ips: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"org": self.org, "connections": self.connections, "ips": len(self.ips)}


@dataclass
class ConnectionMap:
    """Complete per-pass output; empty fields rather than missing ones."""
    map_data: List[Dict[str, Any]] = field(default_factory=list)
    current_location: Dict[str, Any] = field(default_factory=lambda: current_location(None, None))
    total_connections: int = 0
    country_stats: List[CountryAggregate] = field(default_factory=list)
    org_stats: List[OrgAggregate] = field(default_factory=list)
    unique_ips: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mapData": list(self.map_data),
            "currentLocation": dict(self.current_location),
            "totalConnections": self.total_connections,
            "countryStats": [c.to_dict() for c in self.country_stats],
            "orgStats": [o.to_dict() for o in self.org_stats],
            "uniqueIPs": self.unique_ips,
        }


def current_location(
    proxy_identity: Optional[EgressIdentity],
    direct_identity: Optional[EgressIdentity]
) -> Dict[str, Any]:
    """
    Map origin: proxied egress, else direct egress, else ``Unknown``.

    Coordinates are ``[lon, lat]``.
    """
    identity = proxy_identity or direct_identity
    if identity is None:
        return {"name": "Unknown", "geo": {"value": list(DEFAULT_LOCATION)}, "ip": "0.0.0.0"}

    return {
        "name": f"{identity.country_code} {identity.region} {identity.city}".strip(),
        "geo": {"value": [identity.lon, identity.lat]},
        "ip": identity.ip,
        "country": identity.country,
        "country_code": identity.country_code,
        "region": identity.region,
        "city": identity.city,
        "org": identity.org,
    }


# =============================================================================
# CONNECTION TABLE
# =============================================================================

_NETSTAT_ROW = re.compile(
    r"^\s*(tcp[46]?|TCP)\s+(?:\d+\s+\d+\s+)?(\S+)\s+(\S+)\s+([A-Z_]+)", re.IGNORECASE
)


def split_endpoint(token: str) -> Tuple[str, Optional[int]]:
    """
    Split ``addr:port``, ``[v6]:port`` or BSD-style ``addr.port``.

    Returns:
        (address, port or None)
    """
    if token.startswith("["):
        host, _, port = token[1:].partition("]:")
    elif ":" in token and "." in token.rpartition(":")[2]:
        # BSD tcp6 rows: v6addr.port
        host, _, port = token.rpartition(".")
    elif ":" in token:
        host, _, port = token.rpartition(":")
    else:
        host, _, port = token.rpartition(".")
    return host, int(port) if port.isdigit() else None


def parse_netstat_connections(text: str, timestamp: Optional[float] = None) -> List[ConnectionRecord]:
    """Parse ``netstat -an`` TCP rows from Linux, macOS or Windows."""
    timestamp = time.time() if timestamp is None else timestamp
    records = []
    for line in text.splitlines():
        match = _NETSTAT_ROW.match(line)
        if not match:
            continue
        _, local_port = split_endpoint(match.group(2))
        peer_ip, peer_port = split_endpoint(match.group(3))
        records.append(ConnectionRecord(
            peer_ip=peer_ip,
            peer_port=peer_port,
            timestamp=timestamp,
            local_port=local_port,
            state=match.group(4).upper(),
        ))
    return records


def _process_names() -> Dict[int, str]:
    names = {}
    try:
        for proc in psutil.process_iter(["pid", "name"]):
            names[proc.info["pid"]] = proc.info.get("name") or ""
    except (psutil.Error, OSError) as e:
        logger.debug(f"Process names unavailable: {e}")
    return names


def _connections_from_netstat() -> List[ConnectionRecord]:
    try:
        # nosec B603 - fixed argument vector, no shell
        result = subprocess.run(
            ["netstat", "-an"], capture_output=True, text=True, timeout=30, errors="ignore"
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"netstat fallback failed: {e}")
        return []
    return parse_netstat_connections(result.stdout)


def read_connection_table() -> List[ConnectionRecord]:
    """
    Current TCP/UDP connections with owning process names.

    Falls back to ``netstat -an`` when psutil is denied.
    """
    now = time.time()
    try:
        raw = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, OSError) as e:
        logger.warning(f"psutil connection table unavailable ({e}), falling back to netstat")
        return _connections_from_netstat()

    names = _process_names()
    records = []
    for conn in raw:
        peer_ip, peer_port = (conn.raddr.ip, conn.raddr.port) if conn.raddr else ("", None)
        records.append(ConnectionRecord(
            peer_ip=peer_ip,
            peer_port=peer_port,
            process=names.get(conn.pid, "") if conn.pid else "",
            timestamp=now,
            local_port=conn.laddr.port if conn.laddr else None,
            state=conn.status,
            pid=conn.pid,
        ))
    return records


# =============================================================================
# AGGREGATION
# =============================================================================

def group_by_peer(connections: List[ConnectionRecord]) -> "OrderedDict[str, PeerGroup]":
    """Group routable peers by IP, in first-seen order."""
    groups: "OrderedDict[str, PeerGroup]" = OrderedDict()
    for record in connections:
        if is_private_address(record.peer_ip):
            continue
        group = groups.get(record.peer_ip)
        if group is None:
            group = groups[record.peer_ip] = PeerGroup(record.peer_ip)
        group.add(record)
    return groups


class ConnectionAggregator:
    """
    Builds ConnectionMap instances.

    Args:
        resolver: Geolocation resolver (owns the cache)
        engine: Thread fan-out for per-IP lookups
        max_ips: Busiest peers geolocated per pass
        max_orgs: Organisations kept in the org roll-up
    """

    def __init__(
        self,
        resolver: GeoResolver,
        engine: Optional[ParallelTaskEngine] = None,
        max_ips: int = MAX_GEOLOCATED_IPS,
        max_orgs: int = MAX_ORG_STATS
    ):
        self.resolver = resolver
        self.engine = engine or ParallelTaskEngine(max_workers=10, timeout=LOOKUP_BATCH_TIMEOUT)
        self.max_ips = max_ips
        self.max_orgs = max_orgs

    def aggregate(
        self,
        connections: List[ConnectionRecord],
        proxy_identity: Optional[EgressIdentity] = None,
        direct_identity: Optional[EgressIdentity] = None
    ) -> ConnectionMap:
        """
        One aggregation pass.

        Args:
            connections: Connection table snapshot
            proxy_identity: Proxied egress identity, if any
            direct_identity: Direct egress identity, if any

        Returns:
            ConnectionMap (empty aggregates on failure, never raises)
        """
        location = current_location(proxy_identity, direct_identity)
        try:
            return self._aggregate(connections, location)
        except Exception as e:
            logger.error(f"Connection aggregation failed: {e}")
            return ConnectionMap(current_location=location)

    def _aggregate(self, connections: List[ConnectionRecord], location: Dict[str, Any]) -> ConnectionMap:
        groups = group_by_peer(connections)
        busiest = sorted(groups.values(), key=lambda g: g.connections, reverse=True)[:self.max_ips]

        identities = self.engine.map(self.resolver.resolve, [g.ip for g in busiest])

        map_data = []
        countries: Dict[str, CountryAggregate] = {}
        orgs: Dict[str, OrgAggregate] = {}

        for group in busiest:
            identity = identities.get(group.ip)
            if identity is None:
                continue

            country = countries.setdefault(identity.country, CountryAggregate(identity.country))
            country.connections += group.connections
            country.ips.append(group.ip)
            if identity.city and identity.city != "Unknown" and identity.city not in country.cities:
                country.cities.append(identity.city)

            org = orgs.setdefault(identity.org, OrgAggregate(identity.org))
            org.connections += group.connections
            org.ips.append(group.ip)

            map_data.append({
                "name": f"{identity.country} {identity.city}".strip(),
                "value": [identity.lon, identity.lat, group.connections],
                "ip": group.ip,
                "country": identity.country,
                "country_code": identity.country_code,
                "region": identity.region,
                "city": identity.city,
                "org": identity.org,
                "isp": identity.isp,
                "asn": identity.asn,
                "connections": group.connections,
                "processes": list(group.processes),
                "ports": list(group.ports),
            })

        country_stats = sorted(countries.values(), key=lambda c: c.connections, reverse=True)
        org_stats = sorted(orgs.values(), key=lambda o: o.connections, reverse=True)[:self.max_orgs]

        logger.debug(f"Aggregated {len(groups)} peer(s) from {len(connections)} connection(s)")
        return ConnectionMap(
            map_data=map_data,
            current_location=location,
            total_connections=len(connections),
            country_stats=country_stats,
            org_stats=org_stats,
            unique_ips=len(groups),
        )


__all__ = [
    'ConnectionRecord',
    'PeerGroup',
    'CountryAggregate',
    'OrgAggregate',
    'ConnectionMap',
    'current_location',
    'split_endpoint',
    'parse_netstat_connections',
    'read_connection_table',
    'group_by_peer',
    'ConnectionAggregator',
    'DEFAULT_LOCATION',
]
