"""
IP Geolocation
==============

Resolves public IP addresses to an ``EgressIdentity`` using an offline
GeoLite2-City database (``geoip2``) and the ip-api.com JSON endpoint. Live
lookups share one token bucket so a burst of peers cannot exceed the
service's free-tier limit. Resolved identities are cached for ten minutes
per IP; only the cache evicts, by age, never by size.

Non-routable addresses never reach the database, the live API or the cache.

Version: 1.0.0
"""

import logging
import math
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional

import geoip2.database
import geoip2.errors
import requests
from cachetools import TTLCache

from ..security.rate_limiter import TokenBucket
from .network_utils import is_private_address

logger = logging.getLogger(__name__)

IP_API_URL = "http://ip-api.com/json/"
IP_API_FIELDS = "status,country,countryCode,region,regionName,city,zip,lat,lon,timezone,isp,org,as,query"

GEO_CACHE_TTL = 10 * 60
PEER_LOOKUP_TIMEOUT = 3.0
DIRECT_LOOKUP_TIMEOUT = 5.0
PROXIED_LOOKUP_TIMEOUT = 8.0

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class EgressIdentity:
    """Geolocation and network ownership of one public IP."""
    ip: str
    country: str = UNKNOWN
    country_code: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN
    zip: str = ""
    lat: float = 0.0
    lon: float = 0.0
    timezone: str = ""
    org: str = UNKNOWN
    isp: str = UNKNOWN
    asn: str = UNKNOWN

    @classmethod
    def unknown(cls, ip: str) -> "EgressIdentity":
        return cls(ip=ip)

    @classmethod
    def from_ip_api(cls, data: Dict[str, Any], ip: Optional[str] = None) -> "EgressIdentity":
        """
        Build from an ip-api.com response body.

        Args:
            data: Decoded JSON with ``status == "success"``
            ip: Queried address (defaults to the ``query`` field)
        """
        return cls(
            ip=ip or data.get("query") or "",
            country=data.get("country") or UNKNOWN,
            country_code=data.get("countryCode") or UNKNOWN,
            region=data.get("regionName") or data.get("region") or UNKNOWN,
            city=data.get("city") or UNKNOWN,
            zip=data.get("zip") or "",
            lat=float(data.get("lat") or 0),
            lon=float(data.get("lon") or 0),
            timezone=data.get("timezone") or "",
            org=data.get("org") or UNKNOWN,
            isp=data.get("isp") or UNKNOWN,
            asn=data.get("as") or UNKNOWN,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "country": self.country,
            "country_code": self.country_code,
            "region": self.region,
            "city": self.city,
            "zip": self.zip,
            "lat": self.lat,
            "lon": self.lon,
            "timezone": self.timezone,
            "org": self.org,
            "isp": self.isp,
            "asn": self.asn,
        }


# =============================================================================
# LIVE LOOKUP
# =============================================================================

def make_session(proxy_port: Optional[int] = None) -> requests.Session:
    """
    HTTP session isolated from the environment's proxy settings.

    Args:
        proxy_port: Route through ``127.0.0.1:<port>`` when given
    """
    session = requests.Session()
    session.trust_env = False
    if proxy_port:
        proxy = f"http://127.0.0.1:{proxy_port}"
        session.proxies = {"http": proxy, "https": proxy}
    return session


class IPApiClient:
    """
    ip-api.com JSON client.

    Args:
        session: HTTP session (a fresh environment-isolated one if None)
        base_url: Endpoint URL
        rate_limiter: Shared bucket; lookups fail fast when it stays empty
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: str = IP_API_URL,
        rate_limiter: Optional[TokenBucket] = None
    ):
        self.session = session or make_session()
        self.base_url = base_url
        self.rate_limiter = rate_limiter

    def lookup(self, ip: Optional[str] = None, timeout: float = PEER_LOOKUP_TIMEOUT) -> Optional[EgressIdentity]:
        """
        Look up an address, or the caller's own egress address if ``ip`` is None.

        Returns:
            EgressIdentity or None on any failure
        """
        if self.rate_limiter is not None and not self.rate_limiter.acquire(timeout=timeout):
            logger.debug(f"ip-api lookup for {ip or 'self'} skipped: rate limited")
            return None

        url = f"{self.base_url}{ip or ''}"
        try:
            response = self.session.get(url, params={"fields": IP_API_FIELDS}, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"ip-api lookup for {ip or 'self'} failed: {e}")
            return None

        if not isinstance(data, dict) or data.get("status") != "success":
            logger.debug(f"ip-api lookup for {ip or 'self'} unsuccessful: {data!r}")
            return None
        return EgressIdentity.from_ip_api(data, ip)


def lookup_egress(proxy_port: Optional[int] = None, timeout: Optional[float] = None) -> Optional[EgressIdentity]:
    """
    Public egress identity, directly or through a local proxy port.

    Each call uses its own session, so proxied and direct results never
    share connection state.
    """
    if timeout is None:
        timeout = PROXIED_LOOKUP_TIMEOUT if proxy_port else DIRECT_LOOKUP_TIMEOUT
    session = make_session(proxy_port)
    try:
        return IPApiClient(session).lookup(timeout=timeout)
    finally:
        session.close()


# =============================================================================
# OFFLINE DATABASE
# =============================================================================

class OfflineGeoDatabase:
    """GeoLite2-City database reader."""

    def __init__(self, path: str):
        self.path = path
        self._reader = geoip2.database.Reader(path)

    @classmethod
    def open(cls, path: Optional[str]) -> Optional["OfflineGeoDatabase"]:
        """Open ``path``, or return None with a warning when it is unusable."""
        if not path:
            return None
        try:
            return cls(path)
        except (OSError, ValueError, RuntimeError) as e:
            logger.warning(f"GeoIP database {path} unavailable ({e}), using live lookups only")
            return None

    def lookup(self, ip: str) -> Optional[EgressIdentity]:
        try:
            response = self._reader.city(ip)
        except (geoip2.errors.GeoIP2Error, ValueError) as e:
            logger.debug(f"Offline lookup for {ip} failed: {e}")
            return None

        return EgressIdentity(
            ip=ip,
            country=response.country.name or UNKNOWN,
            country_code=response.country.iso_code or UNKNOWN,
            region=response.subdivisions.most_specific.name or UNKNOWN,
            city=response.city.name or UNKNOWN,
            zip=response.postal.code or "",
            lat=response.location.latitude or 0.0,
            lon=response.location.longitude or 0.0,
            timezone=response.location.time_zone or "",
        )

    def close(self) -> None:
        self._reader.close()


# =============================================================================
# CACHE
# =============================================================================

@dataclass(frozen=True)
class GeoCacheEntry:
    ip: str
    identity: EgressIdentity
    inserted_at: float


class GeoCache:
    """
    Thread-safe per-IP identity cache with age-based eviction.

    Args:
        ttl: Entry lifetime in seconds
        timer: Monotonic clock (injectable for tests)
    """

    def __init__(self, ttl: float = GEO_CACHE_TTL, timer: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._timer = timer
        self._entries: TTLCache = TTLCache(maxsize=math.inf, ttl=ttl, timer=timer)
        self._lock = threading.Lock()

    def get(self, ip: str) -> Optional[GeoCacheEntry]:
        with self._lock:
            return self._entries.get(ip)

    def put(self, ip: str, identity: EgressIdentity) -> bool:
        """Store an identity; non-routable addresses are refused."""
        if is_private_address(ip):
            return False
        with self._lock:
            self._entries[ip] = GeoCacheEntry(ip, identity, self._timer())
        return True

    def __contains__(self, ip: str) -> bool:
        return self.get(ip) is not None

    def __len__(self) -> int:
        with self._lock:
            self._entries.expire()
            return len(self._entries)

    def ips(self) -> List[str]:
        with self._lock:
            self._entries.expire()
            return list(self._entries.keys())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


# =============================================================================
# RESOLVER
# =============================================================================

class GeoResolver:
    """
    Resolves peers through cache, offline database and live API, in that order.

    The offline record gives location; a live answer, when available,
    supersedes it and adds organisation and ASN.
    """

    def __init__(
        self,
        cache: Optional[GeoCache] = None,
        offline: Optional[OfflineGeoDatabase] = None,
        live: Optional[IPApiClient] = None,
        lookup_timeout: float = PEER_LOOKUP_TIMEOUT
    ):
        self.cache = cache if cache is not None else GeoCache()
        self.offline = offline
        self.live = live
        self.lookup_timeout = lookup_timeout

    def resolve(self, ip: str) -> Optional[EgressIdentity]:
        """
        Resolve one address.

        Returns:
            EgressIdentity (fields ``Unknown`` when every source failed),
            or None for a non-routable address
        """
        if is_private_address(ip):
            return None

        cached = self.cache.get(ip)
        if cached is not None:
            return cached.identity

        identity = self.offline.lookup(ip) if self.offline is not None else None
        if self.live is not None:
            live = self.live.lookup(ip, timeout=self.lookup_timeout)
            if live is not None:
                identity = live
        if identity is None:
            identity = EgressIdentity.unknown(ip)
        elif identity.ip != ip:
            identity = replace(identity, ip=ip)

        self.cache.put(ip, identity)
        return identity


__all__ = [
    'EgressIdentity',
    'IPApiClient',
    'OfflineGeoDatabase',
    'GeoCacheEntry',
    'GeoCache',
    'GeoResolver',
    'make_session',
    'lookup_egress',
    'GEO_CACHE_TTL',
]
