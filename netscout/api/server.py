"""
NetScout - FastAPI Server
=========================

Read-only REST API over the local scanners. Binds to 127.0.0.1 by default.
When a token is configured (``api.token`` or ``NETSCOUT_API_TOKEN``) every
``/api/v1`` endpoint requires ``Authorization: Bearer <token>``.

Endpoints:
- GET /api/health               - Liveness and uptime
- GET /api/v1/ports             - Local port scan
- GET /api/v1/vpn-status        - Proxy/VPN detection report
- GET /api/v1/connections       - Geolocated connection map
- GET /api/v1/current-location  - Egress location only
- GET /api/v1/stats             - Throughput and cache statistics

Version: 1.0.0
"""

import logging
import secrets
import time
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from netscout import __version__
from netscout.config.config_manager import ConfigManager
from netscout.core.connections import ConnectionAggregator, ConnectionMap, ConnectionRecord, current_location, read_connection_table
from netscout.core.monitor import MonitorState, build_resolver
from netscout.core.port_scanner import PortScanner, ScanResult, parse_port_spec
from netscout.core.proxy_detection import DetectionEngine, DetectionReport
from netscout.core.throughput import read_counters, sample_throughput

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("netscout.audit")


# =============================================================================
# MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    version: str
    uptime: float


class StatsResponse(BaseModel):
    rx_mb_s: Optional[float] = None
    tx_mb_s: Optional[float] = None
    interval: Optional[float] = None
    geo_cache_entries: int
    lookup_tasks: Dict[str, float] = {}
    uptime: float


# =============================================================================
# SERVICE
# =============================================================================

class NetScoutService:
    """
    Runs scans and lookups for the API, sharing one MonitorState. Connection
    passes and throughput samples hold the state lock, as monitor cycles do.

    Args:
        config: Loaded configuration
        scanner_factory: ``**options -> PortScanner``
        detector: Proxy/VPN detection engine
        aggregator: Connection aggregator over the shared geo cache
        connection_source: Returns the connection table
        counters: Returns (rx_bytes, tx_bytes)
    """

    def __init__(
        self,
        config: Optional[ConfigManager] = None,
        scanner_factory: Callable[..., PortScanner] = PortScanner,
        detector: Optional[DetectionEngine] = None,
        aggregator: Optional[ConnectionAggregator] = None,
        connection_source: Callable[[], List[ConnectionRecord]] = read_connection_table,
        counters: Callable[[], Any] = read_counters,
    ):
        self.config = config or ConfigManager()
        self.state = MonitorState()
        self.scanner_factory = scanner_factory
        self.detector = detector or DetectionEngine(**self.config.detection_options())
        self.aggregator = aggregator or ConnectionAggregator(
            build_resolver(
                self.state.geo_cache,
                geoip_database=self.config.get("geolocation.database"),
                live_lookups=self.config.get("geolocation.live_lookups", True),
                requests_per_minute=self.config.get("geolocation.requests_per_minute", 45),
                lookup_timeout=self.config.get("geolocation.lookup_timeout", 3.0),
            ),
            max_ips=self.config.get("geolocation.max_ips", 100),
            max_orgs=self.config.get("geolocation.max_orgs", 30),
        )
        self.connection_source = connection_source
        self.counters = counters
        self.started = time.time()

    def ports(self, connect_scan: bool = False, ports: Optional[str] = None, detect_versions: bool = False) -> ScanResult:
        options = self.config.scanner_options()
        options["connect_scan"] = connect_scan or options["connect_scan"]
        options["detect_versions"] = detect_versions or options["detect_versions"]
        if ports:
            options["candidate_ports"] = parse_port_spec(ports)
            options["connect_scan"] = True
        return self.scanner_factory(**options).scan()

    def vpn_status(self) -> DetectionReport:
        return self.detector.detect()

    def connections(self) -> ConnectionMap:
        with self.state.lock:
            report = self.detector.detect()
            try:
                table = self.connection_source()
            except Exception as e:
                logger.error(f"Connection table unavailable: {e}")
                table = []
            return self.aggregator.aggregate(table, report.proxy_identity, report.direct_identity)

    def current_location(self) -> Dict[str, Any]:
        report = self.detector.detect()
        return current_location(report.proxy_identity, report.direct_identity)

    def stats(self) -> StatsResponse:
        with self.state.lock:
            sample, baseline = sample_throughput(self.state.baseline, self.counters)
            self.state.baseline = baseline
        return StatsResponse(
            rx_mb_s=round(sample.rx_mb_s, 3) if sample else None,
            tx_mb_s=round(sample.tx_mb_s, 3) if sample else None,
            interval=round(sample.interval, 3) if sample else None,
            geo_cache_entries=len(self.state.geo_cache),
            lookup_tasks=self.aggregator.engine.get_stats(),
            uptime=time.time() - self.started,
        )


# =============================================================================
# APP
# =============================================================================

security = HTTPBearer(auto_error=False)


def create_app(service: Optional[NetScoutService] = None, token: Optional[str] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Backing service (built from default config if None)
        token: Required bearer token (None disables authentication)
    """
    service = service or NetScoutService()
    app = FastAPI(
        title="NetScout API",
        description="Local network reconnaissance (read-only)",
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    def verify_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> None:
        if token is None:
            return
        supplied = credentials.credentials if credentials else ""
        if not secrets.compare_digest(supplied, token):
            audit_logger.warning("Authentication failed - invalid token attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing authentication token",
                headers={"WWW-Authenticate": "Bearer"},
            )

    @app.get("/", tags=["Root"])
    def root():
        """Root endpoint with API information."""
        return {"name": "NetScout API", "version": __version__, "docs": "/api/docs", "health": "/api/health"}

    @app.get("/api/health", response_model=HealthResponse, tags=["System"])
    def health_check():
        return HealthResponse(status="healthy", version=__version__, uptime=time.time() - service.started)

    @app.get("/api/v1/ports", tags=["Scanning"], dependencies=[Depends(verify_token)])
    def get_ports(
        connect: bool = Query(False, description="Also connect-scan candidate ports"),
        ports: Optional[str] = Query(None, pattern=r"^[\d,\-]+$", description="Ports to connect-scan"),
        versions: bool = Query(False, description="Fingerprint every open port"),
    ):
        try:
            return service.ports(connect_scan=connect, ports=ports, detect_versions=versions).to_dict()
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @app.get("/api/v1/vpn-status", tags=["Detection"], dependencies=[Depends(verify_token)])
    def get_vpn_status():
        return service.vpn_status().to_dict()

    @app.get("/api/v1/connections", tags=["Connections"], dependencies=[Depends(verify_token)])
    def get_connections():
        return service.connections().to_dict()

    @app.get("/api/v1/current-location", tags=["Connections"], dependencies=[Depends(verify_token)])
    def get_current_location():
        return service.current_location()

    @app.get("/api/v1/stats", response_model=StatsResponse, tags=["System"], dependencies=[Depends(verify_token)])
    def get_stats():
        return service.stats()

    return app


def run_server(config: Optional[ConfigManager] = None, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    config = config or ConfigManager()
    host = host or config.get("api.host", "127.0.0.1")
    port = port or config.get("api.port", 8080)
    token = config.get("api.token")

    if host != "127.0.0.1":
        logger.warning(f"Binding to {host} exposes local network details beyond this machine")
    if token is None:
        logger.warning("No API token configured, endpoints are unauthenticated")

    app = create_app(NetScoutService(config), token=str(token) if token is not None else None)
    uvicorn.run(app, host=host, port=int(port), log_level="info", workers=1, timeout_keep_alive=30)


__all__ = ['create_app', 'run_server', 'NetScoutService', 'HealthResponse', 'StatsResponse']
