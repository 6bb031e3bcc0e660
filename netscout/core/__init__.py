"""
Core module initialization for NetScout.
"""

from .socket_probe import PortState, probe, probe_async
from .fingerprint import FingerprintEngine, FingerprintResult, Protocol
from .port_scanner import PortRecord, PortScanner, ScanPhase, ScanResult
from .proxy_detection import DetectionEngine, DetectionReport, NetworkVerdict, VerdictMode, fuse_signals
from .geolocation import EgressIdentity, GeoCache, GeoResolver
from .connections import ConnectionAggregator, ConnectionMap, ConnectionRecord

__all__ = [
    'PortState',
    'probe',
    'probe_async',
    'FingerprintEngine',
    'FingerprintResult',
    'Protocol',
    'PortRecord',
    'PortScanner',
    'ScanPhase',
    'ScanResult',
    'DetectionEngine',
    'DetectionReport',
    'NetworkVerdict',
    'VerdictMode',
    'fuse_signals',
    'EgressIdentity',
    'GeoCache',
    'GeoResolver',
    'ConnectionAggregator',
    'ConnectionMap',
    'ConnectionRecord',
]
