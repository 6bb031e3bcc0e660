"""
NetScout v1.0.0 - Local Network Reconnaissance
==============================================

Inspects the local machine: open TCP ports and the services behind them,
whether outbound traffic goes through a proxy or VPN, and where active
connections lead.

Usage:
    from netscout.core import PortScanner, DetectionEngine
    from netscout.core.monitor import NetworkMonitor

Version: 1.0.0
"""

__version__ = "1.0.0"

from netscout.exceptions import ConfigError, NetScoutError

__all__ = [
    'ConfigError',
    'NetScoutError',
    '__version__',
]
