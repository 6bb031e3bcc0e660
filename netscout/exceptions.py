"""
NetScout exceptions.

Scan, detection and aggregation failures are reported as sentinel values
and log records; only configuration problems are raised.
"""


class NetScoutError(Exception):
    """Base class for NetScout errors"""


class ConfigError(NetScoutError, ValueError):
    """Invalid or unreadable configuration"""


__all__ = ['NetScoutError', 'ConfigError']
