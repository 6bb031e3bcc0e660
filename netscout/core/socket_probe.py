"""
TCP connect probe primitive.

Refused and timed-out connections are normal outcomes and are reported as
states, never raised.
"""

import asyncio
import errno
import socket
from enum import Enum

DEFAULT_PROBE_TIMEOUT = 0.8


class PortState(Enum):
    """Outcome of a single connect attempt."""
    OPEN = "open"
    CLOSED = "closed"
    TIMED_OUT = "timeout"

    @property
    def is_open(self) -> bool:
        return self is PortState.OPEN


def probe(host: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> PortState:
    """
    Attempt a TCP connection and close it immediately.

    Args:
        host: Target host
        port: Target port
        timeout: Connect timeout in seconds

    Returns:
        PortState for the attempt
    """
    try:
        sock = socket.create_connection((host, port), timeout=timeout)
    except socket.timeout:
        return PortState.TIMED_OUT
    except OSError as e:
        if e.errno in (errno.ETIMEDOUT, errno.EAGAIN):
            return PortState.TIMED_OUT
        return PortState.CLOSED

    sock.close()
    return PortState.OPEN


async def probe_async(host: str, port: int, timeout: float = DEFAULT_PROBE_TIMEOUT) -> PortState:
    """Awaitable variant of :func:`probe` for fan-out inside an event loop."""
    try:
        _reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        return PortState.TIMED_OUT
    except OSError:
        return PortState.CLOSED

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return PortState.OPEN


def is_port_open(port: int, host: str = "127.0.0.1", timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
    """Convenience wrapper used by the proxy port checks."""
    return probe(host, port, timeout).is_open


__all__ = [
    'PortState',
    'DEFAULT_PROBE_TIMEOUT',
    'probe',
    'probe_async',
    'is_port_open',
]
