"""
Throughput sampling against a rolling baseline.

A sample is the byte-counter delta between now and the previous finalized
baseline, in MB/s. The caller replaces its baseline with the one returned
alongside the sample; a baseline is never mutated.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

import psutil

logger = logging.getLogger(__name__)

_MB = 1024 * 1024
_LOOPBACK_HINTS = ("lo", "loopback")


@dataclass(frozen=True)
class ThroughputBaseline:
    rx_bytes: int
    tx_bytes: int
    timestamp: float


@dataclass(frozen=True)
class ThroughputSample:
    rx_mb_s: float
    tx_mb_s: float
    interval: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "rx_mb_s": round(self.rx_mb_s, 3),
            "tx_mb_s": round(self.tx_mb_s, 3),
            "interval": round(self.interval, 3),
        }


def _is_loopback(name: str) -> bool:
    return name.lower().startswith(_LOOPBACK_HINTS)


def read_counters() -> Tuple[int, int]:
    """Total received/sent bytes over non-loopback interfaces."""
    try:
        per_nic = psutil.net_io_counters(pernic=True)
    except (psutil.Error, OSError) as e:
        logger.warning(f"Interface counters unavailable: {e}")
        return 0, 0

    rx = sum(c.bytes_recv for name, c in per_nic.items() if not _is_loopback(name))
    tx = sum(c.bytes_sent for name, c in per_nic.items() if not _is_loopback(name))
    return rx, tx


def take_baseline(
    counters: Callable[[], Tuple[int, int]] = read_counters,
    clock: Callable[[], float] = time.monotonic
) -> ThroughputBaseline:
    rx, tx = counters()
    return ThroughputBaseline(rx, tx, clock())


def sample_throughput(
    previous: Optional[ThroughputBaseline],
    counters: Callable[[], Tuple[int, int]] = read_counters,
    clock: Callable[[], float] = time.monotonic
) -> Tuple[Optional[ThroughputSample], ThroughputBaseline]:
    """
    Compute throughput since ``previous``.

    Args:
        previous: Last finalized baseline (None on the first cycle)
        counters: Returns (rx_bytes, tx_bytes)
        clock: Monotonic time source

    Returns:
        (sample or None, new baseline)
    """
    current = take_baseline(counters, clock)
    if previous is None:
        return None, current

    interval = current.timestamp - previous.timestamp
    if interval <= 0:
        return ThroughputSample(0.0, 0.0, 0.0), current

    # Counter resets (interface down/up) show up as negative deltas
    rx_delta = max(0, current.rx_bytes - previous.rx_bytes)
    tx_delta = max(0, current.tx_bytes - previous.tx_bytes)
    sample = ThroughputSample(rx_delta / _MB / interval, tx_delta / _MB / interval, interval)
    return sample, current


__all__ = [
    'ThroughputBaseline',
    'ThroughputSample',
    'read_counters',
    'take_baseline',
    'sample_throughput',
]
