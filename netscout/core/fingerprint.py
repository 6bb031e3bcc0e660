"""
Service Fingerprint Module for NetScout

Extracts service version strings by speaking just enough of each wire
protocol. Probes are attempted in a fixed priority order and only when the
port or the supplied service label selects them; the first non-empty
version wins.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, List, Tuple, Callable, FrozenSet

from .wire_decoders import (
    MAX_RESPONSE_BYTES,
    REDIS_INFO_COMMAND,
    DecodeStatus,
    WireDecoder,
    SSHBannerDecoder,
    MySQLHandshakeDecoder,
    RedisInfoDecoder,
    MongoDBReplyDecoder,
    PostgreSQLReplyDecoder,
    HTTPHeaderDecoder,
    build_http_head,
    build_mongodb_ismaster,
    build_postgres_probe,
)

logger = logging.getLogger(__name__)

DEFAULT_FINGERPRINT_TIMEOUT = 3.0
DEFAULT_FINGERPRINT_CONCURRENCY = 20
_READ_CHUNK = 4096


class Protocol(Enum):
    """Protocols with a dedicated fingerprint probe"""
    SSH = "SSH"
    MYSQL = "MySQL"
    REDIS = "Redis"
    MONGODB = "MongoDB"
    POSTGRESQL = "PostgreSQL"
    HTTP = "HTTP"


@dataclass(frozen=True)
class FingerprintResult:
    """Version string confirmed by exactly one probe."""
    protocol: Protocol
    version_string: str

    def to_dict(self) -> Dict[str, str]:
        return {"protocol": self.protocol.value, "version": self.version_string}


@dataclass(frozen=True)
class ProbeSpec:
    """
    A single protocol probe.

    Attributes:
        protocol: Protocol the probe identifies
        ports: Well-known ports that select this probe
        keywords: Service label fragments that select this probe
        decoder_factory: Builds a fresh incremental decoder per attempt
        payload_factory: Builds the bytes to send (None: server speaks first)
        exclude_keywords: Label fragments that veto a keyword match
    """
    protocol: Protocol
    ports: FrozenSet[int]
    keywords: Tuple[str, ...]
    decoder_factory: Callable[[], WireDecoder]
    payload_factory: Optional[Callable[[str], bytes]] = None
    exclude_keywords: Tuple[str, ...] = field(default=())

    def matches(self, port: int, service_label: str = "") -> bool:
        if port in self.ports:
            return True
        label = (service_label or "").lower()
        if not label or any(word in label for word in self.exclude_keywords):
            return False
        return any(word in label for word in self.keywords)


# Priority order: protocol-specific probes first, generic HTTP last
PROBES: Tuple[ProbeSpec, ...] = (
    ProbeSpec(
        protocol=Protocol.SSH,
        ports=frozenset({22}),
        keywords=("ssh",),
        decoder_factory=SSHBannerDecoder,
    ),
    ProbeSpec(
        protocol=Protocol.MYSQL,
        ports=frozenset({3306}),
        keywords=("mysql", "mariadb"),
        decoder_factory=MySQLHandshakeDecoder,
    ),
    ProbeSpec(
        protocol=Protocol.REDIS,
        ports=frozenset({6379}),
        keywords=("redis",),
        decoder_factory=RedisInfoDecoder,
        payload_factory=lambda host: REDIS_INFO_COMMAND,
    ),
    ProbeSpec(
        protocol=Protocol.MONGODB,
        ports=frozenset({27017}),
        keywords=("mongo",),
        decoder_factory=MongoDBReplyDecoder,
        payload_factory=lambda host: build_mongodb_ismaster(),
    ),
    ProbeSpec(
        protocol=Protocol.POSTGRESQL,
        ports=frozenset({5432}),
        keywords=("postgres",),
        decoder_factory=PostgreSQLReplyDecoder,
        payload_factory=lambda host: build_postgres_probe(),
    ),
    ProbeSpec(
        protocol=Protocol.HTTP,
        ports=frozenset({80, 3000, 5000, 8000, 8008, 8080, 8088, 8888}),
        keywords=("http", "nginx", "apache"),
        decoder_factory=HTTPHeaderDecoder,
        payload_factory=build_http_head,
        exclude_keywords=("https",),
    ),
)


def select_probes(port: int, service_label: str = "") -> List[ProbeSpec]:
    """
    Probes applicable to a port, in priority order.

    Args:
        port: Target port
        service_label: Known or guessed service/process label

    Returns:
        Ordered list of ProbeSpec (possibly empty)
    """
    return [spec for spec in PROBES if spec.matches(port, service_label)]


async def _close_quietly(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=1.0)
    except (OSError, asyncio.TimeoutError):
        pass


async def run_probe(
    spec: ProbeSpec,
    host: str,
    port: int,
    timeout: float = DEFAULT_FINGERPRINT_TIMEOUT,
    max_bytes: int = MAX_RESPONSE_BYTES
) -> Optional[str]:
    """
    Run one probe on a freshly opened connection.

    The timeout is a hard deadline for the whole exchange, not per read.

    Args:
        spec: Probe to run
        host: Target host
        port: Target port
        timeout: Overall deadline in seconds
        max_bytes: Response buffer cap

    Returns:
        Version string or None
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except (asyncio.TimeoutError, OSError):
        return None

    decoder = spec.decoder_factory()
    decoder.max_buffer = max_bytes

    try:
        if spec.payload_factory is not None:
            writer.write(spec.payload_factory(host))
            await asyncio.wait_for(writer.drain(), timeout=max(0.01, deadline - loop.time()))

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return None

            chunk = await asyncio.wait_for(reader.read(_READ_CHUNK), timeout=remaining)
            result = decoder.feed(chunk) if chunk else decoder.finish()

            if result.status is DecodeStatus.MATCHED:
                return result.version
            if result.status is DecodeStatus.NO_MATCH:
                return None

    except (asyncio.TimeoutError, OSError, ValueError) as e:
        logger.debug(f"{spec.protocol.value} probe on {host}:{port} abandoned: {e!r}")
        return None
    finally:
        await _close_quietly(writer)


class FingerprintEngine:
    """
    Dispatches protocol probes for open ports.

    Args:
        timeout: Per-probe deadline in seconds
        max_bytes: Per-probe response cap
        concurrency: Ports fingerprinted at once by ``fingerprint_many``
    """

    def __init__(
        self,
        timeout: float = DEFAULT_FINGERPRINT_TIMEOUT,
        max_bytes: int = MAX_RESPONSE_BYTES,
        concurrency: int = DEFAULT_FINGERPRINT_CONCURRENCY
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.concurrency = max(1, concurrency)

    async def fingerprint(
        self, host: str, port: int, service_label: str = ""
    ) -> Optional[FingerprintResult]:
        """
        Fingerprint a single port.

        Args:
            host: Target host
            port: Target port
            service_label: Known or guessed label used for dispatch

        Returns:
            FingerprintResult from the first matching probe, or None
        """
        for spec in select_probes(port, service_label):
            try:
                version = await run_probe(spec, host, port, self.timeout, self.max_bytes)
            except Exception as e:  # a broken probe must not abort the scan
                logger.debug(f"{spec.protocol.value} probe on {host}:{port} failed: {e!r}")
                version = None

            if version:
                logger.debug(f"{host}:{port} identified as {version}")
                return FingerprintResult(spec.protocol, version)

        return None

    async def fingerprint_many(
        self, host: str, targets: List[Tuple[int, str]]
    ) -> Dict[int, FingerprintResult]:
        """
        Fingerprint several ports under bounded concurrency.

        Args:
            host: Target host
            targets: (port, service_label) pairs

        Returns:
            Mapping of port to FingerprintResult for identified ports
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(port: int, label: str) -> Tuple[int, Optional[FingerprintResult]]:
            async with semaphore:
                return port, await self.fingerprint(host, port, label)

        results = await asyncio.gather(
            *(_bounded(port, label) for port, label in targets),
            return_exceptions=True
        )

        identified = {}
        for item in results:
            if isinstance(item, tuple) and item[1] is not None:
                identified[item[0]] = item[1]
        return identified


def fingerprint_port(
    host: str, port: int, service_label: str = "", timeout: float = DEFAULT_FINGERPRINT_TIMEOUT
) -> Optional[FingerprintResult]:
    """Synchronous convenience wrapper for a single port."""
    engine = FingerprintEngine(timeout=timeout)
    return asyncio.run(engine.fingerprint(host, port, service_label))


__all__ = [
    'Protocol',
    'FingerprintResult',
    'ProbeSpec',
    'PROBES',
    'select_probes',
    'run_probe',
    'FingerprintEngine',
    'fingerprint_port',
]
