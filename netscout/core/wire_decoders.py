"""
Incremental Wire Decoders
=========================

Each decoder is fed response chunks as they arrive and answers with a
tagged result: ``MATCHED`` (with a version string), ``NO_MATCH`` or
``INCOMPLETE``. Decoders remember how far they have scanned so a growing
buffer is never re-scanned from the start.

Also holds the request payload builders the probes send.

Version: 1.0.0
"""

import re
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Optional, List, Pattern

# Hard cap on bytes accepted from a single endpoint
MAX_RESPONSE_BYTES = 64 * 1024

# MySQL server version strings are short; anything longer is not a handshake
MYSQL_MAX_VERSION_LEN = 50

MONGODB_OP_QUERY = 2004


class DecodeStatus(Enum):
    """Decoder verdict after a feed."""
    MATCHED = "matched"
    NO_MATCH = "no_match"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class DecodeResult:
    """Tagged decode outcome."""
    status: DecodeStatus
    version: Optional[str] = None

    @classmethod
    def matched(cls, version: str) -> "DecodeResult":
        return cls(DecodeStatus.MATCHED, version)

    @property
    def is_final(self) -> bool:
        return self.status is not DecodeStatus.INCOMPLETE


NO_MATCH = DecodeResult(DecodeStatus.NO_MATCH)
INCOMPLETE = DecodeResult(DecodeStatus.INCOMPLETE)


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================

REDIS_INFO_COMMAND = b"INFO\r\n"


def build_http_head(host: str) -> bytes:
    """Minimal HEAD request for ``/``."""
    return (
        f"HEAD / HTTP/1.0\r\n"
        f"Host: {host}\r\n"
        f"User-Agent: NetScout/1.0\r\n"
        f"Accept: */*\r\n\r\n"
    ).encode("ascii", errors="ignore")


def build_postgres_probe() -> bytes:
    """8-byte request packet: length 8, request code 1234/5679."""
    return struct.pack(">ihh", 8, 1234, 5679)


def _bson_int32_document(key: str, value: int) -> bytes:
    element = b"\x10" + key.encode("ascii") + b"\x00" + struct.pack("<i", value)
    body = element + b"\x00"
    return struct.pack("<i", len(body) + 4) + body


def build_mongodb_ismaster(request_id: int = 1) -> bytes:
    """
    OP_QUERY against ``admin.$cmd`` carrying ``{isMaster: 1}``.

    Layout: header (length, requestID, responseTo, opCode), flags,
    cstring collection name, numberToSkip, numberToReturn, query document.
    """
    query = _bson_int32_document("isMaster", 1)
    body = (
        struct.pack("<i", 0)
        + b"admin.$cmd\x00"
        + struct.pack("<ii", 0, 1)
        + query
    )
    header = struct.pack("<iiii", 16 + len(body), request_id, 0, MONGODB_OP_QUERY)
    return header + body


# =============================================================================
# DECODER BASES
# =============================================================================

class WireDecoder:
    """
    Base incremental decoder.

    Subclasses implement ``_decode(final)``. Once a final result is
    produced it is sticky; further feeds return it unchanged.
    """

    max_buffer = MAX_RESPONSE_BYTES

    def __init__(self):
        self._buffer = bytearray()
        self._result: Optional[DecodeResult] = None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def feed(self, chunk: bytes) -> DecodeResult:
        """
        Append a chunk and decode what is new.

        Args:
            chunk: Bytes just read from the socket

        Returns:
            DecodeResult
        """
        if self._result is not None:
            return self._result

        room = self.max_buffer - len(self._buffer)
        self._buffer.extend(chunk[:max(0, room)])

        result = self._decode(final=False)
        if not result.is_final and len(self._buffer) >= self.max_buffer:
            result = NO_MATCH
        if result.is_final:
            self._result = result
        return result

    def finish(self) -> DecodeResult:
        """Signal end of stream; anything still undecided is NO_MATCH."""
        if self._result is not None:
            return self._result

        result = self._decode(final=True)
        if not result.is_final:
            result = NO_MATCH
        self._result = result
        return result

    def _decode(self, final: bool) -> DecodeResult:
        raise NotImplementedError


class LineDecoder(WireDecoder):
    """Decoder for line-oriented text protocols."""

    def __init__(self):
        super().__init__()
        self._line_start = 0

    def _decode(self, final: bool) -> DecodeResult:
        while True:
            newline = self._buffer.find(b"\n", self._line_start)
            if newline < 0:
                break
            raw = bytes(self._buffer[self._line_start:newline])
            self._line_start = newline + 1
            result = self.match_line(raw.rstrip(b"\r").decode("utf-8", errors="ignore"))
            if result is not None:
                return result

        if final and self._line_start < len(self._buffer):
            raw = bytes(self._buffer[self._line_start:])
            self._line_start = len(self._buffer)
            result = self.match_line(raw.rstrip(b"\r").decode("utf-8", errors="ignore"))
            if result is not None:
                return result
            return self.end_of_stream()

        if final:
            return self.end_of_stream()
        return INCOMPLETE

    def match_line(self, line: str) -> Optional[DecodeResult]:
        """Return a final result, or None to keep reading."""
        raise NotImplementedError

    def end_of_stream(self) -> DecodeResult:
        return NO_MATCH


class PatternDecoder(WireDecoder):
    """
    Decoder that searches raw bytes for version patterns.

    Only the newly arrived bytes plus a small overlap window are searched
    on each feed.
    """

    patterns: List[Pattern[bytes]] = []
    overlap = 96
    product = ""

    def __init__(self):
        super().__init__()
        self._scanned = 0

    def _decode(self, final: bool) -> DecodeResult:
        start = max(0, self._scanned - self.overlap)
        window = bytes(self._buffer[start:])
        self._scanned = len(self._buffer)

        for pattern in self.patterns:
            match = pattern.search(window)
            if match:
                version = match.group(1).decode("ascii", errors="ignore").strip()
                if version:
                    return DecodeResult.matched(f"{self.product} {version}")

        if self.is_complete():
            return NO_MATCH
        return INCOMPLETE

    def is_complete(self) -> bool:
        """True when the peer's reply is fully buffered."""
        return False


# =============================================================================
# PROTOCOL DECODERS
# =============================================================================

_SSH_BANNER = re.compile(r"^SSH-([\d.]+)-(.+)$")


class SSHBannerDecoder(LineDecoder):
    """Server speaks first: ``SSH-2.0-OpenSSH_9.6p1 Ubuntu-3``."""

    def match_line(self, line: str) -> Optional[DecodeResult]:
        match = _SSH_BANNER.match(line.strip())
        if match:
            return DecodeResult.matched(f"SSH {match.group(2).strip()}")
        return None


class MySQLHandshakeDecoder(WireDecoder):
    """
    Initial handshake packet.

    Bytes 0-2 payload length, byte 3 sequence id, byte 4 protocol version,
    then a null-terminated server version string from offset 5.
    """

    VERSION_OFFSET = 5

    def __init__(self):
        super().__init__()
        self._scan_from = self.VERSION_OFFSET

    def _decode(self, final: bool) -> DecodeResult:
        buf = self._buffer
        if len(buf) < self.VERSION_OFFSET:
            return INCOMPLETE

        # 0xFF is an ERR packet (e.g. host not allowed to connect)
        if buf[4] not in (9, 10):
            return NO_MATCH

        limit = self.VERSION_OFFSET + MYSQL_MAX_VERSION_LEN + 1
        end = buf.find(b"\x00", self._scan_from, limit)
        if end < 0:
            self._scan_from = min(len(buf), limit)
            if len(buf) >= limit:
                return NO_MATCH
            return INCOMPLETE

        version = bytes(buf[self.VERSION_OFFSET:end]).decode("utf-8", errors="ignore")
        if not version or not version.isprintable():
            return NO_MATCH
        return DecodeResult.matched(f"MySQL {version}")


class RedisInfoDecoder(LineDecoder):
    """Looks for ``redis_version:`` in the INFO reply."""

    def match_line(self, line: str) -> Optional[DecodeResult]:
        if line.startswith("-"):
            # -ERR / -NOAUTH: it is Redis, but the version is hidden
            return NO_MATCH
        if line.startswith("redis_version:"):
            version = line.split(":", 1)[1].strip()
            if version:
                return DecodeResult.matched(f"Redis {version}")
        return None


class MongoDBReplyDecoder(PatternDecoder):
    """Best-effort scan of the isMaster reply."""

    product = "MongoDB"
    patterns = [
        # BSON string element: 0x02 "version\0" int32 length, value, \0
        re.compile(rb"\x02version\x00.{4}([0-9][0-9A-Za-z.+\-]*)\x00", re.DOTALL),
        re.compile(rb'version"?\s*:\s*"?([0-9]+(?:\.[0-9]+)+)', re.IGNORECASE),
    ]

    def is_complete(self) -> bool:
        if len(self._buffer) < 4:
            return False
        (message_length,) = struct.unpack_from("<i", self._buffer, 0)
        return message_length >= 16 and len(self._buffer) >= message_length


class PostgreSQLReplyDecoder(PatternDecoder):
    """Scans an ErrorResponse for a server version."""

    product = "PostgreSQL"
    patterns = [
        re.compile(rb"PostgreSQL\s+([0-9]+(?:\.[0-9]+)*)", re.IGNORECASE),
        re.compile(rb"server version\s+([0-9]+(?:\.[0-9]+)*)", re.IGNORECASE),
    ]

    def is_complete(self) -> bool:
        buf = self._buffer
        # Single-byte S/N answer: the server now waits for us
        if bytes(buf[:1]) in (b"S", b"N") and len(buf) == 1:
            return True
        if len(buf) >= 5 and buf[0] == ord("E"):
            (length,) = struct.unpack_from(">i", buf, 1)
            return len(buf) >= 1 + length
        return False


class HTTPHeaderDecoder(LineDecoder):
    """
    Reads response headers; ``Server`` wins over ``X-Powered-By``.

    The decision is made at the blank line ending the header block, since
    the two headers can come in either order.
    """

    def __init__(self):
        super().__init__()
        self._status_seen = False
        self._server: Optional[str] = None
        self._powered_by: Optional[str] = None

    def match_line(self, line: str) -> Optional[DecodeResult]:
        if not self._status_seen:
            if not line.startswith("HTTP/"):
                return NO_MATCH
            self._status_seen = True
            return None

        if line == "":
            return self._verdict()

        name, sep, value = line.partition(":")
        if not sep:
            return None
        name = name.strip().lower()
        if name == "server" and value.strip():
            self._server = value.strip()
        elif name == "x-powered-by" and value.strip():
            self._powered_by = value.strip()
        return None

    def end_of_stream(self) -> DecodeResult:
        return self._verdict() if self._status_seen else NO_MATCH

    def _verdict(self) -> DecodeResult:
        version = self._server or self._powered_by
        if version:
            return DecodeResult.matched(version)
        return NO_MATCH


__all__ = [
    'MAX_RESPONSE_BYTES',
    'DecodeStatus',
    'DecodeResult',
    'NO_MATCH',
    'INCOMPLETE',
    'REDIS_INFO_COMMAND',
    'build_http_head',
    'build_postgres_probe',
    'build_mongodb_ismaster',
    'WireDecoder',
    'LineDecoder',
    'PatternDecoder',
    'SSHBannerDecoder',
    'MySQLHandshakeDecoder',
    'RedisInfoDecoder',
    'MongoDBReplyDecoder',
    'PostgreSQLReplyDecoder',
    'HTTPHeaderDecoder',
]
