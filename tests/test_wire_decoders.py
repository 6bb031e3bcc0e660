"""Tests for the incremental wire decoders and payload builders."""

import struct

from netscout.core.wire_decoders import (
    DecodeStatus,
    HTTPHeaderDecoder,
    MongoDBReplyDecoder,
    MySQLHandshakeDecoder,
    PostgreSQLReplyDecoder,
    RedisInfoDecoder,
    SSHBannerDecoder,
    build_mongodb_ismaster,
    build_postgres_probe,
)


def feed_all(decoder, *chunks):
    result = None
    for chunk in chunks:
        result = decoder.feed(chunk)
        if result.is_final:
            return result
    return decoder.finish()


def mysql_handshake(version: bytes, protocol: int = 10) -> bytes:
    payload = bytes([protocol]) + version + b"\x00" + b"\x01\x00\x00\x00" + b"abcdefgh\x00"
    return struct.pack("<I", len(payload))[:3] + b"\x00" + payload


def bson_string(key: str, value: str) -> bytes:
    raw = value.encode() + b"\x00"
    return b"\x02" + key.encode() + b"\x00" + struct.pack("<i", len(raw)) + raw


def test_ssh_banner_split_across_chunks():
    decoder = SSHBannerDecoder()
    assert decoder.feed(b"SSH-2.0-Open").status is DecodeStatus.INCOMPLETE
    result = decoder.feed(b"SSH_9.6p1 Ubuntu-3\r\n")
    assert result.status is DecodeStatus.MATCHED
    assert result.version == "SSH OpenSSH_9.6p1 Ubuntu-3"


def test_ssh_banner_without_newline_matches_at_eof():
    decoder = SSHBannerDecoder()
    decoder.feed(b"SSH-2.0-dropbear_2022.83")
    assert decoder.finish().version == "SSH dropbear_2022.83"


def test_ssh_non_banner_is_no_match():
    assert feed_all(SSHBannerDecoder(), b"HTTP/1.1 400 Bad Request\r\n").status is DecodeStatus.NO_MATCH


def test_mysql_handshake_version():
    packet = mysql_handshake(b"8.0.36-0ubuntu0.22.04.1")
    result = feed_all(MySQLHandshakeDecoder(), packet[:7], packet[7:])
    assert result.version == "MySQL 8.0.36-0ubuntu0.22.04.1"


def test_mysql_error_packet_is_no_match():
    err = b"\x17\x00\x00\x00\xff\x6a\x04Host is not allowed"
    assert feed_all(MySQLHandshakeDecoder(), err).status is DecodeStatus.NO_MATCH


def test_mysql_unterminated_version_is_no_match():
    packet = b"\x60\x00\x00\x00\x0a" + b"9" * 80
    assert feed_all(MySQLHandshakeDecoder(), packet).status is DecodeStatus.NO_MATCH


def test_redis_info_version():
    reply = b"$3000\r\n# Server\r\nredis_version:7.2.0\r\nredis_git_sha1:00000000\r\n"
    result = feed_all(RedisInfoDecoder(), reply[:20], reply[20:])
    assert result.version == "Redis 7.2.0"


def test_redis_noauth_is_no_match():
    result = feed_all(RedisInfoDecoder(), b"-NOAUTH Authentication required.\r\n")
    assert result.status is DecodeStatus.NO_MATCH


def test_mongodb_bson_version():
    document = bson_string("version", "7.0.5") + b"\x00"
    body = struct.pack("<i", len(document) + 4) + document
    reply = struct.pack("<iiii", 16 + 20 + len(body), 7, 1, 1) + b"\x00" * 20 + body
    assert feed_all(MongoDBReplyDecoder(), reply).version == "MongoDB 7.0.5"


def test_mongodb_textual_version():
    assert feed_all(MongoDBReplyDecoder(), b'{"version": "6.0.13"}').version == "MongoDB 6.0.13"


def test_mongodb_complete_reply_without_version_is_no_match():
    reply = struct.pack("<iiii", 24, 1, 1, 1) + b"\x00" * 8
    assert MongoDBReplyDecoder().feed(reply).status is DecodeStatus.NO_MATCH


def test_mongodb_version_split_across_chunks():
    decoder = MongoDBReplyDecoder()
    text = b"x" * 200 + b'"version": "5.0.2"'
    decoder.feed(text[:205])
    assert decoder.feed(text[205:]).version == "MongoDB 5.0.2"


def test_postgres_version_from_error_message():
    message = b"SFATAL\x00Munsupported frontend protocol; PostgreSQL 16.2\x00\x00"
    reply = b"E" + struct.pack(">i", len(message) + 4) + message
    assert feed_all(PostgreSQLReplyDecoder(), reply).version == "PostgreSQL 16.2"


def test_postgres_lone_ssl_answer_is_no_match():
    decoder = PostgreSQLReplyDecoder()
    assert decoder.feed(b"N").status is DecodeStatus.NO_MATCH


def test_http_server_header_beats_powered_by():
    reply = b"HTTP/1.1 200 OK\r\nX-Powered-By: Express\r\nServer: nginx/1.24.0\r\n\r\n"
    assert feed_all(HTTPHeaderDecoder(), reply).version == "nginx/1.24.0"


def test_http_powered_by_fallback():
    reply = b"HTTP/1.0 404 Not Found\r\nX-Powered-By: PHP/8.3.1\r\nContent-Length: 0\r\n\r\n"
    assert feed_all(HTTPHeaderDecoder(), reply).version == "PHP/8.3.1"


def test_http_non_http_reply_is_no_match():
    assert feed_all(HTTPHeaderDecoder(), b"SSH-2.0-OpenSSH_9.6\r\n").status is DecodeStatus.NO_MATCH


def test_result_is_sticky_after_match():
    decoder = SSHBannerDecoder()
    first = decoder.feed(b"SSH-2.0-OpenSSH_9.6\r\n")
    assert decoder.feed(b"garbage\r\n") is first
    assert decoder.finish() is first


def test_buffer_cap_ends_decoding():
    decoder = HTTPHeaderDecoder()
    decoder.max_buffer = 64
    decoder.feed(b"HTTP/1.1 200 OK\r\n")
    assert decoder.feed(b"X" * 100).status is DecodeStatus.NO_MATCH


def test_postgres_probe_layout():
    assert build_postgres_probe() == struct.pack(">ihh", 8, 1234, 5679)


def test_mongodb_ismaster_lengths_are_consistent():
    message = build_mongodb_ismaster(request_id=42)
    length, request_id, response_to, opcode = struct.unpack_from("<iiii", message)
    assert length == len(message)
    assert (request_id, response_to, opcode) == (42, 0, 2004)
    assert b"admin.$cmd\x00" in message
    doc_start = message.index(b"admin.$cmd\x00") + len(b"admin.$cmd\x00") + 8
    (doc_length,) = struct.unpack_from("<i", message, doc_start)
    assert doc_start + doc_length == len(message)
