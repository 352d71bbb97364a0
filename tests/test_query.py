"""Brief: Tests for the SA-MP query codec and client against a loopback responder.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import socket
import struct
import threading
import time

import pytest

from conftest import DEFAULT_RULES, encode_info, encode_rules
from sampdir.errors import QueryMalformed
from sampdir.models import FailureReason, QueryFailure, QuerySuccess
from sampdir.query import (
    OPCODE_INFO,
    OPCODE_RULES,
    ServerQueryClient,
    build_request,
    describe,
    parse_info,
    parse_rules,
)


def test_build_request_layout() -> None:
    """Brief: Request is magic, IPv4 octets, LE port and opcode.

    Inputs:
      - None.

    Outputs:
      - None; asserts exact bytes.
    """

    req = build_request("127.0.0.1", 7777, OPCODE_RULES)
    assert req == b"SAMP" + bytes([127, 0, 0, 1]) + struct.pack("<H", 7777) + b"r"
    assert len(req) == 11


def test_parse_info_decodes_fields() -> None:
    """Brief: parse_info decodes counts and length-prefixed strings.

    Inputs:
      - None.

    Outputs:
      - None; asserts decoded BasicInfo.
    """

    header = build_request("127.0.0.1", 7777, OPCODE_INFO)
    info = parse_info(header + encode_info("Caf\xe9", "DM", "EN", 2, 100, 1))
    assert info.password is True
    assert info.players == 2
    assert info.max_players == 100
    assert info.hostname == "Caf\xe9"
    assert info.mode == "DM"
    assert info.language == "EN"


def test_parse_info_truncated_raises() -> None:
    """Brief: A length prefix pointing past the datagram is malformed.

    Inputs:
      - None.

    Outputs:
      - None; asserts QueryMalformed.
    """

    header = build_request("127.0.0.1", 7777, OPCODE_INFO)
    body = struct.pack("<BHHI", 0, 1, 2, 50) + b"short"
    with pytest.raises(QueryMalformed):
        parse_info(header + body)


def test_parse_info_wrong_opcode_raises() -> None:
    """Brief: An 'r' response handed to parse_info is malformed.

    Inputs:
      - None.

    Outputs:
      - None; asserts QueryMalformed.
    """

    header = build_request("127.0.0.1", 7777, OPCODE_RULES)
    with pytest.raises(QueryMalformed):
        parse_info(header + encode_info("a", "b", "c"))


def test_parse_rules_last_duplicate_wins() -> None:
    """Brief: Repeated rule names keep the last value.

    Inputs:
      - None.

    Outputs:
      - None; asserts mapping.
    """

    header = build_request("127.0.0.1", 7777, OPCODE_RULES)
    rules = parse_rules(header + encode_rules([("a", "1"), ("b", "2"), ("a", "3")]))
    assert rules == {"a": "3", "b": "2"}


def test_query_success_against_loopback(samp_server) -> None:
    """Brief: Both phases answered yields QuerySuccess with merged data.

    Inputs:
      - samp_server: responder factory fixture.

    Outputs:
      - None; asserts record fields and request sequence.
    """

    srv = samp_server()
    outcome = ServerQueryClient(timeout_seconds=1.0).query(srv.address, srv.port)
    assert isinstance(outcome, QuerySuccess)
    rec = outcome.to_record(srv.address, srv.port)
    assert rec.hostname == "Test Server"
    assert rec.map == "San Andreas"
    assert rec.website == "www.sa-mp.com"
    assert rec.weather == 10
    assert [r[10:11] for r in srv.requests] == [b"i", b"r"]
    assert srv.requests[0] == build_request(srv.address, srv.port, OPCODE_INFO)
    assert describe(outcome) is None


def test_query_timeout_when_rules_never_answered(samp_server) -> None:
    """Brief: A silent rules phase yields TIMEOUT in phase 'rules'.

    Inputs:
      - samp_server: responder factory fixture.

    Outputs:
      - None; asserts failure reason and phase.
    """

    srv = samp_server(rules_body=None)
    outcome = ServerQueryClient(timeout_seconds=0.3).query(srv.address, srv.port)
    assert isinstance(outcome, QueryFailure)
    assert outcome.reason is FailureReason.TIMEOUT
    assert outcome.phase == "rules"
    assert "timeout during rules" in describe(outcome)


def test_query_malformed_info(samp_server) -> None:
    """Brief: A garbage info reply yields MALFORMED in phase 'info'.

    Inputs:
      - samp_server: responder factory fixture.

    Outputs:
      - None; asserts failure reason and phase.
    """

    srv = samp_server(raw_reply=lambda req: b"XXXX garbage")
    outcome = ServerQueryClient(timeout_seconds=0.5).query(srv.address, srv.port)
    assert isinstance(outcome, QueryFailure)
    assert outcome.reason is FailureReason.MALFORMED
    assert outcome.phase == "info"


def test_query_non_numeric_weather_is_malformed(samp_server) -> None:
    """Brief: A weather rule that is not an integer is MALFORMED.

    Inputs:
      - samp_server: responder factory fixture.

    Outputs:
      - None; asserts failure reason.
    """

    srv = samp_server(rules_body=encode_rules([("weather", "rainy")]))
    outcome = ServerQueryClient(timeout_seconds=0.5).query(srv.address, srv.port)
    assert isinstance(outcome, QueryFailure)
    assert outcome.reason is FailureReason.MALFORMED


def test_query_discards_stale_info_reply_during_rules(samp_server) -> None:
    """Brief: A late 'i' duplicate arriving in the rules phase is skipped.

    Inputs:
      - samp_server: responder factory fixture.

    Outputs:
      - None; asserts success despite the stale datagram.
    """

    info_body = encode_info("Dup", "m", "l")
    rules_body = encode_rules(DEFAULT_RULES)

    def _reply(req):
        if req[10:11] == b"i":
            return req[:11] + info_body
        return [req[:10] + b"i" + info_body, req[:11] + rules_body]

    srv = samp_server(raw_reply=_reply)
    outcome = ServerQueryClient(timeout_seconds=1.0).query(srv.address, srv.port)
    assert isinstance(outcome, QuerySuccess)
    assert outcome.info.hostname == "Dup"
    assert outcome.rules["weather"] == "10"


def test_query_unresolvable_host_is_unreachable(monkeypatch) -> None:
    """Brief: A resolver error yields UNREACHABLE in phase 'resolve'.

    Inputs:
      - monkeypatch: pytest fixture.

    Outputs:
      - None; asserts failure reason and phase.
    """

    def _fail(name):
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(socket, "gethostbyname", _fail)
    outcome = ServerQueryClient(timeout_seconds=0.2).query("no.such.host", 7777)
    assert isinstance(outcome, QueryFailure)
    assert outcome.reason is FailureReason.UNREACHABLE
    assert outcome.phase == "resolve"


def test_query_stalled_resolver_times_out(monkeypatch) -> None:
    """Brief: A name lookup slower than timeout_seconds is a resolve TIMEOUT.

    Inputs:
      - monkeypatch: pytest fixture.

    Outputs:
      - None; asserts failure reason, phase and that the call returned early.
    """

    release = threading.Event()

    def _stall(name):
        release.wait(5)
        raise socket.gaierror(-3, "Temporary failure in name resolution")

    monkeypatch.setattr(socket, "gethostbyname", _stall)
    started = time.monotonic()
    try:
        outcome = ServerQueryClient(timeout_seconds=0.2).query("slow.example", 7777)
    finally:
        release.set()
    assert time.monotonic() - started < 2.0
    assert isinstance(outcome, QueryFailure)
    assert outcome.reason is FailureReason.TIMEOUT
    assert outcome.phase == "resolve"


def test_query_ipv4_literal_skips_resolver(monkeypatch, samp_server) -> None:
    """Brief: Dotted-quad addresses are queried without a name lookup.

    Inputs:
      - monkeypatch: pytest fixture.
      - samp_server: responder factory fixture.

    Outputs:
      - None; asserts success with gethostbyname disabled.
    """

    def _fail(name):
        raise AssertionError(f"unexpected lookup of {name!r}")

    srv = samp_server()
    monkeypatch.setattr(socket, "gethostbyname", _fail)
    outcome = ServerQueryClient(timeout_seconds=1.0).query(srv.address, srv.port)
    assert isinstance(outcome, QuerySuccess)
