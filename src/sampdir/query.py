"""SA-MP UDP query client.

Brief:
  Speaks the two-request subset of the SA-MP query protocol needed to build a
  ServerRecord: basic info ('i') and server rules ('r'). Every request is
  ``b"SAMP"`` + 4 IPv4 octets + little-endian uint16 port + opcode, and every
  response echoes that 11-byte header before its body.

Inputs:
  - Host address (IPv4 literal or resolvable name) and UDP port.

Outputs:
  - QuerySuccess or QueryFailure; query() never raises.
"""

from __future__ import annotations

import logging
import socket
import struct
import threading
import time
from typing import Dict, Optional

from .errors import QueryMalformed, QueryTimeout
from .models import (
    BasicInfo,
    FailureReason,
    QueryFailure,
    QueryOutcome,
    QuerySuccess,
)

logger = logging.getLogger(__name__)

MAGIC = b"SAMP"
OPCODE_INFO = b"i"
OPCODE_RULES = b"r"
HEADER_LEN = 11


def build_request(ip: str, port: int, opcode: bytes) -> bytes:
    """
    Brief: Encode a query request packet.

    Inputs:
    - ip: dotted-quad IPv4 address of the target
    - port: target UDP port
    - opcode: single-byte request kind (OPCODE_INFO or OPCODE_RULES)

    Outputs:
    - bytes: 11-byte request packet

    Example:
        >>> build_request('127.0.0.1', 7777, OPCODE_INFO)
        b'SAMP\\x7f\\x00\\x00\\x01a\\x1ei'
    """
    return MAGIC + socket.inet_aton(ip) + struct.pack("<H", int(port)) + opcode


class _Reader:
    """Cursor over a response body; truncation raises QueryMalformed."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = data
        self._pos = offset

    def _take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise QueryMalformed(
                f"truncated response: need {n} bytes at offset {self._pos}, "
                f"have {len(self._data) - self._pos}"
            )
        chunk = self._data[self._pos : end]
        self._pos = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self._take(2))[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def text(self, length: int, encoding: str) -> str:
        return self._take(length).decode(encoding, errors="replace")


def _check_header(data: bytes, opcode: bytes) -> None:
    if len(data) < HEADER_LEN:
        raise QueryMalformed(f"response shorter than header ({len(data)} bytes)")
    if data[:4] != MAGIC:
        raise QueryMalformed("response does not start with SAMP magic")
    if data[10:11] != opcode:
        raise QueryMalformed(
            f"response opcode {data[10:11]!r} does not match request {opcode!r}"
        )


def parse_info(data: bytes, encoding: str = "cp1252") -> BasicInfo:
    """Brief: Decode a basic info response datagram.

    Inputs:
      - data: full datagram including the 11-byte header.
      - encoding: codec for the hostname/mode/language strings.

    Outputs:
      - BasicInfo.

    Raises:
      - QueryMalformed: wrong header, wrong opcode, or truncated body.
    """

    _check_header(data, OPCODE_INFO)
    r = _Reader(data, HEADER_LEN)
    password = bool(r.u8())
    players = r.u16()
    max_players = r.u16()
    hostname = r.text(r.u32(), encoding)
    mode = r.text(r.u32(), encoding)
    language = r.text(r.u32(), encoding)
    return BasicInfo(
        password=password,
        players=players,
        max_players=max_players,
        hostname=hostname,
        mode=mode,
        language=language,
    )


def parse_rules(data: bytes, encoding: str = "cp1252") -> Dict[str, str]:
    """Brief: Decode a rules response datagram into a name -> value mapping.

    Inputs:
      - data: full datagram including the 11-byte header.
      - encoding: codec for rule names and values.

    Outputs:
      - dict of rule name to value; when a name repeats, the last value wins.

    Raises:
      - QueryMalformed: wrong header, wrong opcode, or truncated body.
    """

    _check_header(data, OPCODE_RULES)
    r = _Reader(data, HEADER_LEN)
    count = r.u16()
    rules: Dict[str, str] = {}
    for _ in range(count):
        name = r.text(r.u8(), encoding)
        value = r.text(r.u8(), encoding)
        rules[name] = value
    return rules


def _check_rules(rules: Dict[str, str]) -> None:
    weather = rules.get("weather")
    if weather in (None, ""):
        return
    try:
        int(weather)
    except ValueError:
        raise QueryMalformed(f"weather rule {weather!r} is not an integer")


class ServerQueryClient:
    """
    Query one SA-MP server for basic info and rules.

    Inputs (constructor):
        timeout_seconds: Budget for each phase's response (default 2.0)
        encoding: Codec used for server strings (default cp1252)
        recv_size: Maximum datagram size accepted

    Outputs:
        ServerQueryClient; query() is safe to call from several threads at
        once since every call owns its socket.

    Example:
        >>> client = ServerQueryClient(timeout_seconds=1.0)
        >>> outcome = client.query('203.0.113.5', 7777)  # doctest: +SKIP
    """

    def __init__(
        self,
        timeout_seconds: float = 2.0,
        encoding: str = "cp1252",
        recv_size: int = 65535,
    ) -> None:
        self.timeout_seconds = float(timeout_seconds)
        self.encoding = encoding
        self.recv_size = int(recv_size)

    def _exchange(self, sock: socket.socket, request: bytes) -> bytes:
        """Send request and return the first datagram echoing its opcode.

        Datagrams for the other opcode (a late duplicate of the previous
        phase) are discarded; anything else without the SAMP magic is
        malformed.
        """
        opcode = request[10:11]
        deadline = time.monotonic() + self.timeout_seconds
        sock.send(request)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise QueryTimeout(f"no {opcode!r} response")
            sock.settimeout(remaining)
            try:
                data = sock.recv(self.recv_size)
            except socket.timeout:
                raise QueryTimeout(f"no {opcode!r} response")
            if (
                len(data) >= HEADER_LEN
                and data[:4] == MAGIC
                and data[10:11] in (OPCODE_INFO, OPCODE_RULES)
                and data[10:11] != opcode
            ):
                logger.debug("Discarding stale %r datagram", data[10:11])
                continue
            return data

    def _resolve(self, address: str) -> str:
        """Return the IPv4 address for address within timeout_seconds.

        Dotted-quad literals are returned as-is. Names are looked up on a
        daemon thread so a stalled resolver costs at most timeout_seconds;
        the lookup itself is abandoned, not cancelled.
        """
        if address.count(".") == 3:
            try:
                socket.inet_aton(address)
                return address
            except OSError:
                pass

        result: Dict[str, object] = {}
        done = threading.Event()

        def _lookup() -> None:
            try:
                result["ip"] = socket.gethostbyname(address)
            except OSError as exc:
                result["error"] = exc
            finally:
                done.set()

        threading.Thread(target=_lookup, name="sampdir-resolve", daemon=True).start()
        if not done.wait(self.timeout_seconds):
            raise QueryTimeout(f"resolving {address!r} took longer than {self.timeout_seconds}s")
        if "error" in result:
            raise result["error"]  # type: ignore[misc]
        return str(result["ip"])

    def query(self, address: str, port: int) -> QueryOutcome:
        """Brief: Run both query phases against address:port.

        Inputs:
          - address: IPv4 literal or host name.
          - port: UDP port.

        Outputs:
          - QuerySuccess when both phases decode, otherwise QueryFailure with
            the failing phase ('resolve', 'info' or 'rules').
        """

        phase = "resolve"
        try:
            ip = self._resolve(address)
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.connect((ip, int(port)))
                phase = "info"
                info = parse_info(
                    self._exchange(sock, build_request(ip, port, OPCODE_INFO)),
                    self.encoding,
                )
                phase = "rules"
                rules = parse_rules(
                    self._exchange(sock, build_request(ip, port, OPCODE_RULES)),
                    self.encoding,
                )
            _check_rules(rules)
            return QuerySuccess(info=info, rules=rules)
        except QueryTimeout as exc:
            return QueryFailure(FailureReason.TIMEOUT, phase, str(exc))
        except QueryMalformed as exc:
            return QueryFailure(FailureReason.MALFORMED, phase, str(exc))
        except OSError as exc:
            return QueryFailure(FailureReason.UNREACHABLE, phase, str(exc))
        except Exception as exc:  # pragma: no cover - decoder bugs
            logger.debug(
                "Unexpected error querying %s:%s", address, port, exc_info=True
            )
            return QueryFailure(FailureReason.MALFORMED, phase, str(exc))


def describe(outcome: QueryOutcome) -> Optional[str]:
    """Return a short log-friendly description of a failure, or None."""
    if isinstance(outcome, QueryFailure):
        return f"{outcome.reason.value} during {outcome.phase}: {outcome.detail}"
    return None
