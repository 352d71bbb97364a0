"""
Brief: Global pytest configuration enforcing per-test 10s timeout and shared
fixtures for fake masterlists and a loopback SA-MP responder.

Inputs:
  - None

Outputs:
  - None
"""

import os
import signal
import socket
import struct
import sys
import threading

import pytest

# Ensure 'src' is on sys.path so 'sampdir' package is importable in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


# Install handler if supported on this platform
if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_timeout():
    """
    Brief: Arm a 10 second alarm around every test.

    Inputs:
      - None

    Outputs:
      - None
    """
    if hasattr(signal, "alarm"):
        signal.alarm(10)
    yield
    if hasattr(signal, "alarm"):
        signal.alarm(0)


def encode_info(hostname, mode, language, players=3, max_players=50, password=0):
    """Brief: Encode an info ('i') body (without header)."""
    out = struct.pack("<BHH", password, players, max_players)
    for s in (hostname, mode, language):
        raw = s.encode("cp1252")
        out += struct.pack("<I", len(raw)) + raw
    return out


def encode_rules(pairs):
    """Brief: Encode a rules ('r') body (without header) from (name, value) pairs."""
    out = struct.pack("<H", len(pairs))
    for name, value in pairs:
        n, v = name.encode("cp1252"), value.encode("cp1252")
        out += struct.pack("<B", len(n)) + n + struct.pack("<B", len(v)) + v
    return out


DEFAULT_RULES = [
    ("lagcomp", "On"),
    ("mapname", "San Andreas"),
    ("version", "0.3.7-R2"),
    ("weather", "10"),
    ("weburl", "www.sa-mp.com"),
    ("worldtime", "12:00"),
]


class SampResponder:
    """
    Brief: Loopback UDP server answering SA-MP 'i' and 'r' requests.

    Inputs (constructor):
      - info_body: bytes returned after the echoed header for 'i', or None to
        stay silent.
      - rules_body: bytes returned after the echoed header for 'r', or None to
        stay silent.
      - raw_reply: optional callable(request) -> bytes, list of bytes, or
        None, overriding the normal replies.

    Outputs:
      - Running responder; ``address`` and ``port`` identify it.
    """

    def __init__(self, info_body=None, rules_body=None, raw_reply=None):
        self.info_body = info_body
        self.rules_body = rules_body
        self.raw_reply = raw_reply
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.address, self.port = self.sock.getsockname()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _reply_for(self, request):
        if self.raw_reply is not None:
            return self.raw_reply(request)
        opcode = request[10:11]
        if opcode == b"i" and self.info_body is not None:
            return request[:11] + self.info_body
        if opcode == b"r" and self.rules_body is not None:
            return request[:11] + self.rules_body
        return None

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, peer = self.sock.recvfrom(2048)
            except socket.timeout:
                continue
            except OSError:
                return
            self.requests.append(data)
            reply = self._reply_for(data)
            if reply is None:
                continue
            for datagram in reply if isinstance(reply, list) else [reply]:
                self.sock.sendto(datagram, peer)

    def close(self):
        self._stop.set()
        self._thread.join(timeout=1.0)
        self.sock.close()


@pytest.fixture
def samp_server():
    """
    Brief: Factory fixture starting SampResponder instances, closed on teardown.

    Inputs:
      - None

    Outputs:
      - Callable(**kwargs) -> SampResponder
    """
    started = []

    def _make(**kwargs):
        kwargs.setdefault(
            "info_body", encode_info("Test Server", "Freeroam", "English")
        )
        kwargs.setdefault("rules_body", encode_rules(DEFAULT_RULES))
        srv = SampResponder(**kwargs)
        started.append(srv)
        return srv

    yield _make
    for srv in started:
        srv.close()


class FakeResponse:
    """Brief: Minimal stand-in for requests.Response."""

    def __init__(self, text="", status_code=200, exc=None):
        self.text = text
        self.status_code = status_code
        self._exc = exc

    def raise_for_status(self):
        if self._exc is not None:
            raise self._exc


class FakeSession:
    """
    Brief: Stub requests.Session mapping URLs to bodies or exceptions.

    Inputs (constructor):
      - routes: dict of url -> str body, FakeResponse, or Exception instance.

    Outputs:
      - Session-like object recording each get() call in ``calls``.
    """

    def __init__(self, routes):
        self.routes = dict(routes)
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        target = self.routes[url]
        if isinstance(target, Exception):
            raise target
        if isinstance(target, FakeResponse):
            return target
        return FakeResponse(text=target)
