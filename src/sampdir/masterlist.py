from __future__ import annotations

import logging
from typing import Callable, Iterator, Optional

import requests

from .errors import LineMalformed, SourceUnavailable
from .models import RawEntry

logger = logging.getLogger(__name__)

# Some masterlist hosts reject the default python-requests agent.
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 6.1; WOW64; rv:25.0) Gecko/20100101 Firefox/25.0"
)

DEFAULT_MASTERLISTS = (
    "http://monitor.sacnr.com/list/masterlist.txt",
    "http://monitor.sacnr.com/list/hostedlist.txt",
)


def parse_line(line: str) -> Optional[RawEntry]:
    """
    Brief: Parse one masterlist line into a RawEntry.

    Inputs:
      - line (str): Raw line, with or without trailing newline.

    Outputs:
      - RawEntry, or None for blank and '#' comment lines.

    Raises:
      - LineMalformed: when the line is not exactly '<address>:<port>' with a
        numeric port in 0..65535.

    Example usage:
        >>> parse_line("203.0.113.5:7777\\n")
        RawEntry(address='203.0.113.5', port=7777)
    """

    s = line.strip()
    if not s or s.startswith("#"):
        return None
    parts = s.split(":")
    if len(parts) != 2:
        raise LineMalformed(s, "expected exactly one ':' separator")
    address, port_text = parts[0].strip(), parts[1].strip()
    if not address:
        raise LineMalformed(s, "missing address")
    if not (port_text.isascii() and port_text.isdigit()):
        raise LineMalformed(s, "port is not an ASCII decimal number")
    port = int(port_text)
    if port > 0xFFFF:
        raise LineMalformed(s, "port out of range")
    return RawEntry(address=address, port=port)


class MasterlistFetcher:
    """
    Download plaintext masterlists and yield the servers they name.

    Inputs (constructor):
      - user_agent (str): User-Agent header sent with every request.
      - timeout_seconds (float): requests connect/read timeout.
      - session (requests.Session|None): Optional session to reuse; a new one
        is created when omitted.

    Outputs:
      - MasterlistFetcher instance; fetch() returns a one-shot generator.

    Example usage:
        >>> fetcher = MasterlistFetcher()
        >>> entries = list(fetcher.fetch("http://monitor.sacnr.com/list/masterlist.txt"))  # doctest: +SKIP
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_seconds: float = 20.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout_seconds = float(timeout_seconds)
        self._session = session or requests.Session()

    def _download(self, url: str) -> str:
        try:
            r = self._session.get(
                url,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout_seconds,
            )
            r.raise_for_status()
        except requests.RequestException as exc:
            raise SourceUnavailable(url, str(exc)) from exc
        return r.text

    def fetch(
        self,
        url: str,
        on_malformed: Optional[Callable[[LineMalformed], None]] = None,
    ) -> Iterator[RawEntry]:
        """Brief: Yield every well-formed entry of the masterlist at url.

        Inputs:
          - url (str): HTTP(S) URL of the masterlist.
          - on_malformed: Optional callback receiving each LineMalformed.

        Outputs:
          - Iterator[RawEntry] in file order; duplicates are not removed here.

        Raises:
          - SourceUnavailable: on transport failure or non-2xx status, raised
            from the first next() call.
        """

        body = self._download(url)
        logger.debug("Fetched masterlist %s (%d bytes)", url, len(body))
        for raw in body.splitlines():
            try:
                entry = parse_line(raw)
            except LineMalformed as exc:
                logger.debug("Skipping line from %s: %s", url, exc)
                if on_malformed is not None:
                    on_malformed(exc)
                continue
            if entry is not None:
                yield entry
