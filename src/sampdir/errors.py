"""Exception taxonomy for the directory refresh engine.

Brief:
  Per-line and per-host errors are recovered where they occur; only
  SourceUnavailable (for every configured source) and StoreUnavailable abort
  a refresh cycle.
"""

from __future__ import annotations


class DirectoryError(Exception):
    """Base class for all sampdir errors."""


class SourceUnavailable(DirectoryError):
    """
    Brief: A masterlist could not be downloaded.

    Inputs:
    - url: masterlist URL
    - reason: transport or HTTP error description

    Outputs:
    - Exception instance
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"masterlist {url} unavailable: {reason}")
        self.url = url
        self.reason = reason


class LineMalformed(DirectoryError):
    """A masterlist line is not of the form ``<address>:<port>``."""

    def __init__(self, line: str, reason: str) -> None:
        super().__init__(f"malformed masterlist line {line!r}: {reason}")
        self.line = line
        self.reason = reason


class QueryTimeout(DirectoryError):
    """No datagram arrived before the per-phase timeout."""


class QueryMalformed(DirectoryError):
    """A datagram arrived but could not be decoded."""


class StoreUnavailable(DirectoryError):
    """The directory store rejected or failed an operation."""
