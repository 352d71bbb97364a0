"""Data model for the server directory.

Brief:
  RawEntry and QueryOutcome live for one refresh cycle only. ServerRecord is
  what the store persists, and DirectorySnapshot is the immutable view the
  publisher hands to readers.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple, Union


@dataclass(frozen=True)
class RawEntry:
    """One ``address:port`` pair read from a masterlist."""

    address: str
    port: int

    @property
    def key(self) -> Tuple[str, int]:
        return (self.address, self.port)

    def __str__(self) -> str:
        return f"{self.address}:{self.port}"


@dataclass(frozen=True)
class ServerRecord:
    """
    Brief: Durable state of one reachable server at its last successful query.

    Inputs (constructor):
      - address, port: identity key within a snapshot.
      - hostname, mode, language: from the basic info response.
      - players, max_players: from the basic info response, passed through
        unchecked (players may exceed max_players).
      - version, lagcomp, website, map, worldtime: optional rule values.
      - weather: numeric rule value, 0 when the server does not report it.

    Outputs:
      - Immutable, hashable record.
    """

    address: str
    port: int
    hostname: Optional[str] = None
    players: int = 0
    max_players: int = 0
    mode: Optional[str] = None
    language: Optional[str] = None
    version: Optional[str] = None
    lagcomp: Optional[str] = None
    website: Optional[str] = None
    map: Optional[str] = None
    worldtime: Optional[str] = None
    weather: int = 0

    @property
    def key(self) -> Tuple[str, int]:
        return (self.address, self.port)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BasicInfo:
    """Decoded basic info ('i') response."""

    password: bool
    players: int
    max_players: int
    hostname: str
    mode: str
    language: str


class FailureReason(str, Enum):
    TIMEOUT = "timeout"
    MALFORMED = "malformed"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class QuerySuccess:
    """Both query phases completed for one host."""

    info: BasicInfo
    rules: Dict[str, str] = field(default_factory=dict)

    def to_record(self, address: str, port: int) -> ServerRecord:
        """Brief: Merge basic info and the recognized rules into a ServerRecord.

        Inputs:
          - address: server address as listed in the masterlist.
          - port: server port.

        Outputs:
          - ServerRecord; rules absent from the response map to None and
            weather to 0.

        Raises:
          - ValueError: when the weather rule is present but not an integer.
        """

        rules = self.rules
        weather_raw = rules.get("weather")
        weather = int(weather_raw) if weather_raw not in (None, "") else 0
        return ServerRecord(
            address=address,
            port=port,
            hostname=self.info.hostname,
            players=self.info.players,
            max_players=self.info.max_players,
            mode=self.info.mode,
            language=self.info.language,
            version=rules.get("version"),
            lagcomp=rules.get("lagcomp"),
            website=rules.get("weburl"),
            map=rules.get("mapname"),
            worldtime=rules.get("worldtime"),
            weather=weather,
        )


@dataclass(frozen=True)
class QueryFailure:
    """A host failed one of the query phases; never persisted."""

    reason: FailureReason
    phase: str = ""
    detail: str = ""


QueryOutcome = Union[QuerySuccess, QueryFailure]


@dataclass(frozen=True)
class DirectorySnapshot:
    """
    Immutable point-in-time view of all known reachable servers.

    Inputs (constructor):
        records: ordered tuple of ServerRecord, unique by (address, port)
        generation: publish sequence number, 0 for the empty initial view
        created_at: epoch seconds at creation

    Outputs:
        Snapshot instance; superseded by the next publish, never mutated.
    """

    records: Tuple[ServerRecord, ...] = ()
    generation: int = 0
    created_at: float = field(default_factory=time.time)

    @classmethod
    def build(cls, records, generation: int) -> "DirectorySnapshot":
        """Brief: Build a snapshot from reloaded records, dropping repeated keys.

        Inputs:
          - records: iterable of ServerRecord in store order.
          - generation: sequence number for the new snapshot.

        Outputs:
          - DirectorySnapshot keeping the first record seen per (address, port).
        """

        seen = set()
        unique = []
        for rec in records:
            if rec.key in seen:
                continue
            seen.add(rec.key)
            unique.append(rec)
        return cls(records=tuple(unique), generation=int(generation))

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[ServerRecord]:
        return iter(self.records)

    def find(self, address: str, port: int) -> Optional[ServerRecord]:
        for rec in self.records:
            if rec.address == address and rec.port == port:
                return rec
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generation": self.generation,
            "created_at": self.created_at,
            "servers": [rec.to_dict() for rec in self.records],
        }
