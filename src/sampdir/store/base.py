"""Abstract base class for directory store backends.

This module defines:

- StoreBackendConfig: Pydantic model describing the configured backend
  (backend alias plus backend-specific config).
- DirectoryStore: the interface the refresh pipeline writes to and reloads
  from. Backends must report every failure as StoreUnavailable so the
  pipeline can abort the cycle without touching the published snapshot.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from ..models import ServerRecord


def store_aliases(*aliases: str):
    """Brief: Decorator to set registry aliases on a DirectoryStore subclass.

    Inputs:
      - *aliases: Variable number of alias strings.

    Outputs:
      - Callable that applies the aliases to the class and returns it.

    Example:
      >>> @store_aliases('memory', 'in_memory')
      ... class MemoryStore(DirectoryStore):
      ...     pass
      >>> MemoryStore.aliases
      ('memory', 'in_memory')
    """

    def _wrap(cls: type) -> type:
        cls.aliases = tuple(aliases)
        return cls

    return _wrap


class StoreBackendConfig(BaseModel):
    """Brief: Typed configuration for the directory store.

    Inputs (constructor fields):
      - backend: alias ('sqlite', 'memory') or dotted import path of a
        DirectoryStore subclass.
      - config: backend-specific keyword arguments (for example db_path).

    Outputs:
      - StoreBackendConfig instance.
    """

    backend: str = Field(default="sqlite", description="Backend alias or dotted path")
    config: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        extra = "forbid"


class DirectoryStore:
    """Brief: Durable storage for ServerRecord rows keyed by (address, port).

    Implementations are responsible for:
      - upsert_record: insert or replace one record.
      - clear_all: remove every record (called once per cycle, before the
        cycle's writes).
      - load_all: return every record in insertion order.

    Notes:
      - The engine never assumes exclusive access; external readers may look
        at the same storage concurrently.
      - Every method raises StoreUnavailable on backend failure.
    """

    aliases: tuple[str, ...] = ()

    def upsert_record(self, record: ServerRecord) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def clear_all(self) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    def load_all(self) -> List[ServerRecord]:  # pragma: no cover - interface only
        raise NotImplementedError

    def health_check(self) -> bool:
        """Return True when the backend is usable."""

        try:
            self.load_all()
            return True
        except Exception:
            return False

    def close(self) -> None:
        """Release backend resources; the default implementation does nothing."""

        return None
