"""Directory store backends and the alias registry used by configuration."""

from __future__ import annotations

import difflib
import importlib
from typing import Dict, Optional, Type

from .base import DirectoryStore, StoreBackendConfig, store_aliases
from .memory import InMemoryDirectoryStore
from .sqlite import SqliteDirectoryStore

_BACKENDS: tuple[Type[DirectoryStore], ...] = (
    SqliteDirectoryStore,
    InMemoryDirectoryStore,
)


def _normalize(alias: str) -> str:
    return alias.strip().lower().replace("-", "_")


def discover_store_backends() -> Dict[str, Type[DirectoryStore]]:
    """Brief: Map every normalized backend alias to its class.

    Inputs:
      - None.

    Outputs:
      - Dict[str, Type[DirectoryStore]].

    Raises:
      - ValueError: when two backends claim the same alias.
    """

    registry: Dict[str, Type[DirectoryStore]] = {}
    for cls in _BACKENDS:
        for alias in getattr(cls, "aliases", ()) or ():
            key = _normalize(alias)
            if key in registry and registry[key] is not cls:
                other = registry[key]
                raise ValueError(
                    f"Duplicate store alias '{alias}' claimed by {cls.__name__} "
                    f"and {other.__name__}"
                )
            registry[key] = cls
    return registry


def get_store_class(identifier: str) -> Type[DirectoryStore]:
    """Brief: Resolve an alias or dotted import path to a DirectoryStore class.

    Inputs:
      - identifier: 'sqlite', 'memory', or 'package.module.ClassName'.

    Outputs:
      - DirectoryStore subclass.

    Raises:
      - KeyError: unknown alias (message lists known aliases and suggestions).
      - TypeError: dotted path does not name a DirectoryStore subclass.
    """

    ident = str(identifier).strip()
    if "." in ident:
        modname, _, classname = ident.rpartition(".")
        if not modname or not classname:
            raise ValueError(f"Invalid store backend path '{identifier}'")
        module = importlib.import_module(modname)
        cls = getattr(module, classname)
        if not isinstance(cls, type) or not issubclass(cls, DirectoryStore):
            raise TypeError(f"{identifier} is not a DirectoryStore subclass")
        return cls

    reg = discover_store_backends()
    key = _normalize(ident)
    try:
        return reg[key]
    except KeyError:
        suggestions = difflib.get_close_matches(key, list(reg.keys()), n=3)
        raise KeyError(
            f"Unknown store backend '{identifier}'. "
            f"Known aliases: {', '.join(sorted(reg.keys()))}. "
            f"Suggestions: {suggestions}"
        )


def load_store(cfg: Optional[object]) -> DirectoryStore:
    """Brief: Build the configured directory store.

    Inputs:
      - cfg: Store config. Supported forms:
        - None: SQLite store at its default path.
        - str: Alias or dotted import path.
        - dict / StoreBackendConfig: {"backend": <str>, "config": <dict>}.

    Outputs:
      - DirectoryStore instance.

    Example:
      store:
        backend: sqlite
        config:
          db_path: ./config/var/directory.db
    """

    if cfg is None:
        return SqliteDirectoryStore()

    if isinstance(cfg, str):
        return get_store_class(cfg)()

    if isinstance(cfg, dict):
        cfg = StoreBackendConfig(**cfg)

    if isinstance(cfg, StoreBackendConfig):
        cls = get_store_class(cfg.backend)
        return cls(**dict(cfg.config))

    raise TypeError("store config must be a mapping, string, or null")


__all__ = [
    "DirectoryStore",
    "InMemoryDirectoryStore",
    "SqliteDirectoryStore",
    "StoreBackendConfig",
    "discover_store_backends",
    "get_store_class",
    "load_store",
    "store_aliases",
]
