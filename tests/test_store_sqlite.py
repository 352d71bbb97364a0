"""Brief: Tests for SqliteDirectoryStore and InMemoryDirectoryStore.

Inputs:
  - None

Outputs:
  - None
"""

from __future__ import annotations

import pytest

from sampdir.errors import StoreUnavailable
from sampdir.models import ServerRecord
from sampdir.store import InMemoryDirectoryStore, SqliteDirectoryStore


def _record(address: str = "1.2.3.4", port: int = 7777, **kw) -> ServerRecord:
    base = dict(
        hostname="Host",
        players=3,
        max_players=50,
        mode="Freeroam",
        language="English",
        version="0.3.7",
        lagcomp="On",
        website="example.org",
        map="LS",
        worldtime="12:00",
        weather=10,
    )
    base.update(kw)
    return ServerRecord(address=address, port=port, **base)


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    """Brief: Yield each backend; sqlite uses a nested tmp path.

    Inputs:
      - request: parametrization.
      - tmp_path: pytest temporary directory.

    Outputs:
      - DirectoryStore instance (closed on teardown).
    """

    if request.param == "sqlite":
        s = SqliteDirectoryStore(db_path=str(tmp_path / "nested" / "dir.db"))
    else:
        s = InMemoryDirectoryStore()
    yield s
    s.close()


def test_upsert_then_load_round_trips(store) -> None:
    """Brief: A record written and reloaded compares equal.

    Inputs:
      - store: backend fixture.

    Outputs:
      - None; asserts equality.
    """

    rec = _record(hostname=None, website=None)
    store.upsert_record(rec)
    assert store.load_all() == [rec]


def test_upsert_replaces_existing_key_in_place(store) -> None:
    """Brief: Upserting a known key replaces values and keeps position.

    Inputs:
      - store: backend fixture.

    Outputs:
      - None; asserts order and updated value.
    """

    store.upsert_record(_record("a", 1))
    store.upsert_record(_record("b", 2))
    store.upsert_record(_record("a", 1, players=99))
    rows = store.load_all()
    assert [r.key for r in rows] == [("a", 1), ("b", 2)]
    assert rows[0].players == 99


def test_clear_all_empties_store(store) -> None:
    """Brief: clear_all removes every record.

    Inputs:
      - store: backend fixture.

    Outputs:
      - None.
    """

    store.upsert_record(_record())
    store.clear_all()
    assert store.load_all() == []
    assert store.health_check() is True


def test_sqlite_persists_across_instances(tmp_path) -> None:
    """Brief: Records survive reopening the same database file.

    Inputs:
      - tmp_path: pytest temporary directory.

    Outputs:
      - None.
    """

    path = str(tmp_path / "dir.db")
    s1 = SqliteDirectoryStore(db_path=path)
    s1.upsert_record(_record())
    s1.close()
    s2 = SqliteDirectoryStore(db_path=path)
    try:
        assert s2.load_all() == [_record()]
    finally:
        s2.close()


def test_sqlite_closed_store_raises_store_unavailable() -> None:
    """Brief: Operations on a closed connection raise StoreUnavailable.

    Inputs:
      - None.

    Outputs:
      - None.
    """

    s = SqliteDirectoryStore(db_path=":memory:")
    s.close()
    with pytest.raises(StoreUnavailable):
        s.load_all()
    with pytest.raises(StoreUnavailable):
        s.clear_all()
    with pytest.raises(StoreUnavailable):
        s.upsert_record(_record())
    assert s.health_check() is False


def test_sqlite_unopenable_path_raises(tmp_path) -> None:
    """Brief: A database path under a regular file cannot be opened.

    Inputs:
      - tmp_path: pytest temporary directory.

    Outputs:
      - None; asserts StoreUnavailable.
    """

    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(StoreUnavailable):
        SqliteDirectoryStore(db_path=str(blocker / "dir.db"))
