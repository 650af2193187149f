from __future__ import annotations

from datetime import UTC, datetime, timedelta

from actiko_api.services.conflict import (
    ConflictStrategy,
    NewSnapshot,
    PersistedSnapshot,
    has_conflict,
    resolve,
)

T1 = datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
T2 = T1 + timedelta(minutes=5)


def _persisted(updated_at: datetime, *, version: int | None = None, name: str = "x") -> PersistedSnapshot:
    return PersistedSnapshot(data={"name": name}, created_at=T1, updated_at=updated_at, version=version)


def test_new_record_never_conflicts() -> None:
    assert has_conflict(NewSnapshot(data={}), _persisted(T2)) is False
    assert has_conflict(_persisted(T1), NewSnapshot(data={})) is False


def test_older_client_timestamp_conflicts_and_tie_does_not() -> None:
    assert has_conflict(_persisted(T1), _persisted(T2)) is True
    assert has_conflict(_persisted(T2), _persisted(T2)) is False
    assert has_conflict(_persisted(T2), _persisted(T1)) is False


def test_version_counters_take_precedence_over_timestamps() -> None:
    assert has_conflict(_persisted(T2, version=1), _persisted(T1, version=2)) is True
    assert has_conflict(_persisted(T1, version=3), _persisted(T2, version=3)) is False


def test_naive_and_aware_timestamps_compare_as_utc() -> None:
    naive_server = PersistedSnapshot(data={}, created_at=T1, updated_at=T2.replace(tzinfo=None))
    assert has_conflict(_persisted(T1), naive_server) is True


def test_resolve_fixed_strategies() -> None:
    client = _persisted(T1, name="client")
    server = _persisted(T2, name="server")

    assert resolve(client, server, ConflictStrategy.CLIENT_WINS) is client
    assert resolve(client, server, ConflictStrategy.SERVER_WINS) is server


def test_resolve_timestamp_prefers_newer_and_gives_ties_to_client() -> None:
    older_client = _persisted(T1, name="client")
    newer_server = _persisted(T2, name="server")
    tied_client = _persisted(T2, name="client")

    assert resolve(older_client, newer_server, ConflictStrategy.TIMESTAMP) is newer_server
    assert resolve(tied_client, newer_server, ConflictStrategy.TIMESTAMP) is tied_client


def test_resolve_timestamp_with_unpersisted_side() -> None:
    new_client = NewSnapshot(data={"name": "client"})
    server = _persisted(T2)

    assert resolve(new_client, server) is server
    assert resolve(server, NewSnapshot(data={})) is server
    assert resolve(new_client, NewSnapshot(data={})) is new_client
