from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from actiko_api.core.clock import as_utc


class ConflictStrategy(str, Enum):
    CLIENT_WINS = "client-wins"
    SERVER_WINS = "server-wins"
    TIMESTAMP = "timestamp"


@dataclass(frozen=True)
class NewSnapshot:
    """A record the client created offline; it has never been seen by the server."""

    data: dict[str, Any]
    kind: Literal["new"] = "new"


@dataclass(frozen=True)
class PersistedSnapshot:
    data: dict[str, Any]
    created_at: datetime
    updated_at: datetime
    version: int | None = None
    kind: Literal["persisted"] = "persisted"


Snapshot = NewSnapshot | PersistedSnapshot


def has_conflict(client: Snapshot, server: Snapshot) -> bool:
    if not isinstance(client, PersistedSnapshot) or not isinstance(server, PersistedSnapshot):
        return False
    if client.version is not None and server.version is not None:
        return client.version < server.version
    return as_utc(client.updated_at) < as_utc(server.updated_at)


def resolve(client: Snapshot, server: Snapshot, strategy: ConflictStrategy = ConflictStrategy.TIMESTAMP) -> Snapshot:
    """Pick the winning side.

    ``timestamp`` keeps the side with the greater-or-equal ``updated_at`` and
    hands ties to the client. A side that was never persisted has no clock,
    so the persisted side wins under ``timestamp``.
    """
    if strategy is ConflictStrategy.CLIENT_WINS:
        return client
    if strategy is ConflictStrategy.SERVER_WINS:
        return server

    if not isinstance(server, PersistedSnapshot):
        return client
    if not isinstance(client, PersistedSnapshot):
        return server
    if as_utc(client.updated_at) >= as_utc(server.updated_at):
        return client
    return server
