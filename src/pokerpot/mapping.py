"""Bidirectional mapping between ledger models, SQLite rows and remote payloads.

Every synced entity is described once in ENTITIES; the database and the sync
reconciler both go through these helpers instead of per-table mappers.
"""

import sqlite3
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .models import (
    BuyIn,
    ManualAdjustment,
    Member,
    Result,
    Session,
    SessionMember,
    Settlement,
    SyncedRecord,
)

RecordT = TypeVar("RecordT", bound=SyncedRecord)

# Local-only fields that are never sent to the remote store
LOCAL_ONLY_FIELDS = frozenset({"pending_sync"})


@dataclass(frozen=True)
class EntitySpec(Generic[RecordT]):
    """Describes how one model maps onto a table (local and remote)."""

    name: str
    model: type[RecordT]

    @property
    def table(self) -> str:
        # Local and remote tables share the entity name
        return self.name

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self.model.model_fields)

    @property
    def bool_columns(self) -> frozenset[str]:
        return frozenset(
            name
            for name, field in self.model.model_fields.items()
            if field.annotation is bool
        )

    def to_row(self, record: RecordT) -> dict[str, Any]:
        """Model -> SQLite column values (ISO timestamps, 0/1 booleans)."""
        data = record.model_dump(mode="json")
        for column in self.bool_columns:
            data[column] = int(data[column])
        return data

    def from_row(self, row: sqlite3.Row | dict[str, Any]) -> RecordT:
        """SQLite row -> model."""
        return self.model.model_validate(dict(row))

    def to_remote(self, record: RecordT) -> dict[str, Any]:
        """Model -> JSON payload for the remote data service."""
        return record.model_dump(mode="json", exclude=set(LOCAL_ONLY_FIELDS))

    def from_remote(self, payload: dict[str, Any]) -> RecordT:
        """Remote payload -> model. A pulled record matches remote, so it is clean."""
        return self.model.model_validate({**payload, "pending_sync": False})


SESSIONS = EntitySpec("sessions", Session)
SESSION_MEMBERS = EntitySpec("session_members", SessionMember)
MEMBERS = EntitySpec("members", Member)
BUY_INS = EntitySpec("buy_ins", BuyIn)
RESULTS = EntitySpec("results", Result)
SETTLEMENTS = EntitySpec("settlements", Settlement)
MANUAL_ADJUSTMENTS = EntitySpec("manual_adjustments", ManualAdjustment)

# Parent tables first so foreign keys resolve on push and pull
ENTITIES: tuple[EntitySpec, ...] = (
    SESSIONS,
    SESSION_MEMBERS,
    MEMBERS,
    BUY_INS,
    RESULTS,
    SETTLEMENTS,
    MANUAL_ADJUSTMENTS,
)

_BY_MODEL = {spec.model: spec for spec in ENTITIES}


def entity_for(record: SyncedRecord) -> EntitySpec:
    """Look up the entity spec for a model instance."""
    return _BY_MODEL[type(record)]
