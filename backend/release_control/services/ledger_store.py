from __future__ import annotations

import copy
from dataclasses import dataclass, field
import hashlib
import json
from typing import Any, Iterator, Protocol

from sqlalchemy.orm import Session, sessionmaker

from release_control.models import ReleaseEventRecord

LEDGER_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class ReleaseEvent:
    id: str
    tag: str
    action: str
    user: str | None
    timestamp: str
    details: dict[str, Any] = field(default_factory=dict)

    def clone(self) -> "ReleaseEvent":
        return ReleaseEvent(
            id=self.id,
            tag=self.tag,
            action=self.action,
            user=self.user,
            timestamp=self.timestamp,
            details=copy.deepcopy(self.details),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tag": self.tag,
            "action": self.action,
            "user": self.user,
            "timestamp": self.timestamp,
            "details": copy.deepcopy(self.details),
        }


def details_hash(details: dict[str, Any]) -> str:
    body = json.dumps(details, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


class LedgerStore(Protocol):
    def append(self, event: ReleaseEvent) -> None: ...

    def events_for(self, tag: str) -> list[ReleaseEvent]: ...

    def histories(self) -> Iterator[tuple[str, list[ReleaseEvent]]]: ...


class InMemoryLedgerStore:
    def __init__(self) -> None:
        self._events: dict[str, list[ReleaseEvent]] = {}

    def append(self, event: ReleaseEvent) -> None:
        self._events.setdefault(event.tag, []).append(event.clone())

    def events_for(self, tag: str) -> list[ReleaseEvent]:
        return [event.clone() for event in self._events.get(tag, [])]

    def histories(self) -> Iterator[tuple[str, list[ReleaseEvent]]]:
        for tag, events in list(self._events.items()):
            if events:
                yield tag, [event.clone() for event in events]


class SqlLedgerStore:
    """Append-only ``release_events`` table. Rows are inserted, never updated or deleted."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    @staticmethod
    def _to_event(row: ReleaseEventRecord) -> ReleaseEvent:
        return ReleaseEvent(
            id=row.event_id,
            tag=row.tag,
            action=row.action,
            user=row.user,
            timestamp=row.timestamp,
            details=copy.deepcopy(row.details or {}),
        )

    def append(self, event: ReleaseEvent) -> None:
        db: Session = self.session_factory()
        try:
            db.add(
                ReleaseEventRecord(
                    event_id=event.id,
                    tag=event.tag,
                    action=event.action,
                    user=event.user,
                    timestamp=event.timestamp,
                    details=copy.deepcopy(event.details),
                    details_hash=details_hash(event.details),
                    schema_version=LEDGER_SCHEMA_VERSION,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def events_for(self, tag: str) -> list[ReleaseEvent]:
        with self.session_factory() as db:
            rows = (
                db.query(ReleaseEventRecord)
                .filter(ReleaseEventRecord.tag == tag)
                .order_by(ReleaseEventRecord.id.asc())
                .all()
            )
            return [self._to_event(row) for row in rows]

    def histories(self) -> Iterator[tuple[str, list[ReleaseEvent]]]:
        with self.session_factory() as db:
            rows = db.query(ReleaseEventRecord).order_by(ReleaseEventRecord.id.asc()).all()
            grouped: dict[str, list[ReleaseEvent]] = {}
            for row in rows:
                grouped.setdefault(row.tag, []).append(self._to_event(row))
        yield from grouped.items()
