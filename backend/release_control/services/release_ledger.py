"""Append-only audit ledger of release lifecycle events.

The ledger is keyed by tag and is independent of the orchestrator's release
store: it can be fed by the orchestrator or used on its own for reporting.
A tag's history is exactly the events recorded for it, in insertion order,
and its status is always the action of its last event.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import itertools
import json
import time
from typing import Any, Mapping
import uuid

from release_control.domain.release_state_machine import ReleaseState
from release_control.models.common import normalize_utc, utcnow_iso
from release_control.services.ledger_store import InMemoryLedgerStore, LedgerStore, ReleaseEvent
from release_control.services.release_report import render_release_report

_ACTIONS = {state.value for state in ReleaseState}
_REVIEW_ACTIONS = {ReleaseState.ACCEPTED.value, ReleaseState.REJECTED.value}


@dataclass(frozen=True)
class LedgerSummaryEntry:
    tag: str
    status: str
    last_event: str
    last_updated: str

    def to_payload(self) -> dict[str, str]:
        return {
            "tag": self.tag,
            "status": self.status,
            "last_event": self.last_event,
            "last_updated": self.last_updated,
        }


def _clone_details(details: Mapping[str, Any] | None) -> dict[str, Any]:
    return json.loads(json.dumps(dict(details or {}), default=str))


def parse_ledger_datetime(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return normalize_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = f"{text[:-1]}+00:00"
    return normalize_utc(datetime.fromisoformat(text))


class ReleaseLedger:
    def __init__(self, store: LedgerStore | None = None) -> None:
        self.store: LedgerStore = store if store is not None else InMemoryLedgerStore()
        self._counter = itertools.count(1)

    def _next_event_id(self) -> str:
        millis = int(time.time() * 1000)
        return f"evt-{millis:x}-{next(self._counter):x}-{uuid.uuid4().hex[:6]}"

    def record_event(
        self,
        tag: str,
        action: str | ReleaseState,
        user: str | None,
        details: Mapping[str, Any] | None = None,
    ) -> ReleaseEvent:
        action_value = action.value if isinstance(action, ReleaseState) else action
        if action_value not in _ACTIONS:
            raise ValueError(f"unknown_ledger_action:{action_value}")

        event = ReleaseEvent(
            id=self._next_event_id(),
            tag=tag,
            action=action_value,
            user=user,
            timestamp=utcnow_iso(),
            details=_clone_details(details),
        )
        self.store.append(event)
        return event.clone()

    def get_events(self, tag: str) -> list[ReleaseEvent]:
        return self.store.events_for(tag)

    def get_audit_trail(self, tag: str) -> list[ReleaseEvent]:
        return self.get_events(tag)

    def get_latest_status(self, tag: str) -> str | None:
        events = self.store.events_for(tag)
        if not events:
            return None
        return events[-1].action

    def query(
        self,
        *,
        status: str | None = None,
        date_from: str | datetime | None = None,
        date_to: str | datetime | None = None,
        reviewer: str | None = None,
    ) -> list[str]:
        lower = parse_ledger_datetime(date_from) if date_from else None
        upper = parse_ledger_datetime(date_to) if date_to else None

        tags: list[str] = []
        for tag, events in self.store.histories():
            if status and events[-1].action != status:
                continue

            if lower is not None or upper is not None:
                in_range = False
                for event in events:
                    stamp = parse_ledger_datetime(event.timestamp)
                    if (lower is None or stamp >= lower) and (upper is None or stamp <= upper):
                        in_range = True
                        break
                if not in_range:
                    continue

            if reviewer and not any(
                event.action in _REVIEW_ACTIONS and event.user == reviewer for event in events
            ):
                continue

            tags.append(tag)
        return tags

    def generate_report(self, tag: str) -> str:
        return render_release_report(tag, self.store.events_for(tag))

    def get_summary(self) -> list[LedgerSummaryEntry]:
        summary: list[LedgerSummaryEntry] = []
        for tag, events in self.store.histories():
            last = events[-1]
            summary.append(
                LedgerSummaryEntry(
                    tag=tag,
                    status=last.action,
                    last_event=last.action,
                    last_updated=last.timestamp,
                )
            )
        return summary
