from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
import unittest

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from release_control.db.base import Base
from release_control.models import ReleaseEventRecord
from release_control.services.ledger_store import SqlLedgerStore, details_hash
from release_control.services.release_ledger import ReleaseLedger, parse_ledger_datetime

TAG = "v1.0.0-rc.1"


def _record_lifecycle(ledger: ReleaseLedger, tag: str, *, reviewer: str = "qa1", accept: bool = True) -> None:
    ledger.record_event(tag, "pending", "dev", {"commit_sha": "abc123", "tier": "rc"})
    ledger.record_event(tag, "gates-running", "system")
    ledger.record_event(
        tag,
        "gates-passed",
        "system",
        {
            "gate_results": [
                {"gate": "tests", "status": "pass", "duration": 1200, "details": {}},
                {"gate": "security", "status": "pass", "duration": None, "details": {}},
            ]
        },
    )
    ledger.record_event(tag, "deployed", "system", {"preview_url": f"qa-{tag}.example.com"})
    if accept:
        ledger.record_event(tag, "accepted", reviewer)
    else:
        ledger.record_event(tag, "rejected", reviewer, {"reason": "CSS broken"})


class ReleaseLedgerTests(unittest.TestCase):
    def test_events_are_ordered_and_returned_as_copies(self) -> None:
        ledger = ReleaseLedger()
        details = {"commit_sha": "abc123", "nested": {"items": [1]}}
        ledger.record_event(TAG, "pending", "dev", details)
        details["nested"]["items"].append(2)
        ledger.record_event(TAG, "gates-running", "system")

        events = ledger.get_events(TAG)
        events[0].details["nested"]["items"].append(3)
        events.clear()

        stored = ledger.get_events(TAG)
        self.assertEqual([event.action for event in stored], ["pending", "gates-running"])
        self.assertEqual(stored[0].details["nested"], {"items": [1]})

    def test_event_ids_are_unique_and_prefixed(self) -> None:
        ledger = ReleaseLedger()
        ids = [ledger.record_event(TAG, "pending", "dev").id for _ in range(50)]
        self.assertEqual(len(set(ids)), 50)
        self.assertTrue(all(item.startswith("evt-") for item in ids))

    def test_unknown_tag_has_no_history(self) -> None:
        ledger = ReleaseLedger()
        self.assertEqual(ledger.get_events("v0.0.1"), [])
        self.assertIsNone(ledger.get_latest_status("v0.0.1"))

    def test_unknown_actions_are_refused(self) -> None:
        ledger = ReleaseLedger()
        with self.assertRaisesRegex(ValueError, "unknown_ledger_action:promoted"):
            ledger.record_event(TAG, "promoted", "admin")
        self.assertEqual(ledger.get_events(TAG), [])

    def test_latest_status_and_audit_trail(self) -> None:
        ledger = ReleaseLedger()
        _record_lifecycle(ledger, TAG)

        self.assertEqual(ledger.get_latest_status(TAG), "accepted")
        self.assertEqual(ledger.get_audit_trail(TAG), ledger.get_events(TAG))

    def test_query_filters_combine(self) -> None:
        ledger = ReleaseLedger()
        _record_lifecycle(ledger, "v1.0.0-rc.1", reviewer="qa1")
        _record_lifecycle(ledger, "v1.1.0-rc.1", reviewer="qa2", accept=False)
        ledger.record_event("v1.2.0-beta.1", "pending", "dev")

        self.assertEqual(ledger.query(status="accepted"), ["v1.0.0-rc.1"])
        self.assertEqual(ledger.query(reviewer="qa2"), ["v1.1.0-rc.1"])
        self.assertEqual(ledger.query(status="accepted", reviewer="qa2"), [])
        self.assertEqual(len(ledger.query()), 3)

        now = datetime.now(timezone.utc)
        self.assertEqual(len(ledger.query(date_from=now - timedelta(minutes=5))), 3)
        self.assertEqual(ledger.query(date_from=(now + timedelta(days=1)).isoformat()), [])
        self.assertEqual(ledger.query(date_to="2000-01-01T00:00:00Z"), [])

    def test_parse_ledger_datetime_reads_naive_as_utc(self) -> None:
        parsed = parse_ledger_datetime("2026-01-02T03:04:05")
        self.assertEqual(parsed.tzinfo, timezone.utc)
        self.assertEqual(parse_ledger_datetime("2026-01-02T03:04:05Z"), parsed)

    def test_summary_lists_every_tag(self) -> None:
        ledger = ReleaseLedger()
        _record_lifecycle(ledger, "v1.0.0-rc.1")
        ledger.record_event("v1.2.0-beta.1", "pending", "dev")

        summary = {entry.tag: entry for entry in ledger.get_summary()}

        self.assertEqual(set(summary), {"v1.0.0-rc.1", "v1.2.0-beta.1"})
        self.assertEqual(summary["v1.0.0-rc.1"].status, "accepted")
        self.assertEqual(summary["v1.2.0-beta.1"].last_event, "pending")
        self.assertTrue(summary["v1.2.0-beta.1"].last_updated)


class ReleaseReportTests(unittest.TestCase):
    def test_report_contains_status_gate_table_and_timeline(self) -> None:
        ledger = ReleaseLedger()
        _record_lifecycle(ledger, TAG, accept=False)

        report = ledger.generate_report(TAG)

        self.assertTrue(report.startswith(f"# Release Report: {TAG}"))
        self.assertIn("**Status:** rejected", report)
        self.assertIn("## Gate Results", report)
        self.assertIn("| Gate | Status | Duration |", report)
        self.assertIn("| tests | pass | 1200ms |", report)
        self.assertIn("| security | pass | - |", report)
        self.assertIn("## Event Timeline", report)
        self.assertIn("### deployed", report)
        self.assertIn("- **User:** qa1", report)
        self.assertIn("- **reason:** CSS broken", report)
        self.assertNotIn("- **gate_results:**", report)

    def test_report_reads_camel_case_gate_results(self) -> None:
        ledger = ReleaseLedger()
        ledger.record_event(
            TAG,
            "gates-passed",
            "ci",
            {"gateResults": [{"gate": "tests", "status": "pass", "duration": 12}]},
        )

        report = ledger.generate_report(TAG)

        self.assertIn("| tests | pass | 12ms |", report)
        self.assertNotIn("- **gateResults:**", report)

    def test_report_without_gate_events_omits_table(self) -> None:
        ledger = ReleaseLedger()
        ledger.record_event(TAG, "pending", "dev", {"meta": {"source": "github"}})

        report = ledger.generate_report(TAG)

        self.assertNotIn("## Gate Results", report)
        self.assertIn('- **meta:** {"source": "github"}', report)

    def test_report_for_unknown_tag(self) -> None:
        self.assertIn("No events recorded.", ReleaseLedger().generate_report("v0.0.1"))


class SqlLedgerStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)
        self.ledger = ReleaseLedger(SqlLedgerStore(self.session_factory))

    def tearDown(self) -> None:
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def test_events_round_trip_in_insertion_order(self) -> None:
        _record_lifecycle(self.ledger, TAG)
        self.ledger.record_event("v2.0.0", "pending", "dev")

        events = self.ledger.get_events(TAG)

        self.assertEqual(
            [event.action for event in events],
            ["pending", "gates-running", "gates-passed", "deployed", "accepted"],
        )
        self.assertEqual(events[0].details, {"commit_sha": "abc123", "tier": "rc"})
        self.assertEqual(self.ledger.get_latest_status("v2.0.0"), "pending")
        self.assertEqual([entry.tag for entry in self.ledger.get_summary()], [TAG, "v2.0.0"])

    def test_rows_store_schema_version_and_details_hash(self) -> None:
        event = self.ledger.record_event(TAG, "pending", "dev", {"commit_sha": "abc123"})

        with self.session_factory() as db:
            row = db.execute(select(ReleaseEventRecord).where(ReleaseEventRecord.event_id == event.id)).scalar_one()
            count = db.execute(select(func.count()).select_from(ReleaseEventRecord)).scalar_one()

        self.assertEqual(count, 1)
        self.assertEqual(row.schema_version, 1)
        self.assertEqual(row.details_hash, details_hash({"commit_sha": "abc123"}))

    def test_query_and_report_work_over_sql_store(self) -> None:
        _record_lifecycle(self.ledger, TAG, reviewer="qa9")

        self.assertEqual(self.ledger.query(reviewer="qa9"), [TAG])
        self.assertIn("| tests | pass | 1200ms |", self.ledger.generate_report(TAG))


if __name__ == "__main__":
    unittest.main()
