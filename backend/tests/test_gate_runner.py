from __future__ import annotations

import asyncio
from pathlib import Path
import sys
import unittest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from release_control.core.release_config import load_release_config
from release_control.domain.errors import GateExecutionError, GateRunCancelledError
from release_control.domain.gates import NO_CHECKER_REASON, GateContext, GateStatus
from release_control.domain.tag_classifier import parse_tag
from release_control.services.gate_runner import (
    ABORTED_REASON,
    CANCELLED_REASON,
    automated_gates,
    interrupted_run,
    plan_retry,
    retry_gates,
    run_gates,
)


def _context(tag: str = "v1.0.0-rc.1", tier: str = "rc") -> GateContext:
    config = load_release_config(None)
    return GateContext(tag=tag, commit_sha="abc123", tier=tier, tier_config=config.tier(tier))


class GateRunnerTests(unittest.IsolatedAsyncioTestCase):
    async def test_all_passing_gates_pass_and_record_details(self) -> None:
        calls: list[str] = []

        def tests_checker(parsed, context):
            calls.append("tests")
            return {"passed": True, "total": 12}

        async def security_checker(parsed, context):
            calls.append("security")
            return {"passed": True}

        result = await run_gates(
            parse_tag("v1.0.0-rc.1"),
            ["tests", "security"],
            _context(),
            {"tests": tests_checker, "security": security_checker},
        )

        self.assertTrue(result.passed)
        self.assertEqual(calls, ["tests", "security"])
        self.assertEqual([item.status for item in result.results], [GateStatus.PASS, GateStatus.PASS])
        self.assertEqual(result.results[0].details, {"total": 12})
        self.assertGreaterEqual(result.results[0].duration, 0)

    async def test_failing_gate_does_not_short_circuit(self) -> None:
        calls: list[str] = []

        def checker(name: str, passed: bool):
            def check(parsed, context):
                calls.append(name)
                return {"passed": passed}

            return check

        result = await run_gates(
            parse_tag("v1.0.0-rc.1"),
            ["tests", "security", "coverage"],
            _context(),
            {
                "tests": checker("tests", True),
                "security": checker("security", False),
                "coverage": checker("coverage", True),
            },
        )

        self.assertFalse(result.passed)
        self.assertEqual(calls, ["tests", "security", "coverage"])
        self.assertEqual(result.failed_gates(), ["security"])

    async def test_missing_checker_is_skipped_and_fails_closed(self) -> None:
        result = await run_gates(parse_tag("v1.0.0-rc.1"), ["tests"], _context(), {})

        self.assertFalse(result.passed)
        self.assertEqual(result.results[0].status, GateStatus.SKIP)
        self.assertEqual(result.results[0].details, {"reason": NO_CHECKER_REASON})

    async def test_empty_gate_list_passes(self) -> None:
        result = await run_gates(parse_tag("v1.0.0"), [], _context("v1.0.0", "release"), {})
        self.assertTrue(result.passed)
        self.assertEqual(result.results, [])

    async def test_review_gate_is_not_run_automatically(self) -> None:
        self.assertEqual(automated_gates(["tests", "qa-approval"]), ["tests"])
        result = await run_gates(
            parse_tag("v1.0.0-rc.1"),
            ["tests", "qa-approval"],
            _context(),
            {"tests": lambda parsed, context: {"passed": True}},
        )
        self.assertEqual([item.gate for item in result.results], ["tests"])
        self.assertTrue(result.passed)

    async def test_coverage_details_carry_tier_threshold(self) -> None:
        result = await run_gates(
            parse_tag("v1.0.0-beta.1"),
            ["coverage"],
            _context("v1.0.0-beta.1", "beta"),
            {"coverage": lambda parsed, context: {"passed": True, "coverage": 75}},
        )
        self.assertEqual(result.results[0].details, {"coverage": 75, "threshold": 70})

    async def test_checker_exception_marks_gate_failed_and_skips_rest(self) -> None:
        def broken(parsed, context):
            raise RuntimeError("scanner offline")

        with self.assertRaises(GateExecutionError) as ctx:
            await run_gates(
                parse_tag("v1.0.0-rc.1"),
                ["tests", "security", "coverage"],
                _context(),
                {
                    "tests": lambda parsed, context: {"passed": True},
                    "security": broken,
                    "coverage": lambda parsed, context: {"passed": True},
                },
            )

        error = ctx.exception
        self.assertEqual(error.gate, "security")
        self.assertIsInstance(error.__cause__, RuntimeError)
        partial = error.partial_results
        self.assertFalse(partial.passed)
        self.assertEqual([item.status for item in partial.results], [GateStatus.PASS, GateStatus.FAIL, GateStatus.SKIP])
        self.assertIn("scanner offline", partial.results[1].details["error"])
        self.assertEqual(partial.results[2].details, {"reason": ABORTED_REASON})

    async def test_checker_returning_non_mapping_is_a_checker_error(self) -> None:
        with self.assertRaises(GateExecutionError) as ctx:
            await run_gates(parse_tag("v1.0.0"), ["tests"], _context("v1.0.0", "release"), {"tests": lambda p, c: True})
        self.assertIsInstance(ctx.exception.__cause__, TypeError)

    async def test_retry_reruns_only_gates_that_did_not_pass(self) -> None:
        calls: list[str] = []

        def checker(name: str, passed: bool):
            def check(parsed, context):
                calls.append(name)
                return {"passed": passed}

            return check

        parsed = parse_tag("v1.0.0-rc.1")
        first = await run_gates(
            parsed,
            ["tests", "security", "coverage"],
            _context(),
            {"tests": checker("tests", True), "security": checker("security", False)},
        )
        calls.clear()

        retried = await retry_gates(
            first,
            parsed,
            _context(),
            {
                "tests": checker("tests", True),
                "security": checker("security", True),
                "coverage": checker("coverage", True),
            },
        )

        self.assertEqual(calls, ["security", "coverage"])
        self.assertTrue(retried.passed)
        self.assertEqual(retried.results[0], first.results[0])


    async def test_cancellation_carries_results_gathered_so_far(self) -> None:
        started = asyncio.Event()

        async def hanging(parsed, context):
            started.set()
            await asyncio.sleep(10)
            return {"passed": True}

        captured: list[GateRunCancelledError] = []

        async def run():
            try:
                await run_gates(
                    parse_tag("v1.0.0-rc.1"),
                    ["tests", "security", "coverage"],
                    _context(),
                    {"tests": lambda parsed, context: {"passed": True}, "security": hanging},
                )
            except GateRunCancelledError as exc:
                captured.append(exc)
                raise

        task = asyncio.create_task(run())
        await started.wait()
        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(len(captured), 1)
        partial = captured[0].partial_results
        self.assertFalse(partial.passed)
        self.assertEqual([item.status for item in partial.results], [GateStatus.PASS, GateStatus.SKIP, GateStatus.SKIP])
        self.assertEqual(partial.results[2].details, {"reason": CANCELLED_REASON})

    async def test_interrupted_run_keeps_carried_passes(self) -> None:
        parsed = parse_tag("v1.0.0-rc.1")
        first = await run_gates(
            parsed,
            ["tests", "security"],
            _context(),
            {"tests": lambda parsed, context: {"passed": True}},
        )

        interrupted = interrupted_run(plan_retry(first))

        self.assertEqual(interrupted.results[0], first.results[0])
        self.assertEqual(interrupted.results[1].details, {"reason": CANCELLED_REASON})


if __name__ == "__main__":
    unittest.main()
