from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from typing import Any, Mapping, Sequence

from release_control.core.release_config import DEFAULT_COVERAGE_THRESHOLD
from release_control.domain.errors import GateExecutionError, GateRunCancelledError
from release_control.domain.gates import (
    NO_CHECKER_REASON,
    REVIEW_GATES,
    GateChecker,
    GateContext,
    GateResult,
    GateRunResult,
    GateStatus,
)
from release_control.domain.tag_classifier import ParsedTag
from release_control.services.observability import emit_structured_log

ABORTED_REASON = "aborted_after_checker_error"
CANCELLED_REASON = "cancelled"

# Each entry is a gate and, on retries, the passing result carried forward.
GatePlan = list[tuple[str, GateResult | None]]


def automated_gates(gates: Sequence[str]) -> list[str]:
    return [gate for gate in gates if gate not in REVIEW_GATES]


def _json_safe(value: Mapping[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(dict(value), default=str))


def build_gate_result(
    gate: str,
    outcome: Mapping[str, Any],
    *,
    duration_ms: int,
    context: GateContext,
) -> GateResult:
    if not isinstance(outcome, Mapping):
        raise TypeError(f"checker for gate '{gate}' returned {type(outcome).__name__}, expected a mapping")

    details = _json_safe({key: value for key, value in outcome.items() if key != "passed"})
    if gate == "coverage":
        threshold = context.tier_config.coverage_threshold if context.tier_config else DEFAULT_COVERAGE_THRESHOLD
        details.setdefault("threshold", threshold)

    return GateResult(
        gate=gate,
        status=GateStatus.PASS if outcome.get("passed") is True else GateStatus.FAIL,
        duration=duration_ms,
        details=details,
    )


async def run_gate(
    gate: str,
    parsed_tag: ParsedTag,
    context: GateContext,
    checkers: Mapping[str, GateChecker],
) -> GateResult:
    checker = checkers.get(gate)
    if checker is None:
        result = GateResult(gate=gate, status=GateStatus.SKIP, details={"reason": NO_CHECKER_REASON})
    else:
        started = time.perf_counter()
        outcome = checker(parsed_tag, context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        duration_ms = int(round((time.perf_counter() - started) * 1000))
        result = build_gate_result(gate, outcome, duration_ms=duration_ms, context=context)

    emit_structured_log(
        component="release.gates",
        event="gate_completed",
        level=logging.INFO if result.passed else logging.WARNING,
        tag=context.tag,
        commit_sha=context.commit_sha,
        gate=gate,
        status=result.status.value,
        duration_ms=result.duration,
    )
    return result


def plan_run(gates: Sequence[str]) -> GatePlan:
    return [(gate, None) for gate in automated_gates(gates)]


def plan_retry(previous: GateRunResult) -> GatePlan:
    return [(result.gate, result if result.passed else None) for result in previous.results]


def _unfinished(plan: GatePlan, reason: str) -> list[GateResult]:
    return [
        carried.model_copy(deep=True)
        if carried is not None
        else GateResult(gate=gate, status=GateStatus.SKIP, details={"reason": reason})
        for gate, carried in plan
    ]


def interrupted_run(plan: GatePlan, reason: str = CANCELLED_REASON) -> GateRunResult:
    """Results for a plan that stopped before any gate finished."""
    return GateRunResult.aggregate(_unfinished(plan, reason))


async def execute_plan(
    plan: GatePlan,
    parsed_tag: ParsedTag,
    context: GateContext,
    checkers: Mapping[str, GateChecker],
) -> GateRunResult:
    results: list[GateResult] = []
    for index, (gate, carried) in enumerate(plan):
        if carried is not None:
            results.append(carried.model_copy(deep=True))
            continue
        try:
            results.append(await run_gate(gate, parsed_tag, context, checkers))
        except asyncio.CancelledError as exc:
            results.extend(_unfinished(plan[index:], CANCELLED_REASON))
            emit_structured_log(
                component="release.gates",
                event="gate_run_cancelled",
                level=logging.WARNING,
                tag=context.tag,
                commit_sha=context.commit_sha,
                gate=gate,
            )
            raise GateRunCancelledError(context.tag, GateRunResult.aggregate(results)) from exc
        except Exception as exc:
            results.append(
                GateResult(
                    gate=gate,
                    status=GateStatus.FAIL,
                    details={"error": f"{type(exc).__name__}: {exc}"},
                )
            )
            results.extend(_unfinished(plan[index + 1 :], ABORTED_REASON))
            emit_structured_log(
                component="release.gates",
                event="gate_checker_error",
                level=logging.ERROR,
                tag=context.tag,
                commit_sha=context.commit_sha,
                gate=gate,
                error=str(exc),
            )
            raise GateExecutionError(context.tag, gate, GateRunResult.aggregate(results)) from exc
    return GateRunResult.aggregate(results)


async def run_gates(
    parsed_tag: ParsedTag,
    gates: Sequence[str],
    context: GateContext,
    checkers: Mapping[str, GateChecker],
) -> GateRunResult:
    """Run every automated gate in order. Gates do not short-circuit."""
    return await execute_plan(plan_run(gates), parsed_tag, context, checkers)


async def retry_gates(
    previous: GateRunResult,
    parsed_tag: ParsedTag,
    context: GateContext,
    checkers: Mapping[str, GateChecker],
) -> GateRunResult:
    """Rerun gates that failed or were skipped; carry passed results forward."""
    return await execute_plan(plan_retry(previous), parsed_tag, context, checkers)
