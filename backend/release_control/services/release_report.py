from __future__ import annotations

import json
from typing import Any, Sequence

from release_control.domain.release_state_machine import ReleaseState
from release_control.services.ledger_store import ReleaseEvent

GATE_RESULTS_KEY = "gate_results"
# Events recorded by other producers may use the camelCase key.
GATE_RESULTS_KEYS = (GATE_RESULTS_KEY, "gateResults")

_GATE_ACTIONS = {ReleaseState.GATES_PASSED.value, ReleaseState.GATES_FAILED.value}


def _display(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def _duration(value: Any) -> str:
    if value is None:
        return "-"
    return f"{value}ms"


def _gate_results(event: ReleaseEvent) -> list[Any]:
    for key in GATE_RESULTS_KEYS:
        results = event.details.get(key)
        if isinstance(results, list):
            return results
    return []


def render_gate_table(events: Sequence[ReleaseEvent]) -> list[str]:
    gate_events = [event for event in events if event.action in _GATE_ACTIONS]
    if not gate_events:
        return []

    lines = [
        "## Gate Results",
        "",
        "| Gate | Status | Duration |",
        "|------|--------|----------|",
    ]
    for event in gate_events:
        for result in _gate_results(event):
            if not isinstance(result, dict):
                continue
            lines.append(
                f"| {result.get('gate', '-')} | {result.get('status', '-')} | {_duration(result.get('duration'))} |"
            )
    lines.append("")
    return lines


def render_timeline(events: Sequence[ReleaseEvent]) -> list[str]:
    lines = ["## Event Timeline", ""]
    for event in events:
        lines.append(f"### {event.action}")
        lines.append("")
        lines.append(f"- **Timestamp:** {event.timestamp}")
        lines.append(f"- **User:** {event.user}")
        for key, value in event.details.items():
            if key in GATE_RESULTS_KEYS:
                continue
            lines.append(f"- **{key}:** {_display(value)}")
        lines.append("")
    return lines


def render_release_report(tag: str, events: Sequence[ReleaseEvent]) -> str:
    if not events:
        return f"# Release Report: {tag}\n\nNo events recorded.\n"

    lines = [
        f"# Release Report: {tag}",
        "",
        f"**Status:** {events[-1].action}",
        "",
    ]
    lines.extend(render_gate_table(events))
    lines.extend(render_timeline(events))
    return "\n".join(lines)
