from __future__ import annotations

from enum import Enum

from release_control.domain.errors import TransitionRuleError


class ReleaseState(str, Enum):
    PENDING = "pending"
    GATES_RUNNING = "gates-running"
    GATES_PASSED = "gates-passed"
    GATES_FAILED = "gates-failed"
    DEPLOYED = "deployed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


TERMINAL_STATES = {
    ReleaseState.ACCEPTED,
    ReleaseState.REJECTED,
}

VALID_TRANSITIONS: dict[ReleaseState, set[ReleaseState]] = {
    ReleaseState.PENDING: {ReleaseState.GATES_RUNNING},
    ReleaseState.GATES_RUNNING: {ReleaseState.GATES_PASSED, ReleaseState.GATES_FAILED},
    ReleaseState.GATES_PASSED: {ReleaseState.DEPLOYED},
    # gates-failed -> gates-running is the retry edge.
    ReleaseState.GATES_FAILED: {ReleaseState.GATES_RUNNING},
    ReleaseState.DEPLOYED: {ReleaseState.ACCEPTED, ReleaseState.REJECTED},
    ReleaseState.ACCEPTED: set(),
    ReleaseState.REJECTED: set(),
}


def ensure_transition_allowed(current: ReleaseState, target: ReleaseState) -> None:
    allowed_targets = VALID_TRANSITIONS[current]
    if target not in allowed_targets:
        raise TransitionRuleError(
            current.value,
            target.value,
            sorted(state.value for state in allowed_targets),
        )


def is_transition_allowed(current: ReleaseState, target: ReleaseState) -> bool:
    return target in VALID_TRANSITIONS[current]


def list_release_states() -> list[str]:
    return [state.value for state in ReleaseState]
