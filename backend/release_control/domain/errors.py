"""Exception taxonomy for the release pipeline.

Expected webhook outcomes (unknown source, invalid tag, duplicate delivery)
are returned as values by the webhook handler and never raised. Everything
here aborts a single request:

- ``InvalidTagError``: the caller asked for a release on a non-release tag.
- ``ReleaseStateError`` and subclasses: the request conflicts with the
  release's current state.
- ``CollaboratorError`` and subclasses: an injected checker, deploy hook or
  notifier failed; the release keeps its last persisted state.

``GateRunCancelledError`` is a cancellation, not a ``ReleaseError``: it is
raised when the task running gates is cancelled and carries the results
gathered up to that point.
"""

from __future__ import annotations

import asyncio


class ReleaseError(Exception):
    """Base class for release pipeline errors."""


class InvalidTagError(ReleaseError, ValueError):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Invalid tag: {tag}")


class ReleaseStateError(ReleaseError):
    """Raised when an operation conflicts with a release's state."""


class TransitionRuleError(ReleaseStateError, ValueError):
    """Raised when an invalid release state transition is requested."""

    def __init__(self, current: str, target: str, allowed: list[str] | None = None) -> None:
        self.current = current
        self.target = target
        message = f"Invalid state transition: {current} -> {target}"
        if allowed is not None:
            message = f"{message}. Allowed: [{', '.join(allowed)}]"
        super().__init__(message)


class ReleaseNotFoundError(ReleaseStateError):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"Release not found: {tag}")


class ReleaseAlreadyExistsError(ReleaseStateError):
    def __init__(self, tag: str, state: str) -> None:
        self.tag = tag
        self.state = state
        super().__init__(f"Release already started: {tag} (state: {state})")


class MissingGateResultsError(ReleaseStateError):
    def __init__(self, tag: str, state: str) -> None:
        self.tag = tag
        self.state = state
        super().__init__(f"No previous gate results to retry for: {tag} (state: {state})")


class CollaboratorError(ReleaseError):
    """Raised when an injected side-effecting collaborator fails."""

    def __init__(self, tag: str, message: str) -> None:
        self.tag = tag
        super().__init__(message)


class GateExecutionError(CollaboratorError):
    def __init__(self, tag: str, gate: str, partial_results=None) -> None:
        self.gate = gate
        self.partial_results = partial_results
        super().__init__(tag, f"Gate checker failed: {gate} for {tag}")


class PreviewDeployError(CollaboratorError):
    def __init__(self, tag: str, preview_url: str) -> None:
        self.preview_url = preview_url
        super().__init__(tag, f"Preview deploy failed for {tag} ({preview_url})")


class ReleaseNotificationError(CollaboratorError):
    def __init__(self, tag: str, action: str) -> None:
        self.action = action
        super().__init__(tag, f"Release notification failed for {tag} ({action})")


class GateRunCancelledError(asyncio.CancelledError):
    def __init__(self, tag: str, partial_results) -> None:
        self.tag = tag
        self.partial_results = partial_results
        super().__init__(f"Gate run cancelled for {tag}")
