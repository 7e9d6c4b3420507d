from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Mapping, Union

from release_control.core.release_config import (
    DEFAULT_RELEASE_CONFIG,
    ReleaseConfig,
    get_gates_for_tier,
    get_preview_url,
)
from release_control.domain.errors import (
    GateExecutionError,
    GateRunCancelledError,
    InvalidTagError,
    MissingGateResultsError,
    PreviewDeployError,
    ReleaseAlreadyExistsError,
    ReleaseNotFoundError,
    ReleaseNotificationError,
)
from release_control.domain.gates import GateChecker, GateContext, GateRunResult
from release_control.domain.release import Release, ReleaseInfo
from release_control.domain.release_state_machine import ReleaseState, ensure_transition_allowed
from release_control.domain.tag_classifier import DEFAULT_CLASSIFIER, ParsedTag, TagClassifier
from release_control.services import gate_runner
from release_control.services.observability import emit_structured_log
from release_control.services.release_ledger import ReleaseLedger
from release_control.services.release_report import GATE_RESULTS_KEY
from release_control.services.release_store import ReleaseStore
from release_control.services.tag_locks import TagLockRegistry

SYSTEM_ACTOR = "system"

DeployCallback = Callable[[ReleaseInfo, str], Union[Any, Awaitable[Any]]]
NotifyCallback = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


async def _offload(func: Callable[..., Any], *args: Any) -> Any:
    """Run blocking store and ledger writes off the event loop.

    A write that has started always finishes, even when the caller is
    cancelled while waiting for it.
    """
    task = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await task
        raise


class ReleaseOrchestrator:
    """Owns the release state machine for tag-driven releases.

    Every mutating operation holds the tag's lock for its whole duration, so
    concurrent calls for one tag apply in order. State is persisted after each
    successful step; a failing collaborator leaves the release in its last
    persisted state.
    """

    def __init__(
        self,
        config: ReleaseConfig | None = None,
        *,
        checkers: Mapping[str, GateChecker] | None = None,
        deploy: DeployCallback | None = None,
        notify: NotifyCallback | None = None,
        ledger: ReleaseLedger | None = None,
        classifier: TagClassifier = DEFAULT_CLASSIFIER,
        store: ReleaseStore | None = None,
        releases_dir: str | Path | None = None,
        persist: bool = True,
        domain: str = "localhost",
    ) -> None:
        self.config = config if config is not None else DEFAULT_RELEASE_CONFIG.model_copy(deep=True)
        self.checkers: dict[str, GateChecker] = dict(checkers or {})
        self.deploy = deploy
        self.notify = notify
        self.ledger = ledger
        self.classifier = classifier
        self.store = store if store is not None else ReleaseStore(releases_dir, persist=persist)
        self.domain = domain
        self.locks = TagLockRegistry()

    def register_checker(self, gate: str, checker: GateChecker) -> None:
        self.checkers[gate] = checker

    async def _require(self, tag: str) -> Release:
        release = await asyncio.to_thread(self.store.load, tag)
        if release is None:
            raise ReleaseNotFoundError(tag)
        return release

    def _parse(self, release: Release) -> ParsedTag:
        return self.classifier.parse_tag(release.tag)

    def _context(self, release: Release) -> GateContext:
        return GateContext(
            tag=release.tag,
            commit_sha=release.commit_sha,
            tier=release.tier,
            tier_config=self.config.tier(release.tier),
        )

    def _transition(self, release: Release, target: ReleaseState, *, actor: str | None) -> str:
        current = ReleaseState(release.state)
        ensure_transition_allowed(current, target)
        release.state = target
        emit_structured_log(
            component="release.orchestrator",
            event="release_transition",
            tag=release.tag,
            commit_sha=release.commit_sha,
            status_from=current.value,
            status_to=target.value,
            actor=actor,
        )
        return current.value

    def _save_and_record(
        self,
        release: Release,
        action: ReleaseState,
        user: str | None,
        details: dict[str, Any] | None,
    ) -> Release:
        saved = self.store.save(release)
        if self.ledger is not None:
            self.ledger.record_event(release.tag, action, user, details)
        return saved

    async def _persist(
        self,
        release: Release,
        action: ReleaseState,
        user: str | None,
        details: dict[str, Any] | None = None,
    ) -> Release:
        return await _offload(self._save_and_record, release, action, user, details)

    async def start_release(self, tag: str, commit_sha: str, *, actor: str = SYSTEM_ACTOR) -> Release:
        parsed = self.classifier.parse_tag(tag)
        if not parsed.valid:
            raise InvalidTagError(tag)

        async with self.locks.hold(tag):
            existing = await asyncio.to_thread(self.store.load, tag)
            if existing is not None:
                raise ReleaseAlreadyExistsError(tag, ReleaseState(existing.state).value)

            release = Release(tag=tag, commit_sha=commit_sha, tier=parsed.tier)
            saved = await self._persist(
                release,
                ReleaseState.PENDING,
                actor,
                {"commit_sha": commit_sha, "tier": parsed.tier},
            )
            emit_structured_log(
                component="release.orchestrator",
                event="release_started",
                tag=tag,
                commit_sha=commit_sha,
                tier=parsed.tier,
                actor=actor,
            )
            return saved

    async def _complete_gate_run(
        self,
        release: Release,
        outcome: GateRunResult,
        *,
        actor: str,
        retry: bool,
        interrupted: bool = False,
    ) -> None:
        target = ReleaseState.GATES_PASSED if outcome.passed else ReleaseState.GATES_FAILED
        self._transition(release, target, actor=actor)
        release.gate_results = outcome.model_copy(deep=True)

        details: dict[str, Any] = {
            GATE_RESULTS_KEY: [result.model_dump(mode="json") for result in outcome.results],
            "failed_gates": outcome.failed_gates(),
        }
        if retry:
            details["retry"] = True
        if interrupted:
            details["interrupted"] = True
        await self._persist(release, target, actor, details)

    async def _execute_gates(
        self,
        release: Release,
        plan: gate_runner.GatePlan,
        *,
        actor: str,
        retry: bool,
    ) -> GateRunResult:
        status_from = self._transition(release, ReleaseState.GATES_RUNNING, actor=actor)
        running_details: dict[str, Any] = {"status_from": status_from}
        if retry:
            running_details["retry"] = True

        # From here on the release must not be left in gates-running.
        try:
            await self._persist(release, ReleaseState.GATES_RUNNING, actor, running_details)
            outcome = await gate_runner.execute_plan(
                plan,
                self._parse(release),
                self._context(release),
                self.checkers,
            )
        except GateExecutionError as exc:
            await self._complete_gate_run(release, exc.partial_results, actor=actor, retry=retry)
            raise
        except BaseException as exc:
            if isinstance(exc, GateRunCancelledError):
                partial = exc.partial_results
            else:
                partial = gate_runner.interrupted_run(plan)
            # An interrupted run never counts as passed, even with no gates left to run.
            partial = partial.model_copy(update={"passed": False})
            emit_structured_log(
                component="release.orchestrator",
                event="gate_run_interrupted",
                level=logging.WARNING,
                tag=release.tag,
                commit_sha=release.commit_sha,
                error_type=type(exc).__name__,
            )
            await self._complete_gate_run(release, partial, actor=actor, retry=retry, interrupted=True)
            raise

        await self._complete_gate_run(release, outcome, actor=actor, retry=retry)
        return outcome.model_copy(deep=True)

    async def run_gates(self, tag: str, *, actor: str = SYSTEM_ACTOR) -> GateRunResult:
        async with self.locks.hold(tag):
            release = await self._require(tag)
            plan = gate_runner.plan_run(get_gates_for_tier(self.config, release.tier))
            return await self._execute_gates(release, plan, actor=actor, retry=False)

    async def retry_gates(self, tag: str, *, actor: str = SYSTEM_ACTOR) -> GateRunResult:
        async with self.locks.hold(tag):
            release = await self._require(tag)
            previous = release.gate_results
            if previous is None:
                raise MissingGateResultsError(tag, ReleaseState(release.state).value)

            if release.state == ReleaseState.GATES_PASSED and previous.passed:
                emit_structured_log(
                    component="release.orchestrator",
                    event="gate_retry_noop",
                    tag=tag,
                    commit_sha=release.commit_sha,
                    actor=actor,
                )
                return GateRunResult(
                    passed=True,
                    results=[result.model_copy(deep=True) for result in previous.results],
                )

            plan = gate_runner.plan_retry(previous)
            return await self._execute_gates(release, plan, actor=actor, retry=True)

    async def deploy_preview(self, tag: str, *, actor: str = SYSTEM_ACTOR) -> str:
        async with self.locks.hold(tag):
            release = await self._require(tag)
            ensure_transition_allowed(ReleaseState(release.state), ReleaseState.DEPLOYED)

            preview_url = get_preview_url(self.config, tag, self.domain)
            if self.deploy is not None:
                info = ReleaseInfo(tag=release.tag, commit_sha=release.commit_sha, tier=release.tier)
                try:
                    await _maybe_await(self.deploy(info, preview_url))
                except Exception as exc:
                    emit_structured_log(
                        component="release.orchestrator",
                        event="preview_deploy_failed",
                        level=logging.ERROR,
                        tag=tag,
                        commit_sha=release.commit_sha,
                        preview_url=preview_url,
                        error=str(exc),
                    )
                    raise PreviewDeployError(tag, preview_url) from exc

            status_from = self._transition(release, ReleaseState.DEPLOYED, actor=actor)
            release.preview_url = preview_url
            await self._persist(
                release,
                ReleaseState.DEPLOYED,
                actor,
                {"preview_url": preview_url, "status_from": status_from},
            )
            return preview_url

    async def _review(
        self,
        tag: str,
        target: ReleaseState,
        reviewer: str,
        reason: str | None,
    ) -> Release:
        async with self.locks.hold(tag):
            release = await self._require(tag)
            self._transition(release, target, actor=reviewer)
            release.reviewer = reviewer
            release.reason = reason
            saved = await self._persist(release, target, reviewer, {"reason": reason} if reason is not None else {})

        if self.notify is not None:
            event_data: dict[str, Any] = {"tag": tag, "reviewer": reviewer, "action": target.value}
            if target == ReleaseState.REJECTED:
                event_data["reason"] = reason
            try:
                await _maybe_await(self.notify(event_data))
            except Exception as exc:
                emit_structured_log(
                    component="release.orchestrator",
                    event="release_notification_failed",
                    level=logging.ERROR,
                    tag=tag,
                    commit_sha=saved.commit_sha,
                    action=target.value,
                    error=str(exc),
                )
                raise ReleaseNotificationError(tag, target.value) from exc
        return saved

    async def accept_release(self, tag: str, reviewer: str) -> Release:
        return await self._review(tag, ReleaseState.ACCEPTED, reviewer, None)

    async def reject_release(self, tag: str, reviewer: str, reason: str) -> Release:
        return await self._review(tag, ReleaseState.REJECTED, reviewer, reason)

    async def advance_release(self, tag: str, *, actor: str = SYSTEM_ACTOR) -> str | None:
        """Run gates and, when they pass, deploy the preview. Returns the preview URL."""
        outcome = await self.run_gates(tag, actor=actor)
        if not outcome.passed:
            return None
        return await self.deploy_preview(tag, actor=actor)

    async def get_release(self, tag: str) -> Release | None:
        return await asyncio.to_thread(self.store.load, tag)

    async def list_releases(self) -> list[Release]:
        return await asyncio.to_thread(self.store.list_all)
