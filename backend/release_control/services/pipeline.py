"""Wires the webhook handler, orchestrator, ledger and default collaborators.

``get_pipeline()`` builds one pipeline per process from ``Settings``. Tests
construct ``ReleasePipeline`` directly with their own collaborators.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
import logging
import time
from typing import Callable

from release_control.core.config import Settings, get_settings
from release_control.core.release_config import load_release_config_file
from release_control.db.session import create_session_factory
from release_control.domain.errors import ReleaseNotificationError
from release_control.domain.tag_classifier import DEFAULT_CLASSIFIER, TagClassifier
from release_control.services.command_checkers import build_command_checkers
from release_control.services.ledger_store import SqlLedgerStore
from release_control.services.observability import emit_structured_log
from release_control.services.preview_deployer import CommandPreviewDeployer
from release_control.services.release_ledger import ReleaseLedger
from release_control.services.release_notifier import ReleaseNotifier
from release_control.services.release_orchestrator import SYSTEM_ACTOR, ReleaseOrchestrator
from release_control.services.webhook_tag_handler import TagPushEvent, WebhookTagHandler


class ReleasePipeline:
    def __init__(
        self,
        orchestrator: ReleaseOrchestrator,
        ledger: ReleaseLedger,
        *,
        notifier: ReleaseNotifier | None = None,
        auto_advance: bool = True,
        dedup_window_seconds: float = 60.0,
        classifier: TagClassifier = DEFAULT_CLASSIFIER,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.notifier = notifier
        self.auto_advance = auto_advance
        self.handler = WebhookTagHandler(
            self.on_release,
            classifier=classifier,
            dedup_window_seconds=dedup_window_seconds,
            clock=clock,
        )
        self._tasks: set[asyncio.Task] = set()

    async def on_release(self, event: TagPushEvent) -> None:
        await self.orchestrator.start_release(event.tag, event.commit or "", actor=event.pusher or SYSTEM_ACTOR)
        if self.auto_advance:
            self._schedule_advance(event.tag)

    def _schedule_advance(self, tag: str) -> None:
        task = asyncio.create_task(self._advance(tag), name=f"release-advance:{tag}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _advance(self, tag: str) -> None:
        try:
            preview_url = await self.orchestrator.advance_release(tag)
            if preview_url is not None:
                await self._notify_deploy(tag)
        except Exception as exc:
            emit_structured_log(
                component="release.pipeline",
                event="auto_advance_failed",
                level=logging.ERROR,
                tag=tag,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    async def _notify_deploy(self, tag: str) -> None:
        if self.notifier is None:
            return
        release = await self.orchestrator.get_release(tag)
        if release is None:
            return
        try:
            await self.notifier.notify_deploy(release)
        except Exception as exc:
            raise ReleaseNotificationError(tag, "deployed") from exc

    async def deploy_preview(self, tag: str, *, actor: str = SYSTEM_ACTOR) -> str:
        preview_url = await self.orchestrator.deploy_preview(tag, actor=actor)
        await self._notify_deploy(tag)
        return preview_url

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for scheduled auto-advance tasks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def build_pipeline(settings: Settings) -> ReleasePipeline:
    config = load_release_config_file(settings.release_config_path)
    ledger = ReleaseLedger(SqlLedgerStore(create_session_factory(settings.ledger_database_url)))

    gates = sorted({gate for tier in config.tiers.values() for gate in tier.gates})
    checkers = build_command_checkers(
        gates,
        default_timeout_seconds=settings.release_gate_check_timeout_seconds,
    )
    notifier = ReleaseNotifier(
        config.notifications,
        webhook_url=settings.slack_webhook_url,
        timeout_seconds=settings.slack_timeout_seconds,
    )
    orchestrator = ReleaseOrchestrator(
        config,
        checkers=checkers,
        deploy=CommandPreviewDeployer(
            settings.preview_deploy_command,
            timeout_seconds=settings.preview_deploy_timeout_seconds,
        ),
        notify=notifier,
        ledger=ledger,
        releases_dir=settings.releases_dir,
        persist=settings.persist_releases,
        domain=settings.preview_domain,
    )
    return ReleasePipeline(
        orchestrator,
        ledger,
        notifier=notifier,
        auto_advance=settings.auto_advance_releases,
        dedup_window_seconds=settings.webhook_dedup_window_seconds,
    )


@lru_cache
def get_pipeline() -> ReleasePipeline:
    return build_pipeline(get_settings())
