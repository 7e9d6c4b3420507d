"""Slack Block Kit notifications for release deploys and QA decisions.

Messages go to an incoming-webhook URL. Without a URL the message is only
logged, so a local pipeline runs end to end without Slack.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
from typing import Any, Callable, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from release_control.core.release_config import NotificationsConfig
from release_control.domain.gates import GateRunResult
from release_control.domain.release import Release
from release_control.domain.release_state_machine import ReleaseState
from release_control.services.observability import emit_structured_log

EVENT_ON_DEPLOY = "on_deploy"
EVENT_ON_ACCEPT = "on_accept"
EVENT_ON_REJECT = "on_reject"

_EVENT_BY_ACTION = {
    ReleaseState.ACCEPTED.value: EVENT_ON_ACCEPT,
    ReleaseState.REJECTED.value: EVENT_ON_REJECT,
}


@dataclass(frozen=True)
class NotificationResult:
    sent: bool
    channel: str | None = None


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _message(blocks: list[dict[str, Any]], channel: str | None) -> dict[str, Any]:
    message: dict[str, Any] = {"blocks": blocks}
    # Entries such as "slack" select the integration; "#name" also overrides the channel.
    if channel and channel.startswith("#"):
        message["channel"] = channel
    return message


def gate_summary(gate_results: GateRunResult | None) -> tuple[int, int]:
    if gate_results is None:
        return 0, 0
    passed = sum(1 for result in gate_results.results if result.passed)
    return passed, len(gate_results.results) - passed


def build_deploy_message(release: Release, channel: str | None = None) -> dict[str, Any]:
    passed, failed = gate_summary(release.gate_results)
    return _message(
        [
            _section(f":rocket: *Release Deployed: {release.tag}*\nReview needed"),
            _section(f"*Preview URL:* {release.preview_url or 'N/A'}"),
            _section(f"*Gates:* {passed} passed, {failed} failed"),
        ],
        channel,
    )


def build_accept_message(tag: str, reviewer: str | None, channel: str | None = None) -> dict[str, Any]:
    return _message(
        [
            _section(f":white_check_mark: *Release Accepted: {tag}*"),
            _section(f"*Reviewer:* {reviewer or 'Unknown'}"),
        ],
        channel,
    )


def build_reject_message(
    tag: str,
    reviewer: str | None,
    reason: str | None,
    channel: str | None = None,
) -> dict[str, Any]:
    return _message(
        [
            _section(f":x: *Release Rejected: {tag}*"),
            _section(f"*Reviewer:* {reviewer or 'Unknown'}"),
            _section(f"*Reason:* {reason}"),
        ],
        channel,
    )


def post_json(url: str, payload: Mapping[str, Any], *, timeout_seconds: float = 10.0) -> int:
    body = json.dumps(payload).encode("utf-8")
    request = Request(url=url, method="POST", data=body, headers={"Content-Type": "application/json"})
    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            return int(response.status)
    except HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"slack_http_error:{exc.code}:{detail}") from exc
    except URLError as exc:
        raise RuntimeError(f"slack_url_error:{exc.reason}") from exc


class ReleaseNotifier:
    def __init__(
        self,
        notifications: NotificationsConfig | None = None,
        *,
        webhook_url: str | None = None,
        timeout_seconds: float = 10.0,
        post: Callable[..., Any] = post_json,
    ) -> None:
        self.notifications = notifications if notifications is not None else NotificationsConfig()
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.post = post

    def _channel(self, event: str) -> str | None:
        for channel in self.notifications.channels_for(event):
            if isinstance(channel, str) and channel.strip():
                return channel.strip()
        return None

    async def _deliver(self, event: str, tag: str, build: Callable[[str | None], dict[str, Any]]) -> NotificationResult:
        channel = self._channel(event)
        if channel is None:
            emit_structured_log(
                component="release.notifier",
                event="notification_skipped",
                tag=tag,
                notification_event=event,
                reason="no_channel_configured",
            )
            return NotificationResult(sent=False)

        message = build(channel)
        if not self.webhook_url:
            emit_structured_log(
                component="release.notifier",
                event="notification_logged",
                tag=tag,
                notification_event=event,
                channel=channel,
                message=message,
            )
            return NotificationResult(sent=False, channel=channel)

        await asyncio.to_thread(self.post, self.webhook_url, message, timeout_seconds=self.timeout_seconds)
        emit_structured_log(
            component="release.notifier",
            event="notification_sent",
            tag=tag,
            notification_event=event,
            channel=channel,
        )
        return NotificationResult(sent=True, channel=channel)

    async def notify_deploy(self, release: Release) -> NotificationResult:
        return await self._deliver(
            EVENT_ON_DEPLOY,
            release.tag,
            lambda channel: build_deploy_message(release, channel),
        )

    async def __call__(self, event_data: Mapping[str, Any]) -> NotificationResult:
        action = event_data.get("action")
        event = _EVENT_BY_ACTION.get(action)
        if event is None:
            raise ValueError(f"unsupported_notification_action:{action}")

        tag = str(event_data.get("tag"))
        reviewer = event_data.get("reviewer")
        if event == EVENT_ON_ACCEPT:
            return await self._deliver(event, tag, lambda channel: build_accept_message(tag, reviewer, channel))
        return await self._deliver(
            event,
            tag,
            lambda channel: build_reject_message(tag, reviewer, event_data.get("reason"), channel),
        )
