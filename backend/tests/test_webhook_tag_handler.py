from __future__ import annotations

from pathlib import Path
import sys
import unittest
from unittest.mock import AsyncMock, Mock

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from release_control.domain.tag_classifier import ParsedTag
from release_control.services.webhook_tag_handler import (
    TagEventIgnored,
    TagEventTriggered,
    TagPushEvent,
    WebhookTagHandler,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _github_payload(tag: str = "v1.0.0-rc.1") -> dict:
    return {"ref": f"refs/tags/{tag}", "after": "abc123", "pusher": {"name": "dev"}}


def _gitlab_payload(tag: str = "v1.0.0") -> dict:
    return {"ref": f"refs/tags/{tag}", "checkout_sha": "def456", "user_name": "ops"}


class WebhookTagHandlerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.on_release = AsyncMock(return_value=None)
        self.clock = FakeClock()
        self.handler = WebhookTagHandler(self.on_release, dedup_window_seconds=60.0, clock=self.clock)

    async def test_github_tag_push_triggers_release(self) -> None:
        outcome = await self.handler.handle_github_push(_github_payload())

        self.assertEqual(outcome, TagEventTriggered(tag="v1.0.0-rc.1"))
        self.assertTrue(outcome.triggered)
        self.assertEqual(outcome.to_payload(), {"triggered": True, "tag": "v1.0.0-rc.1"})
        self.on_release.assert_awaited_once_with(
            TagPushEvent(tag="v1.0.0-rc.1", commit="abc123", pusher="dev", source="github")
        )

    async def test_gitlab_tag_push_triggers_release(self) -> None:
        outcome = await self.handler.handle_gitlab_push(_gitlab_payload())

        self.assertTrue(outcome.triggered)
        self.on_release.assert_awaited_once_with(
            TagPushEvent(tag="v1.0.0", commit="def456", pusher="ops", source="gitlab")
        )

    async def test_gitlab_ref_without_prefix_is_used_directly(self) -> None:
        outcome = await self.handler.handle_tag_event(
            "gitlab",
            {"ref": "v2.0.0-beta.3", "checkout_sha": "fff", "user_name": "ops"},
        )
        self.assertEqual(outcome, TagEventTriggered(tag="v2.0.0-beta.3"))

    async def test_branch_push_is_ignored(self) -> None:
        outcome = await self.handler.handle_github_push({"ref": "refs/heads/main", "after": "abc"})

        self.assertIsInstance(outcome, TagEventIgnored)
        self.assertFalse(outcome.triggered)
        self.assertEqual(outcome.reason, "Not a tag push")
        self.on_release.assert_not_awaited()

    async def test_invalid_tag_is_ignored_with_reason(self) -> None:
        with self.assertLogs("release.webhooks", level="INFO"):
            outcome = await self.handler.handle_github_push(_github_payload("latest"))

        self.assertFalse(outcome.triggered)
        self.assertRegex(outcome.reason, "(?i)not a valid release tag")
        self.assertEqual(outcome.tag, "latest")
        self.on_release.assert_not_awaited()

    async def test_unknown_source_is_ignored(self) -> None:
        outcome = await self.handler.handle_tag_event("bitbucket", _github_payload())

        self.assertEqual(outcome, TagEventIgnored(reason="Unknown source: bitbucket"))
        self.assertEqual(outcome.to_payload(), {"triggered": False, "reason": "Unknown source: bitbucket"})
        self.on_release.assert_not_awaited()

    async def test_duplicate_within_window_is_suppressed_until_window_elapses(self) -> None:
        first = await self.handler.handle_github_push(_github_payload())
        self.clock.now += 30
        second = await self.handler.handle_github_push(_github_payload())
        self.clock.now += 31
        third = await self.handler.handle_github_push(_github_payload())

        self.assertTrue(first.triggered)
        self.assertFalse(second.triggered)
        self.assertIn("Duplicate", second.reason)
        self.assertTrue(third.triggered)
        self.assertEqual(self.on_release.await_count, 2)

    async def test_duplicate_detection_is_per_tag(self) -> None:
        first = await self.handler.handle_github_push(_github_payload("v1.0.0"))
        second = await self.handler.handle_github_push(_github_payload("v1.0.1"))
        self.assertTrue(first.triggered)
        self.assertTrue(second.triggered)

    async def test_handlers_do_not_share_dedup_state(self) -> None:
        other = WebhookTagHandler(self.on_release, clock=self.clock)
        await self.handler.handle_github_push(_github_payload())
        outcome = await other.handle_github_push(_github_payload())
        self.assertTrue(outcome.triggered)

    async def test_callback_errors_propagate_and_still_record_dedup(self) -> None:
        self.on_release.side_effect = RuntimeError("orchestrator down")

        with self.assertRaisesRegex(RuntimeError, "orchestrator down"):
            await self.handler.handle_github_push(_github_payload())

        retry = await self.handler.handle_github_push(_github_payload())
        self.assertFalse(retry.triggered)

    async def test_sync_callback_is_supported(self) -> None:
        callback = Mock(return_value=None)
        handler = WebhookTagHandler(callback, clock=self.clock)

        outcome = await handler.handle_github_push(_github_payload())

        self.assertTrue(outcome.triggered)
        callback.assert_called_once()

    async def test_injected_classifier_decides_validity(self) -> None:
        class AcceptEverything:
            def parse_tag(self, tag: str) -> ParsedTag:
                return ParsedTag(tag=tag, valid=True, tier="nightly")

            def is_valid_tag(self, tag: str) -> bool:
                return True

        handler = WebhookTagHandler(self.on_release, classifier=AcceptEverything(), clock=self.clock)
        outcome = await handler.handle_github_push(_github_payload("nightly-2026-10-18"))
        self.assertTrue(outcome.triggered)


if __name__ == "__main__":
    unittest.main()
