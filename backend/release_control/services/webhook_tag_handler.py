"""Turns platform push webhooks into release starts.

Invalid tags, unknown sources and repeated deliveries are expected and come
back as ``TagEventIgnored`` values. Deduplication is a per-handler, in-memory
time window: it does not survive a restart and is not shared between
processes.
"""

from __future__ import annotations

from dataclasses import dataclass
import inspect
import logging
import time
from typing import Any, Awaitable, Callable, Mapping, Union

from release_control.domain.tag_classifier import DEFAULT_CLASSIFIER, TagClassifier
from release_control.services.observability import emit_structured_log

SOURCE_GITHUB = "github"
SOURCE_GITLAB = "gitlab"
KNOWN_SOURCES = (SOURCE_GITHUB, SOURCE_GITLAB)

TAG_REF_PREFIX = "refs/tags/"


@dataclass(frozen=True)
class TagPushEvent:
    tag: str
    commit: str | None
    pusher: str | None
    source: str


@dataclass(frozen=True)
class TagEventTriggered:
    tag: str

    @property
    def triggered(self) -> bool:
        return True

    def to_payload(self) -> dict[str, Any]:
        return {"triggered": True, "tag": self.tag}


@dataclass(frozen=True)
class TagEventIgnored:
    reason: str
    tag: str | None = None

    @property
    def triggered(self) -> bool:
        return False

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"triggered": False, "reason": self.reason}
        if self.tag is not None:
            payload["tag"] = self.tag
        return payload


TagEventOutcome = Union[TagEventTriggered, TagEventIgnored]
ReleaseCallback = Callable[[TagPushEvent], Union[Any, Awaitable[Any]]]


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _github_event(payload: Mapping[str, Any]) -> TagPushEvent | TagEventIgnored:
    ref = _text(payload.get("ref"))
    if ref is None or not ref.startswith(TAG_REF_PREFIX):
        return TagEventIgnored(reason="Not a tag push")
    pusher = payload.get("pusher")
    return TagPushEvent(
        tag=ref[len(TAG_REF_PREFIX) :],
        commit=_text(payload.get("after")),
        pusher=_text(pusher.get("name")) if isinstance(pusher, Mapping) else None,
        source=SOURCE_GITHUB,
    )


def _gitlab_event(payload: Mapping[str, Any]) -> TagPushEvent | TagEventIgnored:
    ref = _text(payload.get("ref"))
    if ref is None:
        return TagEventIgnored(reason="Not a tag push")
    if ref.startswith(TAG_REF_PREFIX):
        ref = ref[len(TAG_REF_PREFIX) :]
    return TagPushEvent(
        tag=ref,
        commit=_text(payload.get("checkout_sha")),
        pusher=_text(payload.get("user_name")),
        source=SOURCE_GITLAB,
    )


_EXTRACTORS = {
    SOURCE_GITHUB: _github_event,
    SOURCE_GITLAB: _gitlab_event,
}


class WebhookTagHandler:
    def __init__(
        self,
        on_release: ReleaseCallback,
        *,
        classifier: TagClassifier = DEFAULT_CLASSIFIER,
        dedup_window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.on_release = on_release
        self.classifier = classifier
        self.dedup_window_seconds = dedup_window_seconds
        self.clock = clock
        self._last_seen: dict[str, float] = {}

    def _ignored(self, source: str, reason: str, tag: str | None = None) -> TagEventIgnored:
        emit_structured_log(
            component="release.webhooks",
            event="tag_event_ignored",
            level=logging.INFO,
            tag=tag,
            source=source,
            reason=reason,
        )
        return TagEventIgnored(reason=reason, tag=tag)

    def _is_duplicate(self, tag: str, now: float) -> bool:
        last_seen = self._last_seen.get(tag)
        return last_seen is not None and now - last_seen < self.dedup_window_seconds

    async def handle_tag_event(self, source: str, payload: Mapping[str, Any]) -> TagEventOutcome:
        extract = _EXTRACTORS.get(source)
        if extract is None:
            return self._ignored(source, f"Unknown source: {source}")

        extracted = extract(payload if isinstance(payload, Mapping) else {})
        if isinstance(extracted, TagEventIgnored):
            return self._ignored(source, extracted.reason)

        tag = extracted.tag
        if not self.classifier.is_valid_tag(tag):
            return self._ignored(source, f"Tag {tag} is not a valid release tag", tag)

        now = self.clock()
        if self._is_duplicate(tag, now):
            return self._ignored(source, f"Duplicate tag event for {tag} within dedup window", tag)
        self._last_seen[tag] = now

        emit_structured_log(
            component="release.webhooks",
            event="tag_event_triggered",
            tag=tag,
            commit_sha=extracted.commit,
            source=source,
            pusher=extracted.pusher,
        )
        result = self.on_release(extracted)
        if inspect.isawaitable(result):
            await result
        return TagEventTriggered(tag=tag)

    async def handle_github_push(self, payload: Mapping[str, Any]) -> TagEventOutcome:
        return await self.handle_tag_event(SOURCE_GITHUB, payload)

    async def handle_gitlab_push(self, payload: Mapping[str, Any]) -> TagEventOutcome:
        return await self.handle_tag_event(SOURCE_GITLAB, payload)
