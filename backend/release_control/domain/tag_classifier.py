from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Protocol

TIER_RELEASE = "release"
TIER_RC = "rc"
TIER_BETA = "beta"

_PRERELEASE_TIERS = {
    "rc": TIER_RC,
    "beta": TIER_BETA,
}

_TAG_RE = re.compile(
    r"v(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)(?:-(rc|beta)\.(0|[1-9]\d*))?"
)


@dataclass(frozen=True, slots=True)
class ParsedTag:
    tag: str
    valid: bool
    tier: str | None = None
    major: int | None = None
    minor: int | None = None
    patch: int | None = None
    prerelease: str | None = None
    prerelease_number: int | None = None

    @property
    def version(self) -> str | None:
        if not self.valid:
            return None
        return f"{self.major}.{self.minor}.{self.patch}"


class TagClassifier(Protocol):
    def parse_tag(self, tag: str) -> ParsedTag: ...

    def is_valid_tag(self, tag: str) -> bool: ...


def parse_tag(tag: str) -> ParsedTag:
    m = _TAG_RE.fullmatch(tag or "")
    if m is None:
        return ParsedTag(tag=tag, valid=False)

    prerelease = m.group(4)
    return ParsedTag(
        tag=tag,
        valid=True,
        tier=_PRERELEASE_TIERS[prerelease] if prerelease else TIER_RELEASE,
        major=int(m.group(1)),
        minor=int(m.group(2)),
        patch=int(m.group(3)),
        prerelease=prerelease,
        prerelease_number=int(m.group(5)) if m.group(5) is not None else None,
    )


def is_valid_tag(tag: str) -> bool:
    return parse_tag(tag).valid


class SemverTagClassifier:
    """Default classifier: ``v1.2.3``, ``v1.2.3-rc.N`` and ``v1.2.3-beta.N``."""

    def parse_tag(self, tag: str) -> ParsedTag:
        return parse_tag(tag)

    def is_valid_tag(self, tag: str) -> bool:
        return is_valid_tag(tag)


DEFAULT_CLASSIFIER = SemverTagClassifier()
