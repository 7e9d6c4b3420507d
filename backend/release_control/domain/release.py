from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from release_control.domain.gates import GateRunResult
from release_control.domain.release_state_machine import ReleaseState
from release_control.models.common import utcnow

RELEASE_SCHEMA_VERSION = 1


class Release(BaseModel):
    schema_version: int = RELEASE_SCHEMA_VERSION
    tag: str
    commit_sha: str
    tier: str | None
    state: ReleaseState = ReleaseState.PENDING
    gate_results: GateRunResult | None = None
    preview_url: str | None = None
    reviewer: str | None = None
    reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def copy_out(self) -> "Release":
        return self.model_copy(deep=True)

    def touch(self) -> None:
        now = utcnow()
        self.updated_at = now if now >= self.created_at else self.created_at


@dataclass(frozen=True)
class ReleaseInfo:
    """What the preview deploy hook receives."""

    tag: str
    commit_sha: str
    tier: str | None
