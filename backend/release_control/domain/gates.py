from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Union

from pydantic import BaseModel, Field

from release_control.core.release_config import TierConfig
from release_control.domain.tag_classifier import ParsedTag
from release_control.models.common import utcnow

# The human QA review is the deployed -> accepted/rejected step, not an automated gate.
REVIEW_GATES = frozenset({"qa-approval"})

NO_CHECKER_REASON = "no_checker_registered"


class GateStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"


class GateResult(BaseModel):
    gate: str
    status: GateStatus
    duration: int = 0
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def passed(self) -> bool:
        return self.status == GateStatus.PASS


class GateRunResult(BaseModel):
    passed: bool
    results: list[GateResult] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def aggregate(cls, results: list[GateResult]) -> "GateRunResult":
        return cls(passed=all(result.passed for result in results), results=list(results))

    def failed_gates(self) -> list[str]:
        return [result.gate for result in self.results if not result.passed]


@dataclass(frozen=True)
class GateContext:
    tag: str
    commit_sha: str
    tier: str | None
    tier_config: TierConfig | None


CheckerOutcome = Mapping[str, Any]
GateChecker = Callable[[ParsedTag, GateContext], Union[CheckerOutcome, Awaitable[CheckerOutcome]]]
