from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from release_control.services.pipeline import ReleasePipeline, get_pipeline

router = APIRouter(prefix="/api/audit", tags=["audit"])


class ReleaseEventResponse(BaseModel):
    id: str
    tag: str
    action: str
    user: str | None
    timestamp: str
    details: dict[str, Any]


class LedgerSummaryResponse(BaseModel):
    tag: str
    status: str
    last_event: str
    last_updated: str


class LedgerQueryResponse(BaseModel):
    tags: list[str]


@router.get("/releases", response_model=list[LedgerSummaryResponse])
def get_ledger_summary(pipeline: ReleasePipeline = Depends(get_pipeline)) -> list[LedgerSummaryResponse]:
    return [LedgerSummaryResponse(**entry.to_payload()) for entry in pipeline.ledger.get_summary()]


@router.get("/releases/{tag}/events", response_model=list[ReleaseEventResponse])
def get_release_events(tag: str, pipeline: ReleasePipeline = Depends(get_pipeline)) -> list[ReleaseEventResponse]:
    return [ReleaseEventResponse(**event.to_payload()) for event in pipeline.ledger.get_audit_trail(tag)]


@router.get("/releases/{tag}/report", response_class=PlainTextResponse)
def get_release_report(tag: str, pipeline: ReleasePipeline = Depends(get_pipeline)) -> PlainTextResponse:
    return PlainTextResponse(pipeline.ledger.generate_report(tag), media_type="text/markdown")


@router.get("/query", response_model=LedgerQueryResponse)
def query_ledger(
    status: str | None = Query(default=None),
    date_from: str | None = Query(default=None),
    date_to: str | None = Query(default=None),
    reviewer: str | None = Query(default=None),
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> LedgerQueryResponse:
    try:
        tags = pipeline.ledger.query(status=status, date_from=date_from, date_to=date_to, reviewer=reviewer)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"invalid_date_filter:{exc}") from exc
    return LedgerQueryResponse(tags=tags)
