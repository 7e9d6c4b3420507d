from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from release_control.domain.gates import GateRunResult
from release_control.domain.release import Release
from release_control.services.pipeline import ReleasePipeline, get_pipeline
from release_control.services.release_orchestrator import SYSTEM_ACTOR

router = APIRouter(prefix="/api/releases", tags=["releases"])


class CreateReleaseRequest(BaseModel):
    tag: str = Field(min_length=1)
    commit_sha: str = Field(min_length=1)
    actor: str = SYSTEM_ACTOR


class ActorRequest(BaseModel):
    actor: str = SYSTEM_ACTOR


class AcceptReleaseRequest(BaseModel):
    reviewer: str = Field(min_length=1)


class RejectReleaseRequest(BaseModel):
    reviewer: str = Field(min_length=1)
    reason: str

    @field_validator("reason")
    @classmethod
    def _reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason must not be blank")
        return value.strip()


class GateResultResponse(BaseModel):
    gate: str
    status: str
    duration: int
    details: dict[str, Any]


class GateRunResponse(BaseModel):
    passed: bool
    results: list[GateResultResponse]
    completed_at: datetime


class ReleaseResponse(BaseModel):
    schema_version: int
    tag: str
    commit_sha: str
    tier: str | None
    state: str
    gate_results: GateRunResponse | None
    preview_url: str | None
    reviewer: str | None
    reason: str | None
    created_at: datetime
    updated_at: datetime


class DeployResponse(BaseModel):
    tag: str
    preview_url: str


def _to_gate_run_response(result: GateRunResult) -> GateRunResponse:
    return GateRunResponse.model_validate(result.model_dump(mode="json"))


def _to_release_response(release: Release) -> ReleaseResponse:
    return ReleaseResponse.model_validate(release.model_dump(mode="json"))


@router.post("", response_model=ReleaseResponse, status_code=201)
async def create_release(
    payload: CreateReleaseRequest,
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> ReleaseResponse:
    release = await pipeline.orchestrator.start_release(payload.tag, payload.commit_sha, actor=payload.actor)
    return _to_release_response(release)


@router.get("", response_model=list[ReleaseResponse])
async def get_releases(pipeline: ReleasePipeline = Depends(get_pipeline)) -> list[ReleaseResponse]:
    return [_to_release_response(item) for item in await pipeline.orchestrator.list_releases()]


@router.get("/{tag}", response_model=ReleaseResponse)
async def get_release(tag: str, pipeline: ReleasePipeline = Depends(get_pipeline)) -> ReleaseResponse:
    release = await pipeline.orchestrator.get_release(tag)
    if release is None:
        raise HTTPException(status_code=404, detail=f"Release not found: {tag}")
    return _to_release_response(release)


@router.post("/{tag}/gates", response_model=GateRunResponse)
async def run_release_gates(
    tag: str,
    payload: ActorRequest | None = None,
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> GateRunResponse:
    actor = payload.actor if payload is not None else SYSTEM_ACTOR
    return _to_gate_run_response(await pipeline.orchestrator.run_gates(tag, actor=actor))


@router.post("/{tag}/gates/retry", response_model=GateRunResponse)
async def retry_release_gates(
    tag: str,
    payload: ActorRequest | None = None,
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> GateRunResponse:
    actor = payload.actor if payload is not None else SYSTEM_ACTOR
    return _to_gate_run_response(await pipeline.orchestrator.retry_gates(tag, actor=actor))


@router.post("/{tag}/deploy", response_model=DeployResponse)
async def deploy_release_preview(
    tag: str,
    payload: ActorRequest | None = None,
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> DeployResponse:
    actor = payload.actor if payload is not None else SYSTEM_ACTOR
    preview_url = await pipeline.deploy_preview(tag, actor=actor)
    return DeployResponse(tag=tag, preview_url=preview_url)


@router.post("/{tag}/accept", response_model=ReleaseResponse)
async def accept_release(
    tag: str,
    payload: AcceptReleaseRequest,
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> ReleaseResponse:
    return _to_release_response(await pipeline.orchestrator.accept_release(tag, payload.reviewer))


@router.post("/{tag}/reject", response_model=ReleaseResponse)
async def reject_release(
    tag: str,
    payload: RejectReleaseRequest,
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> ReleaseResponse:
    return _to_release_response(await pipeline.orchestrator.reject_release(tag, payload.reviewer, payload.reason))
