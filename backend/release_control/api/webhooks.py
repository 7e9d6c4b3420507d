from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from release_control.core.config import Settings, get_settings
from release_control.services.pipeline import ReleasePipeline, get_pipeline
from release_control.services.webhook_signatures import (
    GITHUB_EVENT_HEADER,
    GITHUB_SIGNATURE_HEADER,
    GITLAB_TOKEN_HEADER,
    verify_github_signature,
    verify_gitlab_token,
)
from release_control.services.webhook_tag_handler import TagEventIgnored

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


def _json_body(body: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=400, detail="invalid_json_body") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="invalid_json_body")
    return payload


@router.post("/github")
async def github_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    body = await request.body()
    if settings.github_webhook_secret and not verify_github_signature(
        body,
        request.headers.get(GITHUB_SIGNATURE_HEADER),
        settings.github_webhook_secret,
    ):
        raise HTTPException(status_code=401, detail="invalid_webhook_signature")

    event_name = request.headers.get(GITHUB_EVENT_HEADER)
    if event_name and event_name != "push":
        return TagEventIgnored(reason=f"Ignored GitHub event: {event_name}").to_payload()

    outcome = await pipeline.handler.handle_github_push(_json_body(body))
    return outcome.to_payload()


@router.post("/gitlab")
async def gitlab_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    pipeline: ReleasePipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    body = await request.body()
    if settings.gitlab_webhook_token and not verify_gitlab_token(
        request.headers.get(GITLAB_TOKEN_HEADER),
        settings.gitlab_webhook_token,
    ):
        raise HTTPException(status_code=401, detail="invalid_webhook_token")

    outcome = await pipeline.handler.handle_gitlab_push(_json_body(body))
    return outcome.to_payload()
