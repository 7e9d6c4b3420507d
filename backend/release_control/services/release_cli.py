from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Sequence

from release_control.core.config import get_settings
from release_control.domain.errors import (
    CollaboratorError,
    InvalidTagError,
    ReleaseError,
    ReleaseNotFoundError,
    ReleaseStateError,
)
from release_control.domain.release import Release
from release_control.domain.release_state_machine import ReleaseState
from release_control.services.pipeline import ReleasePipeline, build_pipeline

REVIEW_ROLES = ("qa", "admin")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REFUSED = 2


def _to_payload(release: Release) -> dict[str, Any]:
    return release.model_dump(mode="json")


def _print(payload: Any) -> None:
    print(json.dumps(payload, sort_keys=True))


def _refused(error: str, **fields: Any) -> int:
    _print({"error": error, **fields})
    return EXIT_REFUSED


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Drive tag releases through gates, preview and QA review")
    subparsers = parser.add_subparsers(dest="command", required=True)

    create_parser = subparsers.add_parser("create", help="Start a release for a tag")
    create_parser.add_argument("--tag", required=True)
    create_parser.add_argument("--commit-sha", required=True)
    create_parser.add_argument("--actor", default="cli")

    for name in ("status", "history", "report"):
        sub = subparsers.add_parser(name)
        sub.add_argument("--tag", required=True)

    for name in ("gates", "retry", "deploy"):
        sub = subparsers.add_parser(name)
        sub.add_argument("--tag", required=True)
        sub.add_argument("--actor", default="cli")

    accept_parser = subparsers.add_parser("accept", help="Accept a deployed release after QA")
    accept_parser.add_argument("--tag", required=True)
    accept_parser.add_argument("--reviewer", required=True)
    accept_parser.add_argument("--role", required=True)

    reject_parser = subparsers.add_parser("reject", help="Reject a deployed release after QA")
    reject_parser.add_argument("--tag", required=True)
    reject_parser.add_argument("--reviewer", required=True)
    reject_parser.add_argument("--role", required=True)
    reject_parser.add_argument("--reason", default="")

    subparsers.add_parser("list")
    return parser


async def _dispatch(args: argparse.Namespace, pipeline: ReleasePipeline) -> int:
    orchestrator = pipeline.orchestrator

    if args.command == "create":
        release = await orchestrator.start_release(args.tag, args.commit_sha, actor=args.actor)
        _print(_to_payload(release))
        return EXIT_OK

    if args.command == "status":
        release = await orchestrator.get_release(args.tag)
        if release is None:
            return _refused("release_not_found", tag=args.tag)
        _print(_to_payload(release))
        return EXIT_OK

    if args.command == "gates":
        result = await orchestrator.run_gates(args.tag, actor=args.actor)
        _print(result.model_dump(mode="json"))
        return EXIT_OK if result.passed else EXIT_FAILED

    if args.command == "retry":
        release = await orchestrator.get_release(args.tag)
        if release is None:
            return _refused("release_not_found", tag=args.tag)
        if release.state != ReleaseState.GATES_FAILED:
            return _refused("retry_requires_gates_failed", tag=args.tag, state=ReleaseState(release.state).value)
        result = await orchestrator.retry_gates(args.tag, actor=args.actor)
        _print(result.model_dump(mode="json"))
        return EXIT_OK if result.passed else EXIT_FAILED

    if args.command == "deploy":
        preview_url = await pipeline.deploy_preview(args.tag, actor=args.actor)
        _print({"tag": args.tag, "preview_url": preview_url})
        return EXIT_OK

    if args.command in {"accept", "reject"}:
        if args.role not in REVIEW_ROLES:
            return _refused("review_role_required", role=args.role, allowed=list(REVIEW_ROLES))
        if args.command == "accept":
            release = await orchestrator.accept_release(args.tag, args.reviewer)
        else:
            if not args.reason.strip():
                return _refused("reject_reason_required", tag=args.tag)
            release = await orchestrator.reject_release(args.tag, args.reviewer, args.reason.strip())
        _print(_to_payload(release))
        return EXIT_OK

    if args.command == "list":
        _print([_to_payload(item) for item in await orchestrator.list_releases()])
        return EXIT_OK

    if args.command == "history":
        _print([event.to_payload() for event in pipeline.ledger.get_audit_trail(args.tag)])
        return EXIT_OK

    if args.command == "report":
        print(pipeline.ledger.generate_report(args.tag))
        return EXIT_OK

    _print({"error": "unsupported_command"})
    return EXIT_FAILED


def main(argv: Sequence[str] | None = None, *, pipeline: ReleasePipeline | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if pipeline is None:
        pipeline = build_pipeline(get_settings())
    # Each command performs exactly one release step.
    pipeline.auto_advance = False

    try:
        return asyncio.run(_dispatch(args, pipeline))
    except ReleaseNotFoundError as exc:
        return _refused("release_not_found", tag=exc.tag)
    except (InvalidTagError, ReleaseStateError) as exc:
        return _refused("release_request_refused", error_type=type(exc).__name__, detail=str(exc))
    except CollaboratorError as exc:
        cause = exc.__cause__
        _print(
            {
                "error": "release_collaborator_failed",
                "error_type": type(exc).__name__,
                "detail": str(exc),
                "cause": str(cause) if cause is not None else None,
            }
        )
        return EXIT_FAILED
    except ReleaseError as exc:
        _print({"error": "release_failed", "detail": str(exc)})
        return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
