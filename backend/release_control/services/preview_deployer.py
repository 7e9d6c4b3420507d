from __future__ import annotations

import logging
import os
import shlex
from typing import Mapping

from release_control.domain.release import ReleaseInfo
from release_control.services.command_checkers import run_command
from release_control.services.observability import emit_structured_log


class PreviewDeployCommandError(RuntimeError):
    def __init__(self, tag: str, detail: str) -> None:
        self.tag = tag
        self.detail = detail
        super().__init__(f"preview_deploy_failed:{tag}:{detail}")


class CommandPreviewDeployer:
    """Deploy hook that runs an operator-supplied command for each preview.

    The command receives ``RELEASE_TAG``, ``RELEASE_COMMIT_SHA``,
    ``RELEASE_TIER`` and ``RELEASE_PREVIEW_URL`` in its environment.
    """

    def __init__(
        self,
        command: str | None,
        *,
        timeout_seconds: int = 600,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.command = shlex.split(command) if command and command.strip() else []
        self.timeout_seconds = timeout_seconds
        self.environ = environ

    def _environment(self, release: ReleaseInfo, preview_url: str) -> dict[str, str]:
        env = dict(os.environ if self.environ is None else self.environ)
        env.update(
            {
                "RELEASE_TAG": release.tag,
                "RELEASE_COMMIT_SHA": release.commit_sha or "",
                "RELEASE_TIER": release.tier or "",
                "RELEASE_PREVIEW_URL": preview_url,
            }
        )
        return env

    async def __call__(self, release: ReleaseInfo, preview_url: str) -> None:
        if not self.command:
            emit_structured_log(
                component="release.deploy",
                event="preview_deploy_skipped",
                tag=release.tag,
                commit_sha=release.commit_sha,
                preview_url=preview_url,
                reason="no_deploy_command_configured",
            )
            return

        outcome = await run_command(
            self.command,
            timeout_seconds=self.timeout_seconds,
            env=self._environment(release, preview_url),
        )
        emit_structured_log(
            component="release.deploy",
            event="preview_deploy_finished",
            level=logging.INFO if outcome.succeeded else logging.ERROR,
            tag=release.tag,
            commit_sha=release.commit_sha,
            preview_url=preview_url,
            exit_code=outcome.exit_code,
            timed_out=outcome.timed_out,
        )
        if outcome.timed_out:
            raise PreviewDeployCommandError(release.tag, "timed_out")
        if outcome.exit_code != 0:
            raise PreviewDeployCommandError(release.tag, f"exit_code_{outcome.exit_code}")
