from __future__ import annotations

import asyncio
from dataclasses import dataclass
import os
from pathlib import Path
import shlex
from typing import Any, Iterable, Mapping

from release_control.domain.gates import GateChecker, GateContext
from release_control.domain.tag_classifier import ParsedTag
from release_control.services.observability import emit_structured_log

GATE_CHECK_ENV_PREFIX = "RELEASE_GATE_CHECK_"
OUTPUT_TAIL_CHARS = 2000
MIN_TIMEOUT_SECONDS = 1


@dataclass(frozen=True)
class GateCommand:
    gate: str
    command: list[str]
    timeout_seconds: int


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int | None
    timed_out: bool
    output: str

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def output_tail(self, limit: int = OUTPUT_TAIL_CHARS) -> str:
        return self.output[-limit:]


def _check_env_key(name: str) -> str:
    normalized = "".join(char if char.isalnum() else "_" for char in name.strip().lower())
    return normalized.upper()


def _timeout_override(raw: str | None, default: int) -> int:
    if not raw:
        return default
    try:
        return max(MIN_TIMEOUT_SECONDS, int(raw))
    except ValueError:
        return default


def resolve_gate_command(
    gate: str,
    *,
    environ: Mapping[str, str] | None = None,
    default_timeout_seconds: int = 900,
) -> GateCommand | None:
    env = os.environ if environ is None else environ
    key = _check_env_key(gate)
    raw = env.get(f"{GATE_CHECK_ENV_PREFIX}{key}_COMMAND", "")
    command = shlex.split(raw) if raw.strip() else []
    if not command:
        return None
    timeout = _timeout_override(
        env.get(f"{GATE_CHECK_ENV_PREFIX}{key}_TIMEOUT_SECONDS"),
        max(MIN_TIMEOUT_SECONDS, default_timeout_seconds),
    )
    return GateCommand(gate=gate, command=command, timeout_seconds=timeout)


async def run_command(
    command: list[str],
    *,
    timeout_seconds: float,
    env: Mapping[str, str] | None = None,
    cwd: str | Path | None = None,
) -> CommandOutcome:
    proc = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        env=dict(env) if env is not None else None,
        cwd=str(cwd) if cwd is not None else None,
    )
    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return CommandOutcome(exit_code=None, timed_out=True, output="")
    return CommandOutcome(
        exit_code=proc.returncode,
        timed_out=False,
        output=(stdout or b"").decode("utf-8", "replace"),
    )


def release_environment(context: GateContext, base: Mapping[str, str] | None = None) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env["RELEASE_TAG"] = context.tag
    env["RELEASE_COMMIT_SHA"] = context.commit_sha or ""
    env["RELEASE_TIER"] = context.tier or ""
    return env


def command_checker(gate_command: GateCommand, *, cwd: str | Path | None = None) -> GateChecker:
    async def check(parsed_tag: ParsedTag, context: GateContext) -> dict[str, Any]:
        outcome = await run_command(
            gate_command.command,
            timeout_seconds=gate_command.timeout_seconds,
            env=release_environment(context),
            cwd=cwd,
        )
        emit_structured_log(
            component="release.gates",
            event="gate_command_finished",
            tag=context.tag,
            commit_sha=context.commit_sha,
            gate=gate_command.gate,
            command=gate_command.command,
            exit_code=outcome.exit_code,
            timed_out=outcome.timed_out,
        )
        return {
            "passed": outcome.succeeded,
            "command": gate_command.command,
            "exit_code": outcome.exit_code,
            "timed_out": outcome.timed_out,
            "output_tail": outcome.output_tail(),
        }

    return check


def build_command_checkers(
    gates: Iterable[str],
    *,
    environ: Mapping[str, str] | None = None,
    default_timeout_seconds: int = 900,
    cwd: str | Path | None = None,
) -> dict[str, GateChecker]:
    """Build one checker per gate that has a ``RELEASE_GATE_CHECK_<GATE>_COMMAND``.

    Gates without a configured command get no checker and are recorded as skipped.
    """
    checkers: dict[str, GateChecker] = {}
    for gate in gates:
        gate_command = resolve_gate_command(
            gate,
            environ=environ,
            default_timeout_seconds=default_timeout_seconds,
        )
        if gate_command is not None:
            checkers[gate] = command_checker(gate_command, cwd=cwd)
    return checkers
