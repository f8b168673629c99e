"""
shell.run skill: gated, validated, argv-only command execution.

Order of checks:
1. gates (allowlist, dangerous opt-in, argv/script scan, cwd roots, timeout bounds)
2. validator classification of the command text
3. confirmation requirement
4. dry-run preview or the actual spawn
"""

from __future__ import annotations

import logging
import os
import shlex
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from actuator.contracts.skills import ErrorKind, skill_failure
from actuator.executor.gates import (
    DEFAULT_TIMEOUT_MS,
    command_base,
    evaluate_argv_gate,
    evaluate_command_gate,
    evaluate_cwd_gate,
    evaluate_timeout_gate,
)
from actuator.executor.process import run_process
from actuator.logging_utils import log_event
from actuator.security.policy import CommandPolicy
from actuator.security.validator import CommandClassification, sanitize_output, validate

if TYPE_CHECKING:
    from actuator.executor.dispatch import SkillContext

logger = logging.getLogger(__name__)


def audit_string(cmd: str, argv: List[str]) -> str:
    return shlex.join([cmd, *argv])


def validation_text(cmd: str, argv: List[str], policy: CommandPolicy) -> str:
    """Text handed to the validator: the script body for interpreters, else the full command."""
    if command_base(cmd) in policy.shell_interpreters:
        if "-c" in argv:
            idx = argv.index("-c")
            if idx + 1 < len(argv):
                return argv[idx + 1]
        return " ".join(argv)
    return " ".join([cmd, *argv])


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


async def run_shell(args: Dict[str, Any], policy: CommandPolicy, request_id: str = "") -> Dict[str, Any]:
    cmd = args.get("cmd")
    argv = args.get("argv")
    if argv is None:
        argv = []
    cwd: Optional[str] = args.get("cwd")
    timeout_ms = args.get("timeoutMs")
    dry_run = _coerce_bool(args.get("dryRun", False))

    decision = evaluate_command_gate(cmd, policy)
    if not decision.allowed:
        return skill_failure(decision.reason or "rejected", decision.kind, cmd=cmd, dryRun=dry_run)

    base = command_base(cmd)
    audit = audit_string(cmd, argv) if isinstance(argv, list) else str(cmd)
    for decision in (
        evaluate_argv_gate(base, argv, policy),
        evaluate_cwd_gate(cwd, policy.cwd_roots),
        evaluate_timeout_gate(timeout_ms),
    ):
        if not decision.allowed:
            logger.warning("shell.run rejected by gate: %s (%s)", decision.reason, audit)
            log_event(
                "shell.rejected",
                request_id,
                {"cmd": audit, "reason": decision.reason, "errorKind": decision.kind.value, "details": decision.details},
            )
            return skill_failure(decision.reason or "rejected", decision.kind, cmd=audit, dryRun=dry_run)

    env = args.get("env")
    if env is not None and not isinstance(env, dict):
        return skill_failure("env must be an object", ErrorKind.INVALID_REQUEST, cmd=audit, dryRun=dry_run)
    stdin = args.get("stdin")
    if stdin is not None and not isinstance(stdin, str):
        return skill_failure("stdin must be a string", ErrorKind.INVALID_REQUEST, cmd=audit, dryRun=dry_run)

    classification: CommandClassification = validate(validation_text(cmd, argv, policy), policy)
    if not classification.allowed:
        log_event("shell.rejected", request_id, {"cmd": audit, "classification": classification.to_dict()})
        return skill_failure(
            classification.reason or "Command rejected by policy",
            ErrorKind.POLICY_REJECTION,
            cmd=audit,
            dryRun=dry_run,
            classification=classification.to_dict(),
        )

    resolved_cwd = os.path.realpath(os.path.expanduser(cwd)) if cwd else None

    if dry_run:
        where = resolved_cwd or os.getcwd()
        return {
            "ok": True,
            "cmd": audit,
            "dryRun": True,
            "preview": f"Would run: {audit} (in {where})",
            "classification": classification.to_dict(),
        }

    if classification.requires_confirmation and not _coerce_bool(args.get("confirmed", False)):
        return skill_failure(
            "Confirmation required",
            ErrorKind.POLICY_REJECTION,
            cmd=audit,
            dryRun=False,
            needsConfirmation=True,
            classification=classification.to_dict(),
        )

    log_event(
        "shell.run",
        request_id,
        {"cmd": audit, "cwd": resolved_cwd, "category": classification.to_dict().get("category")},
    )
    result = await run_process(
        cmd,
        argv,
        cwd=resolved_cwd,
        env=env,
        timeout_ms=int(timeout_ms or DEFAULT_TIMEOUT_MS),
        stdin=stdin,
    )
    payload = result.to_dict()
    payload.update({"cmd": audit, "dryRun": False, "classification": classification.to_dict()})
    payload["outputPreview"] = sanitize_output(result.stdout or result.stderr)
    if not result.ok:
        payload["errorKind"] = (ErrorKind.TIMEOUT if result.timed_out else ErrorKind.EXECUTION_FAILURE).value
    logger.info(
        "shell.run finished: %s ok=%s exit=%s in %sms",
        audit,
        result.ok,
        result.exit_code,
        result.execution_time,
    )
    return payload


async def handle_shell_run(args: Dict[str, Any], ctx: "SkillContext") -> Dict[str, Any]:
    return await run_shell(args, ctx.policy, ctx.request_id)


__all__ = ["audit_string", "validation_text", "run_shell", "handle_shell_run"]
