"""Gate evaluation for shell.run.

Each gate inspects one aspect of a request against the immutable command
policy and returns a GateDecision. Gates are evaluated in order by the shell
skill; the first rejection wins.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from actuator.contracts.skills import ErrorKind
from actuator.security.policy import CommandPolicy

MIN_TIMEOUT_MS = 1_000
MAX_TIMEOUT_MS = 300_000
DEFAULT_TIMEOUT_MS = 30_000


@dataclass
class GateDecision:
    """Represents the outcome of a gate evaluation."""

    allowed: bool
    reason: Optional[str] = None
    kind: ErrorKind = ErrorKind.POLICY_REJECTION
    details: Optional[Dict[str, Any]] = None


ALLOW = GateDecision(allowed=True)


def _deny(reason: str, kind: ErrorKind = ErrorKind.POLICY_REJECTION, **details: Any) -> GateDecision:
    return GateDecision(allowed=False, reason=reason, kind=kind, details=details or None)


def command_base(cmd: str) -> str:
    return os.path.basename(cmd.strip())


def evaluate_command_gate(cmd: Any, policy: CommandPolicy) -> GateDecision:
    """Allowlist and dangerous-command opt-in."""
    if not isinstance(cmd, str) or not cmd.strip():
        return _deny("cmd is required and must be a non-empty string", ErrorKind.INVALID_REQUEST)
    base = command_base(cmd)
    if base not in policy.allowed_commands:
        return _deny(f"Command '{base}' is not in the allowlist", command=base)
    if base in policy.dangerous_commands and not policy.allow_dangerous_commands:
        return _deny(
            f"Command '{base}' is dangerous and requires SHELL_RUN_ALLOW_DANGEROUS=true",
            command=base,
        )
    return ALLOW


def evaluate_argv_gate(base: str, argv: Any, policy: CommandPolicy) -> GateDecision:
    """Script-body scan for shell interpreters, substitution scan for everything else."""
    if not isinstance(argv, list) or not all(isinstance(a, str) for a in argv):
        return _deny("argv must be an array of strings", ErrorKind.INVALID_REQUEST)

    if base in policy.shell_interpreters:
        for arg in argv:
            for pattern in policy.dangerous_script_patterns:
                if pattern.search(arg):
                    return _deny("Script contains a dangerous pattern", pattern=pattern.pattern)
        return ALLOW

    for arg in argv:
        for pattern in policy.blocked_arg_patterns:
            if pattern.search(arg):
                return _deny("Argument contains command substitution", argument=arg)
    return ALLOW


def is_under_any_root(path: str, roots: Iterable[str]) -> bool:
    for root in roots:
        try:
            if os.path.commonpath([path, root]) == root:
                return True
        except ValueError:
            continue
    return False


def evaluate_cwd_gate(cwd: Any, roots: List[str] | tuple) -> GateDecision:
    """cwd must resolve (symlinks included) under one of the permitted roots."""
    if cwd is None:
        return ALLOW
    if not isinstance(cwd, str) or not cwd.strip():
        return _deny("cwd must be a non-empty string", ErrorKind.INVALID_REQUEST)
    resolved = os.path.realpath(os.path.expanduser(cwd))
    if not is_under_any_root(resolved, roots):
        return _deny(
            f"cwd '{cwd}' is outside the permitted roots",
            ErrorKind.SECURITY_BOUNDARY,
            resolved=resolved,
            roots=list(roots),
        )
    return ALLOW


def evaluate_timeout_gate(timeout_ms: Any) -> GateDecision:
    if timeout_ms is None:
        return ALLOW
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, (int, float)):
        return _deny("timeoutMs must be a number", ErrorKind.INVALID_REQUEST)
    if timeout_ms < MIN_TIMEOUT_MS or timeout_ms > MAX_TIMEOUT_MS:
        return _deny(
            f"timeoutMs must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS}",
            ErrorKind.INVALID_REQUEST,
        )
    return ALLOW


__all__ = [
    "MIN_TIMEOUT_MS",
    "MAX_TIMEOUT_MS",
    "DEFAULT_TIMEOUT_MS",
    "GateDecision",
    "command_base",
    "evaluate_command_gate",
    "evaluate_argv_gate",
    "is_under_any_root",
    "evaluate_cwd_gate",
    "evaluate_timeout_gate",
]
