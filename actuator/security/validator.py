"""
Command validation.

``validate`` classifies a command string against an explicit ``CommandPolicy``:
blocked patterns and privilege prefixes are checked before categorisation, so a
destructive command is rejected even when it looks like an allowed category.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from actuator.security.policy import CommandCategory, CommandPolicy, RiskLevel

logger = logging.getLogger(__name__)

MAX_SANITIZED_OUTPUT = 10_000
_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


@dataclass(frozen=True)
class CommandClassification:
    """Outcome of a single validation call."""

    allowed: bool
    category: Optional[CommandCategory]
    risk_level: RiskLevel
    requires_confirmation: bool = False
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "allowed": self.allowed,
            "category": self.category.value if self.category else None,
            "riskLevel": self.risk_level.value,
            "requiresConfirmation": self.requires_confirmation,
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload


def _blocked(reason: str, risk: RiskLevel, category: Optional[CommandCategory] = None) -> CommandClassification:
    return CommandClassification(allowed=False, category=category, risk_level=risk, reason=reason)


def categorize(command: str, policy: CommandPolicy) -> Optional[CommandCategory]:
    """Return the first category whose pattern set matches, in table order."""
    for category, patterns in policy.category_patterns:
        if any(p.search(command) for p in patterns):
            return category
    return None


def validate(command: str, policy: CommandPolicy) -> CommandClassification:
    if not policy.validation_enabled:
        return CommandClassification(
            allowed=True,
            category=CommandCategory.UNRESTRICTED,
            risk_level=RiskLevel.UNKNOWN,
        )

    if not isinstance(command, str) or not command.strip():
        return _blocked("Empty command", RiskLevel.NONE)

    trimmed = command.strip()

    for pattern in policy.blocked_patterns:
        if pattern.search(trimmed):
            logger.warning("Blocked dangerous command: %r (pattern %s)", trimmed, pattern.pattern)
            return _blocked("Command matches blocked pattern", RiskLevel.CRITICAL)

    for pattern in policy.privilege_patterns:
        if pattern.search(trimmed):
            logger.warning("Blocked privilege escalation: %r", trimmed)
            return _blocked("Privilege escalation (sudo) is not allowed", RiskLevel.HIGH)

    category = categorize(trimmed, policy)
    if category is None:
        logger.info("Command not in any known category: %r", trimmed)
        return _blocked("Command not in allowed categories", RiskLevel.MEDIUM)

    if category not in policy.allowed_categories:
        logger.info("Command category %s not allowed: %r", category.value, trimmed)
        return _blocked(f"Category '{category.value}' not allowed", RiskLevel.MEDIUM, category=category)

    risk = policy.risk_by_category.get(category, RiskLevel.MEDIUM)
    requires_confirmation = category in policy.confirmation_categories
    logger.debug("Command validated: %r category=%s risk=%s", trimmed, category.value, risk.value)
    return CommandClassification(
        allowed=True,
        category=category,
        risk_level=risk,
        requires_confirmation=requires_confirmation,
    )


def sanitize_output(output: Optional[str], max_length: int = MAX_SANITIZED_OUTPUT) -> str:
    """Strip ANSI escapes and cap command output for display."""
    if not output:
        return ""
    cleaned = _ANSI_ESCAPE.sub("", output)
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + "\n... (output truncated)"
    return cleaned


__all__ = ["CommandClassification", "categorize", "validate", "sanitize_output"]
