"""
Schemas for plans, steps and their results.

Wire format is camelCase (planId, totalTimeout, stepId, ...); attributes are
snake_case. Plans and steps are produced externally and consumed read-only, so
both are frozen. Step results are frozen as well: a rerun yields a new result.

Verification kinds:
- none: success as soon as the action returns ok.
- element_visible: verificationContext.shouldSeeElement must be detected.
- all_visible / none_visible: every entry of shouldSeeElements is detected /
  no entry of shouldNotSeeElements is detected.
- screen_verified: the visual verifier confirms verificationContext.prompt.
- field_filled: accepted without a screen check.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from actuator.contracts.skills import SkillInvocation

DEFAULT_TOTAL_TIMEOUT_MS = 300_000
DEFAULT_MAX_RETRIES = 3


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class StepStatus(str, Enum):
    SUCCESS = "success"
    SUCCESS_RETRY = "success_retry"
    FAILED = "failed"


class PlanStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class Step(_WireModel):
    """One plan step: an action plus how to verify and recover it."""

    id: Union[int, str]
    description: str = ""
    action: SkillInvocation
    kind: str = Field(default="generic", description="click_button | fill_field | generic; drives fallbacks.")
    target: Optional[str] = None
    role: Optional[str] = None
    value: Optional[str] = None
    verification: str = "none"
    verification_context: Dict[str, Any] = Field(default_factory=dict)
    alternative_label: Optional[str] = None
    alternative_role: Optional[str] = None
    keyboard_shortcut: Optional[str] = None
    wait_after: Optional[int] = Field(default=None, ge=0, le=60_000)
    max_retries: Optional[int] = Field(default=None, ge=1, le=10)


class Plan(_WireModel):
    plan_id: str
    original_command: str = ""
    steps: List[Step] = Field(default_factory=list)
    total_timeout: int = Field(default=DEFAULT_TOTAL_TIMEOUT_MS, ge=1)
    max_retries_per_step: Optional[int] = Field(default=None, ge=1, le=10)
    target_os: Optional[str] = None
    target_app: Optional[str] = None


class PlanContext(_WireModel):
    """Plan-level settings a step executor needs."""

    max_retries_per_step: Optional[int] = None
    target_os: Optional[str] = None
    target_app: Optional[str] = None

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanContext":
        return cls(
            max_retries_per_step=plan.max_retries_per_step,
            target_os=plan.target_os,
            target_app=plan.target_app,
        )


class StepResult(_WireModel):
    step_id: Union[int, str]
    status: StepStatus
    method: Optional[str] = None
    retries: int = Field(default=0, ge=0)
    execution_time: int = 0
    error: Optional[str] = None

    @model_validator(mode="after")
    def _check_retry_shape(self) -> "StepResult":
        if self.status == StepStatus.SUCCESS_RETRY and (self.retries < 1 or not self.method):
            raise ValueError("success_retry requires retries >= 1 and a method")
        return self


class CompletedSummary(_WireModel):
    total_steps: int
    successful: int
    with_retries: int
    total_retries: int


class FailedSummary(_WireModel):
    total_steps: int
    completed: int
    failed: int


class PlanResult(_WireModel):
    plan_id: str
    status: PlanStatus
    steps: List[StepResult] = Field(default_factory=list)
    total_time: int = 0
    summary: Union[CompletedSummary, FailedSummary]
    failed_step: Optional[int] = None
    error: Optional[str] = None

    def completed_count(self) -> int:
        if isinstance(self.summary, FailedSummary):
            return self.summary.completed
        return self.summary.total_steps

    def completion_ratio(self) -> float:
        total = self.summary.total_steps
        if total <= 0:
            return 1.0 if self.status == PlanStatus.COMPLETED else 0.0
        return self.completed_count() / total

    def is_partial_success(self, threshold: float) -> bool:
        """A failed run that still got through at least `threshold` of its steps."""
        return self.status == PlanStatus.FAILED and self.completion_ratio() >= threshold


class PlanValidationError(ValueError):
    """Raised when a raw plan payload does not validate; carries per-field errors."""

    def __init__(self, errors: List[Dict[str, Any]]):
        self.errors = errors
        super().__init__(f"invalid plan: {len(errors)} error(s)")


def validate_plan(payload: Dict[str, Any]) -> Plan:
    """
    Parse and validate a raw JSON-like plan.

    Raises:
        PlanValidationError: with one entry per pydantic error ({field, reason}).
    """
    try:
        return Plan.model_validate(payload)
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "reason": err.get("msg"),
                "type": err.get("type"),
            }
            for err in exc.errors()
        ]
        raise PlanValidationError(errors) from exc


__all__ = [
    "DEFAULT_TOTAL_TIMEOUT_MS",
    "DEFAULT_MAX_RETRIES",
    "StepStatus",
    "PlanStatus",
    "Step",
    "Plan",
    "PlanContext",
    "StepResult",
    "CompletedSummary",
    "FailedSummary",
    "PlanResult",
    "PlanValidationError",
    "validate_plan",
]
