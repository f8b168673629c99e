import logging
from contextlib import asynccontextmanager
from functools import partial

from dotenv import load_dotenv
from fastapi import FastAPI, Request

from actuator.config import session_idle_ms
from actuator.contracts.plan import PlanValidationError, validate_plan
from actuator.executor.dispatch import build_router
from actuator.executor.plan_executor import PlanExecutor
from actuator.executor.sessions import SessionRegistry
from actuator.executor.step_executor import StepExecutor
from actuator.logging_setup import setup_logging
from actuator.logging_utils import (
    generate_request_id,
    log_event,
    summarize_plan,
    summarize_plan_result,
)
from actuator.security.policy import load_policy

load_dotenv()
setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    policy = load_policy()
    sessions = SessionRegistry(idle_timeout_ms=session_idle_ms())
    app.state.router = build_router(policy, sessions)
    sessions.start()
    log_event("service.start", "-", {"policy": policy.to_dict()})
    try:
        yield
    finally:
        await sessions.close_all()
        log_event("service.stop", "-")


app = FastAPI(lifespan=lifespan)


def _respond_invalid_plan(request_id: str, errors: list[dict]) -> dict:
    return {
        "error": "invalid plan",
        "request_id": request_id,
        "validation_errors": errors,
    }


@app.get("/health")
async def health(request: Request):
    return request.app.state.router.health()


@app.post("/api/skills")
async def run_skill(request: Request, payload: dict):
    return await request.app.state.router.route(payload)


@app.post("/api/plans/execute")
async def execute_plan(request: Request, payload: dict):
    """
    Validate and execute a plan provided by the client.

    The response is the plan result in wire form plus a one-line summary and
    whether a failed run still counts as a partial success.
    """
    request_id = generate_request_id()
    log_event("plan.start", request_id, {"plan": summarize_plan(payload)})
    try:
        plan = validate_plan(payload)
    except PlanValidationError as exc:
        log_event("plan.invalid", request_id, {"errors": exc.errors})
        return _respond_invalid_plan(request_id, exc.errors)

    router = request.app.state.router
    executor = PlanExecutor(StepExecutor(partial(router.route, request_id=request_id)))
    try:
        result = await executor.execute(plan)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Plan %s crashed", plan.plan_id)
        log_event("plan.crashed", request_id, {"error": str(exc)})
        return {"error": f"plan execution failed: {exc}", "planId": plan.plan_id, "request_id": request_id}

    body = result.to_wire()
    body["summaryText"] = executor.summarize(result)
    body["partialSuccess"] = executor.is_partial_success(result)
    body["request_id"] = request_id
    log_event("plan.finished", request_id, {"result": summarize_plan_result(body)})
    return body
