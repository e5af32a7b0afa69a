"""Request gate wiring for FastAPI routes.

Usage:
    @router.post("/documents/{doc_id}/render")
    async def render(
        request: Request,
        decision: GateDecision = Depends(
            check_integration_health(IntegrationType.PDF)
        ),
    ):
        async with handle_integration_failure(request, decision):
            return await pdf_client.send("POST", "/render", body)

The dependency stops requests to unavailable integrations (202 queued or
503 rejected, rendered by integration_gate_exception_handler). The context
manager reports the outcome of the inline call, and turns a retryable
failure into a queued-for-retry 202 when the policy allows it.
"""

import json
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.deps.services import get_request_gate
from app.jobs.types import IntegrationType
from app.services.integrations.gate import GateDecision, RequestContext, RequestGate
from app.services.integrations.policies import GatePolicy

logger = structlog.get_logger(__name__)


class IntegrationGateError(Exception):
    """Raised to stop a request at the gate; carries the decision."""

    def __init__(self, decision: GateDecision):
        self.decision = decision
        super().__init__(decision.message)


async def integration_gate_exception_handler(
    request: Request, exc: IntegrationGateError
) -> JSONResponse:
    decision = exc.decision
    headers = {}
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(int(decision.retry_after_seconds))
    return JSONResponse(
        status_code=decision.http_status,
        content=decision.to_response(),
        headers=headers,
    )


async def build_request_context(
    request: Request, path_param: Optional[str] = None
) -> RequestContext:
    """Capture the replayable parts of an inbound request.

    With path_param, the stored path is the named path parameter (the path
    on the integration) rather than this service's own route.
    """
    body = None
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            body = raw.decode("utf-8", errors="replace")
    user = getattr(request.state, "user_id", None)
    return RequestContext(
        method=request.method,
        path=_request_path(request, path_param),
        body=body,
        query=dict(request.query_params),
        headers=dict(request.headers),
        user_id=user,
    )


def _request_path(request: Request, path_param: Optional[str]) -> str:
    if path_param is None:
        return request.url.path
    return "/" + request.path_params.get(path_param, "").lstrip("/")


def _integration_from_path(request: Request) -> IntegrationType:
    value = request.path_params.get("integration")
    try:
        return IntegrationType(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown integration: {value}",
        )


def check_integration_health(
    integration: Optional[IntegrationType] = None,
    policy: Optional[GatePolicy] = None,
    path_param: Optional[str] = None,
):
    """Dependency factory gating a route on an integration's health.

    Args:
        integration: Target integration; taken from the {integration} path
            parameter when omitted
        policy: Gate policy override (defaults per integration)
        path_param: Path parameter holding the upstream path; queued
            requests replay against it
    """

    async def dependency(
        request: Request,
        gate: RequestGate = Depends(get_request_gate),
    ) -> GateDecision:
        target = integration or _integration_from_path(request)
        context = await build_request_context(request, path_param)
        decision = gate.check(target, policy, context)

        request.state.request_gate = gate
        request.state.gate_policy = policy
        request.state.gate_request_context = context

        if not decision.allowed:
            logger.info(
                "request_stopped_at_gate",
                integration=target.value,
                action=decision.action.value,
                status=decision.status.value,
                job_id=decision.job_id,
            )
            raise IntegrationGateError(decision)
        return decision

    return dependency


@asynccontextmanager
async def handle_integration_failure(
    request: Request,
    decision: GateDecision,
    policy: Optional[GatePolicy] = None,
) -> AsyncIterator[None]:
    """Report the outcome of an inline integration call.

    HTTPExceptions raised inside the block are not integration failures and
    pass through untouched.
    """
    gate: RequestGate = request.state.request_gate
    policy = policy or getattr(request.state, "gate_policy", None)
    context = getattr(request.state, "gate_request_context", None)

    start = time.monotonic()
    try:
        yield
    except HTTPException:
        raise
    except Exception as e:
        queued = gate.handle_failure(decision.integration, e, policy, context)
        if queued is None:
            raise
        raise IntegrationGateError(queued) from e
    else:
        gate.record_success(decision.integration, time.monotonic() - start)
