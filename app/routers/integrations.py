"""Integration health endpoints and the gated integration proxy."""

from typing import Optional

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.deps.integration import check_integration_health, handle_integration_failure
from app.deps.security import require_admin_token
from app.deps.services import get_health_tracker, get_integration_clients
from app.jobs.types import IntegrationType
from app.schemas import (
    IntegrationStatusResponse,
    MaintenanceRequest,
    ProxyResponse,
    StatusUpdateResponse,
)
from app.services.integrations.clients import (
    HttpIntegrationClient,
    IntegrationClients,
    IntegrationNotConfiguredError,
)
from app.services.integrations.gate import GateDecision
from app.services.integrations.health import IntegrationHealthTracker

router = APIRouter(prefix="/integrations")
logger = structlog.get_logger(__name__)


def _status_response(
    tracker: IntegrationHealthTracker, integration: IntegrationType
) -> IntegrationStatusResponse:
    return IntegrationStatusResponse.from_record(
        tracker.get_status(integration),
        has_health_checker=tracker.has_health_checker(integration),
    )


@router.get("", response_model=list[IntegrationStatusResponse])
async def list_integrations(
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
) -> list[IntegrationStatusResponse]:
    return [_status_response(tracker, integration) for integration in IntegrationType]


@router.get("/history", response_model=list[StatusUpdateResponse])
async def status_history(
    integration: Optional[IntegrationType] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
) -> list[StatusUpdateResponse]:
    """Status transitions, most recent first."""
    return [
        StatusUpdateResponse.from_update(update)
        for update in tracker.get_status_history(integration, limit)
    ]


@router.get("/{integration}", response_model=IntegrationStatusResponse)
async def get_integration(
    integration: IntegrationType,
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
) -> IntegrationStatusResponse:
    return _status_response(tracker, integration)


@router.post("/{integration}/maintenance", response_model=IntegrationStatusResponse)
async def start_maintenance(
    integration: IntegrationType,
    request: MaintenanceRequest,
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
    operator: str = Depends(require_admin_token),
) -> IntegrationStatusResponse:
    """Put an integration into maintenance (admin). Requests are rejected."""
    tracker.set_maintenance(integration, request.reason, requested_by=operator)
    return _status_response(tracker, integration)


@router.delete("/{integration}/maintenance", response_model=IntegrationStatusResponse)
async def end_maintenance(
    integration: IntegrationType,
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
    operator: str = Depends(require_admin_token),
) -> IntegrationStatusResponse:
    """Clear maintenance (admin). The integration returns to healthy."""
    if not tracker.clear_maintenance(integration):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Integration {integration.value} is not in maintenance",
        )
    logger.info(
        "maintenance_cleared", integration=integration.value, operator=operator
    )
    return _status_response(tracker, integration)


@router.post("/{integration}/recover", response_model=IntegrationStatusResponse)
async def recover_integration(
    integration: IntegrationType,
    tracker: IntegrationHealthTracker = Depends(get_health_tracker),
    operator: str = Depends(require_admin_token),
) -> IntegrationStatusResponse:
    """Start recovery probes now (admin), regardless of auto-recovery policy."""
    logger.info("recovery_requested", integration=integration.value, operator=operator)
    await tracker.start_recovery(integration)
    return _status_response(tracker, integration)


@router.api_route(
    "/{integration}/proxy/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    response_model=ProxyResponse,
    responses={
        202: {"description": "Request queued until the integration recovers"},
        503: {"description": "Integration unavailable"},
        502: {"description": "Integration returned an error"},
    },
)
async def proxy_integration(
    integration: IntegrationType,
    request: Request,
    decision: GateDecision = Depends(check_integration_health(path_param="path")),
    clients: IntegrationClients = Depends(get_integration_clients),
) -> ProxyResponse:
    """
    Forward a request to an integration through the request gate.

    Unavailable integrations answer 202 (queued as an integration_retry job)
    or 503 with a suggested retry delay. A retryable failure of the inline
    call is queued for retry when the integration's policy allows it. With
    fallback enabled, a GET to a failed integration answers from the last
    good response for the same path.
    """
    try:
        client = clients.get(integration)
    except IntegrationNotConfiguredError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    context = request.state.gate_request_context
    if decision.fallback:
        return _fallback_response(integration, client, request.method, context.path)

    try:
        async with handle_integration_failure(request, decision):
            response = await client.send(
                request.method,
                context.path,
                body=context.body,
                query=context.query,
                headers=context.headers,
            )
    except httpx.HTTPStatusError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Integration returned an error",
                "integration": integration.value,
                "status_code": e.response.status_code,
            },
        )
    except httpx.HTTPError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "message": "Integration unreachable",
                "integration": integration.value,
                "error": str(e),
            },
        )

    return ProxyResponse(
        integration=integration,
        status_code=response["status_code"],
        data=response["data"],
        fallback=decision.fallback,
    )


def _fallback_response(
    integration: IntegrationType,
    client: HttpIntegrationClient,
    method: str,
    path: str,
) -> ProxyResponse:
    cached = client.cached_response(path) if method == "GET" else None
    if cached is None:
        logger.info(
            "integration_fallback_unavailable",
            integration=integration.value,
            method=method,
            path=path,
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "message": "Integration unavailable and no fallback response cached",
                "integration": integration.value,
            },
        )
    return ProxyResponse(
        integration=integration,
        status_code=cached["status_code"],
        data=cached["data"],
        fallback=True,
    )
