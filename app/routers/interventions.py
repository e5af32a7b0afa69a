"""Manual intervention endpoints."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.deps.security import require_admin_token
from app.deps.services import get_escalation_sink
from app.jobs.errors import InterventionError, InterventionNotFoundError
from app.jobs.escalation import EscalationSink
from app.jobs.types import InterventionAction
from app.schemas import InterventionResponse, ResolveInterventionRequest

router = APIRouter(prefix="/interventions")
logger = structlog.get_logger(__name__)


@router.get("", response_model=list[InterventionResponse])
async def list_pending_interventions(
    sink: EscalationSink = Depends(get_escalation_sink),
) -> list[InterventionResponse]:
    """Jobs awaiting an operator decision, oldest first."""
    return [InterventionResponse.from_intervention(i) for i in sink.get_pending()]


@router.get("/history", response_model=list[InterventionResponse])
async def intervention_history(
    limit: int = Query(100, ge=1, le=1000),
    sink: EscalationSink = Depends(get_escalation_sink),
) -> list[InterventionResponse]:
    return [
        InterventionResponse.from_intervention(i) for i in sink.get_history(limit)
    ]


@router.get(
    "/{job_id}",
    response_model=InterventionResponse,
    responses={404: {"description": "No intervention for job"}},
)
async def get_intervention(
    job_id: str,
    sink: EscalationSink = Depends(get_escalation_sink),
) -> InterventionResponse:
    intervention = sink.get(job_id)
    if intervention is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No intervention for job {job_id}",
        )
    return InterventionResponse.from_intervention(intervention)


@router.post(
    "/{job_id}/resolve",
    response_model=InterventionResponse,
    responses={
        404: {"description": "No pending intervention"},
        409: {"description": "Job not awaiting intervention"},
        422: {"description": "modify without a payload"},
    },
)
async def resolve_intervention(
    job_id: str,
    request: ResolveInterventionRequest,
    sink: EscalationSink = Depends(get_escalation_sink),
    operator: str = Depends(require_admin_token),
) -> InterventionResponse:
    """
    Resolve a pending intervention (admin).

    - retry: job returns to pending with attempts reset
    - skip: job is cancelled and marked as skipped
    - cancel: job is cancelled
    - modify: payload is replaced, then the job returns to pending
    """
    if request.action == InterventionAction.MODIFY and request.modified_payload is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="modified_payload is required for modify",
        )
    try:
        intervention = sink.resolve(
            job_id,
            request.action,
            modified_payload=request.modified_payload,
            notes=request.notes,
            resolved_by=operator,
        )
    except InterventionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InterventionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return InterventionResponse.from_intervention(intervention)
