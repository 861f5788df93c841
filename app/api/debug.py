"""
Debug intake and approval inspection endpoints.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.models.api_response import ApprovalSummary, DebugResult
from app.models.approval import ApprovalRecord, ApprovalStatus
from app.services.container import ServiceContainer
from app.services.debug_pipeline import PayloadValidationError, validate_payload
from app.services.fix_analyzer import AnalysisError
from app.services.workflow_repository import WorkflowNotFoundError
from app.api.dependencies import get_services, verify_bearer_token

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/debug",
    tags=["debug"],
    dependencies=[Depends(verify_bearer_token)]
)


def to_summary(record: ApprovalRecord, include_analysis: bool = True) -> ApprovalSummary:
    return ApprovalSummary(
        id=record.id,
        workflow_id=record.workflow_id,
        workflow_name=record.workflow_name,
        status=record.status,
        created_at=record.created_at,
        expires_at=record.expires_at,
        analysis=record.analysis if include_analysis else None,
    )


@router.post("", response_model=DebugResult)
async def debug_workflow_error(
    request: Request,
    services: ServiceContainer = Depends(get_services)
) -> DebugResult:
    """
    Analyze a workflow failure and propose a fix for approval.

    This endpoint:
    1. Validates the failure report
    2. Fetches the workflow from n8n
    3. Classifies the error and gathers documentation
    4. Asks the LLM for a root cause and fix proposal
    5. Stores a pending approval and posts it to Slack

    Raises:
        HTTPException: 400 for a malformed report, 404 when the workflow
            cannot be fetched, 500 when analysis fails
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload: body must be JSON")

    try:
        report = validate_payload(payload)
        return await services.pipeline.process_report(report)

    except PayloadValidationError as e:
        logger.warning(f"Invalid payload: {e.errors}")
        raise HTTPException(status_code=400, detail=str(e))
    except WorkflowNotFoundError as e:
        logger.error(f"Failed to fetch workflow: {e}")
        raise HTTPException(status_code=404, detail=f"Workflow not found: {payload.get('workflowId')}")
    except AnalysisError as e:
        logger.error(f"Debug flow failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Debug flow failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail="An error occurred while processing the debug request"
        )


@router.get("/approval/{approval_id}", response_model=ApprovalSummary)
async def get_approval(
    approval_id: str,
    services: ServiceContainer = Depends(get_services)
) -> ApprovalSummary:
    """Get the status and analysis of one approval."""
    record = services.store.get(approval_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No approval record found with ID: {approval_id}")
    return to_summary(record)


@router.delete("/approval/{approval_id}")
async def delete_approval(
    approval_id: str,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """Remove an approval record."""
    if not services.store.delete(approval_id):
        raise HTTPException(status_code=404, detail=f"No approval record found with ID: {approval_id}")
    return {"success": True, "message": f"Approval {approval_id} deleted"}


@router.get("/approvals")
async def list_approvals(
    status: Optional[ApprovalStatus] = Query(None),
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    List approvals, pending ones by default.

    Args:
        status: Only list approvals in this status
    """
    records = services.store.get_by_status(status or ApprovalStatus.PENDING)
    approvals: List[ApprovalSummary] = [to_summary(r, include_analysis=False) for r in records]
    return {"success": True, "approvals": approvals}


@router.get("/workflows/{workflow_id}/approvals")
async def list_workflow_approvals(
    workflow_id: str,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """Approval history of one workflow, oldest first."""
    records = sorted(services.store.get_by_workflow(workflow_id), key=lambda r: r.created_at)
    return {
        "success": True,
        "workflow_id": workflow_id,
        "approvals": [to_summary(r, include_analysis=False) for r in records],
    }
