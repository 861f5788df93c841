"""API response data models."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from app.models.analysis import Analysis
from app.models.approval import ApprovalStatus
from app.models.workflow import WorkflowDocument


class DebugResult(BaseModel):
    """Response from the debug intake endpoint."""

    success: bool
    message: str
    approval_id: Optional[str] = None
    analysis: Optional[Analysis] = None
    error: Optional[str] = None


class ApprovalSummary(BaseModel):
    """Operator view of an approval record."""

    id: str
    workflow_id: str
    workflow_name: str
    status: ApprovalStatus
    created_at: datetime
    expires_at: datetime
    analysis: Optional[Analysis] = None


class PatchResult(BaseModel):
    """Outcome of applying a proposal to a workflow."""

    success: bool
    patched_workflow: Optional[WorkflowDocument] = None
    error: Optional[str] = None
    applied_changes: List[str] = []
    skipped_changes: List[str] = []


class ValidationResult(BaseModel):
    """Result of structural workflow validation."""

    valid: bool
    errors: List[str] = []
