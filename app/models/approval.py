"""Approval record and human action data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from app.models.analysis import Analysis, Proposal
from app.models.docs import DocContext
from app.models.error_report import ErrorReport
from app.models.workflow import WorkflowDocument


class ApprovalStatus(str, Enum):
    """Lifecycle state of an approval record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    APPLIED = "applied"


class ConversationRole(str, Enum):
    """Author of a conversation entry."""

    USER = "user"
    AGENT = "agent"


class ConversationMessage(BaseModel):
    """One turn of the discussion about a pending proposal."""

    role: ConversationRole
    text: str
    timestamp: datetime


class ThreadRef(BaseModel):
    """Location of the proposal message in the human channel."""

    channel_id: str
    message_ts: str


class ApprovalRecord(BaseModel):
    """Tracks a proposal from creation to its terminal outcome."""

    id: str
    workflow_id: str
    workflow_name: str
    execution_id: Optional[str] = None
    error_report: ErrorReport
    analysis: Analysis
    original_workflow: WorkflowDocument
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_at: datetime
    expires_at: datetime
    thread: Optional[ThreadRef] = None
    doc_context: Optional[DocContext] = None
    conversation_history: List[ConversationMessage] = []

    @property
    def proposal(self) -> Proposal:
        return self.analysis.proposal


class HumanActionKind(str, Enum):
    """Decisions and requests a human can send for a record."""

    APPROVE = "approve"
    REJECT = "reject"
    ASK = "ask"
    REQUEST_REVISION = "request_revision"


class HumanAction(BaseModel):
    """An inbound action tagged with the record it targets."""

    kind: HumanActionKind
    approval_id: str
    user: str = "unknown"
    text: Optional[str] = None
    response_url: Optional[str] = None
