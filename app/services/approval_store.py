"""
Approval Store component.

In-memory owner of every approval record. Enforces the record lifecycle:

    pending  -> approved | rejected | expired
    approved -> applied | pending   (pending again when applying failed)

rejected, expired and applied are terminal. Records are never removed by a
status change; they stay queryable until deleted or the process stops.

A background task expires pending records whose expiry time has passed.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from app.models.analysis import Analysis
from app.models.approval import (
    ApprovalRecord,
    ApprovalStatus,
    ConversationMessage,
    ConversationRole,
    ThreadRef,
)
from app.models.docs import DocContext
from app.models.error_report import ErrorReport
from app.models.workflow import WorkflowDocument
from app.utils.logging import get_logger, log_status_transition

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 5 * 60

ALLOWED_TRANSITIONS: Dict[ApprovalStatus, frozenset] = {
    ApprovalStatus.PENDING: frozenset({
        ApprovalStatus.APPROVED,
        ApprovalStatus.REJECTED,
        ApprovalStatus.EXPIRED,
    }),
    ApprovalStatus.APPROVED: frozenset({
        ApprovalStatus.APPLIED,
        ApprovalStatus.PENDING,
    }),
    ApprovalStatus.REJECTED: frozenset(),
    ApprovalStatus.EXPIRED: frozenset(),
    ApprovalStatus.APPLIED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalNotFoundError(Exception):
    """Raised when an approval record does not exist."""

    def __init__(self, approval_id: str):
        super().__init__(f"Approval record not found: {approval_id}")
        self.approval_id = approval_id


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, approval_id: str, current: ApprovalStatus, requested: ApprovalStatus):
        super().__init__(
            f"Approval {approval_id} cannot move from {current.value} to {requested.value}"
        )
        self.approval_id = approval_id
        self.current = current
        self.requested = requested


class RecordNotPendingError(Exception):
    """Raised when a pending-only update targets a record that has moved on."""

    def __init__(self, approval_id: str, status: ApprovalStatus):
        super().__init__(f"Approval {approval_id} is {status.value}, not pending")
        self.approval_id = approval_id
        self.status = status


class ApprovalStore:
    """
    Keyed table of approval records with lifecycle enforcement.

    All mutation happens through this class; callers hold references for
    reading only. Methods are synchronous and never await, so within one
    event loop each call is atomic with respect to the others.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize the store.

        Args:
            ttl_seconds: Lifetime of a pending record before it expires
            sweep_interval_seconds: Period of the background expiry sweep
            clock: Source of the current time (timezone-aware)
        """
        self.ttl = timedelta(seconds=ttl_seconds)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._approvals: Dict[str, ApprovalRecord] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    # Lifecycle

    def start(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Approval expiry sweep started",
            extra={"interval_seconds": self.sweep_interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the expiry sweep."""
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Approval expiry sweep stopped")

    async def destroy(self) -> None:
        """Stop the sweep and release every record."""
        await self.stop()
        self._approvals.clear()

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.expire_stale()
            except Exception as e:
                logger.error(f"Approval expiry sweep failed: {e}", exc_info=True)

    # Creation and lookup

    def create(
        self,
        approval_id: str,
        error_report: ErrorReport,
        analysis: Analysis,
        original_workflow: WorkflowDocument,
        doc_context: Optional[DocContext] = None,
        thread: Optional[ThreadRef] = None
    ) -> ApprovalRecord:
        """
        Create a pending record. An existing record with the same id is replaced.

        Args:
            approval_id: Caller-generated unique identifier
            error_report: The report that triggered the analysis
            analysis: Analysis carrying the proposal to approve
            original_workflow: Snapshot of the workflow at analysis time
            doc_context: Documentation used for the analysis
            thread: Human-channel location, when already known

        Returns:
            The stored record
        """
        now = self._clock()
        record = ApprovalRecord(
            id=approval_id,
            workflow_id=error_report.workflow_id,
            workflow_name=original_workflow.name or error_report.workflow_name or error_report.workflow_id,
            execution_id=error_report.execution_id,
            error_report=error_report,
            analysis=analysis,
            original_workflow=original_workflow,
            status=ApprovalStatus.PENDING,
            created_at=now,
            expires_at=now + self.ttl,
            thread=thread,
            doc_context=doc_context,
        )

        if approval_id in self._approvals:
            logger.warning("Overwriting existing approval record", extra={"approval_id": approval_id})

        self._approvals[approval_id] = record
        logger.info(
            "Approval record created",
            extra={"approval_id": approval_id, "workflow_id": record.workflow_id}
        )
        return record

    def get(self, approval_id: str) -> Optional[ApprovalRecord]:
        return self._approvals.get(approval_id)

    def require(self, approval_id: str) -> ApprovalRecord:
        """Return the record or raise ApprovalNotFoundError."""
        record = self._approvals.get(approval_id)
        if record is None:
            raise ApprovalNotFoundError(approval_id)
        return record

    def get_by_thread(self, channel_id: str, message_ts: str) -> Optional[ApprovalRecord]:
        """Find the record whose proposal was posted at the given channel location."""
        for record in self._approvals.values():
            if (
                record.thread is not None
                and record.thread.channel_id == channel_id
                and record.thread.message_ts == message_ts
            ):
                return record
        return None

    def get_by_status(self, status: ApprovalStatus) -> List[ApprovalRecord]:
        return [r for r in self._approvals.values() if r.status == status]

    def get_pending(self) -> List[ApprovalRecord]:
        return self.get_by_status(ApprovalStatus.PENDING)

    def get_by_workflow(self, workflow_id: str) -> List[ApprovalRecord]:
        return [r for r in self._approvals.values() if r.workflow_id == workflow_id]

    def list_all(self) -> List[ApprovalRecord]:
        return list(self._approvals.values())

    def count(self) -> int:
        return len(self._approvals)

    def delete(self, approval_id: str) -> bool:
        """Remove a record. Returns False when it did not exist."""
        record = self._approvals.pop(approval_id, None)
        if record is not None:
            logger.info("Approval record deleted", extra={"approval_id": approval_id})
        return record is not None

    # Status transitions

    def transition(
        self,
        approval_id: str,
        to_status: ApprovalStatus,
        actor: Optional[str] = None
    ) -> ApprovalRecord:
        """
        Move a record to ``to_status`` if the lifecycle allows it.

        Raises:
            ApprovalNotFoundError: Unknown id
            InvalidTransitionError: Transition not allowed from the current status
        """
        record = self.require(approval_id)
        current = record.status

        if to_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(approval_id, current, to_status)

        record.status = to_status
        log_status_transition(logger, approval_id, current.value, to_status.value, actor)
        return record

    def approve(self, approval_id: str, actor: Optional[str] = None) -> ApprovalRecord:
        """Claim a pending record for application. A second call fails."""
        return self.transition(approval_id, ApprovalStatus.APPROVED, actor)

    def reject(self, approval_id: str, actor: Optional[str] = None) -> ApprovalRecord:
        return self.transition(approval_id, ApprovalStatus.REJECTED, actor)

    def mark_applied(self, approval_id: str) -> ApprovalRecord:
        return self.transition(approval_id, ApprovalStatus.APPLIED)

    def mark_failed(self, approval_id: str) -> ApprovalRecord:
        """Return an approved record to pending so it can be retried."""
        return self.transition(approval_id, ApprovalStatus.PENDING)

    def expire_stale(self, now: Optional[datetime] = None) -> List[str]:
        """
        Expire pending records whose expiry time has passed.

        Only pending records are considered; every other status is left
        untouched.

        Returns:
            IDs of the records that were expired
        """
        now = now or self._clock()
        expired = []

        for record in list(self._approvals.values()):
            if record.status == ApprovalStatus.PENDING and now > record.expires_at:
                self.transition(record.id, ApprovalStatus.EXPIRED, actor="sweep")
                expired.append(record.id)

        if expired:
            logger.info("Cleaned up expired approvals", extra={"count": len(expired)})

        return expired

    # Field updates

    def attach_thread(self, approval_id: str, thread: ThreadRef) -> ApprovalRecord:
        """Remember where the proposal was posted so follow-ups can be routed."""
        record = self.require(approval_id)
        record.thread = thread
        return record

    def _require_pending(self, approval_id: str) -> ApprovalRecord:
        record = self.require(approval_id)
        if record.status != ApprovalStatus.PENDING:
            raise RecordNotPendingError(approval_id, record.status)
        return record

    def replace_analysis(self, approval_id: str, analysis: Analysis) -> ApprovalRecord:
        """
        Supersede the record's analysis and proposal with a revision.

        The conversation history is cleared: a new proposal starts a new
        discussion. Only allowed while the record is pending.
        """
        record = self._require_pending(approval_id)
        previous_id = record.proposal.id
        record.analysis = analysis
        record.conversation_history = []
        logger.info(
            "Proposal superseded",
            extra={
                "approval_id": approval_id,
                "previous_proposal_id": previous_id,
                "proposal_id": analysis.proposal.id,
            }
        )
        return record

    def append_conversation(
        self,
        approval_id: str,
        user_text: str,
        agent_text: str
    ) -> ApprovalRecord:
        """Record one question/answer round. Status and proposal are unchanged."""
        record = self._require_pending(approval_id)
        now = self._clock()
        record.conversation_history.extend([
            ConversationMessage(role=ConversationRole.USER, text=user_text, timestamp=now),
            ConversationMessage(role=ConversationRole.AGENT, text=agent_text, timestamp=now),
        ])
        return record
