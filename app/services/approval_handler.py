"""
Human decisions on pending proposals.

Approval claims the record (pending -> approved) before any external call,
so a decision delivered twice is applied at most once. A failed
application returns the record to pending for a retry.
"""

from app.analyzers.patch_engine import apply_fix, generate_patch_description, summarize_changes
from app.models.api_response import PatchResult
from app.models.approval import ApprovalRecord, ApprovalStatus, HumanAction, HumanActionKind
from app.services.approval_store import ApprovalNotFoundError, ApprovalStore, InvalidTransitionError
from app.services.conversation import ConversationOrchestrator
from app.services.slack_notifier import NotificationStatus, SlackNotifier
from app.services.workflow_repository import N8nWorkflowRepository
from app.utils.logging import get_logger, log_error_with_context

logger = get_logger(__name__)


class FixApplicationError(Exception):
    """Raised when a proposal could not be turned into a patched workflow."""
    pass


class ApprovalHandler:
    """Dispatches inbound human actions to their record."""

    def __init__(
        self,
        store: ApprovalStore,
        repository: N8nWorkflowRepository,
        notifier: SlackNotifier,
        conversation: ConversationOrchestrator
    ):
        self.store = store
        self.repository = repository
        self.notifier = notifier
        self.conversation = conversation

    async def handle_action(self, action: HumanAction) -> bool:
        """
        Process one human action.

        Unknown or already decided records get an ephemeral explanation and
        are otherwise ignored.

        Returns:
            True when the action was carried out
        """
        logger.info(
            "Processing human action",
            extra={"approval_id": action.approval_id, "action": action.kind.value, "user": action.user}
        )

        record = self.store.get(action.approval_id)
        if record is None:
            logger.warning("Approval record not found", extra={"approval_id": action.approval_id})
            await self.notifier.respond_ephemeral(
                action.response_url, "Approval record not found or expired"
            )
            return False

        if record.status != ApprovalStatus.PENDING:
            logger.warning(
                "Approval already processed",
                extra={"approval_id": record.id, "status": record.status.value}
            )
            await self.notifier.respond_ephemeral(
                action.response_url, f"This approval has already been {record.status.value}"
            )
            return False

        if action.kind == HumanActionKind.APPROVE:
            return await self.approve(record.id, action.user)
        if action.kind == HumanActionKind.REJECT:
            return await self.reject(record.id, action.user)
        if action.kind == HumanActionKind.ASK:
            return await self.conversation.handle_message(record.id, action.text or "", action.user)
        return await self.conversation.request_revision(record.id, action.text, action.user)

    async def approve(self, approval_id: str, user: str = "unknown") -> bool:
        """
        Approve and apply a proposal.

        Returns:
            True when the patched workflow was persisted
        """
        try:
            record = self.store.approve(approval_id, actor=user)
        except (ApprovalNotFoundError, InvalidTransitionError) as e:
            logger.warning(f"Approval rejected: {e}", extra={"approval_id": approval_id})
            return False

        log = logger.with_context(approval_id=approval_id, workflow_id=record.workflow_id)
        log.info("Approval granted", extra={"user": user})

        await self.notifier.post_status(record.thread, NotificationStatus.APPROVED, f"Approved by @{user}")

        try:
            result = await self._apply(record)
        except Exception as e:
            log_error_with_context(log, "Failed to apply fix", e)
            self._record_outcome(approval_id, ApprovalStatus.PENDING)
            await self.notifier.post_status(
                record.thread,
                NotificationStatus.FAILED,
                f"Error: {e}\n\nThe fix could not be applied. Please review and try again or apply manually.",
            )
            return False

        self._record_outcome(approval_id, ApprovalStatus.APPLIED)

        applied, skipped = summarize_changes(result)
        note = (
            f"{generate_patch_description(record.analysis)}\n\n"
            f"Applied {len(result.applied_changes)} change(s):\n{applied}"
        )
        if result.skipped_changes:
            note += f"\n\nSkipped {len(result.skipped_changes)} change(s):\n{skipped}"
        await self.notifier.post_status(record.thread, NotificationStatus.APPLIED, note)

        log.info("Fix applied successfully", extra={"applied_changes": len(result.applied_changes)})
        return True

    def _record_outcome(self, approval_id: str, status: ApprovalStatus) -> None:
        """Store the result of an application attempt. The record may have been deleted meanwhile."""
        try:
            if status == ApprovalStatus.APPLIED:
                self.store.mark_applied(approval_id)
            else:
                self.store.mark_failed(approval_id)
        except ApprovalNotFoundError:
            logger.warning(
                "Approval record removed while the fix was being applied",
                extra={"approval_id": approval_id, "status": status.value}
            )

    async def _apply(self, record: ApprovalRecord) -> PatchResult:
        result = apply_fix(record.original_workflow, record.analysis)
        if not result.success:
            raise FixApplicationError(result.error or "Failed to generate patch")

        await self.repository.update(record.workflow_id, result.patched_workflow, record.original_workflow)
        return result

    async def reject(self, approval_id: str, user: str = "unknown") -> bool:
        try:
            record = self.store.reject(approval_id, actor=user)
        except (ApprovalNotFoundError, InvalidTransitionError) as e:
            logger.warning(f"Rejection ignored: {e}", extra={"approval_id": approval_id})
            return False

        logger.info("Approval rejected", extra={"approval_id": approval_id, "user": user})
        await self.notifier.post_status(record.thread, NotificationStatus.REJECTED, f"Rejected by @{user}")
        return True
