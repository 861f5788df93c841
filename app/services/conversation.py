"""
Discussion and revision of pending proposals.

A human can question a pending proposal (the reply is appended to the
record's conversation) or ask for a new one (the record's analysis is
superseded and its conversation starts over). Both only act on pending
records: once a record has been approved, rejected or expired, follow-ups
are dropped with a warning.
"""

from typing import Optional

from app.models.approval import ApprovalRecord, ApprovalStatus
from app.services.approval_store import ApprovalStore, RecordNotPendingError
from app.services.fix_analyzer import AnalysisError, DEFAULT_REVISION_INSTRUCTION, FixAnalyzer
from app.services.slack_notifier import NotificationError, SlackNotifier
from app.utils.logging import get_logger

logger = get_logger(__name__)


class ConversationOrchestrator:
    """Routes questions and revision requests for pending proposals."""

    def __init__(self, store: ApprovalStore, analyzer: FixAnalyzer, notifier: SlackNotifier):
        self.store = store
        self.analyzer = analyzer
        self.notifier = notifier

    def _pending_record(self, approval_id: str, action: str) -> Optional[ApprovalRecord]:
        record = self.store.get(approval_id)
        if record is None:
            logger.warning(
                f"Approval record not found for {action}",
                extra={"approval_id": approval_id}
            )
            return None

        if record.status != ApprovalStatus.PENDING:
            logger.warning(
                f"Dropping {action} for approval that is no longer pending",
                extra={"approval_id": approval_id, "status": record.status.value}
            )
            return None

        return record

    async def handle_message(self, approval_id: str, text: str, user: str = "unknown") -> bool:
        """
        Answer a question about the current proposal.

        Appends the question and the reply to the record's conversation and
        posts the reply in the proposal thread. Status and proposal are
        unchanged.

        Returns:
            True when a reply was produced and recorded
        """
        text = (text or "").strip()
        if not text:
            logger.warning("Ignoring empty question", extra={"approval_id": approval_id})
            return False

        record = self._pending_record(approval_id, "question")
        if record is None:
            return False

        logger.info("Answering question", extra={"approval_id": approval_id, "user": user})

        try:
            reply = await self.analyzer.converse(
                record.analysis,
                list(record.conversation_history),
                text,
                record.error_report,
                record.original_workflow,
                record.doc_context,
            )
        except AnalysisError as e:
            logger.error(f"Failed to answer question: {e}", extra={"approval_id": approval_id})
            await self.notifier.post_conversation_reply(
                record.thread, f":x: Sorry, I could not answer that: {e}"
            )
            return False

        try:
            self.store.append_conversation(approval_id, text, reply.reply)
        except RecordNotPendingError as e:
            # Decided while the reply was being generated
            logger.warning(f"Discarding reply: {e}", extra={"approval_id": approval_id})
            return False

        await self.notifier.post_conversation_reply(record.thread, reply.reply, reply.cited_docs)
        return True

    async def request_revision(
        self,
        approval_id: str,
        instruction: Optional[str] = None,
        user: str = "unknown"
    ) -> bool:
        """
        Replace the record's proposal with a revision.

        The accumulated conversation and the instruction (or a default one
        when left blank) go to the analyzer; the new analysis supersedes the
        old one, the conversation is cleared and the revised proposal is
        posted in the thread with the usual decision buttons.

        Returns:
            True when the record now carries a revised proposal
        """
        record = self._pending_record(approval_id, "revision request")
        if record is None:
            return False

        instruction = (instruction or "").strip() or DEFAULT_REVISION_INSTRUCTION
        logger.info("Revising proposal", extra={"approval_id": approval_id, "user": user})

        try:
            revised = await self.analyzer.revise(
                record.analysis,
                instruction,
                list(record.conversation_history),
                record.error_report,
                record.original_workflow,
                record.doc_context,
            )
        except AnalysisError as e:
            logger.error(f"Failed to revise proposal: {e}", extra={"approval_id": approval_id})
            await self.notifier.post_conversation_reply(
                record.thread, f":x: Sorry, I could not revise the fix: {e}"
            )
            return False

        try:
            record = self.store.replace_analysis(approval_id, revised)
        except RecordNotPendingError as e:
            logger.warning(f"Discarding revision: {e}", extra={"approval_id": approval_id})
            return False

        if record.thread is not None:
            try:
                await self.notifier.post_proposal(record, thread=record.thread)
            except NotificationError as e:
                logger.error(f"Failed to post revised proposal: {e}", extra={"approval_id": approval_id})

        return True
