"""
Intake pipeline for workflow failure reports.

Turns one report into a pending approval record: fetch the workflow,
classify the failure, gather documentation, analyze, store, and post the
proposal to the human channel.
"""

import uuid
from typing import Any, List

from pydantic import ValidationError

from app.analyzers.error_classifier import classify, get_error_context
from app.models.api_response import DebugResult
from app.models.error_report import ErrorReport
from app.services.approval_store import ApprovalStore
from app.services.docs_service import DocumentationService
from app.services.fix_analyzer import FixAnalyzer
from app.services.slack_notifier import NotificationError, SlackNotifier
from app.services.workflow_repository import N8nWorkflowRepository
from app.utils.logging import get_logger, log_report_received

logger = get_logger(__name__)


class PayloadValidationError(Exception):
    """Raised when an inbound failure report is malformed."""

    def __init__(self, errors: List[str]):
        super().__init__(f"Invalid payload: {', '.join(errors)}")
        self.errors = errors


def validate_payload(payload: Any) -> ErrorReport:
    """
    Validate a raw report body.

    Raises:
        PayloadValidationError: With one message per problem found
    """
    if not isinstance(payload, dict):
        raise PayloadValidationError(["Payload must be an object"])

    errors = []
    for field in ("workflowId", "errorMessage"):
        value = payload.get(field)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{field} is required and must be a string")
    if errors:
        raise PayloadValidationError(errors)

    try:
        return ErrorReport.model_validate(payload)
    except ValidationError as e:
        raise PayloadValidationError(
            [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        ) from e


class DebugPipeline:
    """Processes failure reports into pending approvals."""

    def __init__(
        self,
        store: ApprovalStore,
        repository: N8nWorkflowRepository,
        analyzer: FixAnalyzer,
        docs: DocumentationService,
        notifier: SlackNotifier
    ):
        self.store = store
        self.repository = repository
        self.analyzer = analyzer
        self.docs = docs
        self.notifier = notifier

    async def process_report(self, report: ErrorReport) -> DebugResult:
        """
        Analyze a failure and open an approval for the proposed fix.

        Raises:
            WorkflowNotFoundError: The workflow could not be fetched
            AnalysisError: No analysis could be produced

        In both cases no record is created.
        """
        log = logger.with_context(workflow_id=report.workflow_id)
        log_report_received(log, report.workflow_id, report.error_message, report.execution_id)

        workflow = await self.repository.fetch(report.workflow_id)

        parsed = classify(report, workflow)
        log.info(
            f"Error parsed: {get_error_context(report)}",
            extra={"category": parsed.category.value, "severity": parsed.severity.value}
        )

        doc_context = await self.docs.fetch_relevant(parsed.node_type, report.error_message)

        analysis = await self.analyzer.analyze(report, workflow, doc_context, parsed)
        log.info(
            "Analysis complete",
            extra={
                "confidence": analysis.confidence.value,
                "affected_nodes": analysis.affected_nodes,
                "changes_count": len(analysis.proposal.changes),
            }
        )

        approval_id = str(uuid.uuid4())
        record = self.store.create(
            approval_id,
            report,
            analysis,
            workflow,
            doc_context=doc_context,
        )

        try:
            thread = await self.notifier.post_proposal(record)
        except NotificationError as e:
            # The record stays retrievable through the approvals API
            log.error(f"Failed to send Slack message: {e}", extra={"approval_id": approval_id})
        else:
            if thread is not None:
                self.store.attach_thread(approval_id, thread)
            else:
                log.warning(
                    "Slack not configured, approval stored but no notification sent",
                    extra={"approval_id": approval_id}
                )

        log.info("Debug flow complete", extra={"approval_id": approval_id})

        return DebugResult(
            success=True,
            message="Error analyzed and fix proposed. Awaiting approval in Slack.",
            approval_id=approval_id,
            analysis=analysis,
        )
