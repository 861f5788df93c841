"""Business logic services package."""

from app.services.approval_store import (
    ApprovalStore,
    ApprovalNotFoundError,
    InvalidTransitionError,
    RecordNotPendingError
)
from app.services.workflow_repository import (
    N8nWorkflowRepository,
    WorkflowNotFoundError,
    WorkflowUpdateError
)
from app.services.fix_analyzer import (
    FixAnalyzer,
    AnalysisError
)
from app.services.slack_notifier import (
    SlackNotifier,
    NotificationError
)
from app.services.docs_service import DocumentationService
from app.services.conversation import ConversationOrchestrator
from app.services.debug_pipeline import (
    DebugPipeline,
    PayloadValidationError
)
from app.services.approval_handler import ApprovalHandler
from app.services.container import (
    ServiceContainer,
    build_services
)

__all__ = [
    'ApprovalStore',
    'ApprovalNotFoundError',
    'InvalidTransitionError',
    'RecordNotPendingError',
    'N8nWorkflowRepository',
    'WorkflowNotFoundError',
    'WorkflowUpdateError',
    'FixAnalyzer',
    'AnalysisError',
    'SlackNotifier',
    'NotificationError',
    'DocumentationService',
    'ConversationOrchestrator',
    'DebugPipeline',
    'PayloadValidationError',
    'ApprovalHandler',
    'ServiceContainer',
    'build_services'
]
