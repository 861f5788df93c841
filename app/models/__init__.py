"""Data models for the n8n debug agent."""

from .analysis import Analysis, Confidence, ConversationReply, Proposal
from .api_response import ApprovalSummary, DebugResult, PatchResult, ValidationResult
from .approval import (
    ApprovalRecord,
    ApprovalStatus,
    ConversationMessage,
    ConversationRole,
    HumanAction,
    HumanActionKind,
    ThreadRef,
)
from .change import (
    AddNodeChange,
    Change,
    ChangeType,
    ConnectionAction,
    ConnectionEdit,
    ModifyConnectionChange,
    ModifyNodeChange,
    ModifySettingsChange,
    NodeSpec,
    RemoveNodeChange,
    parse_change,
)
from .docs import DocContext, DocSnippet
from .error_report import ErrorCategory, ErrorReport, ParsedError, Severity
from .workflow import ConnectionTarget, NodeConnections, WorkflowDocument, WorkflowNode

__all__ = [
    # Report models
    "ErrorReport",
    "ErrorCategory",
    "ParsedError",
    "Severity",
    # Workflow models
    "WorkflowDocument",
    "WorkflowNode",
    "NodeConnections",
    "ConnectionTarget",
    # Change models
    "Change",
    "ChangeType",
    "ConnectionAction",
    "ConnectionEdit",
    "NodeSpec",
    "ModifyNodeChange",
    "AddNodeChange",
    "RemoveNodeChange",
    "ModifyConnectionChange",
    "ModifySettingsChange",
    "parse_change",
    # Analysis models
    "Analysis",
    "Confidence",
    "Proposal",
    "ConversationReply",
    # Documentation models
    "DocContext",
    "DocSnippet",
    # Approval models
    "ApprovalRecord",
    "ApprovalStatus",
    "ConversationMessage",
    "ConversationRole",
    "ThreadRef",
    "HumanAction",
    "HumanActionKind",
    # API response models
    "DebugResult",
    "ApprovalSummary",
    "PatchResult",
    "ValidationResult",
]
