"""Error report and classification data models."""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ErrorReport(BaseModel):
    """Failure report sent by a workflow's error handler. Immutable once received."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    workflow_id: str = Field(..., alias="workflowId")
    workflow_name: Optional[str] = Field(None, alias="workflowName")
    execution_id: Optional[str] = Field(None, alias="executionId")
    error_message: str = Field(..., alias="errorMessage")
    error_stack: Optional[str] = Field(None, alias="errorStack")
    node_name: Optional[str] = Field(None, alias="nodeName")
    node_type: Optional[str] = Field(None, alias="nodeType")
    input_data: Optional[Any] = Field(None, alias="inputData")
    timestamp: Optional[datetime] = None

    @field_validator("workflow_id", "error_message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must be a non-empty string")
        return value


class ErrorCategory(str, Enum):
    """Failure taxonomy. Declaration order is match priority."""

    AUTHENTICATION = "authentication"
    NETWORK = "network"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    RATE_LIMIT = "rate_limit"
    DATA_FORMAT = "data_format"
    MISSING_DATA = "missing_data"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    """Severity of a classified failure."""

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"


class ParsedError(BaseModel):
    """Classification derived from an ErrorReport and optional workflow."""

    category: ErrorCategory
    node_type: Optional[str] = None
    node_name: Optional[str] = None
    affected_areas: List[str] = []
    keywords: List[str] = []
    severity: Severity
