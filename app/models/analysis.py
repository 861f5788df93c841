"""Analysis and fix proposal data models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.change import Change


class Confidence(str, Enum):
    """Confidence of an analysis in its own diagnosis."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Proposal(BaseModel):
    """A described, ordered set of changes. Superseded, never edited."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    description: str
    changes: List[Change] = []
    rollback_possible: bool = Field(False, alias="rollbackPossible")


class Analysis(BaseModel):
    """Diagnosis of a failure together with the proposed fix."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    root_cause: str = Field(..., alias="rootCause")
    explanation: str
    affected_nodes: List[str] = Field(default_factory=list, alias="affectedNodes")
    proposal: Proposal = Field(..., alias="suggestedFix")
    confidence: Confidence
    related_docs: List[str] = Field(default_factory=list, alias="relatedDocs")


class ConversationReply(BaseModel):
    """Answer produced for a conversational round."""

    reply: str
    cited_docs: List[str] = []
