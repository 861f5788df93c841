"""Documentation context data models."""

from typing import List, Optional

from pydantic import BaseModel


class DocSnippet(BaseModel):
    """A node documentation page used as analysis context."""

    name: str
    description: str
    content: str = ""
    node_types: List[str] = []
    error_patterns: List[str] = []


class DocContext(BaseModel):
    """Documentation gathered for one report. Empty is a valid context."""

    snippets: List[DocSnippet] = []
    node_documentation: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.snippets and not self.node_documentation

    @property
    def labels(self) -> List[str]:
        return [snippet.name for snippet in self.snippets]
