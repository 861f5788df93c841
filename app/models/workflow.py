"""n8n workflow document data models."""

from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


Coordinate = Union[int, float]


class ConnectionTarget(BaseModel):
    """One edge inside an output slot."""

    model_config = ConfigDict(extra="allow")

    node: str
    type: str = "main"
    index: int = 0


class NodeConnections(BaseModel):
    """Outgoing connections of a single source node, one list per output slot."""

    model_config = ConfigDict(extra="allow")

    main: List[List[ConnectionTarget]] = []


class WorkflowNode(BaseModel):
    """A node as returned by the n8n public API."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    name: str
    type: str
    type_version: Coordinate = Field(1, alias="typeVersion")
    position: Tuple[Coordinate, Coordinate] = (0, 0)
    parameters: Dict[str, Any] = {}
    credentials: Optional[Dict[str, Any]] = None


class WorkflowDocument(BaseModel):
    """A complete workflow definition."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    name: str
    active: bool = False
    nodes: List[WorkflowNode] = []
    connections: Dict[str, NodeConnections] = {}
    settings: Optional[Dict[str, Any]] = None

    def get_node(self, name: str) -> Optional[WorkflowNode]:
        """Return the node with the given name, if any."""
        for node in self.nodes:
            if node.name == name:
                return node
        return None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize using the engine's wire field names, omitting unset optionals."""
        payload = self.model_dump(by_alias=True)
        if payload.get("settings") is None:
            payload.pop("settings", None)
        for node in payload["nodes"]:
            if node.get("credentials") is None:
                node.pop("credentials", None)
        return payload
