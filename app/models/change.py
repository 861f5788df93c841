"""
Typed workflow change instructions.

Each change kind carries its own payload schema so malformed proposals are
rejected when they are parsed, not when they are applied. Existence checks
against a concrete workflow (node present, name free) still happen in the
patch engine.
"""

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Tuple, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    TypeAdapter,
    model_validator,
)

from app.models.workflow import Coordinate


class ChangeType(str, Enum):
    """Kinds of mutation a proposal can request."""

    MODIFY_NODE = "modify_node"
    ADD_NODE = "add_node"
    REMOVE_NODE = "remove_node"
    MODIFY_CONNECTION = "modify_connection"
    MODIFY_SETTINGS = "modify_settings"


class ConnectionAction(str, Enum):
    """Connection edit direction."""

    ADD = "add"
    REMOVE = "remove"


class NodeSpec(BaseModel):
    """Node definition carried by an add_node change."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    type_version: Optional[Coordinate] = Field(None, alias="typeVersion")
    position: Optional[Tuple[Coordinate, Coordinate]] = None
    parameters: Dict[str, Any] = {}


class ConnectionEdit(BaseModel):
    """Edge edit carried by a modify_connection change."""

    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="from", min_length=1)
    target: str = Field(..., alias="to", min_length=1)
    action: ConnectionAction
    output_index: int = Field(0, alias="outputIndex", ge=0)
    input_index: int = Field(0, alias="inputIndex", ge=0)


class _BaseChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    node_name: Optional[str] = Field(None, alias="nodeName")
    node_id: Optional[str] = Field(None, alias="nodeId")
    path: Optional[str] = None
    description: str


class _PathOrMergeChange(_BaseChange):
    new_value: Any = Field(None, alias="newValue")

    @model_validator(mode="after")
    def _merge_requires_mapping(self):
        if not self.path and not isinstance(self.new_value, dict):
            raise ValueError("new_value must be an object when no path is given")
        return self


class ModifyNodeChange(_PathOrMergeChange):
    change_type: Literal["modify_node"] = Field("modify_node", alias="changeType")


class ModifySettingsChange(_PathOrMergeChange):
    change_type: Literal["modify_settings"] = Field("modify_settings", alias="changeType")


class AddNodeChange(_BaseChange):
    change_type: Literal["add_node"] = Field("add_node", alias="changeType")
    new_value: NodeSpec = Field(..., alias="newValue")


class RemoveNodeChange(_BaseChange):
    change_type: Literal["remove_node"] = Field("remove_node", alias="changeType")
    new_value: Any = Field(None, alias="newValue")


class ModifyConnectionChange(_BaseChange):
    change_type: Literal["modify_connection"] = Field("modify_connection", alias="changeType")
    new_value: ConnectionEdit = Field(..., alias="newValue")


def _change_kind(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("changeType", value.get("change_type"))
    return getattr(value, "change_type", None)


Change = Annotated[
    Union[
        Annotated[ModifyNodeChange, Tag("modify_node")],
        Annotated[AddNodeChange, Tag("add_node")],
        Annotated[RemoveNodeChange, Tag("remove_node")],
        Annotated[ModifyConnectionChange, Tag("modify_connection")],
        Annotated[ModifySettingsChange, Tag("modify_settings")],
    ],
    Discriminator(_change_kind),
]

change_adapter: TypeAdapter[Change] = TypeAdapter(Change)


def parse_change(data: Dict[str, Any]) -> Change:
    """Validate a raw change mapping into its typed form."""
    return change_adapter.validate_python(data)
