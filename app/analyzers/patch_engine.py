"""
Patch Engine component.

Applies a proposal's typed changes to a copy of a workflow document.

Changes are applied best-effort: a change that cannot be applied is
recorded as skipped and the batch continues. The result as a whole is
all-or-nothing: if nothing applied, or the mutated document fails
structural validation, no patched document is returned.

Credential references are never emitted. The patched document carries no
``credentials`` on any node; the workflow repository restores them from
the original document before persisting.
"""

import copy
import uuid
from typing import Any, Dict, Iterator, List, Set, Tuple, Union

from pydantic import ValidationError

from app.models.analysis import Analysis
from app.models.api_response import PatchResult, ValidationResult
from app.models.change import (
    AddNodeChange,
    Change,
    ConnectionAction,
    ModifyConnectionChange,
    ModifyNodeChange,
    ModifySettingsChange,
    RemoveNodeChange,
)
from app.models.workflow import WorkflowDocument
from app.utils.logging import get_logger

logger = get_logger(__name__)

NEW_NODE_X_OFFSET = 200
DEFAULT_FIRST_POSITION = [250, 300]
CREDENTIALS_KEY = "credentials"

Document = Dict[str, Any]


class ChangeApplicationError(Exception):
    """Raised when a single change cannot be applied to the document."""
    pass


def apply_fix(workflow: WorkflowDocument, analysis: Analysis) -> PatchResult:
    """
    Apply the analysis' proposal to a copy of ``workflow``.

    Args:
        workflow: Original workflow document (never mutated)
        analysis: Analysis whose proposal supplies the changes

    Returns:
        PatchResult with the patched document on success, and the
        descriptions of applied and skipped changes in either case
    """
    applied: List[str] = []
    skipped: List[str] = []

    document = copy.deepcopy(workflow.to_payload())
    for node in document["nodes"]:
        node.pop(CREDENTIALS_KEY, None)

    for change in analysis.proposal.changes:
        try:
            apply_change(document, change)
            applied.append(change.description)
        except ChangeApplicationError as e:
            skipped.append(f"{change.description}: {e}")
        except Exception as e:
            skipped.append(f"{change.description}: {e}")
            logger.warning(
                "Failed to apply change",
                extra={"change": change.description, "error": str(e)}
            )

    if not applied:
        return PatchResult(
            success=False,
            error="No changes could be applied",
            applied_changes=applied,
            skipped_changes=skipped,
        )

    validation = validate_workflow(document)
    if not validation.valid:
        return PatchResult(
            success=False,
            error=f"Validation failed: {', '.join(validation.errors)}",
            applied_changes=applied,
            skipped_changes=skipped,
        )

    try:
        patched = WorkflowDocument.model_validate(document)
    except ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        return PatchResult(
            success=False,
            error=f"Validation failed: {', '.join(problems)}",
            applied_changes=applied,
            skipped_changes=skipped,
        )

    logger.info(
        "Fix applied successfully",
        extra={"applied": len(applied), "skipped": len(skipped), "workflow_id": workflow.id}
    )

    return PatchResult(
        success=True,
        patched_workflow=patched,
        applied_changes=applied,
        skipped_changes=skipped,
    )


def apply_change(document: Document, change: Change) -> None:
    """Apply one change in place. Raises ChangeApplicationError on failure."""
    if isinstance(change, ModifyNodeChange):
        _modify_node(document, change)
    elif isinstance(change, AddNodeChange):
        _add_node(document, change)
    elif isinstance(change, RemoveNodeChange):
        _remove_node(document, change)
    elif isinstance(change, ModifyConnectionChange):
        _modify_connection(document, change)
    elif isinstance(change, ModifySettingsChange):
        _modify_settings(document, change)
    else:
        raise ChangeApplicationError(f"Unknown change type: {getattr(change, 'change_type', change)}")


def _find_node(document: Document, name: str) -> Dict[str, Any]:
    for node in document["nodes"]:
        if node.get("name") == name:
            return node
    raise ChangeApplicationError(f"Node not found: {name}")


def _node_exists(document: Document, name: str) -> bool:
    return any(node.get("name") == name for node in document["nodes"])


def _set_path(target: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    if any(not part for part in parts):
        raise ChangeApplicationError(f"Invalid path: {path}")

    for part in parts[:-1]:
        child = target.get(part)
        if child is None:
            child = target[part] = {}
        elif not isinstance(child, dict):
            raise ChangeApplicationError(f"Cannot set '{path}': '{part}' is not an object")
        target = child

    target[parts[-1]] = copy.deepcopy(value)


def _modify_node(document: Document, change: ModifyNodeChange) -> None:
    if not change.node_name:
        raise ChangeApplicationError("Node name required for modify_node")

    node = _find_node(document, change.node_name)

    if change.path:
        if change.path.split(".")[0] == CREDENTIALS_KEY:
            raise ChangeApplicationError("Credential references cannot be modified")
        _set_path(node, change.path, change.new_value)
    else:
        if CREDENTIALS_KEY in change.new_value:
            raise ChangeApplicationError("Credential references cannot be modified")
        node.update(copy.deepcopy(change.new_value))


def _add_node(document: Document, change: AddNodeChange) -> None:
    spec = change.new_value

    if _node_exists(document, spec.name):
        raise ChangeApplicationError(f"Node already exists: {spec.name}")

    existing_ids = {node.get("id") for node in document["nodes"]}
    if spec.id and spec.id in existing_ids:
        raise ChangeApplicationError(f"Node id already exists: {spec.id}")

    node = {
        "id": spec.id or _generate_node_id(existing_ids),
        "name": spec.name,
        "type": spec.type,
        "typeVersion": spec.type_version or 1,
        "position": list(spec.position) if spec.position else _calculate_position(document["nodes"]),
        "parameters": copy.deepcopy(spec.parameters),
    }
    document["nodes"].append(node)


def _remove_node(document: Document, change: RemoveNodeChange) -> None:
    if not change.node_name:
        raise ChangeApplicationError("Node name required for remove_node")

    name = change.node_name
    node = _find_node(document, name)
    document["nodes"].remove(node)

    connections = document.get("connections") or {}
    connections.pop(name, None)
    emptied = []
    for source, entry in connections.items():
        touched = False
        for slot in _iter_slots(entry):
            kept = [target for target in slot if _target_name(target) != name]
            if len(kept) != len(slot):
                slot[:] = kept
                touched = True
        if touched and not any(_iter_targets(entry)):
            emptied.append(source)

    # A source whose only edges pointed at the removed node has no outgoing connections left
    for source in emptied:
        del connections[source]


def _modify_connection(document: Document, change: ModifyConnectionChange) -> None:
    edit = change.new_value

    if not _node_exists(document, edit.source):
        raise ChangeApplicationError(f"Source node not found: {edit.source}")
    if not _node_exists(document, edit.target):
        raise ChangeApplicationError(f"Target node not found: {edit.target}")

    connections = document.setdefault("connections", {})

    if edit.action == ConnectionAction.ADD:
        entry = connections.setdefault(edit.source, {"main": [[]]})
        slots = entry.setdefault("main", [])
        while len(slots) <= edit.output_index:
            slots.append([])
        slots[edit.output_index].append({
            "node": edit.target,
            "type": "main",
            "index": edit.input_index,
        })
    else:
        slots = (connections.get(edit.source) or {}).get("main") or []
        if edit.output_index < len(slots):
            slot = slots[edit.output_index]
            for position, target in enumerate(slot):
                if _target_name(target) == edit.target:
                    del slot[position]
                    break


def _modify_settings(document: Document, change: ModifySettingsChange) -> None:
    settings = document.get("settings")
    if settings is None:
        settings = document["settings"] = {}

    if change.path:
        _set_path(settings, change.path, change.new_value)
    else:
        settings.update(copy.deepcopy(change.new_value))


def _generate_node_id(existing_ids: Set[Any]) -> str:
    while True:
        node_id = str(uuid.uuid4())
        if node_id not in existing_ids:
            return node_id


def _calculate_position(nodes: List[Dict[str, Any]]) -> List[int]:
    """Right of the rightmost node, at the average height of all nodes."""
    positions = [
        node["position"] for node in nodes
        if isinstance(node.get("position"), (list, tuple)) and len(node["position"]) == 2
    ]
    if not positions:
        return list(DEFAULT_FIRST_POSITION)

    max_x = max(position[0] for position in positions)
    avg_y = round(sum(position[1] for position in positions) / len(positions))
    return [max_x + NEW_NODE_X_OFFSET, avg_y]


def _iter_slots(entry: Any) -> Iterator[List[Any]]:
    """Every output slot of a connection entry, across connection types."""
    if not isinstance(entry, dict):
        return
    for slots in entry.values():
        if not isinstance(slots, list):
            continue
        for slot in slots:
            if isinstance(slot, list):
                yield slot


def _iter_targets(entry: Any) -> Iterator[Any]:
    for slot in _iter_slots(entry):
        yield from slot


def _target_name(target: Any) -> Any:
    return target.get("node") if isinstance(target, dict) else None


def validate_workflow(workflow: Union[WorkflowDocument, Document]) -> ValidationResult:
    """
    Structural validation of a complete workflow document.

    Checks identity fields, node names and types, name and id uniqueness,
    and that every connection source and target names an existing node.
    """
    document = workflow.to_payload() if isinstance(workflow, WorkflowDocument) else workflow
    errors: List[str] = []

    if not document.get("id"):
        errors.append("Workflow ID is missing")
    if not document.get("name"):
        errors.append("Workflow name is missing")

    nodes = document.get("nodes")
    if not isinstance(nodes, list):
        errors.append("Nodes array is invalid")
        return ValidationResult(valid=False, errors=errors)

    node_names: Set[str] = set()
    node_ids: Set[Any] = set()
    for node in nodes:
        if not isinstance(node, dict) or not node.get("name"):
            errors.append("Node with missing name found")
            continue
        name = node["name"]
        if name in node_names:
            errors.append(f"Duplicate node name: {name}")
        node_names.add(name)
        if not node.get("type"):
            errors.append(f"Node {name} is missing type")
        node_id = node.get("id")
        if node_id:
            if node_id in node_ids:
                errors.append(f"Duplicate node id: {node_id}")
            node_ids.add(node_id)

    connections = document.get("connections") or {}
    if not isinstance(connections, dict):
        errors.append("Connections map is invalid")
        return ValidationResult(valid=False, errors=errors)

    for source, entry in connections.items():
        if source not in node_names:
            errors.append(f"Connection from non-existent node: {source}")
        for slot in _iter_slots(entry):
            for target in slot:
                target_name = _target_name(target)
                if target_name not in node_names:
                    errors.append(f"Connection to non-existent node: {target_name}")

    return ValidationResult(valid=not errors, errors=errors)


def generate_patch_description(analysis: Analysis) -> str:
    """Human-readable summary of a proposal for status messages."""
    lines = [f"Fix for: {analysis.root_cause}", "", "Changes:"]
    lines.extend(f"- {change.description}" for change in analysis.proposal.changes)

    if analysis.related_docs:
        lines.append("")
        lines.append(f"Reference: {', '.join(analysis.related_docs)}")

    return "\n".join(lines)


def summarize_changes(result: PatchResult) -> Tuple[str, str]:
    """Bulleted applied / skipped change lists for notifications."""
    applied = "\n".join(f"• {change}" for change in result.applied_changes)
    skipped = "\n".join(f"• {change}" for change in result.skipped_changes)
    return applied, skipped
