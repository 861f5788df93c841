"""
Unit tests for the workflow patch engine.
"""

import copy

import pytest

from app.analyzers.patch_engine import (
    apply_fix,
    generate_patch_description,
    summarize_changes,
    validate_workflow,
)
from app.models.workflow import WorkflowDocument


def two_node_workflow():
    return WorkflowDocument.model_validate({
        "id": "wf-2",
        "name": "Two Nodes",
        "nodes": [
            {"id": "a", "name": "A", "type": "n8n-nodes-base.manualTrigger", "position": [0, 0]},
            {"id": "b", "name": "B", "type": "n8n-nodes-base.set", "position": [200, 100]},
        ],
        "connections": {
            "A": {"main": [[{"node": "B", "type": "main", "index": 0}]]},
        },
    })


def add_node_change(name="Notify", **spec):
    value = {"name": name, "type": "n8n-nodes-base.slack"}
    value.update(spec)
    return {
        "changeType": "add_node",
        "newValue": value,
        "description": f"Add {name}",
    }


def test_modify_node_by_path(sample_workflow, make_analysis):
    """Test a dotted path creates intermediate levels and sets the leaf."""
    analysis = make_analysis([{
        "changeType": "modify_node",
        "nodeName": "Set",
        "path": "parameters.values.string",
        "newValue": [{"name": "status", "value": "ok"}],
        "description": "Set status field",
    }])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is True
    node = result.patched_workflow.get_node("Set")
    assert node.parameters == {"values": {"string": [{"name": "status", "value": "ok"}]}}
    assert result.applied_changes == ["Set status field"]
    assert result.skipped_changes == []


def test_modify_node_merge(sample_workflow, make_analysis):
    analysis = make_analysis([{
        "changeType": "modify_node",
        "nodeName": "HTTP Request",
        "newValue": {"notes": "retry enabled", "retryOnFail": True},
        "description": "Enable retries",
    }])

    result = apply_fix(sample_workflow, analysis)

    node = result.patched_workflow.get_node("HTTP Request")
    assert node.model_extra["retryOnFail"] is True
    assert node.model_extra["notes"] == "retry enabled"


def test_original_workflow_is_not_mutated(sample_workflow, make_analysis):
    """Test apply_fix works on a copy of the document."""
    before = copy.deepcopy(sample_workflow.to_payload())
    analysis = make_analysis([
        {
            "changeType": "modify_node",
            "nodeName": "HTTP Request",
            "path": "parameters.url",
            "newValue": "https://api.example.com/v2/orders",
            "description": "Use v2 endpoint",
        },
        {"changeType": "remove_node", "nodeName": "Set", "description": "Remove Set"},
        add_node_change(),
    ])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is True
    assert sample_workflow.to_payload() == before


def test_empty_batch_fails(sample_workflow, make_analysis):
    result = apply_fix(sample_workflow, make_analysis([]))

    assert result.success is False
    assert result.patched_workflow is None
    assert result.error == "No changes could be applied"


def test_all_changes_failing_returns_failure(sample_workflow, make_analysis):
    """Test each failing change is recorded with its reason."""
    analysis = make_analysis([
        {"changeType": "remove_node", "nodeName": "Ghost", "description": "Remove ghost"},
        add_node_change(name="Set"),
    ])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is False
    assert result.patched_workflow is None
    assert result.skipped_changes == [
        "Remove ghost: Node not found: Ghost",
        "Add Set: Node already exists: Set",
    ]


def test_failing_change_does_not_abort_batch(sample_workflow, make_analysis):
    analysis = make_analysis([
        {"changeType": "remove_node", "nodeName": "Ghost", "description": "Remove ghost"},
        {
            "changeType": "modify_settings",
            "path": "timezone",
            "newValue": "Europe/Berlin",
            "description": "Set timezone",
        },
    ])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is True
    assert result.applied_changes == ["Set timezone"]
    assert len(result.skipped_changes) == 1
    assert result.patched_workflow.settings == {"executionOrder": "v1", "timezone": "Europe/Berlin"}


def test_remove_node_clears_connections(make_analysis):
    """Removing B from A->B leaves node list [A] and no entry for A."""
    workflow = two_node_workflow()
    analysis = make_analysis([{"changeType": "remove_node", "nodeName": "B", "description": "Remove B"}])

    result = apply_fix(workflow, analysis)

    assert result.success is True
    assert [node.name for node in result.patched_workflow.nodes] == ["A"]
    assert "A" not in result.patched_workflow.connections


def test_remove_node_strips_inbound_edges_only(sample_workflow, make_analysis):
    analysis = make_analysis([
        {"changeType": "remove_node", "nodeName": "HTTP Request", "description": "Remove HTTP"},
    ])

    result = apply_fix(sample_workflow, analysis)

    connections = result.patched_workflow.connections
    assert "HTTP Request" not in connections
    assert "Webhook" not in connections


def test_add_connection_pads_output_slots(make_analysis):
    """Adding at output index 2 with one slot inserts two empty slots first."""
    workflow = WorkflowDocument.model_validate({
        "id": "wf-3",
        "name": "Branching",
        "nodes": [
            {"id": "a", "name": "A", "type": "n8n-nodes-base.if"},
            {"id": "b", "name": "B", "type": "n8n-nodes-base.set"},
            {"id": "c", "name": "C", "type": "n8n-nodes-base.set"},
        ],
        "connections": {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}},
    })
    analysis = make_analysis([{
        "changeType": "modify_connection",
        "newValue": {"from": "A", "to": "C", "action": "add", "outputIndex": 2},
        "description": "Route third output to C",
    }])

    result = apply_fix(workflow, analysis)

    assert result.success is True
    slots = result.patched_workflow.to_payload()["connections"]["A"]["main"]
    assert len(slots) == 3
    assert slots[1] == []
    assert slots[2] == [{"node": "C", "type": "main", "index": 0}]


def test_add_connection_requires_existing_target(make_analysis):
    workflow = two_node_workflow()
    analysis = make_analysis([{
        "changeType": "modify_connection",
        "newValue": {"from": "A", "to": "C", "action": "add", "outputIndex": 2},
        "description": "Connect to C",
    }])

    result = apply_fix(workflow, analysis)

    assert result.success is False
    assert result.skipped_changes == ["Connect to C: Target node not found: C"]


def test_remove_connection_and_missing_edge_is_noop(make_analysis):
    workflow = two_node_workflow()
    analysis = make_analysis([
        {
            "changeType": "modify_connection",
            "newValue": {"from": "A", "to": "B", "action": "remove"},
            "description": "Disconnect B",
        },
        {
            "changeType": "modify_connection",
            "newValue": {"from": "A", "to": "B", "action": "remove"},
            "description": "Disconnect B again",
        },
    ])

    result = apply_fix(workflow, analysis)

    assert result.success is True
    assert result.applied_changes == ["Disconnect B", "Disconnect B again"]
    assert result.patched_workflow.to_payload()["connections"]["A"]["main"] == [[]]


def test_add_node_defaults(sample_workflow, make_analysis):
    """Test generated id, default type version and computed position."""
    result = apply_fix(sample_workflow, make_analysis([add_node_change()]))

    node = result.patched_workflow.get_node("Notify")
    existing_ids = {n.id for n in sample_workflow.nodes}
    assert node.id and node.id not in existing_ids
    assert node.type_version == 1
    # Right of the rightmost node (x=500), average y of 300, 300, 200
    assert tuple(node.position) == (700, 267)


def test_add_node_into_empty_workflow(make_analysis):
    workflow = WorkflowDocument(id="wf-4", name="Empty")

    result = apply_fix(workflow, make_analysis([add_node_change()]))

    assert tuple(result.patched_workflow.get_node("Notify").position) == (250, 300)


def test_add_node_with_existing_id_is_skipped(sample_workflow, make_analysis):
    """Test an explicit id already used by another node is refused."""
    analysis = make_analysis([
        add_node_change(id="node-2"),
        add_node_change(name="Log", id="node-7"),
    ])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is True
    assert result.skipped_changes == ["Add Notify: Node id already exists: node-2"]
    assert result.patched_workflow.get_node("Notify") is None
    assert result.patched_workflow.get_node("Log").id == "node-7"


def test_validate_workflow_reports_duplicate_ids():
    result = validate_workflow({
        "id": "wf",
        "name": "n",
        "nodes": [
            {"id": "n1", "name": "A", "type": "t"},
            {"id": "n1", "name": "B", "type": "t"},
        ],
        "connections": {},
    })

    assert result.errors == ["Duplicate node id: n1"]


def test_add_then_remove_leaves_no_trace(sample_workflow, make_analysis):
    analysis = make_analysis([
        add_node_change(),
        {
            "changeType": "modify_connection",
            "newValue": {"from": "Set", "to": "Notify", "action": "add"},
            "description": "Connect Notify",
        },
        {"changeType": "remove_node", "nodeName": "Notify", "description": "Remove Notify"},
    ])

    result = apply_fix(sample_workflow, analysis)

    patched = result.patched_workflow.to_payload()
    assert len(patched["nodes"]) == len(sample_workflow.nodes)
    assert "Notify" not in str(patched["connections"])


def test_credentials_are_never_emitted_or_modified(sample_workflow, make_analysis):
    analysis = make_analysis([
        {
            "changeType": "modify_node",
            "nodeName": "HTTP Request",
            "path": "credentials.httpHeaderAuth.id",
            "newValue": "cred-2",
            "description": "Swap credential",
        },
        {
            "changeType": "modify_node",
            "nodeName": "HTTP Request",
            "newValue": {"credentials": {}},
            "description": "Clear credential",
        },
        {
            "changeType": "modify_node",
            "nodeName": "HTTP Request",
            "path": "parameters.url",
            "newValue": "https://api.example.com/v2",
            "description": "Use v2",
        },
    ])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is True
    assert result.applied_changes == ["Use v2"]
    assert len(result.skipped_changes) == 2
    for node in result.patched_workflow.to_payload()["nodes"]:
        assert "credentials" not in node


def test_validation_failure_discards_patch(sample_workflow, make_analysis):
    """Test an applied change that breaks the document fails the batch."""
    analysis = make_analysis([{
        "changeType": "modify_node",
        "nodeName": "Set",
        "path": "type",
        "newValue": "",
        "description": "Blank out type",
    }])

    result = apply_fix(sample_workflow, analysis)

    assert result.success is False
    assert result.patched_workflow is None
    assert result.error == "Validation failed: Node Set is missing type"
    assert result.applied_changes == ["Blank out type"]


def test_validate_workflow_reports_every_problem():
    result = validate_workflow({
        "id": "wf",
        "name": "",
        "nodes": [
            {"name": "A", "type": "t"},
            {"name": "A", "type": "t"},
            {"name": "B"},
            {"type": "t"},
        ],
        "connections": {
            "A": {"main": [[{"node": "Z"}]]},
            "Y": {"main": [[{"node": "A"}]]},
        },
    })

    assert result.valid is False
    assert result.errors == [
        "Workflow name is missing",
        "Duplicate node name: A",
        "Node B is missing type",
        "Node with missing name found",
        "Connection to non-existent node: Z",
        "Connection from non-existent node: Y",
    ]


def test_validate_workflow_accepts_valid_document(sample_workflow):
    assert validate_workflow(sample_workflow).valid is True


def test_validate_workflow_rejects_non_list_nodes():
    result = validate_workflow({"id": "wf", "name": "n", "nodes": {}, "connections": {}})

    assert result.valid is False
    assert result.errors == ["Nodes array is invalid"]


def test_generate_patch_description(sample_analysis):
    description = generate_patch_description(sample_analysis)

    assert description.splitlines() == [
        "Fix for: The API token expired",
        "",
        "Changes:",
        "- Set timeout to 30s",
        "",
        "Reference: http-request",
    ]


def test_summarize_changes(sample_workflow, make_analysis):
    analysis = make_analysis([
        {"changeType": "remove_node", "nodeName": "Ghost", "description": "Remove ghost"},
        {"changeType": "modify_settings", "newValue": {"saveManualExecutions": True}, "description": "Save runs"},
    ])

    applied, skipped = summarize_changes(apply_fix(sample_workflow, analysis))

    assert applied == "• Save runs"
    assert skipped == "• Remove ghost: Node not found: Ghost"
