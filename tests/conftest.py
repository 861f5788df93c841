"""
Shared fixtures for unit tests.
"""

import os

# Required settings must exist before app.config is imported
os.environ.setdefault("N8N_API_URL", "https://n8n.test/api/v1")
os.environ.setdefault("N8N_API_KEY", "test_n8n_key")
os.environ.setdefault("OPENAI_API_KEY", "test_openai_key")
os.environ.setdefault("API_BEARER_TOKEN", "test_bearer_token")
os.environ.setdefault("ENVIRONMENT", "development")

import pytest

from app.models.analysis import Analysis
from app.models.error_report import ErrorReport
from app.models.workflow import WorkflowDocument


@pytest.fixture
def sample_workflow_data():
    """Raw workflow document as returned by the n8n API."""
    return {
        "id": "wf-1",
        "name": "Order Sync",
        "active": True,
        "nodes": [
            {
                "id": "node-1",
                "name": "Webhook",
                "type": "n8n-nodes-base.webhook",
                "typeVersion": 1,
                "position": [100, 300],
                "parameters": {"path": "orders"},
            },
            {
                "id": "node-2",
                "name": "HTTP Request",
                "type": "n8n-nodes-base.httpRequest",
                "typeVersion": 4,
                "position": [300, 300],
                "parameters": {"url": "https://api.example.com/orders", "options": {}},
                "credentials": {"httpHeaderAuth": {"id": "cred-1", "name": "Orders API"}},
            },
            {
                "id": "node-3",
                "name": "Set",
                "type": "n8n-nodes-base.set",
                "typeVersion": 3,
                "position": [500, 200],
                "parameters": {},
            },
        ],
        "connections": {
            "Webhook": {"main": [[{"node": "HTTP Request", "type": "main", "index": 0}]]},
            "HTTP Request": {"main": [[{"node": "Set", "type": "main", "index": 0}]]},
        },
        "settings": {"executionOrder": "v1"},
    }


@pytest.fixture
def sample_workflow(sample_workflow_data):
    return WorkflowDocument.model_validate(sample_workflow_data)


@pytest.fixture
def sample_report():
    return ErrorReport.model_validate({
        "workflowId": "wf-1",
        "workflowName": "Order Sync",
        "executionId": "exec-42",
        "errorMessage": "401 Unauthorized - invalid credentials",
        "nodeName": "HTTP Request",
        "nodeType": "n8n-nodes-base.httpRequest",
    })


@pytest.fixture
def make_analysis():
    """Factory for analyses with the given raw changes."""

    def _make(changes=None, proposal_id="proposal-1", **overrides):
        data = {
            "rootCause": "The API token expired",
            "explanation": "The HTTP Request node could not authenticate.",
            "affectedNodes": ["HTTP Request"],
            "suggestedFix": {
                "id": proposal_id,
                "description": "Increase the timeout",
                "changes": changes if changes is not None else [
                    {
                        "changeType": "modify_node",
                        "nodeName": "HTTP Request",
                        "path": "parameters.options.timeout",
                        "newValue": 30000,
                        "description": "Set timeout to 30s",
                    }
                ],
                "rollbackPossible": True,
            },
            "confidence": "high",
            "relatedDocs": ["http-request"],
        }
        data.update(overrides)
        return Analysis.model_validate(data)

    return _make


@pytest.fixture
def sample_analysis(make_analysis):
    return make_analysis()
