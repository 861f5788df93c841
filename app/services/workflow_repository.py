"""
Workflow repository backed by the n8n public REST API.

Reads and writes workflow documents. Writes always carry the credential
references of the original document: the patch engine strips them, and
this adapter merges them back by node name before persisting.
"""

from typing import Any, Dict, Optional

import httpx

from app.models.workflow import WorkflowDocument
from app.utils.logging import get_logger
from app.utils.metrics import track_api_call
from app.utils.resilience import (
    CircuitBreaker,
    create_workflow_api_circuit_breaker,
    retry_with_backoff,
)

logger = get_logger(__name__)

# Fields accepted by PUT /workflows/{id}
UPDATABLE_FIELDS = ("name", "nodes", "connections", "settings")


class WorkflowRepositoryError(Exception):
    """Base exception for workflow repository errors."""
    pass


class WorkflowNotFoundError(WorkflowRepositoryError):
    """Workflow could not be retrieved."""
    pass


class WorkflowUpdateError(WorkflowRepositoryError):
    """Workflow could not be written back."""
    pass


def is_transient(error: BaseException) -> bool:
    """Transport failures and 5xx responses are worth retrying; 4xx are not."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.TransportError)


def restore_credentials(
    patched: WorkflowDocument,
    original: WorkflowDocument
) -> Dict[str, Any]:
    """
    Build the update payload with each node's original credentials.

    Nodes are matched by id. Nodes whose id is unknown fall back to a name
    match. Either match only counts when the node type is unchanged, so a
    replacement node of another type never inherits the credentials of the
    node it replaced. Other nodes get no credentials.
    """
    by_id = {node.id: node for node in original.nodes}
    by_name = {node.name: node for node in original.nodes}

    payload = patched.to_payload()
    for node in payload["nodes"]:
        node.pop("credentials", None)
        source = by_id.get(node.get("id"))
        if source is None:
            source = by_name.get(node.get("name"))
        if source is not None and source.credentials and source.type == node.get("type"):
            node["credentials"] = source.credentials

    return {field: payload[field] for field in UPDATABLE_FIELDS if field in payload}


class N8nWorkflowRepository:
    """Fetches and updates workflows through the n8n public API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        """
        Initialize the repository.

        Args:
            base_url: n8n API base URL (e.g. https://n8n.example.com/api/v1)
            api_key: n8n API key
            timeout: Per-request timeout in seconds
            client: Preconfigured HTTP client (tests inject a mock transport)
            circuit_breaker: Circuit breaker shared by all calls
        """
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "X-N8N-API-KEY": api_key,
                "Content-Type": "application/json",
            },
            timeout=timeout,
        )
        self.circuit_breaker = circuit_breaker or create_workflow_api_circuit_breaker()

    async def close(self) -> None:
        await self._client.aclose()

    @retry_with_backoff(max_retries=3, base_delay=1.0, retry_if=is_transient)
    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        async def _call():
            async with track_api_call(logger, "n8n", path, method) as outcome:
                response = await self._client.request(method, path, json=json)
                outcome.status_code = response.status_code
                response.raise_for_status()
                return response.json()

        return await self.circuit_breaker.call(_call)

    async def fetch(self, workflow_id: str) -> WorkflowDocument:
        """
        Fetch a workflow by id.

        Raises:
            WorkflowNotFoundError: The workflow could not be retrieved
        """
        logger.info("Fetching workflow", extra={"workflow_id": workflow_id})
        try:
            data = await self._request("GET", f"/workflows/{workflow_id}")
            return WorkflowDocument.model_validate(data)
        except Exception as e:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id} ({e})") from e

    async def update(
        self,
        workflow_id: str,
        patched: WorkflowDocument,
        original: WorkflowDocument
    ) -> WorkflowDocument:
        """
        Persist a patched workflow, restoring the original credentials.

        Raises:
            WorkflowUpdateError: The write failed
        """
        logger.info("Updating workflow", extra={"workflow_id": workflow_id})
        payload = restore_credentials(patched, original)
        try:
            data = await self._request("PUT", f"/workflows/{workflow_id}", json=payload)
            return WorkflowDocument.model_validate(data)
        except Exception as e:
            raise WorkflowUpdateError(str(e)) from e

    async def get_execution(self, execution_id: str) -> Dict[str, Any]:
        """Fetch raw execution details."""
        logger.info("Fetching execution", extra={"execution_id": execution_id})
        return await self._request("GET", f"/executions/{execution_id}")

    async def activate(self, workflow_id: str) -> WorkflowDocument:
        logger.info("Activating workflow", extra={"workflow_id": workflow_id})
        data = await self._request("POST", f"/workflows/{workflow_id}/activate")
        return WorkflowDocument.model_validate(data)

    async def deactivate(self, workflow_id: str) -> WorkflowDocument:
        logger.info("Deactivating workflow", extra={"workflow_id": workflow_id})
        data = await self._request("POST", f"/workflows/{workflow_id}/deactivate")
        return WorkflowDocument.model_validate(data)
