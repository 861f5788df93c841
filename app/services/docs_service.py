"""
Documentation lookup for analysis prompts.

Node documentation pages are listed from the public n8n-docs repository
and cached in memory. Optional per-node reference documentation comes from
an n8n MCP server. Everything here is best effort: failures degrade to
less (or no) context and never abort a debug run.
"""

import re
import time
from typing import Any, Dict, List, Optional

import httpx

from app.models.docs import DocContext, DocSnippet
from app.utils.logging import get_logger

logger = get_logger(__name__)

DOCS_CONTENTS_URL = "https://api.github.com/repos/n8n-io/n8n-docs/contents/docs/integrations/builtin"
DOCS_RAW_URL = "https://raw.githubusercontent.com/n8n-io/n8n-docs/main/docs/integrations/builtin"
DOC_CATEGORIES = ("core-nodes", "app-nodes")

MAX_PAGES_PER_CATEGORY = 50
MAX_CONTENT_CHARS = 5000
MAX_ERROR_PATTERNS = 10
MAX_RELEVANT = 5
MAX_NODE_DOC_CHARS = 5000

_DESCRIPTION = re.compile(r"description:\s*(.+)")
_ERROR_SECTION = re.compile(r"(?:error|troubleshoot|common issues)[^\n]*\n([\s\S]*?)(?=\n##|\n$)", re.I)
_BULLET = re.compile(r"[-*]\s*(.+)")
_DASH_LETTER = re.compile(r"-([a-z])")


def normalize_node_type(page_name: str) -> str:
    """'http-request' -> 'n8n-nodes-base.httpRequest'"""
    camel = _DASH_LETTER.sub(lambda m: m.group(1).upper(), page_name)
    return f"n8n-nodes-base.{camel}"


def extract_error_patterns(content: str) -> List[str]:
    """Bullet points under error or troubleshooting headings."""
    patterns: List[str] = []
    for section in _ERROR_SECTION.finditer(content):
        for bullet in _BULLET.finditer(section.group(0)):
            patterns.append(bullet.group(1).strip())
    return patterns[:MAX_ERROR_PATTERNS]


def score_snippet(
    snippet: DocSnippet,
    node_type: Optional[str],
    error_message: Optional[str]
) -> int:
    """Relevance of a documentation page to a failing node and message."""
    score = 0

    if node_type:
        lowered_type = node_type.lower()
        if any(nt.lower().split(".")[-1] in lowered_type for nt in snippet.node_types):
            score += 10
        if snippet.name.lower().replace("-", "") in lowered_type:
            score += 5

    if error_message:
        lowered_message = error_message.lower()
        for pattern in snippet.error_patterns:
            if pattern.lower() in lowered_message:
                score += 3

        content = snippet.content.lower()
        keywords = [word for word in error_message.split() if len(word) > 4]
        for keyword in keywords[:5]:
            if keyword.lower() in content:
                score += 1

    return score


def filter_for_error(
    snippets: List[DocSnippet],
    node_type: Optional[str] = None,
    error_message: Optional[str] = None
) -> List[DocSnippet]:
    """Top pages by relevance; the first few pages when there is nothing to match on."""
    if not node_type and not error_message:
        return snippets[:MAX_RELEVANT]

    scored = [(score_snippet(s, node_type, error_message), s) for s in snippets]
    scored = [item for item in scored if item[0] > 0]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [snippet for _, snippet in scored[:MAX_RELEVANT]]


class DocumentationService:
    """Cached documentation source for the analyzer."""

    def __init__(
        self,
        cache_ttl_seconds: int = 3600,
        mcp_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.cache_ttl_seconds = cache_ttl_seconds
        self.mcp_url = mcp_url.rstrip("/") if mcp_url else None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._cache: Optional[List[DocSnippet]] = None
        self._cache_expires_at = 0.0
        self._request_id = 0

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def mcp_enabled(self) -> bool:
        return self.mcp_url is not None

    def clear_cache(self) -> None:
        self._cache = None
        self._cache_expires_at = 0.0
        logger.info("Documentation cache cleared")

    async def fetch_skills(self) -> List[DocSnippet]:
        """
        All known documentation pages, from cache while it is fresh.

        On failure the previous cache is returned even if stale, otherwise
        an empty list.
        """
        if self._cache is not None and time.time() < self._cache_expires_at:
            logger.debug("Returning cached documentation", extra={"count": len(self._cache)})
            return self._cache

        logger.info("Fetching n8n documentation from GitHub")
        try:
            snippets: List[DocSnippet] = []
            for category in DOC_CATEGORIES:
                snippets.extend(await self._fetch_category(category))
        except Exception as e:
            logger.error(f"Failed to fetch documentation: {e}")
            if self._cache is not None:
                logger.warning("Returning expired cached documentation")
                return self._cache
            return []

        self._cache = snippets
        self._cache_expires_at = time.time() + self.cache_ttl_seconds
        logger.info("Documentation fetched and cached", extra={"count": len(snippets)})
        return snippets

    async def _fetch_category(self, category: str) -> List[DocSnippet]:
        response = await self._client.get(
            f"{DOCS_CONTENTS_URL}/{category}",
            headers={"Accept": "application/vnd.github.v3+json"},
        )
        response.raise_for_status()

        directories = [item for item in response.json() if item.get("type") == "dir"]
        snippets = []
        for entry in directories[:MAX_PAGES_PER_CATEGORY]:
            snippet = await self._fetch_page(category, entry["name"])
            if snippet is not None:
                snippets.append(snippet)
        return snippets

    async def _fetch_page(self, category: str, page_name: str) -> Optional[DocSnippet]:
        try:
            response = await self._client.get(f"{DOCS_RAW_URL}/{category}/{page_name}/index.md")
            response.raise_for_status()
        except httpx.HTTPError:
            logger.debug("Failed to fetch documentation page", extra={"page": page_name})
            return None

        content = response.text
        match = _DESCRIPTION.search(content)
        description = match.group(1).strip() if match else f"{page_name} node documentation"

        return DocSnippet(
            name=page_name,
            description=description,
            content=content[:MAX_CONTENT_CHARS],
            node_types=[normalize_node_type(page_name)],
            error_patterns=extract_error_patterns(content),
        )

    async def get_node_documentation(self, node_type: str) -> Optional[str]:
        """Reference documentation for one node type from the MCP server, if configured."""
        if not self.mcp_enabled:
            return None

        node_name = node_type.split(".")[-1]
        self._request_id += 1
        request: Dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": "tools/call",
            "params": {
                "name": "get_node",
                "arguments": {"name": node_name, "detail": "full"},
            },
        }

        try:
            response = await self._client.post(f"{self.mcp_url}/mcp", json=request)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                "Failed to fetch MCP node documentation",
                extra={"node_type": node_type, "error": str(e)}
            )
            return None

        # JSON-RPC responses wrap the tool output in "result"
        payload = data.get("result", data) if isinstance(data, dict) else {}
        content = payload.get("content") or []
        if content and isinstance(content[0], dict) and content[0].get("text"):
            return content[0]["text"][:MAX_NODE_DOC_CHARS]
        return None

    async def fetch_relevant(
        self,
        node_type: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> DocContext:
        """Documentation context for a failure. Never raises."""
        try:
            snippets = filter_for_error(await self.fetch_skills(), node_type, error_message)
            node_documentation = await self.get_node_documentation(node_type) if node_type else None
        except Exception as e:
            logger.warning(f"Documentation lookup failed: {e}")
            return DocContext()

        logger.info(
            "Documentation context gathered",
            extra={"snippets": len(snippets), "node_documentation": node_documentation is not None}
        )
        return DocContext(snippets=snippets, node_documentation=node_documentation)
