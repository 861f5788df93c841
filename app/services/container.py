"""
Service wiring.

Builds every service once from settings and owns their lifecycle: the
expiry sweep is started with the application and stopped, together with
the HTTP clients, on shutdown.
"""

import asyncio
from dataclasses import dataclass

from app.services.approval_handler import ApprovalHandler
from app.services.approval_store import ApprovalStore
from app.services.conversation import ConversationOrchestrator
from app.services.debug_pipeline import DebugPipeline
from app.services.docs_service import DocumentationService
from app.services.fix_analyzer import FixAnalyzer
from app.services.slack_notifier import SlackNotifier
from app.services.workflow_repository import N8nWorkflowRepository
from app.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """All long-lived services of the application."""

    store: ApprovalStore
    repository: N8nWorkflowRepository
    analyzer: FixAnalyzer
    docs: DocumentationService
    notifier: SlackNotifier
    conversation: ConversationOrchestrator
    pipeline: DebugPipeline
    approvals: ApprovalHandler
    shutdown_grace_seconds: float = 10.0

    def start(self) -> None:
        """Start background work. Must be called from a running event loop."""
        self.store.start()

    async def shutdown(self) -> None:
        """Stop the sweep, release records and close clients within the grace period."""
        await self.store.destroy()

        closers = [
            self.repository.close(),
            self.analyzer.close(),
            self.docs.close(),
            self.notifier.close(),
        ]
        try:
            await asyncio.wait_for(
                asyncio.gather(*closers, return_exceptions=True),
                timeout=self.shutdown_grace_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out closing clients",
                extra={"grace_seconds": self.shutdown_grace_seconds}
            )

        logger.info("Services shut down")


def build_services(settings) -> ServiceContainer:
    """
    Construct and wire all services.

    Args:
        settings: Application settings

    Returns:
        ServiceContainer ready to be started
    """
    store = ApprovalStore(
        ttl_seconds=settings.approval_ttl_seconds,
        sweep_interval_seconds=settings.expiry_sweep_interval_seconds,
    )
    repository = N8nWorkflowRepository(
        settings.n8n_api_url,
        settings.n8n_api_key,
        timeout=settings.http_timeout_seconds,
    )
    analyzer = FixAnalyzer(settings)
    docs = DocumentationService(
        cache_ttl_seconds=settings.docs_cache_ttl_seconds,
        mcp_url=settings.n8n_mcp_url,
        timeout=settings.http_timeout_seconds,
    )
    notifier = SlackNotifier(settings.slack_bot_token, settings.slack_channel_id)
    conversation = ConversationOrchestrator(store, analyzer, notifier)

    return ServiceContainer(
        store=store,
        repository=repository,
        analyzer=analyzer,
        docs=docs,
        notifier=notifier,
        conversation=conversation,
        pipeline=DebugPipeline(store, repository, analyzer, docs, notifier),
        approvals=ApprovalHandler(store, repository, notifier, conversation),
        shutdown_grace_seconds=settings.shutdown_grace_seconds,
    )
