"""
Unit tests for human decisions on proposals.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.approval import ApprovalStatus, HumanAction, HumanActionKind, ThreadRef
from app.services.approval_handler import ApprovalHandler
from app.services.approval_store import ApprovalStore
from app.services.slack_notifier import NotificationStatus
from app.services.workflow_repository import WorkflowUpdateError

THREAD = ThreadRef(channel_id="C1", message_ts="111.222")


@pytest.fixture
def store(sample_report, sample_analysis, sample_workflow):
    store = ApprovalStore()
    store.create("ap-1", sample_report, sample_analysis, sample_workflow, thread=THREAD)
    return store


@pytest.fixture
def repository(sample_workflow):
    repository = MagicMock()
    repository.update = AsyncMock(return_value=sample_workflow)
    return repository


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.post_status = AsyncMock(return_value=True)
    notifier.respond_ephemeral = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def conversation():
    conversation = MagicMock()
    conversation.handle_message = AsyncMock(return_value=True)
    conversation.request_revision = AsyncMock(return_value=True)
    return conversation


@pytest.fixture
def handler(store, repository, notifier, conversation):
    return ApprovalHandler(store, repository, notifier, conversation)


def action(kind, approval_id="ap-1", **fields):
    return HumanAction(kind=kind, approval_id=approval_id, user="alice", response_url="https://hooks.slack.test/r", **fields)


@pytest.mark.asyncio
async def test_approve_applies_fix(handler, store, repository, notifier):
    """Test approval patches the workflow and marks the record applied."""
    result = await handler.handle_action(action(HumanActionKind.APPROVE))

    assert result is True
    assert store.get("ap-1").status == ApprovalStatus.APPLIED

    workflow_id, patched, original = repository.update.await_args.args
    assert workflow_id == "wf-1"
    assert patched.get_node("HTTP Request").parameters["options"] == {"timeout": 30000}
    assert original.get_node("HTTP Request").parameters["options"] == {}

    statuses = [call.args[1] for call in notifier.post_status.await_args_list]
    assert statuses == [NotificationStatus.APPROVED, NotificationStatus.APPLIED]
    assert notifier.post_status.await_args_list[0].args[2] == "Approved by @alice"
    assert "Set timeout to 30s" in notifier.post_status.await_args_list[1].args[2]
    assert notifier.post_status.await_args_list[1].args[2].startswith("Fix for: The API token expired")


@pytest.mark.asyncio
async def test_update_failure_returns_record_to_pending(handler, store, repository, notifier):
    repository.update.side_effect = WorkflowUpdateError("Failed to update workflow: 500")

    result = await handler.approve("ap-1", "alice")

    assert result is False
    assert store.get("ap-1").status == ApprovalStatus.PENDING
    last = notifier.post_status.await_args_list[-1].args
    assert last[1] == NotificationStatus.FAILED
    assert last[2].startswith("Error: Failed to update workflow: 500")


@pytest.mark.asyncio
async def test_record_deleted_during_update_still_reports_applied(handler, store, repository, notifier, sample_workflow):
    """Test the outcome is posted when the record disappears while the workflow is written."""
    async def update_and_delete(*args):
        store.delete("ap-1")
        return sample_workflow

    repository.update.side_effect = update_and_delete

    result = await handler.approve("ap-1", "alice")

    assert result is True
    assert store.get("ap-1") is None
    last = notifier.post_status.await_args_list[-1].args
    assert last[0] == THREAD
    assert last[1] == NotificationStatus.APPLIED


@pytest.mark.asyncio
async def test_record_deleted_during_failed_update_still_reports_failure(handler, store, repository, notifier):
    async def fail_after_delete(*args):
        store.delete("ap-1")
        raise WorkflowUpdateError("Failed to update workflow: 502")

    repository.update.side_effect = fail_after_delete

    result = await handler.approve("ap-1", "alice")

    assert result is False
    last = notifier.post_status.await_args_list[-1].args
    assert last[1] == NotificationStatus.FAILED
    assert last[2].startswith("Error: Failed to update workflow: 502")


@pytest.mark.asyncio
async def test_unapplicable_proposal_returns_record_to_pending(
    handler, store, repository, sample_report, make_analysis, sample_workflow
):
    analysis = make_analysis([{"changeType": "remove_node", "nodeName": "Ghost", "description": "Remove ghost"}])
    store.create("ap-2", sample_report, analysis, sample_workflow)

    result = await handler.approve("ap-2")

    assert result is False
    assert store.get("ap-2").status == ApprovalStatus.PENDING
    repository.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_duplicate_approval_applies_once(handler, store, repository, notifier):
    """Test a decision delivered twice only reaches the repository once."""
    first = await handler.handle_action(action(HumanActionKind.APPROVE))
    second = await handler.handle_action(action(HumanActionKind.APPROVE))

    assert first is True
    assert second is False
    assert repository.update.await_count == 1
    notifier.respond_ephemeral.assert_awaited_once_with(
        "https://hooks.slack.test/r", "This approval has already been applied"
    )


@pytest.mark.asyncio
async def test_direct_double_approve_is_refused(handler, store, repository):
    store.approve("ap-1")

    assert await handler.approve("ap-1") is False
    repository.update.assert_not_awaited()


@pytest.mark.asyncio
async def test_reject(handler, store, repository, notifier):
    result = await handler.handle_action(action(HumanActionKind.REJECT))

    assert result is True
    assert store.get("ap-1").status == ApprovalStatus.REJECTED
    repository.update.assert_not_awaited()
    notifier.post_status.assert_awaited_once_with(THREAD, NotificationStatus.REJECTED, "Rejected by @alice")


@pytest.mark.asyncio
async def test_unknown_record_gets_ephemeral_reply(handler, notifier):
    result = await handler.handle_action(action(HumanActionKind.APPROVE, approval_id="missing"))

    assert result is False
    notifier.respond_ephemeral.assert_awaited_once_with(
        "https://hooks.slack.test/r", "Approval record not found or expired"
    )


@pytest.mark.asyncio
async def test_ask_and_revise_are_routed(handler, conversation):
    await handler.handle_action(action(HumanActionKind.ASK, text="Why?"))
    await handler.handle_action(action(HumanActionKind.REQUEST_REVISION, text="Use retries"))

    conversation.handle_message.assert_awaited_once_with("ap-1", "Why?", "alice")
    conversation.request_revision.assert_awaited_once_with("ap-1", "Use retries", "alice")
