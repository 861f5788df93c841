"""
Unit tests for proposal discussion and revision.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.models.analysis import ConversationReply
from app.models.approval import ApprovalStatus, ConversationRole, ThreadRef
from app.services.approval_store import ApprovalStore
from app.services.conversation import ConversationOrchestrator
from app.services.fix_analyzer import AnalysisError, DEFAULT_REVISION_INSTRUCTION
from app.services.slack_notifier import NotificationError

THREAD = ThreadRef(channel_id="C1", message_ts="111.222")


@pytest.fixture
def store(sample_report, sample_analysis, sample_workflow):
    store = ApprovalStore()
    store.create("ap-1", sample_report, sample_analysis, sample_workflow, thread=THREAD)
    return store


@pytest.fixture
def analyzer(make_analysis):
    analyzer = MagicMock()
    analyzer.converse = AsyncMock(return_value=ConversationReply(
        reply="The timeout protects against a slow upstream.",
        cited_docs=["http-request"],
    ))
    analyzer.revise = AsyncMock(return_value=make_analysis(proposal_id="proposal-2"))
    return analyzer


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.post_conversation_reply = AsyncMock(return_value=True)
    notifier.post_proposal = AsyncMock(return_value=THREAD)
    return notifier


@pytest.fixture
def orchestrator(store, analyzer, notifier):
    return ConversationOrchestrator(store, analyzer, notifier)


@pytest.mark.asyncio
async def test_question_is_answered_and_recorded(orchestrator, store, analyzer, notifier, sample_analysis):
    """Test a question appends one round and leaves the proposal alone."""
    result = await orchestrator.handle_message("ap-1", "Why a timeout?", user="alice")

    assert result is True
    record = store.get("ap-1")
    assert record.status == ApprovalStatus.PENDING
    assert record.proposal.id == "proposal-1"
    assert [m.role for m in record.conversation_history] == [ConversationRole.USER, ConversationRole.AGENT]
    assert record.conversation_history[0].text == "Why a timeout?"

    args = analyzer.converse.await_args.args
    assert args[0] == sample_analysis
    assert args[1] == []
    assert args[2] == "Why a timeout?"
    notifier.post_conversation_reply.assert_awaited_once_with(
        THREAD, "The timeout protects against a slow upstream.", ["http-request"]
    )


@pytest.mark.asyncio
async def test_history_is_passed_to_next_question(orchestrator, store, analyzer):
    await orchestrator.handle_message("ap-1", "First?")
    await orchestrator.handle_message("ap-1", "Second?")

    history = analyzer.converse.await_args.args[1]
    assert [m.text for m in history] == ["First?", "The timeout protects against a slow upstream."]
    assert len(store.get("ap-1").conversation_history) == 4


@pytest.mark.asyncio
async def test_blank_question_is_ignored(orchestrator, analyzer):
    assert await orchestrator.handle_message("ap-1", "   ") is False
    analyzer.converse.assert_not_awaited()


@pytest.mark.asyncio
async def test_question_for_unknown_record(orchestrator, analyzer):
    assert await orchestrator.handle_message("missing", "Hello?") is False
    analyzer.converse.assert_not_awaited()


@pytest.mark.asyncio
async def test_question_for_decided_record_is_dropped(orchestrator, store, analyzer, notifier):
    store.reject("ap-1")

    assert await orchestrator.handle_message("ap-1", "Too late?") is False
    analyzer.converse.assert_not_awaited()
    notifier.post_conversation_reply.assert_not_awaited()


@pytest.mark.asyncio
async def test_analysis_failure_posts_error_reply(orchestrator, store, analyzer, notifier):
    analyzer.converse.side_effect = AnalysisError("model unavailable")

    result = await orchestrator.handle_message("ap-1", "Why?")

    assert result is False
    assert store.get("ap-1").conversation_history == []
    text = notifier.post_conversation_reply.await_args.args[1]
    assert "model unavailable" in text


@pytest.mark.asyncio
async def test_reply_discarded_when_record_decided_meanwhile(orchestrator, store, analyzer, notifier):
    async def approve_while_answering(*args):
        store.approve("ap-1")
        return ConversationReply(reply="Late answer")

    analyzer.converse.side_effect = approve_while_answering

    result = await orchestrator.handle_message("ap-1", "Why?")

    assert result is False
    assert store.get("ap-1").conversation_history == []
    notifier.post_conversation_reply.assert_not_awaited()


@pytest.mark.asyncio
async def test_revision_supersedes_proposal(orchestrator, store, analyzer, notifier):
    """Test a revision replaces the proposal and clears the conversation."""
    for i in range(3):
        store.append_conversation("ap-1", f"q{i}", f"a{i}")

    result = await orchestrator.request_revision("ap-1", "Use a retry instead", user="bob")

    assert result is True
    record = store.get("ap-1")
    assert record.proposal.id == "proposal-2"
    assert record.conversation_history == []
    assert record.status == ApprovalStatus.PENDING

    args = analyzer.revise.await_args.args
    assert args[1] == "Use a retry instead"
    assert len(args[2]) == 6
    notifier.post_proposal.assert_awaited_once_with(record, thread=THREAD)


@pytest.mark.asyncio
async def test_blank_revision_uses_default_instruction(orchestrator, analyzer):
    await orchestrator.request_revision("ap-1", "  ")

    assert analyzer.revise.await_args.args[1] == DEFAULT_REVISION_INSTRUCTION


@pytest.mark.asyncio
async def test_revision_failure_keeps_old_proposal(orchestrator, store, analyzer, notifier):
    analyzer.revise.side_effect = AnalysisError("bad tool call")

    result = await orchestrator.request_revision("ap-1", "Try again")

    assert result is False
    assert store.get("ap-1").proposal.id == "proposal-1"
    notifier.post_proposal.assert_not_awaited()


@pytest.mark.asyncio
async def test_revision_kept_when_posting_fails(orchestrator, store, notifier):
    notifier.post_proposal.side_effect = NotificationError("channel_not_found")

    result = await orchestrator.request_revision("ap-1", "Try again")

    assert result is True
    assert store.get("ap-1").proposal.id == "proposal-2"


@pytest.mark.asyncio
async def test_revision_for_expired_record_is_dropped(orchestrator, store, analyzer):
    store.expire_stale(store.get("ap-1").expires_at.replace(year=2100))

    assert await orchestrator.request_revision("ap-1", "Try again") is False
    analyzer.revise.assert_not_awaited()
