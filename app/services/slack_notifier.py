"""
Slack human channel.

Posts fix proposals as Block Kit messages with decision buttons, threads
status updates and conversation replies under them, and opens modals for
free-text questions and revision requests. Talks to the Slack Web API
directly over httpx.
"""

import hashlib
import hmac
import time
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from app.models.approval import ApprovalRecord, ThreadRef
from app.models.analysis import Analysis
from app.utils.logging import get_logger
from app.utils.metrics import track_api_call

logger = get_logger(__name__)

SLACK_API_URL = "https://slack.com/api"
SIGNATURE_VERSION = "v0"
SIGNATURE_MAX_AGE_SECONDS = 60 * 5

# Block Kit action and view identifiers
APPROVE_ACTION = "approve_fix"
REJECT_ACTION = "reject_fix"
ASK_ACTION = "ask_question"
SUGGEST_ACTION = "suggest_fix"
ASK_MODAL = "ask_question_modal"
SUGGEST_MODAL = "suggest_fix_modal"
INPUT_BLOCK_ID = "user_input"
INPUT_ACTION_ID = "text"

CONFIDENCE_EMOJI = {
    "high": ":white_check_mark:",
    "medium": ":warning:",
    "low": ":question:",
}


class NotificationStatus(str, Enum):
    """Status updates posted in a proposal's thread."""

    APPROVED = "approved"
    REJECTED = "rejected"
    APPLIED = "applied"
    FAILED = "failed"


STATUS_EMOJI = {
    NotificationStatus.APPROVED: ":hourglass_flowing_sand:",
    NotificationStatus.REJECTED: ":no_entry:",
    NotificationStatus.APPLIED: ":white_check_mark:",
    NotificationStatus.FAILED: ":x:",
}

STATUS_TEXT = {
    NotificationStatus.APPROVED: "Approved - Applying fix...",
    NotificationStatus.REJECTED: "Rejected by user",
    NotificationStatus.APPLIED: "Fix successfully applied!",
    NotificationStatus.FAILED: "Fix application failed",
}


class NotificationError(Exception):
    """Raised when a message could not be delivered to Slack."""
    pass


def compute_signature(signing_secret: str, timestamp: str, body: bytes) -> str:
    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode() + body
    digest = hmac.new(signing_secret.encode(), base, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_signature(
    signing_secret: Optional[str],
    timestamp: Optional[str],
    signature: Optional[str],
    body: bytes,
    now: Optional[float] = None
) -> bool:
    """
    Check a Slack request signature.

    Rejects missing headers, timestamps older than five minutes and
    signatures that do not match the HMAC of the raw body.
    """
    if not signing_secret or not timestamp or not signature:
        return False

    try:
        request_time = int(timestamp)
    except ValueError:
        return False

    now = time.time() if now is None else now
    if abs(now - request_time) > SIGNATURE_MAX_AGE_SECONDS:
        return False

    expected = compute_signature(signing_secret, timestamp, body)
    return hmac.compare_digest(expected, signature)


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def format_changes(analysis: Analysis) -> str:
    changes = analysis.proposal.changes
    if not changes:
        return "No specific changes identified"

    lines = []
    for index, change in enumerate(changes, start=1):
        node_info = f" ({change.node_name})" if change.node_name else ""
        lines.append(f"{index}. [{change.change_type}]{node_info}: {change.description}")
    return "\n".join(lines)


def format_proposal_blocks(record: ApprovalRecord, revised: bool = False) -> List[Dict[str, Any]]:
    """Block Kit layout of a proposal with its decision buttons."""
    analysis = record.analysis
    proposal = analysis.proposal
    confidence = analysis.confidence.value
    title = "Revised Fix Proposal" if revised else "Fix Proposal"

    return [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f":wrench: {title}: {record.workflow_name}",
                "emoji": True,
            },
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Error:* {_truncate(record.error_report.error_message, 200)}"},
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Root Cause:*\n{analysis.root_cause}"},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Explanation:*\n{analysis.explanation}"},
        },
        {
            "type": "section",
            "fields": [
                {
                    "type": "mrkdwn",
                    "text": f"*Affected Nodes:*\n{', '.join(analysis.affected_nodes) or 'None identified'}",
                },
                {
                    "type": "mrkdwn",
                    "text": f"*Confidence:* {CONFIDENCE_EMOJI.get(confidence, '')} {confidence.upper()}",
                },
            ],
        },
        {"type": "divider"},
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": f"*Proposed Fix:*\n{proposal.description}"},
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*Changes ({len(proposal.changes)}):*\n{format_changes(analysis)}",
            },
        },
        {
            "type": "context",
            "elements": [
                {
                    "type": "mrkdwn",
                    "text": (
                        f"Workflow ID: `{record.workflow_id}` | "
                        f"Execution: `{record.execution_id or 'N/A'}` | "
                        f"Rollback: {':white_check_mark:' if proposal.rollback_possible else ':x:'}"
                    ),
                }
            ],
        },
        {
            "type": "actions",
            "block_id": f"approval_{record.id}",
            "elements": [
                _button(":white_check_mark: Approve & Apply", APPROVE_ACTION, record.id, "primary"),
                _button(":x: Reject", REJECT_ACTION, record.id, "danger"),
                _button(":speech_balloon: Ask a Question", ASK_ACTION, record.id),
                _button(":bulb: Suggest a Different Fix", SUGGEST_ACTION, record.id),
            ],
        },
    ]


def _button(text: str, action_id: str, value: str, style: Optional[str] = None) -> Dict[str, Any]:
    button: Dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": text, "emoji": True},
        "action_id": action_id,
        "value": value,
    }
    if style:
        button["style"] = style
    return button


def build_input_modal(approval_id: str, callback_id: str) -> Dict[str, Any]:
    """Modal asking for free text; the approval id travels in private_metadata."""
    if callback_id == ASK_MODAL:
        title, label, submit = "Ask a Question", "What would you like to know about this fix?", "Ask"
    else:
        title, label, submit = "Suggest a Fix", "How should the fix be changed?", "Revise"

    return {
        "type": "modal",
        "callback_id": callback_id,
        "private_metadata": approval_id,
        "title": {"type": "plain_text", "text": title},
        "submit": {"type": "plain_text", "text": submit},
        "close": {"type": "plain_text", "text": "Cancel"},
        "blocks": [
            {
                "type": "input",
                "block_id": INPUT_BLOCK_ID,
                "label": {"type": "plain_text", "text": label},
                "element": {
                    "type": "plain_text_input",
                    "action_id": INPUT_ACTION_ID,
                    "multiline": True,
                },
                "optional": callback_id == SUGGEST_MODAL,
            }
        ],
    }


class SlackNotifier:
    """
    Posts proposals and updates to a Slack channel.

    Disabled when the bot token or channel id is missing: proposals are
    then not posted and every other call is a no-op.
    """

    def __init__(
        self,
        bot_token: Optional[str],
        channel_id: Optional[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.channel_id = channel_id
        self.enabled = bool(bot_token and channel_id)
        self._client = client or httpx.AsyncClient(
            base_url=SLACK_API_URL,
            headers={"Authorization": f"Bearer {bot_token or ''}"},
            timeout=timeout,
        )

        if self.enabled:
            logger.info("Slack notifications enabled", extra={"channel": channel_id})
        else:
            logger.warning("Slack notifications disabled (no SLACK_BOT_TOKEN or SLACK_CHANNEL_ID)")

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with track_api_call(logger, "slack", method, "POST") as outcome:
                response = await self._client.post(f"/{method}", json=payload)
                outcome.status_code = response.status_code
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise NotificationError(f"Slack {method} failed: {e}") from e

        if not data.get("ok"):
            raise NotificationError(f"Slack {method} failed: {data.get('error', 'unknown_error')}")
        return data

    async def post_proposal(
        self,
        record: ApprovalRecord,
        thread: Optional[ThreadRef] = None
    ) -> Optional[ThreadRef]:
        """
        Post a proposal with its decision buttons.

        A revised proposal is posted as a reply in the record's existing
        thread, whose reference is returned unchanged.

        Returns:
            Where the proposal thread lives, or None when Slack is disabled

        Raises:
            NotificationError: Slack rejected or never received the message
        """
        if not self.enabled:
            logger.warning("Slack not available, skipping proposal", extra={"approval_id": record.id})
            return None

        payload: Dict[str, Any] = {
            "channel": thread.channel_id if thread else self.channel_id,
            "text": f"Fix proposal for workflow: {record.workflow_name}",
            "blocks": format_proposal_blocks(record, revised=thread is not None),
        }
        if thread is not None:
            payload["thread_ts"] = thread.message_ts

        data = await self._call("chat.postMessage", payload)
        if thread is not None:
            return thread

        if not data.get("ts"):
            raise NotificationError("No message timestamp returned from Slack")

        logger.info(
            "Slack proposal sent",
            extra={"approval_id": record.id, "channel": data.get("channel"), "ts": data["ts"]}
        )
        return ThreadRef(channel_id=data.get("channel") or self.channel_id, message_ts=data["ts"])

    async def post_status(
        self,
        thread: Optional[ThreadRef],
        status: NotificationStatus,
        note: Optional[str] = None
    ) -> bool:
        """Post a status update in the proposal thread. Failures are logged, not raised."""
        if not self.enabled or thread is None:
            return False

        text = f"{STATUS_EMOJI[status]} *Status Update:* {STATUS_TEXT[status]}"
        if note:
            text += f"\n{note}"

        try:
            await self._call("chat.postMessage", {
                "channel": thread.channel_id,
                "thread_ts": thread.message_ts,
                "text": text,
            })
        except NotificationError as e:
            logger.error(f"Failed to post Slack status update: {e}", extra={"status": status.value})
            return False

        logger.info("Slack status update sent", extra={"ts": thread.message_ts, "status": status.value})
        return True

    async def post_conversation_reply(
        self,
        thread: Optional[ThreadRef],
        text: str,
        cited_docs: Optional[List[str]] = None
    ) -> bool:
        """Reply in the proposal thread. Failures are logged, not raised."""
        if not self.enabled or thread is None:
            return False

        message = text
        if cited_docs:
            message += f"\n\n_Sources: {', '.join(cited_docs)}_"

        try:
            await self._call("chat.postMessage", {
                "channel": thread.channel_id,
                "thread_ts": thread.message_ts,
                "text": message,
            })
        except NotificationError as e:
            logger.error(f"Failed to post Slack reply: {e}")
            return False
        return True

    async def open_freeform_input(self, trigger_id: str, approval_id: str, callback_id: str) -> bool:
        """Open the question or suggestion modal for a proposal."""
        if not self.enabled:
            return False

        try:
            await self._call("views.open", {
                "trigger_id": trigger_id,
                "view": build_input_modal(approval_id, callback_id),
            })
        except NotificationError as e:
            logger.error(f"Failed to open Slack modal: {e}", extra={"approval_id": approval_id})
            return False
        return True

    async def respond_ephemeral(self, response_url: Optional[str], text: str) -> bool:
        """Reply privately to the user who clicked, via the interaction's response_url."""
        if not response_url:
            return False

        try:
            response = await self._client.post(
                response_url,
                json={"text": text, "response_type": "ephemeral"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Error responding to Slack: {e}")
            return False

        if response.is_error:
            logger.warning("Failed to respond to Slack", extra={"status_code": response.status_code})
            return False
        return True
