"""
Slack interactivity and event endpoints.
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response

from app.config import settings
from app.models.approval import HumanAction, HumanActionKind
from app.services.container import ServiceContainer
from app.services.slack_notifier import (
    APPROVE_ACTION,
    ASK_ACTION,
    ASK_MODAL,
    INPUT_ACTION_ID,
    INPUT_BLOCK_ID,
    REJECT_ACTION,
    SUGGEST_ACTION,
    SUGGEST_MODAL,
    verify_signature,
)
from app.api.dependencies import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slack", tags=["slack"])

BUTTON_ACTIONS = {
    APPROVE_ACTION: HumanActionKind.APPROVE,
    REJECT_ACTION: HumanActionKind.REJECT,
}

MODAL_BUTTONS = {
    ASK_ACTION: ASK_MODAL,
    SUGGEST_ACTION: SUGGEST_MODAL,
}

MODAL_ACTIONS = {
    ASK_MODAL: HumanActionKind.ASK,
    SUGGEST_MODAL: HumanActionKind.REQUEST_REVISION,
}


def verify_slack_request(request: Request, body: bytes) -> bool:
    """Check the Slack signature headers. Skipped in development."""
    if settings.environment == "development":
        return True

    return verify_signature(
        settings.slack_signing_secret,
        request.headers.get("X-Slack-Request-Timestamp"),
        request.headers.get("X-Slack-Signature"),
        body,
    )


def _user_name(payload: Dict[str, Any]) -> str:
    user = payload.get("user") or {}
    return user.get("username") or user.get("name") or user.get("id") or "unknown"


def _modal_text(view: Dict[str, Any]) -> Optional[str]:
    values = (view.get("state") or {}).get("values") or {}
    return ((values.get(INPUT_BLOCK_ID) or {}).get(INPUT_ACTION_ID) or {}).get("value")


async def process_action_async(services: ServiceContainer, action: HumanAction) -> None:
    """
    Process a human action after Slack has been acknowledged.

    Args:
        services: Application services
        action: The decoded action
    """
    try:
        await services.approvals.handle_action(action)
    except Exception as e:
        logger.error(f"Failed to process Slack action: {e}", exc_info=True)


async def open_modal_async(
    services: ServiceContainer,
    trigger_id: str,
    approval_id: str,
    callback_id: str
) -> None:
    try:
        await services.notifier.open_freeform_input(trigger_id, approval_id, callback_id)
    except Exception as e:
        logger.error(f"Failed to open Slack modal: {e}", exc_info=True)


async def process_thread_message_async(
    services: ServiceContainer,
    approval_id: str,
    text: str,
    user: str
) -> None:
    try:
        await services.conversation.handle_message(approval_id, text, user)
    except Exception as e:
        logger.error(f"Failed to process thread reply: {e}", exc_info=True)


@router.post("/actions")
async def handle_slack_action(
    request: Request,
    background_tasks: BackgroundTasks,
    services: ServiceContainer = Depends(get_services)
) -> Response:
    """
    Receive Slack interactivity payloads.

    Button clicks and modal submissions are acknowledged immediately and
    processed in the background.

    Raises:
        HTTPException: 400 for a missing or unreadable payload, 401 for a
            bad signature
    """
    body = await request.body()

    form = parse_qs(body.decode("utf-8", errors="replace"))
    raw_payload = (form.get("payload") or [None])[0]
    if not raw_payload:
        logger.warning("No payload in Slack action request")
        raise HTTPException(status_code=400, detail="Missing payload")

    try:
        payload: Dict[str, Any] = json.loads(raw_payload)
    except ValueError:
        logger.error("Failed to parse Slack payload")
        raise HTTPException(status_code=400, detail="Invalid payload")

    if not verify_slack_request(request, body):
        logger.warning("Invalid Slack signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    payload_type = payload.get("type")
    user = _user_name(payload)

    if payload_type == "block_actions":
        actions = payload.get("actions") or []
        if not actions:
            logger.warning("No action in payload")
            return Response(status_code=200)

        action_id = actions[0].get("action_id")
        approval_id = actions[0].get("value", "")
        logger.info(f"Processing Slack action {action_id} for approval {approval_id} by {user}")

        if action_id in BUTTON_ACTIONS:
            background_tasks.add_task(
                process_action_async,
                services,
                HumanAction(
                    kind=BUTTON_ACTIONS[action_id],
                    approval_id=approval_id,
                    user=user,
                    response_url=payload.get("response_url"),
                ),
            )
        elif action_id in MODAL_BUTTONS:
            background_tasks.add_task(
                open_modal_async,
                services,
                payload.get("trigger_id", ""),
                approval_id,
                MODAL_BUTTONS[action_id],
            )
        else:
            logger.warning(f"Unknown action: {action_id}")

    elif payload_type == "view_submission":
        view = payload.get("view") or {}
        callback_id = view.get("callback_id")
        if callback_id in MODAL_ACTIONS:
            background_tasks.add_task(
                process_action_async,
                services,
                HumanAction(
                    kind=MODAL_ACTIONS[callback_id],
                    approval_id=view.get("private_metadata", ""),
                    user=user,
                    text=_modal_text(view),
                ),
            )
        else:
            logger.warning(f"Unknown modal submission: {callback_id}")

    else:
        logger.info(f"Ignoring Slack payload type: {payload_type}")

    return Response(status_code=200)


@router.post("/events")
async def handle_slack_event(
    request: Request,
    background_tasks: BackgroundTasks,
    services: ServiceContainer = Depends(get_services)
) -> Dict[str, Any]:
    """
    Receive Slack Events API callbacks.

    Answers the URL verification challenge and routes human replies in a
    proposal's thread to the conversation for that proposal.
    """
    body = await request.body()
    if not verify_slack_request(request, body):
        logger.warning("Invalid Slack signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload: Dict[str, Any] = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    event = payload.get("event") or {}
    thread_ts = event.get("thread_ts")
    is_human_reply = (
        event.get("type") == "message"
        and not event.get("bot_id")
        and not event.get("subtype")
        and thread_ts
        and thread_ts != event.get("ts")
    )
    if not is_human_reply:
        return {"ok": True}

    record = services.store.get_by_thread(event.get("channel", ""), thread_ts)
    if record is None:
        logger.debug(f"Thread reply not linked to an approval: {thread_ts}")
        return {"ok": True}

    background_tasks.add_task(
        process_thread_message_async,
        services,
        record.id,
        event.get("text", ""),
        event.get("user", "unknown"),
    )
    return {"ok": True}
