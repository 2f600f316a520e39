import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from relay.config import Settings, get_settings
from relay.logging_config import get_logger
from relay.schemas.conversation import AssistantReply, IncomingConversationEvent
from relay.services.conversation_client import ConversationService, TwilioConversationsClient
from relay.services.dispatch_service import BotClient
from relay.services.errors import ConfigurationError
from relay.services.relay_service import authorize_reply, forward_message, relay_reply

logger = get_logger("conversations_router")

router = APIRouter(prefix="/channels/conversations")

REPLY_ERROR_STATUS = {
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "invalid_session": status.HTTP_400_BAD_REQUEST,
    "conversation_error": status.HTTP_502_BAD_GATEWAY,
}


def get_conversation_service(settings: Settings = Depends(get_settings)) -> ConversationService:
    try:
        return TwilioConversationsClient(settings)
    except ConfigurationError as e:
        logger.error(e.message)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)


def get_bot_client(settings: Settings = Depends(get_settings)) -> BotClient:
    return BotClient(settings)


async def parse_webhook_payload(request: Request) -> Optional[dict]:
    """
    Read a webhook body sent either form-encoded (Twilio default) or as JSON,
    with query parameters filling in keys the body does not carry.
    Returns dict or None.
    """
    content_type = request.headers.get("content-type", "")
    payload: dict
    if "application/json" in content_type:
        try:
            payload = await request.json()
        except ValueError as e:
            logger.warning(f"Webhook payload is not valid JSON: {e}")
            return None
        if not isinstance(payload, dict):
            return None
    else:
        raw = await request.body()
        if raw.lstrip().startswith(b"{"):
            try:
                payload = json.loads(raw)
            except ValueError:
                return None
        else:
            form = await request.form()
            payload = {key: value for key, value in form.items() if isinstance(value, str)}

    for key, value in request.query_params.items():
        payload.setdefault(key, value)
    return payload


def _plain_ok() -> Response:
    return Response(content="", media_type="text/plain")


@router.post("/incoming")
async def handle_incoming_message(
    request: Request,
    settings: Settings = Depends(get_settings),
    conversations: ConversationService = Depends(get_conversation_service),
    bot: BotClient = Depends(get_bot_client),
):
    """Forward an onMessageAdded event to the bot unless the conversation is handed off."""
    payload = await parse_webhook_payload(request)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    try:
        event = IncomingConversationEvent.model_validate(payload)
    except ValidationError as e:
        logger.warning("Webhook payload validation failed", extra={"context": {"error": str(e)}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook payload")

    result = await run_in_threadpool(forward_message, event, settings, conversations, bot)
    if result.is_fatal:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=result.error)
    return _plain_ok()


@router.post("/response")
async def handle_assistant_response(
    request: Request,
    token: Optional[str] = Query(default=None, alias="_token"),
    assistant_identity: Optional[str] = Query(default=None, alias="_assistantIdentity"),
    settings: Settings = Depends(get_settings),
    conversations: ConversationService = Depends(get_conversation_service),
):
    """Accept the assistant's reply for a conversation after verifying its token."""
    authorized = authorize_reply(token, settings)
    if not authorized.ok:
        code = REPLY_ERROR_STATUS.get(authorized.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=authorized.error)

    payload = await parse_webhook_payload(request)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid reply payload")

    try:
        reply = AssistantReply.model_validate(payload)
    except ValidationError as e:
        logger.warning("Reply payload validation failed", extra={"context": {"error": str(e)}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid reply payload")

    result = await run_in_threadpool(relay_reply, authorized.value, assistant_identity, reply, conversations)
    if not result.ok:
        code = REPLY_ERROR_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        raise HTTPException(status_code=code, detail=result.error)
    return _plain_ok()
