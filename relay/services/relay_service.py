from enum import Enum
from typing import Optional

from relay.config import Settings
from relay.logging_config import ConversationLogger, get_logger
from relay.schemas.conversation import AssistantReply, IncomingConversationEvent
from relay.services.conversation_client import ConversationService
from relay.services.dispatch_service import BotClient, build_envelope, parse_session_id
from relay.services.errors import (
    ConfigurationError,
    ConversationServiceError,
    DispatchError,
    MissingBotIdError,
    MissingTokenError,
)
from relay.services.gate_service import (
    clear_typing,
    load_attributes,
    load_snapshot,
    mark_typing,
    resolve_bot_id,
    should_forward,
)
from relay.services.result import Result
from relay.services.token_service import SUBJECT_CLAIM, decode_claims, mint_token

logger = get_logger("relay_service")


class ForwardStatus(str, Enum):
    FORWARDED = "forwarded"
    SKIPPED_HANDOFF = "skipped_handoff"
    SKIPPED_MULTI_PARTY = "skipped_multi_party"


def forward_message(
    event: IncomingConversationEvent,
    settings: Settings,
    conversations: ConversationService,
    bot: BotClient,
) -> Result[ForwardStatus]:
    """Relay one inbound conversation message to the bot.

    Steps run in order: resolve bot, gate, mint token, build envelope,
    flag typing, send. Delivery is at-most-once; a rejected dispatch is
    logged and returned as a non-fatal failure so the webhook still
    acknowledges.
    """
    log = ConversationLogger(
        logger, {"conversation_sid": event.conversation_sid, "chat_service_sid": event.chat_service_sid}
    )

    try:
        bot_id = resolve_bot_id(settings, conversations, event)
    except MissingBotIdError as e:
        log.error(e.message)
        return Result.from_error(e, "missing_bot_id", fatal=True)

    try:
        snapshot = load_snapshot(conversations, event)
    except ConversationServiceError as e:
        log.error(f"Failed to load conversation state: {e.message}")
        return Result.from_error(e, "conversation_error", fatal=True)

    if not should_forward(snapshot):
        status = ForwardStatus.SKIPPED_HANDOFF if snapshot.has_handoff_webhook else ForwardStatus.SKIPPED_MULTI_PARTY
        log.info("Message not forwarded", context={"reason": status.value})
        return Result.success(status)

    try:
        token = mint_token(settings.auth_token, bot_id)
        envelope = build_envelope(event, token, settings.domain_name)
    except ConfigurationError as e:
        log.error(e.message)
        return Result.from_error(e, "configuration_error", fatal=True)

    attributes = load_attributes(conversations, event.chat_service_sid, event.conversation_sid)
    if attributes is not None:
        snapshot.attributes = attributes
    mark_typing(conversations, event.chat_service_sid, event.conversation_sid, attributes)

    try:
        bot.send(envelope, bot_id)
    except ConfigurationError as e:
        log.error(e.message)
        return Result.from_error(e, "configuration_error", fatal=True)
    except DispatchError as e:
        log.error(e.message, context={"bot_id": bot_id, "status_code": e.status_code})
        return Result.from_error(e, "dispatch_error", fatal=False)

    log.info("Message forwarded", context={"bot_id": bot_id, "identity": envelope.identity})
    return Result.success(ForwardStatus.FORWARDED)


def authorize_reply(token: Optional[str], settings: Settings) -> Result[str]:
    """Check the callback token; the success value is the bot id it was minted for."""
    try:
        claims = decode_claims(settings.auth_token, token)
    except MissingTokenError as e:
        return Result.from_error(e, "unauthorized", fatal=True)
    except ConfigurationError as e:
        logger.error(e.message)
        return Result.from_error(e, "configuration_error", fatal=True)
    if claims is None:
        return Result.failure("Invalid token", "unauthorized", fatal=True)
    return Result.success(claims[SUBJECT_CLAIM])


def relay_reply(
    bot_id: str,
    assistant_identity: Optional[str],
    reply: AssistantReply,
    conversations: ConversationService,
) -> Result[str]:
    """Post an authorized assistant reply back into its conversation."""
    try:
        service_sid, conversation_sid = parse_session_id(reply.session_id)
    except ValueError as e:
        logger.warning(str(e), extra={"context": {"bot_id": bot_id}})
        return Result.failure(str(e), "invalid_session", fatal=True)

    log = ConversationLogger(
        logger,
        {"conversation_sid": conversation_sid, "chat_service_sid": service_sid, "bot_id": bot_id},
    )

    try:
        message = conversations.create_message(service_sid, conversation_sid, reply.body, author=assistant_identity)
    except ConversationServiceError as e:
        log.error(f"Failed to post assistant reply: {e.message}")
        return Result.from_error(e, "conversation_error", fatal=True)

    attributes = load_attributes(conversations, service_sid, conversation_sid)
    clear_typing(conversations, service_sid, conversation_sid, attributes)

    log.info("Assistant reply posted", context={"status": reply.status})
    return Result.success(message.get("sid") or "")
