"""Decide whether an inbound conversation message is forwarded to the bot."""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from relay.config import Settings
from relay.logging_config import get_logger
from relay.schemas.conversation import IncomingConversationEvent
from relay.services.conversation_client import ConversationService
from relay.services.errors import ConversationServiceError, MissingBotIdError

logger = get_logger("gate_service")

MESSAGE_ADDED_EVENT = "onMessageAdded"
# A studio webhook means a flow or a human has taken over the conversation.
HANDOFF_WEBHOOK_TARGET = "studio"
TYPING_ATTRIBUTE = "assistantIsTyping"
IDENTITY_DELIMITER = ":"


@dataclass
class ConversationSnapshot:
    participant_count: int
    has_handoff_webhook: bool
    author_identity: str
    attributes: dict[str, Any] = field(default_factory=dict)


def load_attributes(
    conversations: ConversationService, service_sid: str, conversation_sid: str
) -> Optional[dict[str, Any]]:
    """Fetch conversation attributes, or None when they cannot be read or parsed."""
    try:
        raw = conversations.fetch_attributes(service_sid, conversation_sid)
        parsed = json.loads(raw) if raw else {}
    except (ConversationServiceError, ValueError, TypeError) as e:
        logger.error(
            f"Failed to read conversation attributes: {e}",
            extra={"context": {"conversation_sid": conversation_sid}},
        )
        return None

    if not isinstance(parsed, dict):
        logger.warning(
            "Conversation attributes are not an object",
            extra={"context": {"conversation_sid": conversation_sid}},
        )
        return None
    return parsed


def read_attributes(conversations: ConversationService, service_sid: str, conversation_sid: str) -> dict[str, Any]:
    """Same as load_attributes, degrading to an empty mapping."""
    return load_attributes(conversations, service_sid, conversation_sid) or {}


def resolve_bot_id(settings: Settings, conversations: ConversationService, event: IncomingConversationEvent) -> str:
    """Pick the target bot: conversation attribute, then the event, then BOT_ID."""
    if event.event_type == MESSAGE_ADDED_EVENT:
        attributes = read_attributes(conversations, event.chat_service_sid, event.conversation_sid)
        bot_id = attributes.get("botId")
        if isinstance(bot_id, str) and bot_id:
            return bot_id
        if bot_id is not None:
            logger.info("Invalid attribute structure for botId", extra={"context": {"botId": repr(bot_id)}})

    bot_id = event.bot_id or settings.bot_id
    if not bot_id:
        raise MissingBotIdError()
    return bot_id


def derive_identity(author: str) -> str:
    if IDENTITY_DELIMITER in author:
        return author
    return f"user_id:{author}"


def load_snapshot(conversations: ConversationService, event: IncomingConversationEvent) -> ConversationSnapshot:
    """Collect the conversation state the gating decision depends on."""
    webhooks = conversations.list_webhooks(event.chat_service_sid, event.conversation_sid)
    has_handoff = any(entry.get("target") == HANDOFF_WEBHOOK_TARGET for entry in webhooks)
    identity = derive_identity(event.author)

    if has_handoff:
        # decision is already made, skip the participant lookup
        return ConversationSnapshot(participant_count=0, has_handoff_webhook=True, author_identity=identity)

    participants = conversations.list_participants(event.chat_service_sid, event.conversation_sid)
    return ConversationSnapshot(
        participant_count=len(participants),
        has_handoff_webhook=False,
        author_identity=identity,
    )


def should_forward(snapshot: ConversationSnapshot) -> bool:
    if snapshot.has_handoff_webhook:
        return False
    if snapshot.participant_count > 1:
        return False
    return True


def _write_typing_flag(
    conversations: ConversationService,
    service_sid: str,
    conversation_sid: str,
    attributes: Optional[dict[str, Any]],
    is_typing: bool,
) -> bool:
    if attributes is None:
        # unknown current attributes; writing would overwrite them
        logger.warning(
            "Skipping typing flag update, attributes unavailable",
            extra={"context": {"conversation_sid": conversation_sid, "is_typing": is_typing}},
        )
        return False

    merged = {**attributes, TYPING_ATTRIBUTE: is_typing}
    try:
        conversations.update_attributes(service_sid, conversation_sid, json.dumps(merged))
    except ConversationServiceError as e:
        logger.error(
            f"Failed to update typing flag: {e}",
            extra={"context": {"conversation_sid": conversation_sid, "is_typing": is_typing}},
        )
        return False
    return True


def mark_typing(
    conversations: ConversationService,
    service_sid: str,
    conversation_sid: str,
    attributes: Optional[dict[str, Any]],
) -> bool:
    """Flag the conversation as awaiting the assistant. Best effort."""
    return _write_typing_flag(conversations, service_sid, conversation_sid, attributes, True)


def clear_typing(
    conversations: ConversationService,
    service_sid: str,
    conversation_sid: str,
    attributes: Optional[dict[str, Any]],
) -> bool:
    return _write_typing_flag(conversations, service_sid, conversation_sid, attributes, False)
