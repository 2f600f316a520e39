from typing import Optional

from pydantic import AliasChoices, BaseModel, Field


class IncomingConversationEvent(BaseModel):
    """Conversation webhook event (onMessageAdded and friends)."""

    event_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("EventType", "event_type"))
    body: Optional[str] = Field(default=None, validation_alias=AliasChoices("Body", "body"))
    conversation_sid: str = Field(validation_alias=AliasChoices("ConversationSid", "conversation_sid"))
    chat_service_sid: str = Field(validation_alias=AliasChoices("ChatServiceSid", "chat_service_sid"))
    author: str = Field(validation_alias=AliasChoices("Author", "author"))
    assistant_identity: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("AssistantIdentity", "assistant_identity"),
    )
    bot_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("botId", "bot_id"))


class DispatchEnvelope(BaseModel):
    """Body POSTed to the bot endpoint."""

    body: Optional[str] = None
    identity: str
    session_id: str
    webhook: str


class AssistantReply(BaseModel):
    """Reply the assistant delivers to the callback URL."""

    body: str = Field(validation_alias=AliasChoices("body", "Body"))
    session_id: str = Field(validation_alias=AliasChoices("session_id", "SessionId", "sessionId"))
    status: Optional[str] = Field(default=None, validation_alias=AliasChoices("status", "Status"))
    identity: Optional[str] = Field(default=None, validation_alias=AliasChoices("identity", "Identity"))
