import json
from typing import Any, Optional

import pytest

from relay.config import Settings
from relay.services.errors import ConversationServiceError

TEST_SECRET = "test-auth-token-0123456789abcdef"
TEST_ACCOUNT_SID = "AC00000000000000000000000000000000"
TEST_DOMAIN = "relay.example.com"


class FakeConversationService:
    """In-memory conversation service recording every write."""

    def __init__(
        self,
        attributes: Any = "{}",
        webhooks: Optional[list] = None,
        participants: Optional[list] = None,
        fail_updates: bool = False,
    ):
        self.attributes = attributes
        self.webhooks = webhooks or []
        self.participants = participants if participants is not None else [{"sid": "MB1"}]
        self.fail_updates = fail_updates
        self.fetch_calls = 0
        self.participant_calls = 0
        self.updates: list[tuple[str, str, dict]] = []
        self.messages: list[dict] = []

    def list_webhooks(self, service_sid, conversation_sid):
        return list(self.webhooks)

    def list_participants(self, service_sid, conversation_sid):
        self.participant_calls += 1
        return list(self.participants)

    def fetch_attributes(self, service_sid, conversation_sid):
        self.fetch_calls += 1
        if isinstance(self.attributes, Exception):
            raise self.attributes
        return self.attributes

    def update_attributes(self, service_sid, conversation_sid, attributes):
        if self.fail_updates:
            raise ConversationServiceError("Conversation service returned 500: boom", status_code=500)
        self.updates.append((service_sid, conversation_sid, json.loads(attributes)))
        self.attributes = attributes

    def create_message(self, service_sid, conversation_sid, body, author=None):
        message = {
            "sid": f"IM{len(self.messages):032d}",
            "service_sid": service_sid,
            "conversation_sid": conversation_sid,
            "body": body,
            "author": author,
        }
        self.messages.append(message)
        return message


@pytest.fixture
def settings():
    return Settings(
        account_sid=TEST_ACCOUNT_SID,
        auth_token=TEST_SECRET,
        bot_id=None,
        domain_name=TEST_DOMAIN,
        twilio_region=None,
        bot_endpoint_url=None,
    )


@pytest.fixture
def conversations():
    return FakeConversationService()


@pytest.fixture
def message_added_payload():
    return {
        "EventType": "onMessageAdded",
        "ConversationSid": "CHx",
        "ChatServiceSid": "ISx",
        "Author": "USx",
        "Body": "hi",
    }
