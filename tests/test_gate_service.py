import pytest

from relay.schemas.conversation import IncomingConversationEvent
from relay.services.errors import ConversationServiceError, MissingBotIdError
from relay.services.gate_service import (
    ConversationSnapshot,
    clear_typing,
    derive_identity,
    load_attributes,
    load_snapshot,
    mark_typing,
    read_attributes,
    resolve_bot_id,
    should_forward,
)
from tests.conftest import FakeConversationService


def make_event(**overrides):
    payload = {
        "EventType": "onMessageAdded",
        "ConversationSid": "CHx",
        "ChatServiceSid": "ISx",
        "Author": "USx",
        "Body": "hi",
    }
    payload.update(overrides)
    return IncomingConversationEvent.model_validate(payload)


class TestDeriveIdentity:
    def test_prefixes_plain_author(self):
        assert derive_identity("abc") == "user_id:abc"

    def test_keeps_qualified_identity(self):
        assert derive_identity("user_id:abc") == "user_id:abc"

    def test_is_idempotent(self):
        assert derive_identity(derive_identity("USx")) == "user_id:USx"

    def test_any_delimiter_counts_as_qualified(self):
        assert derive_identity("whatsapp:+15551234567") == "whatsapp:+15551234567"


class TestShouldForward:
    @pytest.mark.parametrize("participants", [0, 1, 2, 5])
    def test_handoff_webhook_always_skips(self, participants):
        snapshot = ConversationSnapshot(participant_count=participants, has_handoff_webhook=True, author_identity="x")
        assert should_forward(snapshot) is False

    def test_multi_party_skips(self):
        snapshot = ConversationSnapshot(participant_count=2, has_handoff_webhook=False, author_identity="x")
        assert should_forward(snapshot) is False

    @pytest.mark.parametrize("participants", [0, 1])
    def test_one_to_one_forwards(self, participants):
        snapshot = ConversationSnapshot(participant_count=participants, has_handoff_webhook=False, author_identity="x")
        assert should_forward(snapshot) is True


class TestReadAttributes:
    def test_parses_json_object(self):
        conversations = FakeConversationService(attributes='{"botId": "asst_1", "lang": "en"}')
        assert read_attributes(conversations, "ISx", "CHx") == {"botId": "asst_1", "lang": "en"}

    def test_invalid_json_degrades_to_empty(self):
        conversations = FakeConversationService(attributes="{not json")
        assert read_attributes(conversations, "ISx", "CHx") == {}

    def test_non_object_json_degrades_to_empty(self):
        conversations = FakeConversationService(attributes="[1, 2]")
        assert read_attributes(conversations, "ISx", "CHx") == {}

    def test_fetch_failure_degrades_to_empty(self):
        conversations = FakeConversationService(attributes=ConversationServiceError("down", status_code=503))
        assert read_attributes(conversations, "ISx", "CHx") == {}


class TestResolveBotId:
    def test_attribute_claim_wins_for_message_added(self, settings):
        settings.bot_id = "asst_default"
        conversations = FakeConversationService(attributes='{"botId": "asst_1"}')
        event = make_event(botId="asst_event")
        assert resolve_bot_id(settings, conversations, event) == "asst_1"

    def test_attributes_not_consulted_for_other_events(self, settings):
        conversations = FakeConversationService(attributes='{"botId": "asst_1"}')
        event = make_event(EventType="onConversationAdded", botId="asst_event")
        assert resolve_bot_id(settings, conversations, event) == "asst_event"
        assert conversations.fetch_calls == 0

    def test_falls_back_to_event_field(self, settings):
        conversations = FakeConversationService(attributes="{}")
        event = make_event(botId="asst_event")
        assert resolve_bot_id(settings, conversations, event) == "asst_event"

    def test_falls_back_to_configured_default(self, settings):
        settings.bot_id = "asst_default"
        conversations = FakeConversationService(attributes="{}")
        assert resolve_bot_id(settings, conversations, make_event()) == "asst_default"

    def test_non_string_claim_is_ignored(self, settings):
        settings.bot_id = "asst_default"
        conversations = FakeConversationService(attributes='{"botId": 42}')
        assert resolve_bot_id(settings, conversations, make_event()) == "asst_default"

    def test_fetch_failure_falls_through(self, settings):
        settings.bot_id = "asst_default"
        conversations = FakeConversationService(attributes=ConversationServiceError("down"))
        assert resolve_bot_id(settings, conversations, make_event()) == "asst_default"

    def test_no_source_raises(self, settings):
        conversations = FakeConversationService(attributes="{}")
        with pytest.raises(MissingBotIdError):
            resolve_bot_id(settings, conversations, make_event())


class TestLoadSnapshot:
    def test_counts_participants(self):
        conversations = FakeConversationService(participants=[{"sid": "MB1"}, {"sid": "MB2"}])
        snapshot = load_snapshot(conversations, make_event())
        assert snapshot.participant_count == 2
        assert snapshot.has_handoff_webhook is False
        assert snapshot.author_identity == "user_id:USx"

    def test_handoff_webhook_skips_participant_lookup(self):
        conversations = FakeConversationService(webhooks=[{"target": "webhook"}, {"target": "studio"}])
        snapshot = load_snapshot(conversations, make_event())
        assert snapshot.has_handoff_webhook is True
        assert conversations.participant_calls == 0

    def test_other_webhook_targets_are_not_handoff(self):
        conversations = FakeConversationService(webhooks=[{"target": "webhook"}, {"target": "trigger"}])
        snapshot = load_snapshot(conversations, make_event())
        assert snapshot.has_handoff_webhook is False


class TestTypingFlag:
    def test_mark_typing_merges_existing_attributes(self):
        conversations = FakeConversationService()
        assert mark_typing(conversations, "ISx", "CHx", {"botId": "asst_1"}) is True
        assert conversations.updates == [("ISx", "CHx", {"botId": "asst_1", "assistantIsTyping": True})]

    def test_clear_typing(self):
        conversations = FakeConversationService()
        assert clear_typing(conversations, "ISx", "CHx", {"assistantIsTyping": True}) is True
        assert conversations.updates[-1][2] == {"assistantIsTyping": False}

    def test_update_failure_is_reported_not_raised(self):
        conversations = FakeConversationService(fail_updates=True)
        assert mark_typing(conversations, "ISx", "CHx", {}) is False

    def test_unknown_attributes_skip_the_write(self):
        conversations = FakeConversationService()
        assert mark_typing(conversations, "ISx", "CHx", None) is False
        assert clear_typing(conversations, "ISx", "CHx", None) is False
        assert conversations.updates == []


class TestLoadAttributes:
    def test_returns_none_when_unreadable(self):
        conversations = FakeConversationService(attributes=ConversationServiceError("down"))
        assert load_attributes(conversations, "ISx", "CHx") is None

    def test_returns_none_for_non_object(self):
        conversations = FakeConversationService(attributes='"text"')
        assert load_attributes(conversations, "ISx", "CHx") is None

    def test_empty_document_is_empty_mapping(self):
        conversations = FakeConversationService(attributes="")
        assert load_attributes(conversations, "ISx", "CHx") == {}
