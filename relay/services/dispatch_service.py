"""Outbound envelope assembly and delivery to the bot endpoint."""

import base64
from typing import Optional
from urllib.parse import urlencode

import httpx

from relay.config import Settings
from relay.logging_config import get_logger
from relay.schemas.conversation import DispatchEnvelope, IncomingConversationEvent
from relay.services.errors import ConfigurationError, DispatchError
from relay.services.gate_service import derive_identity

logger = get_logger("dispatch_service")

SESSION_PREFIX = "conversations__"
CALLBACK_PATH = "/channels/conversations/response"
DEFAULT_BOT_ENDPOINT_PATH = "/v1/Assistants/{bot_id}/Messages"


def build_session_id(service_sid: str, conversation_sid: str) -> str:
    return f"{SESSION_PREFIX}{service_sid}/{conversation_sid}"


def parse_session_id(session_id: str) -> tuple[str, str]:
    """Split a session key back into (service_sid, conversation_sid)."""
    if not session_id or not session_id.startswith(SESSION_PREFIX):
        raise ValueError(f"Unsupported session id: {session_id!r}")
    service_sid, sep, conversation_sid = session_id[len(SESSION_PREFIX) :].partition("/")
    if not sep or not service_sid or not conversation_sid or "/" in conversation_sid:
        raise ValueError(f"Malformed session id: {session_id!r}")
    return service_sid, conversation_sid


def build_callback_url(domain: str, token: str, assistant_identity: Optional[str] = None) -> str:
    params = {"_token": token}
    if assistant_identity:
        params["_assistantIdentity"] = assistant_identity
    return f"https://{domain}{CALLBACK_PATH}?{urlencode(params)}"


def build_envelope(event: IncomingConversationEvent, token: str, domain: Optional[str]) -> DispatchEnvelope:
    if not domain:
        raise ConfigurationError("DOMAIN_NAME is required to build the callback URL")
    return DispatchEnvelope(
        body=event.body,
        identity=derive_identity(event.author),
        session_id=build_session_id(event.chat_service_sid, event.conversation_sid),
        webhook=build_callback_url(domain, token, event.assistant_identity),
    )


def basic_auth_header(account_sid: str, secret: str) -> str:
    encoded = base64.b64encode(f"{account_sid}:{secret}".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


class BotClient:
    """Sends envelopes to the bot/assistant endpoint."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def endpoint_url(self, bot_id: str) -> str:
        template = self.settings.bot_endpoint_url
        if not template:
            template = f"https://{self.settings.twilio_host('assistants')}{DEFAULT_BOT_ENDPOINT_PATH}"
        return template.format(bot_id=bot_id)

    def _headers(self) -> dict:
        if not self.settings.account_sid or not self.settings.auth_token:
            raise ConfigurationError("No auth token found")
        return {
            "Authorization": basic_auth_header(self.settings.account_sid, self.settings.auth_token),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def send(self, envelope: DispatchEnvelope, bot_id: str) -> None:
        """POST the envelope; raises DispatchError unless the endpoint answers 2xx."""
        url = self.endpoint_url(bot_id)
        headers = self._headers()
        try:
            with httpx.Client(timeout=self.settings.http_timeout_seconds) as client:
                response = client.post(url, json=envelope.model_dump(exclude_none=True), headers=headers)
        except httpx.HTTPError as e:
            raise DispatchError(f"Failed to send request to Bot. {e}") from e

        if not response.is_success:
            raise DispatchError(
                f"Failed to send request to Bot. {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        logger.info("Sent message to Bot", extra={"context": {"bot_id": bot_id, "session_id": envelope.session_id}})
