"""Conversation service access (Twilio Conversations REST API)."""

from typing import Any, Optional, Protocol

import httpx

from relay.config import Settings
from relay.logging_config import get_logger
from relay.services.errors import ConfigurationError, ConversationServiceError

logger = get_logger("conversation_client")

PAGE_SIZE = 50


class ConversationService(Protocol):
    """Operations the relay needs from the conversation service."""

    def list_webhooks(self, service_sid: str, conversation_sid: str) -> list[dict[str, Any]]: ...

    def list_participants(self, service_sid: str, conversation_sid: str) -> list[dict[str, Any]]: ...

    def fetch_attributes(self, service_sid: str, conversation_sid: str) -> str: ...

    def update_attributes(self, service_sid: str, conversation_sid: str, attributes: str) -> None: ...

    def create_message(
        self, service_sid: str, conversation_sid: str, body: str, author: Optional[str] = None
    ) -> dict[str, Any]: ...


class TwilioConversationsClient:
    """ConversationService backed by the Twilio Conversations v1 API."""

    def __init__(self, settings: Settings):
        if not settings.account_sid or not settings.auth_token:
            raise ConfigurationError("ACCOUNT_SID and AUTH_TOKEN are required")
        self.base_url = f"https://{settings.twilio_host('conversations')}/v1"
        self._auth = (settings.account_sid, settings.auth_token)
        self._timeout = settings.http_timeout_seconds

    def _conversation_url(self, service_sid: str, conversation_sid: str) -> str:
        return f"{self.base_url}/Services/{service_sid}/Conversations/{conversation_sid}"

    def _request(self, method: str, url: str, data: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        try:
            with httpx.Client(auth=self._auth, timeout=self._timeout) as client:
                response = client.request(method, url, data=data, params=params)
        except httpx.HTTPError as e:
            raise ConversationServiceError(f"Conversation service request failed: {e}") from e

        if response.status_code >= 400:
            raise ConversationServiceError(
                f"Conversation service returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ConversationServiceError(
                f"Conversation service returned invalid JSON: {e}",
                status_code=response.status_code,
            ) from e

    def _list(self, url: str, key: str) -> list[dict[str, Any]]:
        """Collect every page of a list resource."""
        items: list[dict[str, Any]] = []
        next_url: Optional[str] = url
        params: Optional[dict] = {"PageSize": PAGE_SIZE}
        while next_url:
            page = self._request("GET", next_url, params=params)
            items.extend(page.get(key) or [])
            next_url = (page.get("meta") or {}).get("next_page_url")
            # next_page_url already carries the paging query
            params = None
        return items

    def list_webhooks(self, service_sid: str, conversation_sid: str) -> list[dict[str, Any]]:
        return self._list(f"{self._conversation_url(service_sid, conversation_sid)}/Webhooks", "webhooks")

    def list_participants(self, service_sid: str, conversation_sid: str) -> list[dict[str, Any]]:
        return self._list(f"{self._conversation_url(service_sid, conversation_sid)}/Participants", "participants")

    def fetch_attributes(self, service_sid: str, conversation_sid: str) -> str:
        data = self._request("GET", self._conversation_url(service_sid, conversation_sid))
        return data.get("attributes") or "{}"

    def update_attributes(self, service_sid: str, conversation_sid: str, attributes: str) -> None:
        self._request("POST", self._conversation_url(service_sid, conversation_sid), data={"Attributes": attributes})

    def create_message(
        self, service_sid: str, conversation_sid: str, body: str, author: Optional[str] = None
    ) -> dict[str, Any]:
        data = {"Body": body}
        if author:
            data["Author"] = author
        message = self._request("POST", f"{self._conversation_url(service_sid, conversation_sid)}/Messages", data=data)
        logger.info(
            "Posted message to conversation",
            extra={"context": {"conversation_sid": conversation_sid, "message_sid": message.get("sid")}},
        )
        return message
