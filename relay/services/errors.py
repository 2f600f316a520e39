from typing import Optional


class RelayError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(RelayError):
    """Required credential or setting is missing."""


class MissingBotIdError(RelayError):
    def __init__(self, message: str = "Missing Bot ID configuration"):
        super().__init__(message)


class MissingTokenError(RelayError):
    def __init__(self, message: str = "Missing token"):
        super().__init__(message)


class DispatchError(RelayError):
    """The bot endpoint rejected the message or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ConversationServiceError(RelayError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
