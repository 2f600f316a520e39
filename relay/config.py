from typing import Optional

from pydantic_settings import BaseSettings

TWILIO_BASE_DOMAIN = "twilio.com"


class Settings(BaseSettings):
    account_sid: str = ""
    auth_token: str = ""
    bot_id: Optional[str] = None
    domain_name: Optional[str] = None
    twilio_region: Optional[str] = None
    bot_endpoint_url: Optional[str] = None
    http_timeout_seconds: float = 30.0
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"

    def twilio_host(self, product: str) -> str:
        """Host for a Twilio product API, e.g. conversations.ie1.twilio.com."""
        if self.twilio_region:
            return f"{product}.{self.twilio_region}.{TWILIO_BASE_DOMAIN}"
        return f"{product}.{TWILIO_BASE_DOMAIN}"


settings = Settings()


def get_settings() -> Settings:
    return settings
