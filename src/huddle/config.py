"""Application configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    # Monitoring
    SENTRY_DSN: str = ""

    # Teams platform (rooms, people, memberships, messages, webhooks)
    TEAMS_API_BASE: str = "https://webexapis.com/v1"

    # Guest issuer used to mint the dispatcher's identity
    GUEST_ISSUER_ID: str = ""
    GUEST_ISSUER_SHARED_SECRET: str = ""  # Base64-encoded, as issued by the platform
    GUEST_DISPLAY_NAME: str = "Huddle Dispatcher"
    GUEST_TOKEN_EXPIRE_HOURS: int = 24

    # Notification relay (disposable webhook inbox)
    RELAY_API_BASE: str = "http://api.webhookinbox.com"

    # Telephony (Twilio SIP leg into the space)
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_CALL_FLOW_URL: str = ""  # TwiML bin announcing (and optionally recording) the huddle
    TWILIO_CALLER_ID: str = "HuddleDispatcher"

    # Huddle session
    HUDDLE_TITLE: str = "unnamed space"
    HUDDLE_CONTACTS: str = ""  # Comma-separated contact emails
    WAIT_BEFORE_CHECK_SECONDS: float = 20.0
    WAIT_BEFORE_CLEANUP_SECONDS: float = 20.0
    WELCOME_TEMPLATE: str = "Welcome to the {title} huddle space"
    REMINDER_TEMPLATE: str = "Hey, can you join our call in the {title} space"

    def invited_contacts(self) -> list[str]:
        """Return HUDDLE_CONTACTS as an ordered list, blanks dropped."""
        return [c.strip() for c in self.HUDDLE_CONTACTS.split(",") if c.strip()]


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
