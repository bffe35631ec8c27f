"""Application settings loaded from the environment and an optional .env file."""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from models.email import MailboxCredentials, MailboxLocation


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    log_level: str = "INFO"

    # Mailbox (IMAP) and submission (SMTP) servers. Defaults target Gmail.
    imap_host: str = "imap.gmail.com"
    imap_port: int = 993
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    mail_folder: str = "INBOX"
    mail_username: str = ""
    app_pwd: SecretStr = Field(default=SecretStr(""))

    # Chat-completion endpoint used for content extraction.
    openai_key: Optional[SecretStr] = None
    openai_model: str = "gpt-3.5-turbo"
    openai_endpoint: str = "https://api.openai.com/v1/chat/completions"
    openai_timeout_seconds: Optional[float] = None

    @property
    def mailbox_location(self) -> MailboxLocation:
        return MailboxLocation(
            host=self.imap_host,
            port=self.imap_port,
            credentials=MailboxCredentials(
                username=self.mail_username,
                password=self.app_pwd.get_secret_value(),
            ),
            folder=self.mail_folder,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
