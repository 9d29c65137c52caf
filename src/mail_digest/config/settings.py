"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class MailDigestSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MAIL_DIGEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage locations
    digest_dir: Path = Path("data/digests")
    token_dir: Path = Path("credentials/tokens")
    accounts_path: Path = Path("credentials/accounts.json")

    # OAuth2 client registration
    client_secrets_path: Path = Path("credentials/client_secret.json")
    oauth_scope: str = "https://mail.google.com/"
    redirect_uri: str = "http://localhost:8765/"
    authorization_timeout_seconds: float = 120.0
    token_expiry_skew_seconds: int = 60

    # IMAP settings
    batch_size: int = 200
    imap_timeout_seconds: float = 60.0
    refetch_on_uid_validity_change: bool = False

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create digest and token directories if they don't exist."""
        self.digest_dir.mkdir(parents=True, exist_ok=True)
        self.token_dir.mkdir(parents=True, exist_ok=True)
