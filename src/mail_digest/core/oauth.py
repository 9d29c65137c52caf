"""OAuth2 provider calls: authorization URL, code exchange and token refresh."""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC
from pathlib import Path
from typing import Any, Protocol

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from mail_digest.core.exceptions import AuthenticationError, ConfigurationError
from mail_digest.core.models import TokenSet

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


class TokenEndpoint(Protocol):
    """Provider operations used by the session engine."""

    def authorization_url(self) -> str: ...

    def exchange_code(self, code: str) -> TokenSet: ...

    def refresh(self, token: TokenSet) -> TokenSet: ...


def _expires_at(token: dict[str, Any], now: float) -> int:
    if token.get("expires_at"):
        return int(token["expires_at"])
    return int(now + int(token.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS))


class OAuth2Client:
    """Installed-app OAuth2 client for one provider registration.

    The client secrets file uses the Google ``installed``/``web`` layout
    (``client_id``, ``client_secret``, ``auth_uri``, ``token_uri``), which
    other providers' registrations can be written in as well.
    """

    def __init__(self, client_config: dict[str, Any], scope: str, redirect_uri: str) -> None:
        self._client_config = client_config
        self._settings = next(iter(client_config.values()))
        self._scope = scope
        self._redirect_uri = redirect_uri
        self._flow: Flow | None = None

    @classmethod
    def from_client_secrets_file(cls, path: Path, scope: str, redirect_uri: str) -> OAuth2Client:
        """Load a client registration.

        Raises:
            ConfigurationError: If the file is missing or malformed.
        """
        if not path.exists():
            raise ConfigurationError(
                f"OAuth2 client secrets not found: {path}. "
                "Register an installed application with your mail provider."
            )
        try:
            config = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read client secrets {path}: {e}") from e
        if not isinstance(config, dict) or not ({"installed", "web"} & config.keys()):
            raise ConfigurationError(f"{path} has no 'installed' or 'web' client section")
        section = "installed" if "installed" in config else "web"
        return cls({section: config[section]}, scope, redirect_uri)

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    def authorization_url(self) -> str:
        """Build the consent URL, requesting offline access with forced consent."""
        self._flow = Flow.from_client_config(
            self._client_config, scopes=[self._scope], redirect_uri=self._redirect_uri
        )
        url, _state = self._flow.authorization_url(access_type="offline", prompt="consent")
        return url

    def exchange_code(self, code: str) -> TokenSet:
        """Trade an authorization code for a token set.

        Raises:
            AuthenticationError: If the token endpoint rejects the code.
        """
        if self._flow is None:
            raise AuthenticationError("exchange_code called before authorization_url")
        try:
            token = self._flow.fetch_token(code=code)
        except Exception as e:
            raise AuthenticationError(f"Authorization code exchange failed: {e}") from e
        finally:
            self._flow = None

        return TokenSet(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token"),
            expires_at=_expires_at(token, time.time()),
        )

    def refresh(self, token: TokenSet) -> TokenSet:
        """Refresh an expired token, keeping the old refresh token if none is returned.

        Raises:
            AuthenticationError: If the refresh is rejected.
        """
        if not token.refresh_token:
            raise AuthenticationError("No refresh token available")

        creds = Credentials(
            token=None,
            refresh_token=token.refresh_token,
            token_uri=self._settings["token_uri"],
            client_id=self._settings["client_id"],
            client_secret=self._settings.get("client_secret"),
        )
        try:
            creds.refresh(Request())
        except Exception as e:
            raise AuthenticationError(f"Token refresh failed: {e}") from e

        if creds.expiry is not None:
            expires_at = int(creds.expiry.replace(tzinfo=UTC).timestamp())
        else:
            expires_at = int(time.time()) + DEFAULT_TOKEN_LIFETIME_SECONDS
        return TokenSet(
            access_token=creds.token,
            refresh_token=creds.refresh_token or token.refresh_token,
            expires_at=expires_at,
        )
