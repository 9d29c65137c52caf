"""OAuth2 session engine with token caching, refresh and browser authorization."""

from __future__ import annotations

import logging
import time
import webbrowser
from collections.abc import Callable
from enum import Enum, auto

from mail_digest.config.settings import MailDigestSettings
from mail_digest.core.exceptions import AuthenticationError, AuthorizationTimeoutError
from mail_digest.core.imap_client import MailSession
from mail_digest.core.listener import AuthorizationListener
from mail_digest.core.models import Account, TokenSet
from mail_digest.core.oauth import OAuth2Client, TokenEndpoint
from mail_digest.storage.token_store import TokenStore

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Where the last ``get_token`` call ended up."""

    NO_TOKEN = auto()
    TOKEN_VALID = auto()
    TOKEN_EXPIRED = auto()
    AUTHORIZING = auto()
    FAILED = auto()


def _print_authorization_url(url: str) -> None:
    print(f"\nOpen this URL in a browser to authorize access:\n\n  {url}\n", flush=True)


def _open_browser(url: str) -> bool:
    return webbrowser.open(url, new=2)


class OAuth2SessionEngine:
    """Hands out usable access tokens per account address.

    Token resolution, evaluated on every ``get_token`` call:

    - stored token valid for more than ``expiry_skew`` seconds: reuse it
    - expired with a refresh token: refresh once, falling back to authorization
    - otherwise: run the full browser authorization flow

    Every newly obtained token is written back to the ``TokenStore``.
    """

    def __init__(
        self,
        token_store: TokenStore,
        endpoint: TokenEndpoint,
        redirect_uri: str,
        *,
        authorization_timeout: float = 120.0,
        expiry_skew: int = 60,
        listener_factory: Callable[[], AuthorizationListener] | None = None,
        browser_opener: Callable[[str], bool] = _open_browser,
        show_url: Callable[[str], None] = _print_authorization_url,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._token_store = token_store
        self._endpoint = endpoint
        self._redirect_uri = redirect_uri
        self._authorization_timeout = authorization_timeout
        self._expiry_skew = expiry_skew
        self._listener_factory = listener_factory or (
            lambda: AuthorizationListener.from_redirect_uri(redirect_uri, authorization_timeout)
        )
        self._browser_opener = browser_opener
        self._show_url = show_url
        self._clock = clock
        self.state = SessionState.NO_TOKEN

    @classmethod
    def from_settings(cls, settings: MailDigestSettings) -> OAuth2SessionEngine:
        """Build an engine from settings.

        Raises:
            ConfigurationError: If no OAuth2 client registration is available.
        """
        endpoint = OAuth2Client.from_client_secrets_file(
            settings.client_secrets_path, settings.oauth_scope, settings.redirect_uri
        )
        return cls(
            TokenStore(settings.token_dir),
            endpoint,
            settings.redirect_uri,
            authorization_timeout=settings.authorization_timeout_seconds,
            expiry_skew=settings.token_expiry_skew_seconds,
        )

    def get_token(self, address: str) -> TokenSet:
        """Return a token for ``address`` that is valid beyond the expiry skew.

        Raises:
            AuthenticationError: If no token could be obtained.
        """
        token = self._token_store.load(address)
        if token is None:
            self.state = SessionState.NO_TOKEN
            logger.info("No cached token for %s", address)
            return self.authorize(address)

        if token.is_valid(self._clock(), self._expiry_skew):
            self.state = SessionState.TOKEN_VALID
            logger.debug("Reusing cached token for %s", address)
            return token

        self.state = SessionState.TOKEN_EXPIRED
        if token.refresh_token:
            try:
                refreshed = self._endpoint.refresh(token)
            except AuthenticationError as e:
                logger.warning("Token refresh failed for %s, re-authorizing: %s", address, e)
            else:
                self._token_store.save(address, refreshed)
                self.state = SessionState.TOKEN_VALID
                logger.info("Refreshed token for %s", address)
                return refreshed
        else:
            logger.info("Token for %s expired and has no refresh token", address)

        return self.authorize(address)

    def authorize(self, address: str) -> TokenSet:
        """Run the browser authorization flow and cache the resulting token.

        Raises:
            AuthorizationTimeoutError: If no code arrives before the timeout.
            AuthenticationError: If the code exchange fails.
        """
        self.state = SessionState.AUTHORIZING
        try:
            url = self._endpoint.authorization_url()
            listener = self._listener_factory()
            with listener:
                self._launch_browser(url)
                self._show_url(url)
                code = listener.wait_for_code()

            if code is None:
                raise AuthorizationTimeoutError(
                    f"No authorization code received for {address} "
                    f"within {self._authorization_timeout:.0f}s"
                )
            token = self._endpoint.exchange_code(code)
        except AuthenticationError:
            self.state = SessionState.FAILED
            raise
        except OSError as e:
            self.state = SessionState.FAILED
            raise AuthenticationError(f"Authorization listener failed: {e}") from e

        self._token_store.save(address, token)
        self.state = SessionState.TOKEN_VALID
        logger.info("Authorization successful for %s", address)
        return token

    def _launch_browser(self, url: str) -> None:
        try:
            if not self._browser_opener(url):
                logger.info("No browser available; open the URL manually")
        except Exception as e:
            logger.warning("Could not launch browser: %s", e)


def open_session(
    account: Account,
    folder: str,
    *,
    session_engine: OAuth2SessionEngine | None = None,
    readonly: bool = True,
    timeout: float | None = None,
) -> MailSession:
    """Log in to ``account`` by password or XOAUTH2 and select ``folder``.

    Raises:
        AuthenticationError: If credentials are missing or rejected.
        FetchError: On connection or folder errors.
    """
    if account.uses_oauth2:
        if session_engine is None:
            raise AuthenticationError(f"{account.name} uses OAuth2 but no session engine is set")
        token = session_engine.get_token(account.address)
        return MailSession.connect(
            account.host,
            account.address,
            folder,
            access_token=token.access_token,
            port=account.port,
            readonly=readonly,
            timeout=timeout,
        )
    return MailSession.connect(
        account.host,
        account.address,
        folder,
        password=account.password,
        port=account.port,
        readonly=readonly,
        timeout=timeout,
    )
