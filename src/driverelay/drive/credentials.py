"""Bearer token acquisition for the Drive API.

Tokens are minted from a service account (signed JWT assertion exchanged at
the OAuth2 token endpoint) and cached until shortly before they expire, so a
transfer of many chunks performs a single token exchange.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from google.auth.exceptions import GoogleAuthError
from google.auth.transport import requests as auth_requests
from google.oauth2 import service_account

from driverelay.core.config import settings
from driverelay.core.exceptions import CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    """Bearer token and its (timezone-aware, UTC) expiry."""

    token: str
    expiry: Optional[datetime]


class ServiceAccountTokenSource:
    """Exchanges a service-account assertion for a fresh bearer token."""

    def __init__(
        self,
        client_email: Optional[str] = None,
        private_key: Optional[str] = None,
        private_key_id: Optional[str] = None,
        token_uri: Optional[str] = None,
        scope: Optional[str] = None,
    ):
        self.client_email = client_email if client_email is not None else settings.GOOGLE_CLIENT_EMAIL
        self.private_key = private_key if private_key is not None else settings.private_key
        self.private_key_id = private_key_id if private_key_id is not None else settings.GOOGLE_PRIVATE_KEY_ID
        self.token_uri = token_uri or settings.GOOGLE_TOKEN_URI
        self.scope = scope or settings.DRIVE_SCOPE

    def _build_credentials(self) -> service_account.Credentials:
        if not self.client_email or not self.private_key:
            raise CredentialError("Service account credentials are not configured")

        info = {
            "type": "service_account",
            "client_email": self.client_email,
            "private_key": self.private_key,
            "token_uri": self.token_uri,
        }
        # An empty kid would be sent verbatim in the JWT header
        if self.private_key_id:
            info["private_key_id"] = self.private_key_id

        return service_account.Credentials.from_service_account_info(
            info, scopes=[self.scope]
        )

    def _refresh(self) -> AccessToken:
        credentials = self._build_credentials()
        credentials.refresh(auth_requests.Request())

        expiry = credentials.expiry
        # google-auth reports naive UTC datetimes
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return AccessToken(token=credentials.token, expiry=expiry)

    async def fetch(self) -> AccessToken:
        """Mint a new token.

        Raises:
            CredentialError: If credentials are missing or the exchange fails
        """
        try:
            # google-auth performs the exchange with blocking I/O
            token = await asyncio.to_thread(self._refresh)
        except CredentialError:
            raise
        except (GoogleAuthError, ValueError) as e:
            logger.error(
                "Token exchange failed",
                extra={"client_email": self.client_email, "error": str(e)},
            )
            raise CredentialError(f"Token exchange failed: {e}") from e

        logger.info(
            "Obtained Drive access token",
            extra={"client_email": self.client_email, "expiry": token.expiry},
        )
        return token


class CachedTokenProvider:
    """Caches a token from a source and refreshes it only when stale.

    A token is stale when it is missing, has no known expiry, or expires
    within ``refresh_margin_seconds``. Concurrent callers share one refresh.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[AccessToken]],
        refresh_margin_seconds: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._fetch = fetch
        margin = (
            refresh_margin_seconds
            if refresh_margin_seconds is not None
            else settings.TOKEN_REFRESH_MARGIN_SECONDS
        )
        self._margin = timedelta(seconds=margin)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, token: Optional[AccessToken]) -> bool:
        if token is None or token.expiry is None:
            return False
        return token.expiry - self._margin > self._clock()

    async def get_token(self) -> AccessToken:
        """Return a valid token, refreshing the cache if needed."""
        if self._is_fresh(self._token):
            return self._token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if not self._is_fresh(self._token):
                self._token = await self._fetch()
            return self._token

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after the upstream answered 401."""
        self._token = None

    async def authorization_header(self) -> dict[str, str]:
        token = await self.get_token()
        return {"Authorization": f"Bearer {token.token}"}
