"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List

import httpx
import pytest

from driverelay.drive.credentials import AccessToken, CachedTokenProvider

SESSION_URL = (
    "https://www.googleapis.com/upload/drive/v3/files"
    "?uploadType=resumable&upload_id=ADPycdu-test-upload"
)


class UpstreamRecorder:
    """Fake Drive API: records every request and answers via a handler."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def upstream():
    """Build an UpstreamRecorder from a handler function."""
    return UpstreamRecorder


@pytest.fixture
def token_provider():
    """Token provider that never touches the OAuth2 endpoint."""
    calls = []

    async def fetch():
        calls.append(1)
        return AccessToken(
            token="test-token",
            expiry=datetime.now(timezone.utc) + timedelta(hours=1),
        )

    provider = CachedTokenProvider(fetch, refresh_margin_seconds=60)
    provider.fetch_calls = calls
    return provider


@pytest.fixture
def session_url():
    return SESSION_URL
