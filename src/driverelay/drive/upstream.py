"""Shared helpers for calls to the Drive API."""

from typing import Callable

import httpx

from driverelay.core.config import settings

# Metadata fields echoed on finalize and requested on lookup
FILE_FIELDS = "id,name,size,webViewLink,createdTime,modifiedTime,mimeType"

NO_BODY = "<no body>"

ClientFactory = Callable[[], httpx.AsyncClient]


def default_client_factory() -> httpx.AsyncClient:
    """New client with the upstream timeout applied to every call."""
    return httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS)


def safe_text(response: httpx.Response) -> str:
    """Response body text, or a sentinel when there is none."""
    try:
        text = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return NO_BODY
    return text if text else NO_BODY
