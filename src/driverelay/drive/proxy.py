"""Byte-transparent forwarding to the Drive API.

Used by the legacy single-request upload path for payloads below the
intermediary's request ceiling.
"""

import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Mapping, Optional, Union

import httpx

from driverelay.core.config import settings
from driverelay.core.exceptions import CredentialError, ProxyError
from driverelay.drive.credentials import CachedTokenProvider
from driverelay.drive.upstream import ClientFactory, default_client_factory

logger = logging.getLogger(__name__)

FORWARDED_REQUEST_HEADERS = (
    "content-type",
    "content-length",
    "x-upload-content-type",
    "x-upload-content-length",
)
FORWARDED_RESPONSE_HEADERS = ("content-type", "content-encoding")
BODYLESS_METHODS = frozenset(["GET", "HEAD", "DELETE", "OPTIONS"])


def build_upstream_url(subpath: str, query: str = "") -> str:
    """Map a proxy subpath and raw query string onto the Drive API base URL."""
    url = f"{settings.DRIVE_API_BASE_URL.rstrip('/')}/{subpath.lstrip('/')}"
    return f"{url}?{query}" if query else url


@dataclass
class ProxiedResponse:
    """An upstream response whose body is still being streamed."""

    response: httpx.Response
    client: httpx.AsyncClient

    @property
    def headers(self) -> dict[str, str]:
        return {
            name: self.response.headers[name]
            for name in FORWARDED_RESPONSE_HEADERS
            if name in self.response.headers
        }

    async def iter_body(self) -> AsyncIterator[bytes]:
        """Yield the raw upstream body, closing the connection however iteration ends."""
        try:
            async for chunk in self.response.aiter_raw():
                yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self.response.aclose()
        await self.client.aclose()


class DriveProxy:
    """Forwards requests to the Drive API with a fresh bearer token."""

    def __init__(
        self,
        token_provider: CachedTokenProvider,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.token_provider = token_provider
        self._client_factory = client_factory or default_client_factory

    async def forward(
        self,
        method: str,
        subpath: str,
        query: str,
        headers: Mapping[str, str],
        body: Union[bytes, AsyncIterable[bytes], None] = None,
    ) -> ProxiedResponse:
        """Send the request upstream and return the streaming response.

        The caller owns the returned response and must ``aclose()`` it.

        Raises:
            ProxyError: If no token can be obtained or the upstream call fails
        """
        if not subpath.strip("/"):
            raise ValueError("Invalid proxy path")

        url = build_upstream_url(subpath, query)

        try:
            forwarded = await self.token_provider.authorization_header()
        except CredentialError as e:
            raise ProxyError(str(e)) from e

        for name in FORWARDED_REQUEST_HEADERS:
            value = headers.get(name)
            if value:
                forwarded[name] = value

        content = None if method.upper() in BODYLESS_METHODS else body

        client = self._client_factory()
        try:
            request = client.build_request(method, url, headers=forwarded, content=content)
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.error(
                "Proxy request failed",
                extra={"method": method, "subpath": subpath, "error": str(e)},
            )
            raise ProxyError(str(e) or e.__class__.__name__) from e

        logger.info(
            "Proxied request",
            extra={"method": method, "subpath": subpath, "status_code": response.status_code},
        )
        return ProxiedResponse(response=response, client=client)
