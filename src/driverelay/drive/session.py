"""Resumable session initialization against the Drive upload endpoint."""

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

import httpx

from driverelay.core.config import settings
from driverelay.core.exceptions import CredentialError, SessionInitError
from driverelay.drive.credentials import CachedTokenProvider
from driverelay.drive.upstream import (
    FILE_FIELDS,
    ClientFactory,
    default_client_factory,
    safe_text,
)
from driverelay.models.upload import DEFAULT_MIME_TYPE, UploadIntent, UploadSession

logger = logging.getLogger(__name__)

_DRIVE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


class SessionInitializer:
    """Opens resumable upload sessions."""

    def __init__(
        self,
        token_provider: CachedTokenProvider,
        client_factory: Optional[ClientFactory] = None,
        folder_id: Optional[str] = None,
        supports_all_drives: Optional[bool] = None,
    ):
        self.token_provider = token_provider
        self._client_factory = client_factory or default_client_factory
        self.folder_id = folder_id if folder_id is not None else settings.DRIVE_FOLDER_ID
        self.supports_all_drives = (
            supports_all_drives
            if supports_all_drives is not None
            else settings.DRIVE_SUPPORTS_ALL_DRIVES
        )

    async def open(self, intent: UploadIntent) -> UploadSession:
        """Ask Drive for a resumable session for the given file.

        Args:
            intent: File name, MIME type and total size

        Returns:
            UploadSession carrying the session handle from the Location header

        Raises:
            SessionInitError: If the intent is incomplete, the call fails, or no
                Location header comes back
        """
        if not intent.name or not intent.total_size:
            raise SessionInitError("Missing filename or size")

        mime_type = intent.mime_type or DEFAULT_MIME_TYPE

        metadata: dict = {"name": intent.name}
        if self.folder_id:
            metadata["parents"] = [self.folder_id]

        params = {"uploadType": "resumable", "fields": FILE_FIELDS}
        if self.supports_all_drives:
            params["supportsAllDrives"] = "true"

        try:
            auth = await self.token_provider.authorization_header()
        except CredentialError as e:
            raise SessionInitError(str(e)) from e

        headers = {
            **auth,
            "Content-Type": "application/json; charset=UTF-8",
            "X-Upload-Content-Type": mime_type,
            "X-Upload-Content-Length": str(intent.total_size),
        }

        try:
            async with self._client_factory() as client:
                response = await client.post(
                    settings.drive_upload_url,
                    params=params,
                    headers=headers,
                    json=metadata,
                )
        except httpx.HTTPError as e:
            logger.error(
                "Resumable session request failed",
                extra={"file_name": intent.name, "error": str(e)},
            )
            raise SessionInitError(f"Failed to start resumable session: {e}") from e

        if not response.is_success:
            if response.status_code == 401:
                self.token_provider.invalidate()
            text = safe_text(response)
            logger.warning(
                "Drive refused resumable session",
                extra={"file_name": intent.name, "status_code": response.status_code},
            )
            raise SessionInitError(
                f"Failed to start resumable session ({response.status_code}): {text}"
            )

        location = response.headers.get("Location")
        if not location:
            raise SessionInitError("Upstream did not return resumable session Location header")

        logger.info(
            "Resumable session opened",
            extra={
                "file_name": intent.name,
                "size_bytes": intent.total_size,
                "content_type": mime_type,
                "upload_id": upload_id_from_session_url(location),
            },
        )

        return UploadSession(
            session_handle=location,
            total_size=intent.total_size,
            mime_type=mime_type,
            name=intent.name,
            file_id=extract_file_id_from_session_url(location),
        )


def extract_file_id_from_session_url(session_url: str) -> Optional[str]:
    """Best-effort Drive file id from a session URL.

    Session URLs come in two shapes:
    .../upload/drive/v3/files/FILE_ID?uploadType=resumable&upload_id=...
    .../upload/drive/v3/files?uploadType=resumable&upload_id=...
    """
    try:
        parsed = urlparse(session_url)
    except ValueError:
        return None

    parts = [part for part in parsed.path.split("/") if part]
    if "files" in parts:
        index = parts.index("files")
        if index + 1 < len(parts):
            candidate = parts[index + 1]
            if len(candidate) > 10 and _DRIVE_ID_PATTERN.match(candidate):
                return candidate

    query = parse_qs(parsed.query)
    for key in ("fileId", "file_id"):
        if query.get(key):
            return query[key][0]

    return None


def upload_id_from_session_url(session_url: str) -> Optional[str]:
    """The upload_id query parameter, used to correlate log lines."""
    try:
        values = parse_qs(urlparse(session_url).query).get("upload_id")
    except ValueError:
        return None
    return values[0] if values else None


def is_session_url_allowed(session_url: str) -> bool:
    """Whether a client-supplied session handle targets the Drive upload endpoint.

    Bearer tokens are only ever attached to URLs that pass this check.
    """
    try:
        candidate = urlparse(session_url)
        expected = urlparse(settings.drive_upload_url)
    except ValueError:
        return False

    return (
        candidate.scheme == expected.scheme
        and candidate.netloc == expected.netloc
        and (candidate.path == expected.path or candidate.path.startswith(expected.path.rstrip("/") + "/"))
    )
