"""Relay client that talks to the relay's HTTP API, as a browser would."""

import logging
from typing import Callable, Optional

import httpx
from pydantic import ValidationError

from driverelay.client.base import RelayClient
from driverelay.core.config import settings
from driverelay.core.exceptions import (
    ChunkTooLarge,
    MetadataLookupError,
    RelayError,
    SessionInitError,
    TransportError,
)
from driverelay.drive.upstream import safe_text
from driverelay.models.upload import (
    ChunkDescriptor,
    ChunkOutcome,
    FileRecord,
    UploadIntent,
    UploadSession,
)

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    """The ``error`` field of a relay error body, else the raw text."""
    try:
        body = response.json()
    except ValueError:
        return safe_text(response)
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return safe_text(response)


class HttpRelayClient(RelayClient):
    """Drives the relay endpoints over HTTP."""

    def __init__(
        self,
        base_url: str,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        max_chunk_bytes: Optional[int] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client_factory = client_factory or (
            lambda: httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
        )
        self.max_chunk_bytes = max_chunk_bytes or settings.max_chunk_bytes

    async def open_session(self, intent: UploadIntent) -> UploadSession:
        payload = {
            "filename": intent.name,
            "mimeType": intent.mime_type,
            "size": intent.total_size,
        }
        try:
            async with self._client_factory() as client:
                response = await client.post(f"{self.base_url}/api/upload/session", json=payload)
        except httpx.HTTPError as e:
            raise SessionInitError(f"Failed to initialize upload: {e}") from e

        if not response.is_success:
            raise SessionInitError(_error_message(response))

        try:
            body = response.json()
        except ValueError as e:
            raise SessionInitError(f"Unparseable session response: {safe_text(response)}") from e
        if not isinstance(body, dict):
            raise SessionInitError(f"Unexpected session response: {safe_text(response)}")
        if not body.get("ok") or not body.get("sessionUrl"):
            raise SessionInitError(body.get("error") or "Failed to initialize upload")

        return UploadSession(
            session_handle=body["sessionUrl"],
            total_size=body.get("size", intent.total_size),
            mime_type=body.get("mimeType", intent.mime_type),
            name=body.get("filename", intent.name),
            file_id=body.get("fileId"),
        )

    async def upload_chunk(self, desc: ChunkDescriptor) -> ChunkOutcome:
        if len(desc.payload) > self.max_chunk_bytes:
            raise ChunkTooLarge(
                f"Chunk of {len(desc.payload)} bytes exceeds the {self.max_chunk_bytes} byte limit"
            )

        headers = {
            "Content-Type": "application/octet-stream",
            "X-Session-Url": desc.session_handle,
            "X-Chunk-Start": str(desc.range_start),
            "X-Chunk-End": str(desc.range_end),
            "X-Total-Size": str(desc.total_size),
            "X-Is-Last-Chunk": "true" if desc.is_last else "false",
        }

        try:
            async with self._client_factory() as client:
                response = await client.post(
                    f"{self.base_url}/api/upload/chunk", content=desc.payload, headers=headers
                )
        except httpx.HTTPError as e:
            raise TransportError(str(e) or e.__class__.__name__) from e

        if response.status_code == 413:
            raise ChunkTooLarge(_error_message(response))

        if not response.is_success:
            upstream_status = None
            try:
                upstream_status = response.json().get("upstreamStatus")
            except (ValueError, AttributeError):
                pass
            return ChunkOutcome.failed(upstream_status or response.status_code, _error_message(response))

        try:
            body = response.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            # e.g. an HTML page from a gateway in front of the relay
            return ChunkOutcome.failed(response.status_code, f"Unexpected relay response: {safe_text(response)}")

        if body.get("status") == "continue":
            return ChunkOutcome.resume_incomplete()
        if body.get("status") == "complete":
            record = None
            if body.get("fileData"):
                try:
                    record = FileRecord.model_validate(body["fileData"])
                except ValidationError:
                    logger.warning("Relay returned unparseable file data")
            return ChunkOutcome.completed(record)

        return ChunkOutcome.failed(response.status_code, f"Unexpected relay response: {safe_text(response)}")

    async def get_file(self, file_id: str) -> FileRecord:
        try:
            async with self._client_factory() as client:
                response = await client.get(
                    f"{self.base_url}/api/file-details", params={"fileId": file_id}
                )
        except httpx.HTTPError as e:
            raise MetadataLookupError(f"Failed to get file details: {e}") from e

        if not response.is_success:
            raise MetadataLookupError(_error_message(response), status_code=response.status_code)

        try:
            body = response.json()
            if not body.get("ok") or not body.get("file"):
                raise MetadataLookupError("File details missing from response")
            return FileRecord.model_validate(body["file"])
        except (ValueError, ValidationError) as e:
            raise MetadataLookupError(f"Unparseable file details: {e}") from e

    async def cancel(self, session: UploadSession) -> None:
        try:
            async with self._client_factory() as client:
                response = await client.post(
                    f"{self.base_url}/api/upload/cancel",
                    json={"sessionUrl": session.session_handle},
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Session cancel failed: {e}") from e

        if not response.is_success:
            raise RelayError(_error_message(response))
