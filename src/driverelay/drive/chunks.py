"""Chunk relay for Drive resumable uploads.

Each chunk is written to the session URI with a ``Content-Range`` header.
Drive answers 308 (Resume Incomplete) while it expects more bytes, and 200
or 201 with the file metadata once the last byte has been committed.
"""

import logging
import re
from typing import Optional

import httpx
from pydantic import ValidationError

from driverelay.core.config import settings
from driverelay.core.exceptions import (
    ChunkRejected,
    ChunkTooLarge,
    RelayError,
    TransportError,
)
from driverelay.drive.credentials import CachedTokenProvider
from driverelay.drive.upstream import NO_BODY, ClientFactory, default_client_factory, safe_text
from driverelay.models.upload import ChunkDescriptor, ChunkOutcome, FileRecord

logger = logging.getLogger(__name__)

RESUME_INCOMPLETE = 308
FINALIZED = (200, 201)
# Drive's answer to a successful session DELETE
CLIENT_CLOSED_REQUEST = 499

_RANGE_PATTERN = re.compile(r"^bytes=(\d+)-(\d+)$")


def content_range(start: int, end: int, total: int) -> str:
    """Content-Range value for an inclusive byte range."""
    return f"bytes {start}-{end}/{total}"


def interpret_chunk_response(status_code: int, body: str) -> ChunkOutcome:
    """Map an upstream status and body to a chunk outcome.

    A finalized upload whose metadata echo cannot be parsed is still a
    completed upload; the outcome then carries no file record.
    """
    if status_code == RESUME_INCOMPLETE:
        return ChunkOutcome.resume_incomplete()

    if status_code in FINALIZED:
        try:
            record = FileRecord.model_validate_json(body)
        except (ValidationError, ValueError):
            logger.warning(
                "Could not parse finalize response metadata",
                extra={"status_code": status_code},
            )
            record = None
        return ChunkOutcome.completed(record)

    return ChunkOutcome.failed(status_code, body or NO_BODY)


class ChunkRelay:
    """Forwards single chunks to a resumable session."""

    def __init__(
        self,
        token_provider: CachedTokenProvider,
        client_factory: Optional[ClientFactory] = None,
        max_chunk_bytes: Optional[int] = None,
    ):
        self.token_provider = token_provider
        self._client_factory = client_factory or default_client_factory
        self.max_chunk_bytes = max_chunk_bytes or settings.max_chunk_bytes

    async def upload_chunk(self, desc: ChunkDescriptor) -> ChunkOutcome:
        """Write one chunk to the session.

        No retry happens here; a failed chunk is reported to the caller.

        Raises:
            ChunkTooLarge: If the payload exceeds the transport ceiling. No
                network call is made in that case.
            TransportError: If the PUT itself fails
        """
        payload_size = len(desc.payload)
        if payload_size > self.max_chunk_bytes:
            raise ChunkTooLarge(
                f"Chunk of {payload_size} bytes exceeds the {self.max_chunk_bytes} byte limit"
            )

        headers = {
            **await self.token_provider.authorization_header(),
            "Content-Length": str(payload_size),
            "Content-Range": content_range(desc.range_start, desc.range_end, desc.total_size),
        }

        try:
            async with self._client_factory() as client:
                response = await client.put(
                    desc.session_handle, content=desc.payload, headers=headers
                )
        except httpx.HTTPError as e:
            logger.error(
                "Chunk PUT failed",
                extra={
                    "range_start": desc.range_start,
                    "range_end": desc.range_end,
                    "error": str(e),
                },
            )
            raise TransportError(f"Chunk transfer failed: {e}") from e

        if response.status_code == 401:
            self.token_provider.invalidate()

        outcome = interpret_chunk_response(response.status_code, response.text)

        logger.info(
            "Chunk relayed",
            extra={
                "range_start": desc.range_start,
                "range_end": desc.range_end,
                "total_size": desc.total_size,
                "is_last": desc.is_last,
                "status_code": response.status_code,
                "outcome": outcome.kind.value,
            },
        )
        return outcome

    async def query_offset(self, session_handle: str, total_size: int) -> int:
        """Number of bytes Drive has committed for the session.

        Returns:
            The offset of the next byte to send; ``total_size`` when finalized

        Raises:
            ChunkRejected: If Drive answers with anything but 308/200/201
            TransportError: If the request fails
        """
        headers = {
            **await self.token_provider.authorization_header(),
            "Content-Length": "0",
            "Content-Range": f"bytes */{total_size}",
        }

        try:
            async with self._client_factory() as client:
                response = await client.put(session_handle, content=b"", headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Upload status query failed: {e}") from e

        if response.status_code in FINALIZED:
            return total_size

        if response.status_code != RESUME_INCOMPLETE:
            raise ChunkRejected(
                f"Failed to query upload status ({response.status_code}): {safe_text(response)}",
                status_code=response.status_code,
            )

        # No Range header means nothing has been committed yet
        match = _RANGE_PATTERN.match(response.headers.get("Range", ""))
        return int(match.group(2)) + 1 if match else 0

    async def cancel(self, session_handle: str) -> None:
        """Abandon a session so Drive discards the partial object.

        Raises:
            RelayError: If Drive refuses the cancellation
            TransportError: If the request fails
        """
        headers = await self.token_provider.authorization_header()

        try:
            async with self._client_factory() as client:
                response = await client.delete(session_handle, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"Session cancel failed: {e}") from e

        if response.status_code != CLIENT_CLOSED_REQUEST and not response.is_success:
            raise RelayError(
                f"Failed to cancel upload session ({response.status_code}): {safe_text(response)}"
            )

        logger.info("Upload session cancelled")
