"""Upload Driver: sequences a chunked resumable upload end to end.

The driver opens a session, slices the source into contiguous ranges and
sends them strictly one after another. Chunk i+1 is not read until the
outcome of chunk i is known. Any chunk failure abandons the transfer.
"""

import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Awaitable, BinaryIO, Callable, List, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from driverelay.client.base import RelayClient
from driverelay.core.config import settings
from driverelay.core.exceptions import (
    ChunkRejected,
    ChunkTooLarge,
    MetadataLookupError,
    RelayError,
    SessionInitError,
    TransportError,
)
from driverelay.models.upload import (
    DEFAULT_MIME_TYPE,
    FALLBACK_FILE_ID,
    ChunkDescriptor,
    ChunkOutcome,
    FileRecord,
    OutcomeKind,
    UploadIntent,
    UploadProgress,
    UploadSession,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class DriverState(str, Enum):
    """Upload Driver lifecycle."""

    IDLE = "idle"
    SESSION_PENDING = "session_pending"
    CHUNK_IN_FLIGHT = "chunk_in_flight"
    COMPLETE = "complete"
    ABORTED = "aborted"


@dataclass(frozen=True)
class ChunkRange:
    """Inclusive byte range of one chunk."""

    index: int
    start: int
    end: int
    is_last: bool

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def plan_chunks(total_size: int, chunk_size: int) -> List[ChunkRange]:
    """Partition ``[0, total_size)`` into ascending, gap-free chunk ranges.

    >>> [(c.start, c.end) for c in plan_chunks(25, 10)]
    [(0, 9), (10, 19), (20, 24)]
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_size <= 0:
        return []

    total_chunks = -(-total_size // chunk_size)
    ranges = []
    for index in range(total_chunks):
        start = index * chunk_size
        end = min(start + chunk_size, total_size) - 1
        ranges.append(ChunkRange(index=index, start=start, end=end, is_last=index == total_chunks - 1))
    return ranges


def intent_for_path(path: str, chunk_size: Optional[int] = None, mime_type: Optional[str] = None) -> UploadIntent:
    """Build an UploadIntent for a local file."""
    guessed, _ = mimetypes.guess_type(path)
    return UploadIntent(
        name=os.path.basename(path),
        mime_type=mime_type or guessed or DEFAULT_MIME_TYPE,
        total_size=os.path.getsize(path),
        chunk_size=chunk_size or settings.default_chunk_bytes,
    )


def fallback_record(intent: UploadIntent, file_id: Optional[str] = None) -> FileRecord:
    """Placeholder for a byte-complete upload whose metadata is unavailable."""
    return FileRecord(
        id=file_id or FALLBACK_FILE_ID,
        name=intent.name,
        size=intent.total_size,
        mime_type=intent.mime_type,
    )


async def fetch_file_with_retry(
    relay: RelayClient,
    file_id: str,
    fallback: FileRecord,
    max_attempts: Optional[int] = None,
    initial_backoff: Optional[float] = None,
    sleep: Sleep = asyncio.sleep,
) -> FileRecord:
    """Look up file metadata, retrying with exponential backoff.

    Drive can briefly 404 a file right after finalize. The lookup is retried
    up to ``max_attempts`` times, sleeping 1s, 2s, 4s, ... between attempts,
    and the fallback record is returned if every attempt fails.
    """
    max_attempts = max_attempts or settings.METADATA_MAX_ATTEMPTS
    backoff = initial_backoff if initial_backoff is not None else settings.METADATA_INITIAL_BACKOFF_SECONDS

    def log_failed_attempt(retry_state: RetryCallState) -> None:
        logger.warning(
            f"File details lookup failed (attempt {retry_state.attempt_number}/{max_attempts})",
            extra={
                "file_id": file_id,
                "attempt": retry_state.attempt_number,
                "max_attempts": max_attempts,
                "error": str(retry_state.outcome.exception()),
            },
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=backoff, exp_base=2),
        retry=retry_if_exception_type(MetadataLookupError),
        after=log_failed_attempt,
        sleep=sleep,
        reraise=True,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await relay.get_file(file_id)
    except MetadataLookupError:
        logger.warning(
            f"File details unavailable after {max_attempts} attempts, using fallback",
            extra={"file_id": file_id},
        )
    return fallback


def read_slice(source: BinaryIO, start: int, length: int) -> bytes:
    """Read exactly ``length`` bytes at ``start``."""
    source.seek(start)
    data = source.read(length)
    if len(data) != length:
        raise ValueError(
            f"Source ended early: expected {length} bytes at offset {start}, got {len(data)}"
        )
    return data


class UploadDriver:
    """Runs one chunked transfer through a RelayClient.

    An instance drives a single transfer; create a new one per file.
    """

    def __init__(
        self,
        relay: RelayClient,
        resolve_metadata: bool = True,
        abandon_on_abort: bool = False,
        sleep: Sleep = asyncio.sleep,
    ):
        self.relay = relay
        self.resolve_metadata = resolve_metadata
        self.abandon_on_abort = abandon_on_abort
        self._sleep = sleep

        self.state = DriverState.IDLE
        self.session: Optional[UploadSession] = None
        self.progress: Optional[UploadProgress] = None
        self.result: Optional[FileRecord] = None

    async def upload(
        self,
        intent: UploadIntent,
        source: BinaryIO,
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ) -> FileRecord:
        """Run the transfer to completion and return the file record.

        Raises:
            SessionInitError, ChunkTooLarge, ChunkRejected, TransportError:
                The transfer was aborted
        """
        async for progress in self.transfer(intent, source):
            if on_progress is not None:
                on_progress(progress)
        return self.result

    async def transfer(self, intent: UploadIntent, source: BinaryIO) -> AsyncIterator[UploadProgress]:
        """Run the transfer, yielding progress after every chunk.

        ``result`` is set before the final event is yielded.
        """
        if self.state != DriverState.IDLE:
            raise RuntimeError("UploadDriver instances drive a single transfer")

        self.state = DriverState.SESSION_PENDING
        try:
            session = await self.relay.open_session(intent)
        except SessionInitError:
            self.state = DriverState.ABORTED
            raise
        except RelayError as e:
            self.state = DriverState.ABORTED
            raise SessionInitError(str(e)) from e
        except Exception as e:
            self.state = DriverState.ABORTED
            raise SessionInitError(f"Failed to initialize upload: {e}") from e
        except BaseException:
            self.state = DriverState.ABORTED
            raise

        self.session = session
        chunks = plan_chunks(intent.total_size, intent.chunk_size)
        total_chunks = len(chunks)
        bytes_sent = 0

        logger.info(
            "Upload started",
            extra={
                "file_name": intent.name,
                "size_bytes": intent.total_size,
                "chunk_size": intent.chunk_size,
                "total_chunks": total_chunks,
            },
        )

        for chunk in chunks:
            self.state = DriverState.CHUNK_IN_FLIGHT
            try:
                outcome = await self._send_chunk(session, source, chunk)
            except RelayError:
                self.state = DriverState.ABORTED
                await self._abandon(session)
                raise
            except BaseException:
                # Includes cancellation: only the in-flight call is dropped
                self.state = DriverState.ABORTED
                raise

            bytes_sent += chunk.length
            self.progress = UploadProgress(
                bytes_sent=bytes_sent,
                chunk_index=chunk.index,
                total_chunks=total_chunks,
                total_size=intent.total_size,
            )

            if outcome.kind == OutcomeKind.COMPLETE:
                self.result = await self._finish(intent, outcome.file)
                self.state = DriverState.COMPLETE
                logger.info(
                    "Upload completed",
                    extra={"file_name": intent.name, "file_id": self.result.id},
                )

            yield self.progress

    async def _send_chunk(self, session: UploadSession, source: BinaryIO, chunk: ChunkRange) -> ChunkOutcome:
        number = chunk.index + 1
        try:
            payload = read_slice(source, chunk.start, chunk.length)
        except (OSError, ValueError) as e:
            raise TransportError(f"Chunk {number} upload failed: {e}", chunk_index=chunk.index) from e

        desc = ChunkDescriptor(
            session_handle=session.session_handle,
            range_start=chunk.start,
            range_end=chunk.end,
            total_size=session.total_size,
            is_last=chunk.is_last,
            payload=payload,
        )

        try:
            outcome = await self.relay.upload_chunk(desc)
        except ChunkTooLarge as e:
            raise ChunkTooLarge(f"Chunk {number} upload failed: {e}", chunk_index=chunk.index) from e
        except TransportError as e:
            raise TransportError(f"Chunk {number} upload failed: {e}", chunk_index=chunk.index) from e
        except RelayError as e:
            raise ChunkRejected(f"Chunk {number} upload failed: {e}", chunk_index=chunk.index) from e
        except Exception as e:
            raise TransportError(f"Chunk {number} upload failed: {e}", chunk_index=chunk.index) from e

        if outcome.kind == OutcomeKind.FAILED:
            logger.error(
                "Chunk rejected",
                extra={"chunk": number, "status_code": outcome.status_code, "error": outcome.message},
            )
            raise ChunkRejected(
                f"Chunk {number} upload failed: {outcome.message}",
                status_code=outcome.status_code,
                chunk_index=chunk.index,
            )

        # Drive must keep answering 308 until the last byte, and only then finalize
        if outcome.kind == OutcomeKind.CONTINUE and chunk.is_last:
            raise ChunkRejected(
                f"Chunk {number} upload failed: upstream expected more data after the final chunk",
                chunk_index=chunk.index,
            )
        if outcome.kind == OutcomeKind.COMPLETE and not chunk.is_last:
            raise ChunkRejected(
                f"Chunk {number} upload failed: upstream finalized the upload before the final chunk",
                chunk_index=chunk.index,
            )

        return outcome

    async def _finish(self, intent: UploadIntent, record: Optional[FileRecord]) -> FileRecord:
        if record is not None and record.id:
            if not self.resolve_metadata:
                return record
            return await fetch_file_with_retry(self.relay, record.id, fallback=record, sleep=self._sleep)

        # The echo was unusable; the id parsed from the session URL is the next best source
        file_id = self.session.file_id if self.session else None
        if not file_id:
            logger.warning(
                "Upload finalized without usable metadata, using fallback record",
                extra={"file_name": intent.name},
            )
            return fallback_record(intent)

        fallback = fallback_record(intent, file_id)
        if not self.resolve_metadata:
            return fallback
        return await fetch_file_with_retry(self.relay, file_id, fallback=fallback, sleep=self._sleep)

    async def _abandon(self, session: UploadSession) -> None:
        if not self.abandon_on_abort:
            return
        try:
            await self.relay.cancel(session)
        except RelayError as e:
            # The original failure is what the caller needs to see
            logger.warning("Could not cancel abandoned session", extra={"error": str(e)})
