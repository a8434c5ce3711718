"""Upload data models."""

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from driverelay.core.config import settings

MAX_TOTAL_SIZE = 5 * 10**12
MIN_CHUNK_SIZE = settings.min_chunk_bytes
MAX_CHUNK_SIZE = settings.max_chunk_bytes
DEFAULT_MIME_TYPE = "application/octet-stream"

# Shown instead of a Drive id when the final chunk's metadata echo was unusable
FALLBACK_FILE_ID = "File ID not available - upload completed successfully"


class FileRecord(BaseModel):
    """Drive file metadata returned once an upload is finalized."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = ""
    name: Optional[str] = None
    size: Optional[int] = Field(None, description="Drive reports size as a decimal string")
    mime_type: Optional[str] = Field(None, alias="mimeType")
    web_view_link: Optional[str] = Field(None, alias="webViewLink")
    created_time: Optional[str] = Field(None, alias="createdTime")
    modified_time: Optional[str] = Field(None, alias="modifiedTime")


class UploadIntent(BaseModel):
    """What the client wants to upload. Immutable once the transfer starts.

    A zero total_size is accepted here so that session open can reject it
    with a user-facing message instead of a validation error.
    """

    model_config = ConfigDict(frozen=True)

    name: str = ""
    mime_type: str = DEFAULT_MIME_TYPE
    total_size: int = Field(..., ge=0, le=MAX_TOTAL_SIZE)
    chunk_size: int = Field(settings.default_chunk_bytes, ge=MIN_CHUNK_SIZE, le=MAX_CHUNK_SIZE)


class UploadSession(BaseModel):
    """An open resumable session. The handle is a capability URL."""

    model_config = ConfigDict(frozen=True)

    session_handle: str
    total_size: int
    mime_type: str
    name: str = ""
    file_id: Optional[str] = None


@dataclass(frozen=True)
class ChunkDescriptor:
    """One byte range of a file, addressed to a session. rangeEnd is inclusive."""

    session_handle: str
    range_start: int
    range_end: int
    total_size: int
    is_last: bool
    payload: bytes

    @property
    def length(self) -> int:
        return self.range_end - self.range_start + 1


class OutcomeKind(str, Enum):
    """Result class of a single chunk relay call."""

    CONTINUE = "continue"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class ChunkOutcome:
    """Tagged result of one relay call.

    - CONTINUE: upstream expects more data
    - COMPLETE: object finalized; ``file`` is None when the metadata echo was unparseable
    - FAILED: upstream rejected the chunk; carries status and message
    """

    kind: OutcomeKind
    file: Optional[FileRecord] = None
    status_code: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def resume_incomplete(cls) -> "ChunkOutcome":
        return cls(kind=OutcomeKind.CONTINUE)

    @classmethod
    def completed(cls, file: Optional[FileRecord]) -> "ChunkOutcome":
        return cls(kind=OutcomeKind.COMPLETE, file=file)

    @classmethod
    def failed(cls, status_code: Optional[int], message: str) -> "ChunkOutcome":
        return cls(kind=OutcomeKind.FAILED, status_code=status_code, message=message)


@dataclass(frozen=True)
class UploadProgress:
    """Progress snapshot emitted after each chunk boundary."""

    bytes_sent: int
    chunk_index: int
    total_chunks: int
    total_size: int

    @property
    def percent(self) -> int:
        """Rounded percentage; only reports 100 once every byte is sent."""
        if self.total_size <= 0:
            return 100
        value = int(self.bytes_sent * 100 / self.total_size + 0.5)
        if self.bytes_sent < self.total_size:
            return min(value, 99)
        return 100

    @property
    def label(self) -> str:
        return f"{self.percent}% (chunk {self.chunk_index + 1}/{self.total_chunks})"


# ---- API envelopes ----


class CreateSessionRequest(BaseModel):
    """Request model for opening a resumable session."""

    model_config = ConfigDict(populate_by_name=True)

    filename: Optional[str] = None
    mime_type: Optional[str] = Field(None, alias="mimeType")
    size: Optional[int] = None


class CreateSessionResponse(BaseModel):
    """Response model for session creation."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    session_url: str = Field(..., alias="sessionUrl")
    file_id: Optional[str] = Field(None, alias="fileId")
    filename: str
    mime_type: str = Field(..., alias="mimeType")
    size: int


class ChunkUploadResponse(BaseModel):
    """Response model for a relayed chunk."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    status: Literal["continue", "complete"]
    file_data: Optional[FileRecord] = Field(None, alias="fileData")


class UploadStatusRequest(BaseModel):
    """Request model for querying a session's committed offset."""

    model_config = ConfigDict(populate_by_name=True)

    session_url: str = Field(..., alias="sessionUrl")
    total_size: int = Field(..., alias="totalSize", gt=0)


class UploadStatusResponse(BaseModel):
    """Response model for a session offset query."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    next_offset: int = Field(..., alias="nextOffset")
    complete: bool


class CancelSessionRequest(BaseModel):
    """Request model for abandoning a session."""

    model_config = ConfigDict(populate_by_name=True)

    session_url: str = Field(..., alias="sessionUrl")


class FileDetailsResponse(BaseModel):
    """Response model for file metadata lookup."""

    ok: bool = True
    file: FileRecord


class ErrorResponse(BaseModel):
    """Error envelope used by every endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    error: str
    upstream_status: Optional[int] = Field(None, alias="upstreamStatus")
