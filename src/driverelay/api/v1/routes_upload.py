"""Upload API routes: session open, chunk relay, status, cancel, file details."""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from driverelay.core.exceptions import (
    ChunkTooLarge,
    MetadataLookupError,
    RelayError,
    SessionInitError,
)
from driverelay.core.logging import upload_id_context
from driverelay.drive.chunks import ChunkRelay
from driverelay.drive.factory import (
    get_chunk_relay,
    get_metadata_client,
    get_session_initializer,
)
from driverelay.drive.metadata import MetadataClient
from driverelay.drive.session import (
    SessionInitializer,
    is_session_url_allowed,
    upload_id_from_session_url,
)
from driverelay.models.upload import (
    DEFAULT_MIME_TYPE,
    CancelSessionRequest,
    ChunkDescriptor,
    ChunkUploadResponse,
    CreateSessionRequest,
    CreateSessionResponse,
    ErrorResponse,
    FileDetailsResponse,
    OutcomeKind,
    UploadIntent,
    UploadStatusRequest,
    UploadStatusResponse,
)

router = APIRouter(prefix="/api", tags=["upload"])
logger = logging.getLogger(__name__)


def _check_session_url(session_url: str) -> None:
    if not is_session_url_allowed(session_url):
        raise HTTPException(status_code=400, detail="Invalid session URL")
    upload_id_context.set(upload_id_from_session_url(session_url))


@router.post("/upload/session", response_model=CreateSessionResponse)
async def create_upload_session(
    request: CreateSessionRequest = Body(...),
    initializer: SessionInitializer = Depends(get_session_initializer),
) -> CreateSessionResponse:
    """Open a resumable Drive session for a file of known name, type and size."""
    if not request.filename or not request.size:
        raise HTTPException(status_code=400, detail="Missing filename or size")

    try:
        intent = UploadIntent(
            name=request.filename,
            mime_type=request.mime_type or DEFAULT_MIME_TYPE,
            total_size=request.size,
        )
    except ValidationError:
        raise HTTPException(status_code=400, detail="File size out of range")

    try:
        session = await initializer.open(intent)
    except SessionInitError as e:
        logger.error(
            "Session initialization failed",
            extra={"file_name": intent.name, "size_bytes": intent.total_size, "error": str(e)},
        )
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error during session creation: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    return CreateSessionResponse(
        session_url=session.session_handle,
        file_id=session.file_id,
        filename=session.name,
        mime_type=session.mime_type,
        size=session.total_size,
    )


@router.post(
    "/upload/chunk",
    response_model=ChunkUploadResponse,
    response_model_exclude_none=True,
)
async def upload_chunk(
    request: Request,
    relay: ChunkRelay = Depends(get_chunk_relay),
    session_url: Optional[str] = Header(None, alias="X-Session-Url"),
    chunk_start: Optional[int] = Header(None, alias="X-Chunk-Start"),
    chunk_end: Optional[int] = Header(None, alias="X-Chunk-End"),
    total_size: Optional[int] = Header(None, alias="X-Total-Size"),
    is_last_chunk: bool = Header(False, alias="X-Is-Last-Chunk"),
):
    """Relay one chunk (raw request body) to the session named in the headers."""
    if not session_url or chunk_start is None or chunk_end is None or not total_size:
        raise HTTPException(status_code=400, detail="Missing chunk metadata")
    if chunk_start < 0 or chunk_end < chunk_start or chunk_end >= total_size:
        raise HTTPException(status_code=400, detail="Invalid chunk range")

    _check_session_url(session_url)

    # Reject on the declared length before buffering the body
    declared_length = request.headers.get("content-length")
    if declared_length and declared_length.isdigit() and int(declared_length) > relay.max_chunk_bytes:
        raise HTTPException(status_code=413, detail="Chunk exceeds maximum request size")

    payload = await request.body()
    desc = ChunkDescriptor(
        session_handle=session_url,
        range_start=chunk_start,
        range_end=chunk_end,
        total_size=total_size,
        is_last=is_last_chunk,
        payload=payload,
    )

    try:
        outcome = await relay.upload_chunk(desc)
    except ChunkTooLarge as e:
        raise HTTPException(status_code=413, detail=str(e))
    except RelayError as e:
        logger.error(
            "Chunk relay failed",
            extra={"range_start": chunk_start, "range_end": chunk_end, "error": str(e)},
        )
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.error(f"Unexpected error during chunk relay: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    if outcome.kind == OutcomeKind.FAILED:
        error = ErrorResponse(error=outcome.message, upstream_status=outcome.status_code)
        return JSONResponse(
            status_code=500,
            content=error.model_dump(by_alias=True, exclude_none=True),
        )

    if outcome.kind == OutcomeKind.CONTINUE:
        return ChunkUploadResponse(status="continue")

    return ChunkUploadResponse(status="complete", file_data=outcome.file)


@router.post("/upload/status", response_model=UploadStatusResponse)
async def upload_status(
    request: UploadStatusRequest = Body(...),
    relay: ChunkRelay = Depends(get_chunk_relay),
) -> UploadStatusResponse:
    """Report how many bytes Drive has committed for a session."""
    _check_session_url(request.session_url)

    try:
        next_offset = await relay.query_offset(request.session_url, request.total_size)
    except RelayError as e:
        status_code = getattr(e, "status_code", None)
        logger.warning("Upload status query failed", extra={"status_code": status_code, "error": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    return UploadStatusResponse(
        next_offset=next_offset,
        complete=next_offset >= request.total_size,
    )


@router.post("/upload/cancel")
async def cancel_upload(
    request: CancelSessionRequest = Body(...),
    relay: ChunkRelay = Depends(get_chunk_relay),
) -> dict:
    """Abandon a session so the partial object is discarded upstream."""
    _check_session_url(request.session_url)

    try:
        await relay.cancel(request.session_url)
    except RelayError as e:
        logger.warning("Session cancel failed", extra={"error": str(e)})
        raise HTTPException(status_code=500, detail=str(e))

    return {"ok": True}


@router.get("/file-details", response_model=FileDetailsResponse)
async def file_details(
    file_id: Optional[str] = Query(None, alias="fileId"),
    metadata: MetadataClient = Depends(get_metadata_client),
) -> FileDetailsResponse:
    """Look up Drive metadata for an uploaded file."""
    if not file_id:
        raise HTTPException(status_code=400, detail="File ID is required")

    try:
        record = await metadata.get_file(file_id)
    except MetadataLookupError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return FileDetailsResponse(file=record)
