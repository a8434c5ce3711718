"""
Drive adapters

Server-side pieces that talk to the Google Drive API: token acquisition,
resumable session opening, chunk relaying, metadata lookup and the
generic proxy.
"""

from driverelay.drive.chunks import ChunkRelay, content_range, interpret_chunk_response
from driverelay.drive.credentials import AccessToken, CachedTokenProvider, ServiceAccountTokenSource
from driverelay.drive.metadata import MetadataClient
from driverelay.drive.proxy import DriveProxy
from driverelay.drive.session import SessionInitializer, extract_file_id_from_session_url

__all__ = [
    "AccessToken",
    "CachedTokenProvider",
    "ServiceAccountTokenSource",
    "SessionInitializer",
    "extract_file_id_from_session_url",
    "ChunkRelay",
    "content_range",
    "interpret_chunk_response",
    "MetadataClient",
    "DriveProxy",
]
