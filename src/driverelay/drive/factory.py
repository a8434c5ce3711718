"""Process-wide Drive adapters, wired for FastAPI dependency injection."""

from functools import lru_cache

from driverelay.drive.chunks import ChunkRelay
from driverelay.drive.credentials import CachedTokenProvider, ServiceAccountTokenSource
from driverelay.drive.metadata import MetadataClient
from driverelay.drive.proxy import DriveProxy
from driverelay.drive.session import SessionInitializer


@lru_cache
def get_token_provider() -> CachedTokenProvider:
    """Single token cache shared by every upstream-facing component."""
    return CachedTokenProvider(ServiceAccountTokenSource().fetch)


def get_session_initializer() -> SessionInitializer:
    return SessionInitializer(get_token_provider())


def get_chunk_relay() -> ChunkRelay:
    return ChunkRelay(get_token_provider())


def get_metadata_client() -> MetadataClient:
    return MetadataClient(get_token_provider())


def get_drive_proxy() -> DriveProxy:
    return DriveProxy(get_token_provider())
