"""Custom exceptions for the Drive relay."""

from typing import Optional


class RelayError(Exception):
    """Base exception for the Drive relay."""
    pass


class CredentialError(RelayError):
    """Exception raised when a bearer token cannot be obtained."""
    pass


class SessionInitError(RelayError):
    """Exception raised when a resumable session cannot be opened.

    Fatal for the transfer and never retried.
    """
    pass


class ChunkTooLarge(RelayError):
    """Exception raised when a chunk exceeds the transport ceiling.

    Raised before any network call is made.
    """

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class ChunkRejected(RelayError):
    """Exception raised when the upstream rejects a chunk."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        chunk_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.chunk_index = chunk_index


class TransportError(RelayError):
    """Exception raised when a network call fails mid-flight."""

    def __init__(self, message: str, chunk_index: Optional[int] = None):
        super().__init__(message)
        self.chunk_index = chunk_index


class MetadataLookupError(RelayError):
    """Exception raised when file metadata cannot be fetched.

    Non-fatal: callers retry and then fall back to a placeholder record.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProxyError(RelayError):
    """Exception raised when a proxied request cannot be forwarded."""
    pass
