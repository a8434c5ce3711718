"""Abstract relay interface consumed by the Upload Driver."""

from abc import ABC, abstractmethod

from driverelay.models.upload import (
    ChunkDescriptor,
    ChunkOutcome,
    FileRecord,
    UploadIntent,
    UploadSession,
)


class RelayClient(ABC):
    """What the Upload Driver needs from the relay."""

    @abstractmethod
    async def open_session(self, intent: UploadIntent) -> UploadSession:
        """Open a resumable session.

        Raises:
            SessionInitError: If no session could be opened
        """
        pass

    @abstractmethod
    async def upload_chunk(self, desc: ChunkDescriptor) -> ChunkOutcome:
        """Send one chunk.

        Raises:
            ChunkTooLarge: If the chunk exceeds the transport ceiling
            TransportError: If the call fails on the network
        """
        pass

    @abstractmethod
    async def get_file(self, file_id: str) -> FileRecord:
        """Fetch file metadata.

        Raises:
            MetadataLookupError: On any failure
        """
        pass

    @abstractmethod
    async def cancel(self, session: UploadSession) -> None:
        """Abandon a session upstream."""
        pass
