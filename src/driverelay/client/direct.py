"""Relay client that calls the Drive adapters in-process."""

from driverelay.client.base import RelayClient
from driverelay.drive.chunks import ChunkRelay
from driverelay.drive.metadata import MetadataClient
from driverelay.drive.session import SessionInitializer
from driverelay.models.upload import (
    ChunkDescriptor,
    ChunkOutcome,
    FileRecord,
    UploadIntent,
    UploadSession,
)


class DirectRelayClient(RelayClient):
    """Skips the HTTP hop; useful for server-side and scripted transfers."""

    def __init__(
        self,
        initializer: SessionInitializer,
        relay: ChunkRelay,
        metadata: MetadataClient,
    ):
        self.initializer = initializer
        self.relay = relay
        self.metadata = metadata

    async def open_session(self, intent: UploadIntent) -> UploadSession:
        return await self.initializer.open(intent)

    async def upload_chunk(self, desc: ChunkDescriptor) -> ChunkOutcome:
        return await self.relay.upload_chunk(desc)

    async def get_file(self, file_id: str) -> FileRecord:
        return await self.metadata.get_file(file_id)

    async def cancel(self, session: UploadSession) -> None:
        await self.relay.cancel(session.session_handle)
