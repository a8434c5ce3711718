"""Drive file metadata lookup."""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from driverelay.core.config import settings
from driverelay.core.exceptions import CredentialError, MetadataLookupError
from driverelay.drive.credentials import CachedTokenProvider
from driverelay.drive.upstream import FILE_FIELDS, ClientFactory, default_client_factory, safe_text
from driverelay.models.upload import FileRecord

logger = logging.getLogger(__name__)


class MetadataClient:
    """Reads file metadata by id."""

    def __init__(
        self,
        token_provider: CachedTokenProvider,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.token_provider = token_provider
        self._client_factory = client_factory or default_client_factory

    async def get_file(self, file_id: str) -> FileRecord:
        """Fetch metadata for a file.

        Raises:
            MetadataLookupError: On any failure; callers may retry
        """
        params = {"fields": FILE_FIELDS, "supportsAllDrives": "true"}

        try:
            headers = await self.token_provider.authorization_header()
            async with self._client_factory() as client:
                response = await client.get(
                    f"{settings.drive_files_url}/{file_id}", params=params, headers=headers
                )
        except CredentialError as e:
            raise MetadataLookupError(str(e)) from e
        except httpx.HTTPError as e:
            raise MetadataLookupError(f"Failed to get file details: {e}") from e

        if not response.is_success:
            if response.status_code == 401:
                self.token_provider.invalidate()
            logger.warning(
                "File metadata lookup failed",
                extra={"file_id": file_id, "status_code": response.status_code},
            )
            raise MetadataLookupError(
                f"Failed to get file details ({response.status_code}): {safe_text(response)}",
                status_code=response.status_code,
            )

        try:
            return FileRecord.model_validate_json(response.text)
        except (ValidationError, ValueError) as e:
            raise MetadataLookupError(f"Unparseable file details: {e}") from e
