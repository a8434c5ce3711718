"""Configuration management for the Drive relay."""

from pydantic_settings import BaseSettings, SettingsConfigDict

MIB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    ENV: str = "local"
    SERVICE_NAME: str = "drive-relay"
    SERVICE_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Service account used to mint bearer tokens
    GOOGLE_CLIENT_EMAIL: str = ""
    GOOGLE_PRIVATE_KEY: str = ""  # May be stored with literal "\n" sequences
    GOOGLE_PRIVATE_KEY_ID: str = ""
    GOOGLE_TOKEN_URI: str = "https://oauth2.googleapis.com/token"
    DRIVE_SCOPE: str = "https://www.googleapis.com/auth/drive.file"
    TOKEN_REFRESH_MARGIN_SECONDS: int = 60

    # Drive destination
    DRIVE_API_BASE_URL: str = "https://www.googleapis.com"
    DRIVE_FOLDER_ID: str = ""  # Optional parent folder
    DRIVE_SUPPORTS_ALL_DRIVES: bool = True

    # Chunk constraints (intermediary request ceiling is 100 MiB)
    MAX_CHUNK_MB: int = 100
    MIN_CHUNK_MB: int = 1
    DEFAULT_CHUNK_MB: int = 10

    # Applies to every upstream call: session open, chunk PUT, metadata GET, proxy
    UPSTREAM_TIMEOUT_SECONDS: int = 300

    # Post-upload metadata lookup
    METADATA_MAX_ATTEMPTS: int = 5
    METADATA_INITIAL_BACKOFF_SECONDS: float = 1.0

    @property
    def private_key(self) -> str:
        """Private key with literal "\\n" sequences turned into newlines."""
        if "\\n" in self.GOOGLE_PRIVATE_KEY:
            return self.GOOGLE_PRIVATE_KEY.replace("\\n", "\n")
        return self.GOOGLE_PRIVATE_KEY

    @property
    def drive_upload_url(self) -> str:
        """Resumable upload endpoint."""
        return f"{self.DRIVE_API_BASE_URL.rstrip('/')}/upload/drive/v3/files"

    @property
    def drive_files_url(self) -> str:
        """Metadata endpoint."""
        return f"{self.DRIVE_API_BASE_URL.rstrip('/')}/drive/v3/files"

    @property
    def max_chunk_bytes(self) -> int:
        """Convert MAX_CHUNK_MB to bytes."""
        return self.MAX_CHUNK_MB * MIB

    @property
    def min_chunk_bytes(self) -> int:
        """Convert MIN_CHUNK_MB to bytes."""
        return self.MIN_CHUNK_MB * MIB

    @property
    def default_chunk_bytes(self) -> int:
        """Convert DEFAULT_CHUNK_MB to bytes."""
        return self.DEFAULT_CHUNK_MB * MIB


# Singleton settings instance
settings = Settings()
