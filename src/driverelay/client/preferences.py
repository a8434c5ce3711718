"""Persisted client preferences, such as the chosen chunk size."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from driverelay.core.config import MIB, settings

CHUNK_SIZE_KEY = "chunk_size_mb"


class PreferenceStore(ABC):
    """Key-value store for client preferences."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value."""
        pass


class InMemoryPreferenceStore(PreferenceStore):
    """In-memory store; preferences last for the process lifetime."""

    def __init__(self):
        self._values: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value


class JsonFilePreferenceStore(PreferenceStore):
    """Preferences kept in a small JSON document on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")


def resolve_chunk_size(store: Optional[PreferenceStore] = None) -> int:
    """Chunk size in bytes from the store, clamped to the allowed range."""
    size_mb = settings.DEFAULT_CHUNK_MB
    if store is not None:
        stored = store.get(CHUNK_SIZE_KEY)
        try:
            size_mb = int(stored) if stored is not None else size_mb
        except (TypeError, ValueError):
            pass

    size_mb = max(settings.MIN_CHUNK_MB, min(settings.MAX_CHUNK_MB, size_mb))
    return size_mb * MIB


def remember_chunk_size(store: PreferenceStore, chunk_size_mb: int) -> None:
    """Persist the user's chunk size choice (in MiB)."""
    if not settings.MIN_CHUNK_MB <= chunk_size_mb <= settings.MAX_CHUNK_MB:
        raise ValueError(
            f"Chunk size must be between {settings.MIN_CHUNK_MB} and {settings.MAX_CHUNK_MB} MB"
        )
    store.set(CHUNK_SIZE_KEY, chunk_size_mb)
