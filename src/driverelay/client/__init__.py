"""
Upload client

The Upload Driver and the relay clients it runs on. The driver plays the
browser's role: it opens a session, then sends the file one chunk at a time
and reports progress after each chunk.
"""

from driverelay.client.base import RelayClient
from driverelay.client.direct import DirectRelayClient
from driverelay.client.driver import (
    DriverState,
    UploadDriver,
    fetch_file_with_retry,
    intent_for_path,
    plan_chunks,
)
from driverelay.client.http import HttpRelayClient
from driverelay.client.preferences import (
    InMemoryPreferenceStore,
    JsonFilePreferenceStore,
    PreferenceStore,
    remember_chunk_size,
    resolve_chunk_size,
)

__all__ = [
    "RelayClient",
    "HttpRelayClient",
    "DirectRelayClient",
    "DriverState",
    "UploadDriver",
    "fetch_file_with_retry",
    "intent_for_path",
    "plan_chunks",
    "PreferenceStore",
    "InMemoryPreferenceStore",
    "JsonFilePreferenceStore",
    "resolve_chunk_size",
    "remember_chunk_size",
]
