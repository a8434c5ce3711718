"""Tests for the Upload Driver state machine."""

import asyncio
import io
from typing import Callable, List, Optional

import pytest

from driverelay.client.base import RelayClient
from driverelay.client.driver import DriverState, UploadDriver, fetch_file_with_retry
from driverelay.core.config import MIB
from driverelay.core.exceptions import (
    ChunkRejected,
    ChunkTooLarge,
    MetadataLookupError,
    SessionInitError,
    TransportError,
)
from driverelay.models.upload import (
    FALLBACK_FILE_ID,
    ChunkDescriptor,
    ChunkOutcome,
    FileRecord,
    UploadIntent,
    UploadSession,
)

SESSION_URL = "https://www.googleapis.com/upload/drive/v3/files?uploadType=resumable&upload_id=abc"
FILE_ID = "1AbCdEfGhIjKlMnOp"


class FakeRelay(RelayClient):
    """In-memory relay that finalizes on the last byte unless told otherwise."""

    def __init__(
        self,
        respond: Optional[Callable[[ChunkDescriptor], ChunkOutcome]] = None,
        open_error: Optional[Exception] = None,
        lookup_failures: int = 0,
        session_file_id: Optional[str] = None,
    ):
        self.respond = respond or self._finalize_on_last_byte
        self.open_error = open_error
        self.lookup_failures = lookup_failures
        self.session_file_id = session_file_id
        self.opened: List[UploadIntent] = []
        self.sent: List[ChunkDescriptor] = []
        self.lookups: List[str] = []
        self.cancelled: List[UploadSession] = []

    @staticmethod
    def _finalize_on_last_byte(desc: ChunkDescriptor) -> ChunkOutcome:
        if desc.range_end + 1 == desc.total_size:
            return ChunkOutcome.completed(FileRecord(id=FILE_ID, name="echo.bin", size=desc.total_size))
        return ChunkOutcome.resume_incomplete()

    async def open_session(self, intent: UploadIntent) -> UploadSession:
        self.opened.append(intent)
        if self.open_error:
            raise self.open_error
        return UploadSession(
            session_handle=SESSION_URL,
            total_size=intent.total_size,
            mime_type=intent.mime_type,
            name=intent.name,
            file_id=self.session_file_id,
        )

    async def upload_chunk(self, desc: ChunkDescriptor) -> ChunkOutcome:
        self.sent.append(desc)
        return self.respond(desc)

    async def get_file(self, file_id: str) -> FileRecord:
        self.lookups.append(file_id)
        if len(self.lookups) <= self.lookup_failures:
            raise MetadataLookupError("File not found", status_code=404)
        return FileRecord(id=file_id, name="lecture.mp4", size=2500, mime_type="video/mp4")

    async def cancel(self, session: UploadSession) -> None:
        self.cancelled.append(session)


def recording_sleep():
    """Async sleep stand-in that records the requested delays."""
    delays: List[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    sleep.delays = delays
    return sleep


def make_intent(total_size=2500, chunk_size=MIB, name="lecture.mp4"):
    return UploadIntent(name=name, mime_type="video/mp4", total_size=total_size, chunk_size=chunk_size)


def make_source(total_size):
    return io.BytesIO(bytes(i % 251 for i in range(total_size)))


@pytest.mark.asyncio
async def test_upload_sends_contiguous_chunks_in_order():
    """Every byte is sent once, in ascending contiguous ranges."""
    total = 3 * MIB + 123
    relay = FakeRelay()
    driver = UploadDriver(relay, sleep=recording_sleep())
    source = make_source(total)

    record = await driver.upload(make_intent(total_size=total), source)

    assert driver.state == DriverState.COMPLETE
    assert record.id == FILE_ID
    assert [(d.range_start, d.range_end) for d in relay.sent] == [
        (0, MIB - 1),
        (MIB, 2 * MIB - 1),
        (2 * MIB, 3 * MIB - 1),
        (3 * MIB, total - 1),
    ]
    assert [d.is_last for d in relay.sent] == [False, False, False, True]
    assert b"".join(d.payload for d in relay.sent) == source.getvalue()
    assert all(d.session_handle == SESSION_URL for d in relay.sent)


@pytest.mark.asyncio
async def test_progress_is_monotonic():
    """Each event adds exactly the chunk just sent and ends at 100%."""
    total = 25_000_000
    relay = FakeRelay()
    driver = UploadDriver(relay, resolve_metadata=False)
    events = []

    await driver.upload(make_intent(total_size=total, chunk_size=10 * MIB), make_source(total), events.append)

    assert [e.bytes_sent for e in events] == [10_485_760, 20_971_520, 25_000_000]
    assert [e.percent for e in events] == [42, 84, 100]
    assert [e.chunk_index for e in events] == [0, 1, 2]
    assert all(e.total_chunks == 3 for e in events)


@pytest.mark.asyncio
async def test_transfer_stream_sets_result_before_last_event():
    """The progress stream can be consumed directly."""
    relay = FakeRelay()
    driver = UploadDriver(relay, resolve_metadata=False)
    seen_states = []

    async for progress in driver.transfer(make_intent(total_size=2 * MIB), make_source(2 * MIB)):
        seen_states.append((progress.chunk_index, driver.state, driver.result))

    assert seen_states[0][1] == DriverState.CHUNK_IN_FLIGHT
    assert seen_states[0][2] is None
    assert seen_states[-1][1] == DriverState.COMPLETE
    assert seen_states[-1][2].id == FILE_ID


@pytest.mark.asyncio
async def test_chunk_failure_aborts_with_one_indexed_message():
    """A 500 on chunk 3 stops the transfer with the upstream message."""

    def respond(desc):
        if desc.range_start == 2 * MIB:
            return ChunkOutcome.failed(500, "quota exceeded")
        return ChunkOutcome.resume_incomplete()

    relay = FakeRelay(respond=respond)
    driver = UploadDriver(relay)

    with pytest.raises(ChunkRejected) as exc_info:
        await driver.upload(make_intent(total_size=5 * MIB), make_source(5 * MIB))

    assert str(exc_info.value) == "Chunk 3 upload failed: quota exceeded"
    assert exc_info.value.chunk_index == 2
    assert exc_info.value.status_code == 500
    assert len(relay.sent) == 3
    assert driver.state == DriverState.ABORTED
    assert relay.cancelled == []


@pytest.mark.asyncio
async def test_abandon_on_abort_cancels_session():
    """With abandon_on_abort the partial upstream object is discarded."""
    relay = FakeRelay(respond=lambda desc: ChunkOutcome.failed(503, "backend error"))
    driver = UploadDriver(relay, abandon_on_abort=True)

    with pytest.raises(ChunkRejected):
        await driver.upload(make_intent(total_size=2 * MIB), make_source(2 * MIB))

    assert [s.session_handle for s in relay.cancelled] == [SESSION_URL]


@pytest.mark.asyncio
async def test_transport_error_aborts():
    """Network failures are fatal and name the chunk."""

    def respond(desc):
        raise TransportError("connection reset")

    relay = FakeRelay(respond=respond)
    driver = UploadDriver(relay)

    with pytest.raises(TransportError, match="Chunk 1 upload failed: connection reset"):
        await driver.upload(make_intent(), make_source(2500))

    assert driver.state == DriverState.ABORTED


@pytest.mark.asyncio
async def test_chunk_too_large_aborts():
    """A locally rejected chunk aborts the transfer."""

    def respond(desc):
        raise ChunkTooLarge("Chunk of 104857601 bytes exceeds the 104857600 byte limit")

    relay = FakeRelay(respond=respond)
    driver = UploadDriver(relay)

    with pytest.raises(ChunkTooLarge, match="Chunk 1 upload failed"):
        await driver.upload(make_intent(), make_source(2500))

    assert driver.state == DriverState.ABORTED


@pytest.mark.asyncio
async def test_continue_on_last_chunk_is_rejected():
    """Drive must not ask for more data after the final byte."""
    relay = FakeRelay(respond=lambda desc: ChunkOutcome.resume_incomplete())
    driver = UploadDriver(relay)

    with pytest.raises(ChunkRejected, match="Chunk 2 upload failed: upstream expected more data"):
        await driver.upload(make_intent(total_size=2 * MIB), make_source(2 * MIB))

    assert driver.state == DriverState.ABORTED


@pytest.mark.asyncio
async def test_complete_before_last_chunk_is_rejected():
    """An early finalize is a protocol violation."""
    relay = FakeRelay(respond=lambda desc: ChunkOutcome.completed(FileRecord(id=FILE_ID)))
    driver = UploadDriver(relay)

    with pytest.raises(ChunkRejected, match="Chunk 1 upload failed: upstream finalized"):
        await driver.upload(make_intent(total_size=2 * MIB), make_source(2 * MIB))

    assert len(relay.sent) == 1


@pytest.mark.asyncio
async def test_unparseable_echo_yields_fallback_record():
    """A byte-complete upload without metadata still succeeds."""
    relay = FakeRelay(respond=lambda desc: ChunkOutcome.completed(None))
    driver = UploadDriver(relay)

    record = await driver.upload(make_intent(total_size=2500), make_source(2500))

    assert driver.state == DriverState.COMPLETE
    assert record.id == FALLBACK_FILE_ID
    assert record.name == "lecture.mp4"
    assert record.size == 2500
    assert record.mime_type == "video/mp4"
    assert relay.lookups == []


@pytest.mark.asyncio
async def test_unparseable_echo_resolves_session_file_id():
    """Without an echo the file id parsed at session open is looked up instead."""
    relay = FakeRelay(respond=lambda desc: ChunkOutcome.completed(None), session_file_id="1SessionFileIdXYZ")
    driver = UploadDriver(relay, sleep=recording_sleep())

    record = await driver.upload(make_intent(total_size=2500), make_source(2500))

    assert driver.state == DriverState.COMPLETE
    assert relay.lookups == ["1SessionFileIdXYZ"]
    assert record.id == "1SessionFileIdXYZ"
    assert record.mime_type == "video/mp4"


@pytest.mark.asyncio
async def test_session_file_id_kept_when_lookups_fail():
    relay = FakeRelay(
        respond=lambda desc: ChunkOutcome.completed(None),
        session_file_id="1SessionFileIdXYZ",
        lookup_failures=10,
    )
    driver = UploadDriver(relay, sleep=recording_sleep())

    record = await driver.upload(make_intent(total_size=2500), make_source(2500))

    assert record.id == "1SessionFileIdXYZ"
    assert record.name == "lecture.mp4"
    assert record.size == 2500
    assert relay.lookups == ["1SessionFileIdXYZ"] * 5


@pytest.mark.asyncio
async def test_metadata_resolved_after_completion():
    """The final record comes from a fresh lookup of the echoed id."""
    relay = FakeRelay(lookup_failures=2)
    sleep = recording_sleep()
    driver = UploadDriver(relay, sleep=sleep)

    record = await driver.upload(make_intent(), make_source(2500))

    assert record.id == FILE_ID
    assert record.mime_type == "video/mp4"
    assert relay.lookups == [FILE_ID] * 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_session_init_failure_aborts_without_chunks():
    """An empty file never gets past session open."""
    relay = FakeRelay(open_error=SessionInitError("Missing filename or size"))
    driver = UploadDriver(relay)

    with pytest.raises(SessionInitError, match="Missing filename or size"):
        await driver.upload(make_intent(total_size=0), io.BytesIO(b""))

    assert driver.state == DriverState.ABORTED
    assert relay.sent == []


@pytest.mark.asyncio
async def test_unexpected_open_error_aborts():
    """Errors outside the relay hierarchy still leave the driver aborted."""
    relay = FakeRelay(open_error=ValueError("Expecting value: line 1 column 1 (char 0)"))
    driver = UploadDriver(relay)

    with pytest.raises(SessionInitError, match="Failed to initialize upload: Expecting value"):
        await driver.upload(make_intent(), make_source(2500))

    assert driver.state == DriverState.ABORTED
    assert relay.sent == []


@pytest.mark.asyncio
async def test_unexpected_chunk_error_names_the_chunk():
    def respond(desc):
        raise ValueError("Expecting value: line 1 column 1 (char 0)")

    relay = FakeRelay(respond=respond)
    driver = UploadDriver(relay, abandon_on_abort=True)

    with pytest.raises(TransportError, match="Chunk 1 upload failed: Expecting value") as exc_info:
        await driver.upload(make_intent(), make_source(2500))

    assert exc_info.value.chunk_index == 0
    assert driver.state == DriverState.ABORTED
    assert [s.session_handle for s in relay.cancelled] == [SESSION_URL]


@pytest.mark.asyncio
async def test_short_source_aborts_with_chunk_number():
    """A source that ends before the declared size fails on the chunk it cannot fill."""
    relay = FakeRelay()
    driver = UploadDriver(relay)

    with pytest.raises(TransportError, match="Chunk 2 upload failed: Source ended early") as exc_info:
        await driver.upload(make_intent(total_size=2 * MIB), make_source(MIB + 10))

    assert exc_info.value.chunk_index == 1
    assert driver.state == DriverState.ABORTED
    assert len(relay.sent) == 1


@pytest.mark.asyncio
async def test_driver_runs_once():
    """A driver instance cannot be reused for a second transfer."""
    relay = FakeRelay()
    driver = UploadDriver(relay, resolve_metadata=False)
    await driver.upload(make_intent(), make_source(2500))

    with pytest.raises(RuntimeError):
        await driver.upload(make_intent(), make_source(2500))


@pytest.mark.asyncio
async def test_cancellation_marks_aborted():
    """Cancelling the task drops the in-flight chunk and takes no further action."""
    started = asyncio.Event()

    class SlowRelay(FakeRelay):
        async def upload_chunk(self, desc):
            self.sent.append(desc)
            started.set()
            await asyncio.sleep(10)

    relay = SlowRelay()
    driver = UploadDriver(relay, abandon_on_abort=True)
    task = asyncio.create_task(driver.upload(make_intent(total_size=2 * MIB), make_source(2 * MIB)))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert driver.state == DriverState.ABORTED
    assert len(relay.sent) == 1
    assert relay.cancelled == []


@pytest.mark.asyncio
async def test_fetch_file_with_retry_backoff_doubles():
    """Five attempts with 1s, 2s, 4s, 8s between them, then the fallback."""
    relay = FakeRelay(lookup_failures=10)
    sleep = recording_sleep()
    fallback = FileRecord(id=FILE_ID, name="lecture.mp4")

    record = await fetch_file_with_retry(relay, FILE_ID, fallback, max_attempts=5, initial_backoff=1.0, sleep=sleep)

    assert record is fallback
    assert len(relay.lookups) == 5
    assert sleep.delays == [1.0, 2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_fetch_file_with_retry_returns_matching_id():
    """An eventually consistent lookup returns the uploaded file's id."""
    relay = FakeRelay(lookup_failures=4)
    sleep = recording_sleep()

    record = await fetch_file_with_retry(relay, FILE_ID, FileRecord(id="other"), max_attempts=5, sleep=sleep)

    assert record.id == FILE_ID
    assert len(relay.lookups) == 5
