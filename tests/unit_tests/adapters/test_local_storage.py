import asyncio
import io
import os
import stat
import time
import uuid

import aiofiles.os
import pytest

from docs_api.adapters.storage import LocalFileStorage
from docs_api.errors import (
    InvalidStorageKeyError,
    StorageErrorKind,
    StorageIOError,
    StorageNotFoundError,
)

ENTITY_ID = "0f8fad5b-d9cb-469f-a165-70867728950e"
REPORT_KEY = f"2024/05/17/{ENTITY_ID}/report.pdf"


class AsyncReader:
    """Mimics UploadFile: read() is a coroutine."""

    def __init__(self, content: bytes):
        self._buffer = io.BytesIO(content)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


class StalledStream:
    """Returns one chunk, then blocks until released."""

    def __init__(self, first_chunk: bytes, rest: bytes = b""):
        self.first_chunk = first_chunk
        self.rest = rest
        self.stalled = asyncio.Event()
        self.release = asyncio.Event()
        self._calls = 0

    async def read(self, size: int = -1) -> bytes:
        self._calls += 1
        if self._calls == 1:
            return self.first_chunk
        if self._calls == 2:
            self.stalled.set()
            await self.release.wait()
            return self.rest
        return b""


class FailingStream:
    """Returns one chunk, then raises."""

    def __init__(self, error: BaseException):
        self.error = error
        self._calls = 0

    def read(self, size: int = -1) -> bytes:
        self._calls += 1
        if self._calls == 1:
            return b"partial"
        raise self.error


async def read_back(storage: LocalFileStorage, key: str) -> bytes:
    with await storage.get(key) as stream:
        return stream.read()


def temp_files(root):
    return sorted(p.name for p in root.rglob("*.tmp"))


async def test_save_get_delete_scenario(storage):
    key = await storage.save(io.BytesIO(b"hello"), "report.pdf", ENTITY_ID)

    assert key == REPORT_KEY
    assert await storage.exists(key)
    assert await read_back(storage, key) == b"hello"

    await storage.delete(key)

    assert not await storage.exists(key)
    with pytest.raises(StorageNotFoundError) as exc_info:
        await storage.get(key)
    assert exc_info.value.key == key
    assert exc_info.value.kind is StorageErrorKind.NOT_FOUND


@pytest.mark.parametrize(
    "content",
    [b"", b"x", b"%PDF-1.4\n%%EOF", bytes(range(256)) * 40],
    ids=["empty", "one-byte", "pdf", "binary"],
)
async def test_round_trip(storage, content):
    key = await storage.save(io.BytesIO(content), "doc.pdf", uuid.uuid4())

    assert await read_back(storage, key) == content
    assert (storage.root / key).stat().st_size == len(content)


async def test_save_accepts_async_streams_and_bytes(storage):
    key_async = await storage.save(AsyncReader(b"from upload"), "a.pdf", "entity-a")
    key_bytes = await storage.save(b"raw bytes", "b.pdf", "entity-b")

    assert await read_back(storage, key_async) == b"from upload"
    assert await read_back(storage, key_bytes) == b"raw bytes"


async def test_save_sanitizes_untrusted_filename(storage):
    key = await storage.save(io.BytesIO(b"x"), "../../etc/passwd", ENTITY_ID)

    assert key == f"2024/05/17/{ENTITY_ID}/.._.._etc_passwd"
    path = (storage.root / key).resolve()
    assert storage.root in path.parents


async def test_save_long_filename_is_capped(storage):
    key = await storage.save(io.BytesIO(b"x"), "r" * 296 + ".pdf", ENTITY_ID)

    name = key.rsplit("/", 1)[1]
    assert len(name) <= 200
    assert name.endswith(".pdf")


async def test_same_filename_different_entities_do_not_collide(storage):
    first = await storage.save(io.BytesIO(b"first"), "report.pdf", "entity-1")
    second = await storage.save(io.BytesIO(b"second"), "report.pdf", "entity-2")

    assert first != second
    assert await read_back(storage, first) == b"first"
    assert await read_back(storage, second) == b"second"


async def test_save_same_key_replaces_content(storage):
    first = await storage.save(io.BytesIO(b"old content"), "report.pdf", ENTITY_ID)
    second = await storage.save(io.BytesIO(b"new"), "report.pdf", ENTITY_ID)

    assert first == second
    assert await read_back(storage, second) == b"new"


async def test_save_leaves_no_temporary_files(storage, storage_root):
    await storage.save(io.BytesIO(b"hello world"), "report.pdf", ENTITY_ID)

    assert temp_files(storage_root) == []
    assert os.listdir(storage.root / "2024" / "05" / "17" / ENTITY_ID) == ["report.pdf"]


async def test_save_rejects_unsafe_entity_id(storage, storage_root):
    with pytest.raises(InvalidStorageKeyError):
        await storage.save(io.BytesIO(b"x"), "report.pdf", "../escape")

    assert list(storage_root.iterdir()) == []


async def test_cancelled_save_leaves_nothing_visible(storage, storage_root):
    stream = StalledStream(b"partial")
    task = asyncio.create_task(storage.save(stream, "report.pdf", ENTITY_ID))

    await stream.stalled.wait()
    assert temp_files(storage_root) != []

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not await storage.exists(REPORT_KEY)
    assert temp_files(storage_root) == []


async def test_cancelled_save_keeps_previous_content(storage, storage_root):
    await storage.save(io.BytesIO(b"previous"), "report.pdf", ENTITY_ID)

    stream = StalledStream(b"replacement-that-never-finishes")
    task = asyncio.create_task(storage.save(stream, "report.pdf", ENTITY_ID))
    await stream.stalled.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await read_back(storage, REPORT_KEY) == b"previous"
    assert temp_files(storage_root) == []


async def test_reader_sees_old_content_while_save_is_in_flight(storage):
    await storage.save(io.BytesIO(b"version one"), "report.pdf", ENTITY_ID)

    stream = StalledStream(b"version ", b"two")
    task = asyncio.create_task(storage.save(stream, "report.pdf", ENTITY_ID))
    await stream.stalled.wait()

    assert await read_back(storage, REPORT_KEY) == b"version one"

    stream.release.set()
    assert await task == REPORT_KEY
    assert await read_back(storage, REPORT_KEY) == b"version two"


async def test_failing_stream_propagates_and_cleans_up(storage, storage_root):
    await storage.save(io.BytesIO(b"previous"), "report.pdf", ENTITY_ID)

    with pytest.raises(RuntimeError, match="client went away"):
        await storage.save(FailingStream(RuntimeError("client went away")), "report.pdf", ENTITY_ID)

    assert await read_back(storage, REPORT_KEY) == b"previous"
    assert temp_files(storage_root) == []


async def test_os_error_during_copy_is_a_storage_io_error(storage, storage_root):
    with pytest.raises(StorageIOError) as exc_info:
        await storage.save(FailingStream(OSError(28, "No space left on device")), "report.pdf", ENTITY_ID)

    assert exc_info.value.kind is StorageErrorKind.IO_FAILURE
    assert exc_info.value.operation == "write"
    assert isinstance(exc_info.value.__cause__, OSError)
    assert not await storage.exists(REPORT_KEY)
    assert temp_files(storage_root) == []


async def test_rename_failure_is_a_storage_io_error(storage, storage_root, monkeypatch):
    await storage.save(io.BytesIO(b"previous"), "report.pdf", ENTITY_ID)

    async def failing_replace(src, dst):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(aiofiles.os, "replace", failing_replace)

    with pytest.raises(StorageIOError) as exc_info:
        await storage.save(io.BytesIO(b"replacement"), "report.pdf", ENTITY_ID)

    monkeypatch.undo()
    assert exc_info.value.operation == "rename"
    assert await read_back(storage, REPORT_KEY) == b"previous"
    assert temp_files(storage_root) == []


async def test_delete_is_idempotent_and_keeps_directories(storage):
    key = await storage.save(io.BytesIO(b"x"), "report.pdf", ENTITY_ID)

    await storage.delete(key)
    await storage.delete(key)
    await storage.delete(f"2024/05/17/{ENTITY_ID}/never-saved.pdf")

    assert (storage.root / "2024" / "05" / "17" / ENTITY_ID).is_dir()


@pytest.mark.parametrize("key", ["../outside.pdf", "/etc/passwd", "2024/../../x", ""])
async def test_operations_reject_invalid_keys(storage, key):
    with pytest.raises(InvalidStorageKeyError):
        await storage.get(key)
    with pytest.raises(InvalidStorageKeyError):
        await storage.delete(key)
    with pytest.raises(InvalidStorageKeyError):
        await storage.exists(key)


async def test_directory_keys_are_not_files(storage):
    await storage.save(io.BytesIO(b"x"), "report.pdf", ENTITY_ID)

    assert not await storage.exists("2024/05/17")
    with pytest.raises(StorageNotFoundError):
        await storage.get(f"2024/05/17/{ENTITY_ID}")

    # deleting a directory key is a no-op, like any other absent file
    await storage.delete(f"2024/05/17/{ENTITY_ID}")
    await storage.delete("2024/05/17")

    assert await read_back(storage, REPORT_KEY) == b"x"


async def test_concurrent_saves_of_same_key_last_writer_wins(storage, storage_root):
    first = b"A" * 4096
    second = b"B" * 4096

    keys = await asyncio.gather(
        storage.save(io.BytesIO(first), "report.pdf", ENTITY_ID),
        storage.save(io.BytesIO(second), "report.pdf", ENTITY_ID),
    )

    assert keys == [REPORT_KEY, REPORT_KEY]
    assert await read_back(storage, REPORT_KEY) in (first, second)
    assert temp_files(storage_root) == []


async def test_save_does_not_block_event_loop(storage, monkeypatch):
    real_fsync = os.fsync

    def slow_fsync(fd):
        time.sleep(0.3)
        real_fsync(fd)

    monkeypatch.setattr(os, "fsync", slow_fsync)

    gaps = []
    done = asyncio.Event()

    async def ticker():
        last = time.perf_counter()
        while not done.is_set():
            await asyncio.sleep(0.01)
            now = time.perf_counter()
            gaps.append(now - last)
            last = now

    ticking = asyncio.create_task(ticker())
    await storage.save(b"hello", "report.pdf", ENTITY_ID)
    done.set()
    await ticking

    assert len(gaps) > 10
    assert max(gaps) < 0.2


async def test_save_syncs_the_directory_after_rename(storage, monkeypatch):
    synced = []
    real_fsync = os.fsync

    def recording_fsync(fd):
        synced.append(stat.S_ISDIR(os.fstat(fd).st_mode))
        real_fsync(fd)

    monkeypatch.setattr(os, "fsync", recording_fsync)

    await storage.save(b"hello", "report.pdf", ENTITY_ID)

    # the file first, then its directory
    assert synced == [False, True]


async def test_exists_is_false_for_unknown_keys(storage):
    assert not await storage.exists("2024/05/17/nobody/nothing.pdf")
    assert not await storage.exists("2024/05/17/report.pdf/below-a-file")


def test_root_is_created_eagerly(tmp_path):
    root = tmp_path / "deep" / "nested" / "storage"

    storage = LocalFileStorage(root)

    assert root.is_dir()
    assert storage.root == root.resolve()


def test_root_creation_failure_is_a_storage_io_error(tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("occupied")

    with pytest.raises(StorageIOError):
        LocalFileStorage(blocker / "storage")


def test_default_root_is_relative_storage_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    storage = LocalFileStorage()

    assert storage.root == (tmp_path / "storage").resolve()


@pytest.mark.parametrize("max_length", [0, 15, 241])
def test_filename_cap_must_be_sane(tmp_path, max_length):
    with pytest.raises(ValueError):
        LocalFileStorage(tmp_path, max_filename_length=max_length)


def test_from_settings(settings):
    storage = LocalFileStorage.from_settings(settings)

    assert str(storage.root) == os.path.realpath(settings.storage_root_path)
    assert storage.root.is_dir()
