"""
Storage adapter for uploaded documents.

Content is addressed by opaque storage keys (relative paths under one root
directory). Writes go to a temporary file in the destination directory and are
committed with a same-directory ``os.replace``, so a reader never sees a
partially written file at the final path.

File I/O runs in worker threads through aiofiles, so a slow disk stalls only
the request doing the write, not the event loop.

Two saves of the same key race at the rename step and the last one to commit
wins. Re-uploading under the same entity id and filename is a replace.
"""

import asyncio
import inspect
import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

import aiofiles
import aiofiles.os

from docs_api.adapters.storage_keys import (
    DEFAULT_MAX_FILENAME_LENGTH,
    build_storage_key,
    resolve_key,
    sanitize_file_name,
)
from docs_api.errors import StorageIOError, StorageNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_ROOT_PATH = "./storage"
DEFAULT_CHUNK_SIZE = 64 * 1024
MIN_FILENAME_LENGTH = 16
MAX_FILENAME_LENGTH = 240


def _fsync(fd: int) -> None:
    os.fsync(fd)


def _fsync_directory(path: Path) -> None:
    """Persist a directory entry change (a rename) to disk."""
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


_run_fsync = aiofiles.os.wrap(_fsync)
_run_fsync_directory = aiofiles.os.wrap(_fsync_directory)
_run_mkstemp = aiofiles.os.wrap(tempfile.mkstemp)
_run_open = aiofiles.os.wrap(open)


class FileStorage:
    """Base class for storage adapters (to be extended by specific implementations)"""

    async def save(self, stream, filename: str, entity_id: Union[str, uuid.UUID]) -> str:
        """Persist the stream's content and return the storage key."""
        raise NotImplementedError

    async def get(self, key: str) -> BinaryIO:
        """Open the content stored under ``key`` for reading."""
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        """Remove the content stored under ``key``; missing content is not an error."""
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        """Report whether content is stored under ``key``."""
        raise NotImplementedError


class LocalFileStorage(FileStorage):
    """Stores files on the local filesystem under a fixed root directory."""

    def __init__(
        self,
        root_path: Union[str, os.PathLike] = DEFAULT_ROOT_PATH,
        *,
        max_filename_length: int = DEFAULT_MAX_FILENAME_LENGTH,
        clock: Optional[Callable[[], datetime]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if not MIN_FILENAME_LENGTH <= max_filename_length <= MAX_FILENAME_LENGTH:
            raise ValueError(
                f"max_filename_length must be between {MIN_FILENAME_LENGTH} and {MAX_FILENAME_LENGTH}"
            )
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

        root = Path(root_path).expanduser()
        try:
            root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(str(root_path), "root directory creation") from exc

        self._root = root.resolve()
        self._max_filename_length = max_filename_length
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._chunk_size = chunk_size
        logger.info(f"LocalFileStorage initialized at: {self._root}")

    @classmethod
    def from_settings(cls, settings) -> "LocalFileStorage":
        """Build an adapter from application settings."""
        return cls(
            settings.storage_root_path,
            max_filename_length=settings.storage_max_filename_length,
        )

    @property
    def root(self) -> Path:
        return self._root

    def __repr__(self) -> str:
        return f"{type(self).__name__}(root={str(self._root)!r})"

    async def save(self, stream, filename: str, entity_id: Union[str, uuid.UUID]) -> str:
        """
        Save a file and return its storage key.

        Args:
            stream: A binary stream whose ``read(size)`` returns bytes or an
                awaitable of bytes (e.g. ``UploadFile``), or a ``bytes`` value
            filename: Client-supplied filename; sanitized, never rejected
            entity_id: Unique id of the owning record, used as a key segment

        Returns:
            The relative key ``YYYY/MM/DD/{entity_id}/{safe_name}``

        Raises:
            InvalidStorageKeyError: If ``entity_id`` is not a safe segment
            StorageIOError: If the filesystem fails at any step
        """
        safe_name = sanitize_file_name(filename, self._max_filename_length)
        key = build_storage_key(entity_id, safe_name, self._clock())
        final_path = resolve_key(self._root, key)

        try:
            await aiofiles.os.makedirs(final_path.parent, exist_ok=True)
        except OSError as exc:
            raise StorageIOError(key, "directory creation") from exc

        await self._write_atomically(stream, final_path, key)
        return key

    async def get(self, key: str) -> BinaryIO:
        """
        Open stored content for reading.

        The caller owns the returned file object and must close it.

        Raises:
            InvalidStorageKeyError: If the key is malformed or escapes the root
            StorageNotFoundError: If nothing is stored under the key
            StorageIOError: If the file exists but cannot be opened
        """
        path = resolve_key(self._root, key)
        try:
            return await _run_open(path, "rb")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
            raise StorageNotFoundError(key) from exc
        except OSError as exc:
            raise StorageIOError(key, "read") from exc

    async def delete(self, key: str) -> None:
        """Delete stored content. Empty parent directories are left in place."""
        path = resolve_key(self._root, key)
        if await aiofiles.os.path.isdir(path):
            return
        try:
            await aiofiles.os.remove(path)
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return
        except OSError as exc:
            raise StorageIOError(key, "delete") from exc
        logger.debug(f"Deleted {key}")

    async def exists(self, key: str) -> bool:
        path = resolve_key(self._root, key)
        return await aiofiles.os.path.isfile(path)

    async def _write_atomically(self, stream, final_path: Path, key: str) -> None:
        """Copy ``stream`` into a temp file next to ``final_path`` and rename it into place."""
        try:
            fd, temp_name = await _run_mkstemp(
                dir=final_path.parent,
                prefix=f"{final_path.name}.",
                suffix=".tmp",
            )
        except OSError as exc:
            raise StorageIOError(key, "write") from exc

        temp_path = Path(temp_name)
        operation = "write"
        try:
            async with aiofiles.open(fd, "wb") as out:
                size = await self._copy(stream, out)
                await out.flush()
                await _run_fsync(out.fileno())
            operation = "rename"
            await aiofiles.os.replace(temp_path, final_path)
        except OSError as exc:
            await self._discard(temp_path)
            raise StorageIOError(key, operation) from exc
        except BaseException:
            await self._discard(temp_path)
            raise

        # the rename is visible now; make it survive a crash
        try:
            await _run_fsync_directory(final_path.parent)
        except OSError as exc:
            raise StorageIOError(key, "directory sync") from exc

        logger.debug(f"Committed {key} ({size} bytes)")

    async def _copy(self, stream, out) -> int:
        """Copy until the source is exhausted. Cancellation is delivered between chunks."""
        if isinstance(stream, (bytes, bytearray, memoryview)):
            await out.write(stream)
            return len(stream)

        written = 0
        while True:
            chunk = stream.read(self._chunk_size)
            if inspect.isawaitable(chunk):
                chunk = await chunk
            else:
                await asyncio.sleep(0)
            if not chunk:
                return written
            await out.write(chunk)
            written += len(chunk)

    @staticmethod
    async def _discard(temp_path: Path) -> None:
        try:
            await aiofiles.os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning(f"Could not remove temporary file {temp_path}", exc_info=True)


def get_file_storage(settings) -> FileStorage:
    """Create the storage adapter described by ``settings``."""
    return LocalFileStorage.from_settings(settings)
