"""
Error types and FastAPI error handlers for the Document API.

Storage failures share one base class and expose a ``kind`` so callers can
branch on the failure category without inspecting exception types.
"""

import logging
from enum import Enum

import pydantic
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class StorageErrorKind(str, Enum):
    """Category of a storage failure."""
    NOT_FOUND = "not_found"
    INVALID_KEY = "invalid_key"
    IO_FAILURE = "io_failure"


class StorageError(Exception):
    """Base class for every failure raised by a storage adapter."""

    kind: StorageErrorKind = StorageErrorKind.IO_FAILURE

    def __init__(self, key: str, message: str):
        super().__init__(f"{message}: {key}")
        self.key = key
        self.message = message


class StorageNotFoundError(StorageError):
    """No stored content exists for the key."""

    kind = StorageErrorKind.NOT_FOUND

    def __init__(self, key: str, message: str = "File not found in storage"):
        super().__init__(key, message)


class InvalidStorageKeyError(StorageError):
    """The key is malformed or would escape the storage root."""

    kind = StorageErrorKind.INVALID_KEY

    def __init__(self, key: str, message: str = "Invalid storage key"):
        super().__init__(key, message)


class StorageIOError(StorageError):
    """The filesystem failed while creating, writing, renaming, reading or deleting."""

    kind = StorageErrorKind.IO_FAILURE

    def __init__(self, key: str, operation: str):
        super().__init__(key, f"Storage {operation} failed")
        self.operation = operation


STORAGE_ERROR_STATUS = {
    StorageErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    StorageErrorKind.INVALID_KEY: status.HTTP_400_BAD_REQUEST,
    StorageErrorKind.IO_FAILURE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def handle_storage_errors(request: Request, exc: StorageError) -> JSONResponse:
    """Map storage failures that escaped a route onto HTTP responses."""
    status_code = STORAGE_ERROR_STATUS[exc.kind]
    if exc.kind is StorageErrorKind.IO_FAILURE:
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}", exc_info=exc)
        detail = "Internal server error"
    elif exc.kind is StorageErrorKind.NOT_FOUND:
        detail = "Document file not found in storage"
    else:
        detail = exc.message
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def handle_pydantic_validation_errors(request: Request, exc: pydantic.ValidationError) -> JSONResponse:
    """Return pydantic validation failures raised outside request parsing as 422s."""
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({
            "detail": [
                {
                    "msg": error["msg"],
                    "input": error.get("input"),
                }
                for error in errors
            ]
        }),
    )


async def handle_broad_exceptions(request: Request, call_next):
    """Handle any exception that goes unhandled by a more specific exception handler."""
    try:
        return await call_next(request)
    except Exception:  # pylint: disable=broad-except
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error"},
        )
