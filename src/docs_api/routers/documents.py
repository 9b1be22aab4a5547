import logging
import os
import uuid
from typing import BinaryIO, Iterator
from urllib.parse import quote

from fastapi import (
    APIRouter,
    Depends,
    File,
    HTTPException,
    Path,
    Query,
    Response,
    UploadFile,
    status
)
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse

from docs_api.adapters.email import EmailResult, SmtpEmailService
from docs_api.adapters.storage import FileStorage
from docs_api.config.settings import Settings
from docs_api.database.local import (
    add_document,
    add_email_log,
    delete_document,
    get_document,
    list_documents,
)
from docs_api.dependencies import (
    get_app_settings,
    get_current_user,
    get_email_service,
    get_storage,
)
from docs_api.schemas import (
    ALLOWED_CONTENT_TYPES,
    ALLOWED_EXTENSIONS,
    DocumentMetadata,
    GetDocumentsResponse,
    SendEmailRequest,
    SendEmailResponse,
)
from docs_api.security import TokenClaims
from docs_api.utils.decorators import async_log_execution_time

logger = logging.getLogger(__name__)

router = APIRouter()

DOWNLOAD_CHUNK_SIZE = 64 * 1024


def _get_accessible_document(document_id: uuid.UUID, user: TokenClaims, settings: Settings) -> dict:
    """Load a document row, enforcing owner-or-admin access."""
    document = get_document(str(document_id), db_path=settings.database_path)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    if not (user.is_admin or document["owner_user_id"] == user.user_id):
        logger.warning(f"User {user.user_id} denied access to document {document_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access to this document is denied")
    return document


def _iter_file(stream: BinaryIO) -> Iterator[bytes]:
    """Yield a stored file in chunks and close it when done."""
    try:
        while True:
            chunk = stream.read(DOWNLOAD_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=utf-8''{quote(filename)}"


def _upload_size(file: UploadFile) -> int:
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


@router.post("/documents", response_model=DocumentMetadata, status_code=status.HTTP_201_CREATED)
async def upload_document(
    response: Response,
    file: UploadFile = File(..., description="PDF or DOCX file to store"),
    settings: Settings = Depends(get_app_settings),
    storage: FileStorage = Depends(get_storage),
    user: TokenClaims = Depends(get_current_user),
) -> DocumentMetadata:
    """
    Upload a document.

    Only PDF and DOCX files are accepted, by content type and by extension.
    The file is written to storage under a fresh document id, then its
    metadata is recorded.
    """
    if file.content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"File type '{file.content_type}' is not supported. Allowed types: PDF, DOCX"
        )

    filename = file.filename or ""
    extension = os.path.splitext(filename)[1].lower()
    if extension not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="File extension must be .pdf or .docx"
        )

    size_bytes = _upload_size(file)
    if size_bytes > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds the maximum size of {settings.max_upload_bytes} bytes"
        )

    document_id = str(uuid.uuid4())
    storage_key = await storage.save(file, filename, document_id)

    try:
        document = add_document(
            document_id=document_id,
            owner_user_id=user.user_id,
            original_filename=filename,
            content_type=file.content_type,
            size_bytes=size_bytes,
            storage_key=storage_key,
            db_path=settings.database_path,
        )
    except Exception:
        await storage.delete(storage_key)
        raise

    logger.info(f"User {user.user_id} uploaded document {document_id} ({size_bytes} bytes)")
    response.headers["Location"] = f"/documents/{document_id}"
    return DocumentMetadata.from_row(document, include_owner=False)


@router.get("/documents", response_model=GetDocumentsResponse)
async def get_documents(
    settings: Settings = Depends(get_app_settings),
    user: TokenClaims = Depends(get_current_user),
) -> GetDocumentsResponse:
    """List the caller's documents, or every document for admins."""
    owner = None if user.is_admin else user.user_id
    rows = list_documents(owner_user_id=owner, db_path=settings.database_path)
    return GetDocumentsResponse(documents=[DocumentMetadata.from_row(row) for row in rows])


@router.get("/documents/{document_id}", response_model=DocumentMetadata)
async def get_document_or_download(
    document_id: uuid.UUID = Path(..., description="The id of the document"),
    download: bool = Query(False, description="Stream the file content instead of metadata"),
    settings: Settings = Depends(get_app_settings),
    storage: FileStorage = Depends(get_storage),
    user: TokenClaims = Depends(get_current_user),
):
    """
    Get document metadata, or download the document with `?download=true`.

    Returns 404 if the document or its stored file is missing and 403 if the
    caller is neither the owner nor an admin.
    """
    document = _get_accessible_document(document_id, user, settings)

    if download:
        stream = await storage.get(document["storage_key"])
        return StreamingResponse(
            _iter_file(stream),
            media_type=document["content_type"],
            headers={"Content-Disposition": _content_disposition(document["original_filename"])},
        )

    return DocumentMetadata.from_row(document)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_document(
    document_id: uuid.UUID = Path(..., description="The id of the document"),
    settings: Settings = Depends(get_app_settings),
    storage: FileStorage = Depends(get_storage),
    user: TokenClaims = Depends(get_current_user),
) -> Response:
    """Delete a document's stored file and its metadata."""
    document = _get_accessible_document(document_id, user, settings)

    await storage.delete(document["storage_key"])
    delete_document(document["document_id"], db_path=settings.database_path)

    logger.info(f"User {user.user_id} deleted document {document_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@async_log_execution_time
async def deliver_document(
    email_service: SmtpEmailService,
    to: str,
    subject: str,
    body: str,
    content: bytes,
    filename: str,
    content_type: str,
) -> EmailResult:
    """Send the document through SMTP without blocking the event loop."""
    return await run_in_threadpool(
        email_service.send_email_with_attachment,
        to,
        subject,
        body,
        content,
        filename,
        content_type,
    )


@router.post("/documents/{document_id}/send", response_model=SendEmailResponse)
async def send_document(
    body: SendEmailRequest,
    document_id: uuid.UUID = Path(..., description="The id of the document"),
    settings: Settings = Depends(get_app_settings),
    storage: FileStorage = Depends(get_storage),
    email_service: SmtpEmailService = Depends(get_email_service),
    user: TokenClaims = Depends(get_current_user),
) -> SendEmailResponse:
    """
    Send a document as an e-mail attachment.

    Every attempt is recorded in the e-mail log, whether it succeeded or not.
    """
    document = _get_accessible_document(document_id, user, settings)
    filename = document["original_filename"]

    stream = await storage.get(document["storage_key"])
    with stream:
        content = await run_in_threadpool(stream.read)

    subject = body.subject or f"Document: {filename}"
    message = body.message or f"Please find attached the document '{filename}'."

    result = await deliver_document(
        email_service,
        str(body.to),
        subject,
        message,
        content,
        filename,
        document["content_type"],
    )

    add_email_log(
        document_id=document["document_id"],
        sender_user_id=user.user_id,
        recipient_email=str(body.to),
        status="sent" if result.success else "failed",
        provider_message_id=result.message_id,
        error_message=result.error_message,
        db_path=settings.database_path,
    )

    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send email"
        )

    return SendEmailResponse(status="sent", recipient=str(body.to))
