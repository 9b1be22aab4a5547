####################################
# --- Request/response schemas --- #
####################################

from datetime import datetime
from typing import List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
)

ALLOWED_CONTENT_TYPES = {
    "application/pdf": ".pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}
ALLOWED_EXTENSIONS = set(ALLOWED_CONTENT_TYPES.values())


class RegisterRequest(BaseModel):
    """Request body for `POST /auth/register`."""
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    display_name: Optional[str] = Field(None, max_length=100)


class RegisterResponse(BaseModel):
    """Response model for `POST /auth/register`."""
    user_id: str
    email: str
    display_name: Optional[str] = None


class LoginRequest(BaseModel):
    """Request body for `POST /auth/login`."""
    email: EmailStr
    password: str


class LoginResponse(BaseModel):
    """Response model for `POST /auth/login`."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(description="Token lifetime in seconds.")


class GrantAdminRequest(BaseModel):
    """Request body for `POST /auth/grant-admin`."""
    email: EmailStr


class GrantAdminResponse(BaseModel):
    """Response model for `POST /auth/grant-admin`."""
    user_id: str
    email: str
    display_name: Optional[str] = None
    roles: List[str]


class DocumentMetadata(BaseModel):
    """Metadata of a stored document."""
    document_id: str
    filename: str = Field(
        description="The filename the document was uploaded with.",
        json_schema_extra={"example": "quarterly-report.pdf"},
    )
    content_type: str
    size_bytes: int = Field(description="The size of the document in bytes.")
    uploaded_at: datetime
    owner_user_id: Optional[str] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "document_id": "0f8fad5b-d9cb-469f-a165-70867728950e",
                "filename": "quarterly-report.pdf",
                "content_type": "application/pdf",
                "size_bytes": 52431,
                "uploaded_at": "2024-01-01T00:00:00Z",
                "owner_user_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
            }
        }
    )

    @classmethod
    def from_row(cls, row: dict, include_owner: bool = True) -> "DocumentMetadata":
        return cls(
            document_id=row["document_id"],
            filename=row["original_filename"],
            content_type=row["content_type"],
            size_bytes=row["size_bytes"],
            uploaded_at=row["uploaded_at"],
            owner_user_id=row["owner_user_id"] if include_owner else None,
        )


class GetDocumentsResponse(BaseModel):
    """Response model for `GET /documents`."""
    documents: List[DocumentMetadata]


class SendEmailRequest(BaseModel):
    """Request body for `POST /documents/{document_id}/send`."""
    to: EmailStr
    subject: Optional[str] = Field(None, max_length=200)
    message: Optional[str] = Field(None, max_length=10000)

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: Optional[str]) -> Optional[str]:
        """A subject is a single header line."""
        if v is not None and ("\r" in v or "\n" in v):
            raise ValueError("subject must not contain line breaks")
        return v


class SendEmailResponse(BaseModel):
    """Response model for `POST /documents/{document_id}/send`."""
    status: str
    recipient: str
