import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from docs_api.adapters.email import SmtpEmailService
from docs_api.adapters.storage import FileStorage
from docs_api.config.settings import Settings
from docs_api.security import InvalidTokenError, TokenClaims, decode_access_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with."""
    return request.app.state.settings


def get_storage(request: Request) -> FileStorage:
    """Storage adapter dependency."""
    return request.app.state.storage


def get_email_service(settings: Settings = Depends(get_app_settings)) -> SmtpEmailService:
    """E-mail adapter dependency."""
    return SmtpEmailService(settings)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_app_settings),
) -> TokenClaims:
    """Resolve the caller from the bearer token or reject with 401."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials, settings)
    except InvalidTokenError as e:
        logger.warning(f"Rejected bearer token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_admin(user: TokenClaims = Depends(get_current_user)) -> TokenClaims:
    """Allow only callers holding the admin role."""
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user
