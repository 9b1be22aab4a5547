import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from docs_api.config.settings import Settings
from docs_api.database.local import (
    UserAlreadyExistsError,
    RoleNotFoundError,
    add_user_role,
    create_user,
    get_user_by_email,
    get_user_roles,
)
from docs_api.dependencies import get_app_settings, require_admin
from docs_api.schemas import (
    GrantAdminRequest,
    GrantAdminResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
)
from docs_api.security import TokenClaims, create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_CREDENTIALS = "Invalid email or password"


@router.post("/auth/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    settings: Settings = Depends(get_app_settings),
) -> RegisterResponse:
    """
    Register a new user with the default `user` role.

    Returns 400 if the e-mail address is already registered.
    """
    password_hash = await run_in_threadpool(hash_password, body.password)
    try:
        user = create_user(body.email, password_hash, body.display_name, db_path=settings.database_path)
    except UserAlreadyExistsError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email already exists"
        )

    try:
        add_user_role(user["user_id"], "user", db_path=settings.database_path)
    except RoleNotFoundError:
        logger.warning(f"Role 'user' is not seeded; registered {user['email']} without roles")

    logger.info(f"Registered user {user['user_id']}")
    return RegisterResponse(
        user_id=user["user_id"],
        email=user["email"],
        display_name=user["display_name"],
    )


@router.post("/auth/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    settings: Settings = Depends(get_app_settings),
) -> LoginResponse:
    """Exchange e-mail and password for a bearer token."""
    user = get_user_by_email(body.email, db_path=settings.database_path)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    password_ok = await run_in_threadpool(verify_password, body.password, user["password_hash"])
    if not password_ok:
        logger.warning(f"Failed login for user {user['user_id']}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    roles = get_user_roles(user["user_id"], db_path=settings.database_path)
    token, expires_in = create_access_token(user["user_id"], user["email"], roles, settings)
    return LoginResponse(access_token=token, expires_in=expires_in)


@router.post("/auth/grant-admin", response_model=GrantAdminResponse)
async def grant_admin(
    body: GrantAdminRequest,
    settings: Settings = Depends(get_app_settings),
    admin: TokenClaims = Depends(require_admin),
) -> GrantAdminResponse:
    """Grant the admin role to an existing user (admins only)."""
    user = get_user_by_email(body.email, db_path=settings.database_path)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    roles = get_user_roles(user["user_id"], db_path=settings.database_path)
    if "admin" in roles:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already has admin privileges")

    try:
        add_user_role(user["user_id"], "admin", db_path=settings.database_path)
    except RoleNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin role not configured in the system"
        )

    logger.info(f"User {admin.user_id} granted admin to {user['user_id']}")
    return GrantAdminResponse(
        user_id=user["user_id"],
        email=user["email"],
        display_name=user["display_name"],
        roles=get_user_roles(user["user_id"], db_path=settings.database_path),
    )
