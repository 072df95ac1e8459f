"""Auth router - API endpoints for authentication and self-service."""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from pydantic import BaseModel

from app.database import get_database
from app.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.models.api_token import ApiToken, ApiTokenStatus
from app.models.user import (
    ActivationRequest,
    PasswordChange,
    ProfileUpdate,
    User,
    UserSettings,
)
from app.services.api_token_service import ApiTokenService
from app.services.auth_service import AuthService
from app.services.user_service import UserService
from app.utils.auth import verify_access_token
from app.utils.clock import Clock, get_clock


router = APIRouter(prefix="/auth", tags=["auth"])
security = HTTPBearer(auto_error=False)


class LoginRequest(BaseModel):
    """Login request model."""

    username: str
    password: str


class TokenResponse(BaseModel):
    """Token response model."""

    access_token: str
    token_type: str = "bearer"


@router.post("/login", response_model=TokenResponse)
async def login(login_req: LoginRequest, db=Depends(get_database)):
    """
    Login user and return access token.

    Raises:
        HTTPException: If credentials are invalid (401)
    """
    service = AuthService(db)
    token = await service.login(
        username=login_req.username,
        password=login_req.password,
    )
    return TokenResponse(access_token=token)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """
    Dependency to get current user ID from JWT token.

    Raises:
        HTTPException: If token is missing or invalid (401)
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    try:
        return verify_access_token(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )


async def get_current_admin_id(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
) -> str:
    """
    Dependency requiring the current user to be an administrator.

    The role is read from the database so revoked rights apply immediately.

    Raises:
        HTTPException: If user is gone (401)
        PermissionDeniedError: If user is not an admin
    """
    try:
        user = await AuthService(db).get_user_by_id(user_id)
    except (NotFoundError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
        )
    if not user.is_admin:
        raise PermissionDeniedError("Administrator access required", "ADMIN_REQUIRED")
    return user_id


@router.post("/activate", response_model=User)
async def activate(
    activation: ActivationRequest,
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Activate an account created by an administrator.

    - Token is single-use and expires
    """
    service = UserService(db, clock)
    return await service.activate(token=activation.token, password=activation.password)


@router.get("/me", response_model=User)
async def get_current_user(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """Get current authenticated user."""
    service = AuthService(db)
    return await service.get_user_by_id(user_id)


@router.put("/me/profile", response_model=User)
async def update_profile(
    profile: ProfileUpdate,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """Update greeting and locale of the current user."""
    service = AuthService(db, clock)
    return await service.update_profile(
        user_id=user_id,
        greeting=profile.greeting,
        locale=profile.locale,
        language_code=profile.language_code,
    )


@router.put("/me/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    password_change: PasswordChange,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """Change the current user's password."""
    service = AuthService(db, clock)
    await service.change_password(
        user_id=user_id,
        current_password=password_change.current_password,
        new_password=password_change.new_password,
    )


@router.get("/me/settings", response_model=UserSettings)
async def get_settings(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """Get settings of the current user."""
    service = AuthService(db)
    return await service.get_settings(user_id)


@router.put("/me/settings", response_model=UserSettings)
async def update_settings(
    user_settings: UserSettings,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """Update settings of the current user (e.g. start of week)."""
    service = AuthService(db, clock)
    return await service.update_settings(user_id, user_settings)


@router.get("/me/api-token/status", response_model=ApiTokenStatus)
async def get_api_token_status(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """Whether the current user has an API token."""
    service = ApiTokenService(db)
    return ApiTokenStatus(exists=await service.has_token(user_id))


@router.get("/me/api-token", response_model=ApiToken)
async def get_api_token(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """Get the API token of the current user."""
    service = ApiTokenService(db)
    return ApiToken(token=await service.get_token(user_id))


@router.post("/me/api-token", response_model=ApiToken, status_code=status.HTTP_201_CREATED)
async def create_api_token(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Generate the API token of the current user.

    - Fails with 409 if a token already exists; use PUT to replace it
    """
    service = ApiTokenService(db, clock)
    return ApiToken(token=await service.generate(user_id))


@router.put("/me/api-token", response_model=ApiToken)
async def replace_api_token(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """Replace the API token of the current user."""
    service = ApiTokenService(db, clock)
    return ApiToken(token=await service.regenerate(user_id))
