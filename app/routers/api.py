"""Token-authenticated entry API for scripts and integrations."""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.database import get_database
from app.exceptions import NotFoundError
from app.models.api_token import ApiEntryStart, ApiEntryTitle, ApiMessage
from app.services.api_token_service import ApiTokenService
from app.services.timer_service import TimerService
from app.utils.clock import Clock, get_clock


router = APIRouter(prefix="/api/time-log-entries", tags=["api"])
security = HTTPBearer(auto_error=False)


async def get_api_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db=Depends(get_database),
) -> str:
    """
    Dependency resolving the user of an API token.

    Raises:
        HTTPException: If the header is missing (401)
        AuthenticationError: If the token is unknown
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid Authorization header",
        )
    return await ApiTokenService(db).authenticate(credentials.credentials)


@router.post("/start", response_model=ApiEntryTitle)
async def start_entry(
    entry_start: ApiEntryStart,
    user_id: str = Depends(get_api_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Start an entry now.

    - A running entry is stopped first
    """
    service = TimerService(db, clock)
    entry = await service.create_entry(
        user_id=user_id, title=entry_start.title, stop_active_entry=True
    )
    return ApiEntryTitle(title=entry.title)


@router.post("/stop", response_model=ApiMessage)
async def stop_entry(
    user_id: str = Depends(get_api_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """Stop the running entry; succeeds when nothing runs."""
    await TimerService(db, clock).stop_active_entry(user_id)
    return ApiMessage(message="Success")


@router.get("/active", response_model=ApiEntryTitle)
async def get_active_entry(
    user_id: str = Depends(get_api_user_id),
    db=Depends(get_database),
):
    """Title of the running entry, 404 when idle."""
    running = await TimerService(db).tracker.find_running(user_id)
    if not running:
        raise NotFoundError("No active time log entry", "NO_ACTIVE_ENTRY")
    return ApiEntryTitle(title=running["title"])
