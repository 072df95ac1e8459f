"""Import router - bring entries over from other trackers."""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from app.database import get_database
from app.exceptions import ValidationError
from app.models.toggl_import import ImportResult
from app.routers.auth import get_current_user_id
from app.services.import_service import ImportService
from app.utils.clock import Clock, get_clock


router = APIRouter(prefix="/import", tags=["import"])


@router.post("/toggl", response_model=ImportResult)
async def import_toggl(
    request: Request,
    x_timezone: Optional[str] = Header(None),
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Import a Toggl CSV export sent as the plain-text request body.

    - Times are read in the X-Timezone zone, UTC when missing or unknown
    - Entries already present (same title and start) are skipped
    """
    try:
        content = (await request.body()).decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("Invalid CSV format", "INVALID_CSV_FORMAT")
    service = ImportService(db, clock)
    return await service.import_toggl(user_id, content, x_timezone)
