"""Tag endpoints - usage statistics and legacy marks."""
from fastapi import APIRouter, Depends, status

from app.database import get_database
from app.models.tag import TagStat
from app.routers.auth import get_current_user_id
from app.services.tag_service import TagService


router = APIRouter(prefix="/tags", tags=["tags"])


@router.get("/stats", response_model=list[TagStat])
async def get_tag_stats(
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """
    Tag usage of the authenticated user.

    - One row per distinct tag, sorted by name
    - Count is the number of entries carrying the tag
    """
    service = TagService(db)
    return await service.get_tag_stats(user_id)


@router.put("/legacy/{tag}", status_code=status.HTTP_204_NO_CONTENT)
async def mark_legacy(
    tag: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """Mark a tag as legacy."""
    await TagService(db).mark_legacy(user_id, tag)


@router.delete("/legacy/{tag}", status_code=status.HTTP_204_NO_CONTENT)
async def unmark_legacy(
    tag: str,
    user_id: str = Depends(get_current_user_id),
    db=Depends(get_database),
):
    """Remove the legacy mark from a tag."""
    await TagService(db).unmark_legacy(user_id, tag)
