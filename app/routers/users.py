"""Admin user endpoints - account management."""
from fastapi import APIRouter, Depends, Query, status

from app.database import get_database
from app.models.user import ActivationToken, CreatedUser, User, UserCreate, UserUpdate, UsersPage
from app.routers.auth import get_current_admin_id
from app.services.user_service import UserService
from app.utils.clock import Clock, get_clock


router = APIRouter(prefix="/admin/users", tags=["admin"])


@router.get("", response_model=UsersPage)
async def list_users(
    page: int = Query(0),
    size: int = Query(20),
    admin_id: str = Depends(get_current_admin_id),
    db=Depends(get_database),
):
    """
    List users, ordered by username.

    - Requires admin
    - page >= 0, 1 <= size <= 100
    """
    service = UserService(db)
    return await service.list_users(page=page, size=size)


@router.post("", response_model=CreatedUser, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_create: UserCreate,
    admin_id: str = Depends(get_current_admin_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Create a user.

    - Requires admin
    - Returns an activation token the user sets their password with
    """
    service = UserService(db, clock)
    return await service.create_user(
        username=user_create.username,
        greeting=user_create.greeting,
        is_admin=user_create.is_admin,
    )


@router.get("/{user_id}", response_model=User)
async def get_user(
    user_id: str,
    admin_id: str = Depends(get_current_admin_id),
    db=Depends(get_database),
):
    """Get a user by ID."""
    service = UserService(db)
    return await service.get_user(user_id)


@router.put("/{user_id}", response_model=User)
async def update_user(
    user_id: str,
    user_update: UserUpdate,
    admin_id: str = Depends(get_current_admin_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """
    Update username and greeting of a user.

    - Username must stay unique
    """
    service = UserService(db, clock)
    return await service.update_user(
        user_id=user_id,
        username=user_update.username,
        greeting=user_update.greeting,
    )


@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    admin_id: str = Depends(get_current_admin_id),
    db=Depends(get_database),
):
    """
    Delete a user and their time entries.

    - Admins cannot delete themselves
    """
    service = UserService(db)
    return await service.delete_user(current_user_id=admin_id, user_id=user_id)


@router.post("/{user_id}/activation-token", response_model=ActivationToken)
async def regenerate_activation_token(
    user_id: str,
    admin_id: str = Depends(get_current_admin_id),
    db=Depends(get_database),
    clock: Clock = Depends(get_clock),
):
    """Issue a new activation token, invalidating the previous one."""
    service = UserService(db, clock)
    return await service.issue_activation_token(user_id)
