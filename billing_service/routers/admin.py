from typing import Dict, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud, models, schemas
from ..auth import CurrentUser, require_admin
from ..database import get_db
from ..errors import InvalidInputError, NotFoundError, PermissionDeniedError

router = APIRouter(prefix="/admin", tags=["admin"])


async def _get_user_or_404(db: AsyncSession, user_id: str) -> models.User:
    user = await crud.get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.get("/users", response_model=schemas.ApiResponse[List[schemas.User]], response_model_exclude_none=True)
async def list_users(
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    users = await crud.get_users(db)
    return schemas.ApiResponse[List[schemas.User]](
        data=[schemas.User.model_validate(user) for user in users],
        count=len(users),
    )


@router.put("/users/{user_id}/role", response_model=schemas.ApiResponse[schemas.User], response_model_exclude_none=True)
async def update_user_role(
    user_id: str,
    role_update: schemas.RoleUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        role = schemas.UserRole(role_update.role)
    except ValueError as exc:
        raise InvalidInputError("Invalid role. Must be either 'user' or 'admin'") from exc
    if user_id == admin.id:
        raise PermissionDeniedError("You cannot change your own role")

    user = await _get_user_or_404(db, user_id)
    user = await crud.update_user_role(db, user, role)
    return schemas.ApiResponse[schemas.User](
        message=f"User role updated to {role.value}",
        data=schemas.User.model_validate(user),
    )


@router.delete("/users/{user_id}", response_model=schemas.ApiResponse[Dict[str, str]], response_model_exclude_none=True)
async def delete_user(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if user_id == admin.id:
        raise PermissionDeniedError("You cannot delete your own account")

    user = await _get_user_or_404(db, user_id)
    await crud.delete_user(db, user)
    return schemas.ApiResponse[Dict[str, str]](message="User deleted successfully", data={"id": user_id})
