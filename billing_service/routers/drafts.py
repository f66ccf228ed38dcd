from typing import Dict, List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud, models, schemas
from ..auth import CurrentUser, get_current_user
from ..database import get_db
from ..errors import NotFoundError, PermissionDeniedError

router = APIRouter(prefix="/drafts", tags=["drafts"])


async def _get_owned_draft(db: AsyncSession, draft_id: str, current_user: CurrentUser) -> models.DraftBilling:
    draft = await crud.get_draft(db, draft_id)
    if draft is None:
        raise NotFoundError("Draft not found")
    if not current_user.is_admin and draft.created_by != current_user.id:
        raise PermissionDeniedError("You do not have access to this draft")
    return draft


@router.post("", response_model=schemas.ApiResponse[schemas.DraftBilling], response_model_exclude_none=True)
async def save_draft(
    draft_data: schemas.DraftSave,
    response: Response,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Save a new draft, or update the draft named by ``id``"""
    if draft_data.id:
        draft = await _get_owned_draft(db, draft_data.id, current_user)
        draft = await crud.update_draft(db, draft, draft_data)
        message = "Draft updated successfully"
    else:
        draft = await crud.create_draft(db, current_user.id, draft_data)
        response.status_code = status.HTTP_201_CREATED
        message = "Draft saved successfully"
    return schemas.ApiResponse[schemas.DraftBilling](message=message, data=schemas.DraftBilling.model_validate(draft))


@router.get("", response_model=schemas.ApiResponse[List[schemas.DraftBilling]], response_model_exclude_none=True)
async def list_drafts(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    drafts = await crud.get_drafts(db, owner_id=current_user.owner_scope)
    return schemas.ApiResponse[List[schemas.DraftBilling]](
        data=[schemas.DraftBilling.model_validate(draft) for draft in drafts],
        count=len(drafts),
    )


@router.get("/{draft_id}", response_model=schemas.ApiResponse[schemas.DraftBilling], response_model_exclude_none=True)
async def get_draft(
    draft_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    draft = await _get_owned_draft(db, draft_id, current_user)
    return schemas.ApiResponse[schemas.DraftBilling](data=schemas.DraftBilling.model_validate(draft))


@router.delete("/{draft_id}", response_model=schemas.ApiResponse[Dict[str, str]], response_model_exclude_none=True)
async def delete_draft(
    draft_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Discard a draft"""
    draft = await _get_owned_draft(db, draft_id, current_user)
    await crud.delete_draft(db, draft)
    return schemas.ApiResponse[Dict[str, str]](message="Draft deleted successfully", data={"id": draft_id})
