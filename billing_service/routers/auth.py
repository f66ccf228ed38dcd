from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import crud, schemas
from ..auth import CurrentUser, create_user_token, get_current_user, get_password_hash, verify_password
from ..core.config import Settings
from ..database import get_db
from ..dependencies import get_app_settings
from ..errors import AuthError, DuplicateKeyError, NotFoundError, ValidationError

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=schemas.ApiResponse[schemas.AuthPayload],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    user_data: schemas.UserCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """Create a regular user account and sign it in"""
    if await crud.get_user_by_email(db, user_data.email):
        raise DuplicateKeyError("User with this email already exists")

    user = await crud.create_user(
        db,
        email=user_data.email,
        password_hash=get_password_hash(user_data.password),
        name=user_data.name,
    )
    return schemas.ApiResponse[schemas.AuthPayload](
        message="User registered successfully",
        data=schemas.AuthPayload(token=create_user_token(user, settings), user=schemas.User.model_validate(user)),
    )


@router.post("/login", response_model=schemas.ApiResponse[schemas.AuthPayload], response_model_exclude_none=True)
async def login(
    credentials: schemas.UserLogin,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    if not credentials.email or not credentials.password:
        raise ValidationError(["Please provide email and password"], "Please provide email and password")

    user = await crud.get_user_by_email(db, credentials.email)
    if user is None or not verify_password(credentials.password, user.password_hash):
        raise AuthError("Invalid email or password")

    return schemas.ApiResponse[schemas.AuthPayload](
        message="Login successful",
        data=schemas.AuthPayload(token=create_user_token(user, settings), user=schemas.User.model_validate(user)),
    )


@router.get("/profile", response_model=schemas.ApiResponse[schemas.User], response_model_exclude_none=True)
async def get_profile(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await crud.get_user(db, current_user.id)
    if user is None:
        raise NotFoundError("User not found")
    return schemas.ApiResponse[schemas.User](data=schemas.User.model_validate(user))
