import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from . import crud, models, schemas
from .core.config import Settings
from .database import Database
from .errors import AuthError, PermissionDeniedError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    data: Dict[str, Any], settings: Settings, expires_delta: Optional[timedelta] = None
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_user_token(user: models.User, settings: Settings) -> str:
    return create_access_token({"sub": user.id, "email": user.email, "role": user.role}, settings)


@dataclass(frozen=True)
class CurrentUser:
    """Identity carried by a verified token"""
    id: str
    email: str
    role: schemas.UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == schemas.UserRole.ADMIN

    @property
    def owner_scope(self) -> Optional[str]:
        """Owner filter for record queries; admins see every owner's records"""
        return None if self.is_admin else self.id


def get_current_user(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    """Decode the bearer token into the calling user"""
    if not token:
        raise AuthError("Access denied. No token provided")

    settings: Settings = request.app.state.settings
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthError("Invalid or expired token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Invalid or expired token")
    try:
        role = schemas.UserRole(payload.get("role", schemas.UserRole.USER.value))
    except ValueError as exc:
        raise AuthError("Invalid or expired token") from exc

    return CurrentUser(id=user_id, email=payload.get("email", ""), role=role)


def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not current_user.is_admin:
        raise PermissionDeniedError("Admin access required")
    return current_user


async def bootstrap_admin(database: Database, settings: Settings) -> None:
    async with database.session() as db:
        await crud.ensure_admin_user(
            db,
            email=settings.ADMIN_EMAIL,
            name=settings.ADMIN_NAME,
            password_hash=lambda: get_password_hash(settings.ADMIN_PASSWORD),
        )
