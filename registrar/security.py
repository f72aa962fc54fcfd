from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import select

from .config import settings
from .db import get_session
from .models import RoleEnum, User


# Las sesiones las gestiona un proveedor externo; aquí solo se valida el bearer token
bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLES = frozenset({RoleEnum.superadmin, RoleEnum.admin})


def create_access_token(subject: str, expires_minutes: Optional[int] = None, extra: Optional[Dict[str, Any]] = None) -> str:
    effective_minutes = expires_minutes if expires_minutes is not None else settings.access_token_expire_minutes
    to_encode: Dict[str, Any] = {"sub": subject}
    if extra:
        to_encode.update(extra)
    if effective_minutes is not None and effective_minutes > 0:
        expire = datetime.now(timezone.utc) + timedelta(minutes=effective_minutes)
        to_encode["exp"] = int(expire.timestamp())
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def authenticate_token(token: str, session) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"}
    )
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        email: str = payload.get("sub")
        if email is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    user = session.exec(select(User).where(User.email == email.strip().lower())).first()
    if not user or not user.is_active:
        raise credentials_exception
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme), session=Depends(get_session)
) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated", headers={"WWW-Authenticate": "Bearer"}
        )
    return authenticate_token(credentials.credentials, session)


def is_admin(user: User) -> bool:
    return user.role in ADMIN_ROLES


def require_roles(*roles: str):
    allowed = {RoleEnum(role) for role in roles}
    if RoleEnum.admin in allowed:
        # superadmin cubre cualquier verificación de admin
        allowed.add(RoleEnum.superadmin)

    def _inner(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _inner
