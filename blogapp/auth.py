"""Admin gate in front of the write endpoints.

The OAuth exchange itself happens in the identity provider; once it hands back
a verified email, :func:`sign_in` decides whether that person may enter and
issues the bearer token the admin API expects.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader
from jose import JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import models
from .config import settings

logger = logging.getLogger(__name__)

SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def is_admin_email(email: Optional[str]) -> bool:
    return bool(email) and email.strip().lower() == settings.ADMIN_EMAIL.lower()


def create_access_token(data: dict, expires_delta: timedelta = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[str]:
    """Email carried by a valid token, None otherwise."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


def sign_in(db: Session, email: str, name: str = None) -> Optional[str]:
    """Provider callback: let the admin in and return a token, refuse anyone else."""
    if not is_admin_email(email):
        logger.warning("Rejected sign-in for %s", email)
        return None

    email = email.strip().lower()
    user = db.execute(
        select(models.User).where(func.lower(models.User.email) == email).limit(1)
    ).scalar_one_or_none()
    if user is None:
        user = models.User(email=email, name=name, role=models.UserRole.admin)
        db.add(user)
    else:
        user.email = email
        user.role = models.UserRole.admin
        if name and not user.name:
            user.name = name
    db.commit()
    logger.info("Admin signed in: %s", email)
    return create_access_token(data={"sub": email, "role": models.UserRole.admin.value})


def get_current_admin(token: str = Depends(api_key_header)) -> str:
    if not token:
        raise HTTPException(status_code=401, detail="Missing Authorization Header")

    email = decode_token(token.replace("Bearer ", ""))
    if email is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    if not is_admin_email(email):
        raise HTTPException(status_code=403, detail="Not authorized: admin only")

    return email
