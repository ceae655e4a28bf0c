from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from itsdangerous import BadSignature
from sqlmodel import Session

from .config import ADMIN_ACCESS_TOKEN
from .db import get_session
from .models import User
from .utils import read_token


def _bearer(authorization: Optional[str], x_access_token: Optional[str]) -> Optional[str]:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip()
    return x_access_token


def current_user(
    authorization: Optional[str] = Header(default=None),
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    session: Session = Depends(get_session),
) -> User:
    candidate = _bearer(authorization, x_access_token)
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    try:
        payload = read_token(candidate)
    except BadSignature:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    user = session.get(User, payload.get("user_id")) if isinstance(payload, dict) else None
    if not user:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    return user


def require_admin(
    authorization: Optional[str] = Header(default=None),
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    session: Session = Depends(get_session),
) -> Optional[User]:
    candidate = _bearer(authorization, x_access_token)
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if ADMIN_ACCESS_TOKEN and candidate == ADMIN_ACCESS_TOKEN:
        return None
    user = current_user(authorization, x_access_token, session)
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
