from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import settings
from app.db.session import get_db
from app.models import User

bearer = HTTPBearer(auto_error=False)

DEV_USER_SUB = "dev|local-user"


class CurrentUser:
    def __init__(self, user_id: str, auth_sub: str):
        self.user_id = user_id
        self.auth_sub = auth_sub


def _sub_from_token(token: str) -> str:
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="AUTH_REQUIRED")
    sub = claims.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="AUTH_REQUIRED")
    return sub


def resolve_sub(creds: HTTPAuthorizationCredentials | None) -> str:
    """Map request credentials to a stable subject id; library and graph rows are scoped by it."""
    if settings.auth_skip_verify:
        # Dev mode: the raw bearer token doubles as the subject
        if creds is None or not creds.credentials:
            return DEV_USER_SUB
        return f"dev|{creds.credentials[:32]}"
    if creds is None:
        raise HTTPException(status_code=401, detail="AUTH_REQUIRED")
    return _sub_from_token(creds.credentials)


def _get_or_create_user(db: Session, sub: str) -> User:
    user = db.query(User).filter(User.auth_sub == sub).first()
    if user:
        return user
    user = User(auth_sub=sub)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> CurrentUser:
    sub = resolve_sub(creds)
    user = _get_or_create_user(db, sub)
    return CurrentUser(str(user.id), sub)
