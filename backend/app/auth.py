"""
Claim Resolution Engine - Identity Boundary
Property-manager sessions: bcrypt password checks and HS256 bearer tokens.

The engine trusts this boundary to tell it who the caller is and which
organization they act for. Every service then re-checks ownership itself
by joining claim -> property -> organization.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .models.db_models import UserDB

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_TTL = timedelta(hours=24)

security = HTTPBearer()


@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    organization_id: Optional[str]
    role: str
    expires_at: datetime


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """False for a wrong password or an unusable stored hash."""
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a bcrypt hash")
        return False


def create_access_token(user_id: str, email: str, organization_id: str, role: str = "member") -> str:
    """Bearer token naming the user and the organization they act for."""
    claims = {
        "sub": user_id,
        "email": email,
        "org": organization_id,
        "role": role,
        "exp": datetime.utcnow() + SESSION_TTL,
    }
    return jwt.encode(claims, get_settings().jwt_secret_key, algorithm=ALGORITHM)


def read_session_claims(token: str) -> Optional[SessionClaims]:
    """Verify signature and expiry. None if either fails."""
    try:
        payload = jwt.decode(token, get_settings().jwt_secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None

    user_id = payload.get("sub")
    exp = payload.get("exp")
    if not user_id or exp is None:
        return None
    expires_at = datetime.utcfromtimestamp(exp)
    if expires_at < datetime.utcnow():
        return None
    return SessionClaims(
        user_id=user_id,
        organization_id=payload.get("org"),
        role=payload.get("role") or "member",
        expires_at=expires_at,
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> UserDB:
    """
    Resolve the calling property manager.

    A token minted for one organization stops working if the account has
    since moved to another.
    """
    claims = read_session_claims(credentials.credentials)
    if claims is None:
        raise _unauthorized("Could not validate credentials")

    user = db.query(UserDB).filter(UserDB.id == claims.user_id).first()
    if user is None:
        raise _unauthorized("Could not validate credentials")
    if claims.organization_id and claims.organization_id != user.organization_id:
        logger.warning(f"Rejected session for user {user.id}: organization changed since login")
        raise _unauthorized("Session no longer matches the account's organization")
    return user
