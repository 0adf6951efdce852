"""
Session API Routes

Property managers exchange credentials for a bearer token scoped to their
organization. Homeowners never log in; they act through approval tokens.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth import SESSION_TTL, create_access_token, get_current_user, verify_password
from ..database import get_db
from ..models.db_models import UserDB

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    organization_id: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    organization_id: str
    organization_name: Optional[str] = None
    role: str = "member"


@router.post("/login", response_model=TokenResponse)
def login(body: LoginRequest, db: Session = Depends(get_db)):
    """Issue a session token for a property manager."""
    user = db.query(UserDB).filter(func.lower(UserDB.email) == body.email.lower()).first()
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info(f"Failed login for {body.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = create_access_token(user.id, user.email, user.organization_id, user.role or "member")
    logger.info(f"Property manager {user.id} signed in for organization {user.organization_id}")
    return TokenResponse(
        access_token=token,
        expires_in=int(SESSION_TTL.total_seconds()),
        organization_id=user.organization_id,
    )


@router.get("/me", response_model=UserResponse)
def get_me(current_user: UserDB = Depends(get_current_user)):
    org = current_user.organization
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        name=current_user.name,
        organization_id=current_user.organization_id,
        organization_name=org.name if org else None,
        role=current_user.role or "member",
    )
