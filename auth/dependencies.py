"""
Authentication dependencies for FastAPI.
"""
from typing import Optional
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from database.models import User
from auth.security import security, SessionIdentity, identity_from_token
from core.exceptions import UnauthorizedError, ForbiddenError
from core.realtime import ConnectionManager
import config


def get_db_session():
    """Get database session."""
    if not config.db:
        raise HTTPException(status_code=503, detail="Database not initialized")
    with config.db.get_session() as session:
        yield session


def get_realtime(request: Request) -> ConnectionManager:
    """Connection registry owned by the running app (see app.py lifespan)."""
    return request.app.state.realtime


def get_mail(request: Request):
    """FastMail client, or None when SMTP is not configured."""
    return getattr(request.app.state, "mail", None)


async def get_session_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security)
) -> SessionIdentity:
    """
    Decode the bearer token into a session identity.

    Raises:
        UnauthorizedError: If the token is missing or fails verification
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Authentication required")

    identity = identity_from_token(credentials.credentials)
    if identity is None:
        raise UnauthorizedError("Invalid authentication credentials")
    return identity


async def require_any(
    identity: SessionIdentity = Depends(get_session_identity)
) -> SessionIdentity:
    """Any registered role: end-user or admin domain."""
    if not (identity.is_user or identity.is_admin):
        raise ForbiddenError("Access denied for this email domain")
    return identity


async def require_user(
    identity: SessionIdentity = Depends(get_session_identity)
) -> SessionIdentity:
    if not identity.is_user:
        raise ForbiddenError("Access denied. This action is for campus users only")
    return identity


async def require_admin(
    identity: SessionIdentity = Depends(get_session_identity)
) -> SessionIdentity:
    if not identity.is_admin:
        raise ForbiddenError("Access denied. Administrator access required")
    return identity


async def get_current_user(
    identity: SessionIdentity = Depends(require_any),
    db: Session = Depends(get_db_session)
) -> User:
    """
    Load the user behind the session token.

    Raises:
        UnauthorizedError: If the account no longer matches the token
    """
    user = db.query(User).filter(User.id == identity.user_id).first()
    if user is None or user.email != identity.email:
        raise UnauthorizedError("User not found")
    return user
