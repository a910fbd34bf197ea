"""
FastAPI dependencies for authentication and authorization.

The dashboard has a single administrator, identified by ADMIN_EMAIL. Every
admin endpoint depends on require_admin.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel

from .jwt_handler import verify_token

load_dotenv()

logger = logging.getLogger(__name__)

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")


class AdminIdentity(BaseModel):
    """The authenticated caller, as read from the access token."""
    user_id: str
    email: str


def get_bearer_token(request: Request) -> str:
    """
    Extract the access token from the Authorization header.

    Raises HTTPException 403 if the header is missing or not a Bearer token.
    """
    authorization = request.headers.get("Authorization", "")
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing authorization token",
        )
    return authorization[len("Bearer "):].strip()


def get_current_admin(
    token: str = Depends(get_bearer_token),
) -> AdminIdentity:
    """
    Get the caller identity from a verified Supabase access token.

    Raises HTTPException 403 if the token is invalid or expired.
    """
    payload = verify_token(token)
    if not payload or not payload.get("sub") or not payload.get("email"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid token",
        )

    return AdminIdentity(user_id=str(payload["sub"]), email=payload["email"])


def require_admin(
    current_user: AdminIdentity = Depends(get_current_admin),
) -> AdminIdentity:
    """
    Require the caller to be the designated administrator.

    Raises HTTPException 403 for any other user, and for everyone when
    ADMIN_EMAIL is not configured.

    Usage:
        @router.post("/sql")
        def run_sql(admin: AdminIdentity = Depends(require_admin)):
            ...
    """
    if not ADMIN_EMAIL or current_user.email.lower() != ADMIN_EMAIL.lower():
        logger.warning(f"Admin access denied for {current_user.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: not admin",
        )
    return current_user
