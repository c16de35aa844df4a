"""
FastAPI dependencies for caller identity and admin access.

Identity is owned by an external service; this backend only receives the
caller's opaque user UID.
"""

import secrets

from fastapi import Header, HTTPException, status

from prizepool.core.config import settings


async def get_user_uid(x_user_uid: str | None = Header(default=None)) -> str:
    """Resolve the calling user's UID from the X-User-UID header"""
    if not x_user_uid or not x_user_uid.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-UID header"
        )
    return x_user_uid.strip()


async def require_admin(x_admin_key: str | None = Header(default=None)) -> str:
    """Guard admin routes with the shared ADMIN_API_KEY"""
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin access is not configured"
        )
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return "admin"
