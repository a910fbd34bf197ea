"""
Authentication module for the admin dashboard backend.

Provides:
- Supabase access token creation and validation
- FastAPI dependencies for route protection
"""

from .jwt_handler import create_access_token, verify_token
from .dependencies import AdminIdentity, get_current_admin, require_admin

__all__ = [
    "create_access_token",
    "verify_token",
    "AdminIdentity",
    "get_current_admin",
    "require_admin",
]
