"""
Supabase access token validation using python-jose.

Supabase signs user access tokens with the project's JWT secret (HS256,
audience "authenticated"), so they can be verified locally without a round
trip to the auth server.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv
from jose import jwt, JWTError

load_dotenv()

# Configuration
SECRET_KEY = os.getenv("SUPABASE_JWT_SECRET", "dev-secret-key-change-in-production")
ALGORITHM = "HS256"
AUDIENCE = "authenticated"

# Security validation: Fail startup in production if using default secret key
_ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
if _ENVIRONMENT == "production" and SECRET_KEY == "dev-secret-key-change-in-production":
    raise RuntimeError(
        "SECURITY ERROR: SUPABASE_JWT_SECRET environment variable must be set in production. "
        "Copy it from Project Settings > API > JWT Settings in the Supabase dashboard."
    )
ACCESS_TOKEN_EXPIRE_HOURS = 1  # Supabase default access token lifetime


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a token shaped like a Supabase access token.

    Used for local development and tests; production tokens are issued by Supabase Auth.

    Args:
        data: Token payload (sub, email, role, ...)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = {"aud": AUDIENCE, "role": "authenticated"}
    to_encode.update(data)

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)

    to_encode.update({
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    })

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify and decode a Supabase access token.

    Args:
        token: The JWT token string to verify

    Returns:
        Decoded payload dict if valid, None if invalid, expired or for another audience
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM], audience=AUDIENCE)
    except JWTError:
        return None

    # python-jose lets tokens without an aud claim through
    if "aud" not in payload:
        return None
    return payload
