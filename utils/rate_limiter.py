"""
Per-IP rate limiting with configurable limits per operation.
Uses in-memory sliding window algorithm; state resets when the process restarts.
"""
import math
import time
from collections import defaultdict
from typing import Dict, List
from fastapi import HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware


# Storage: {"{client_ip}:{operation}": [timestamp, timestamp, ...]}
_ip_request_counts: Dict[str, List[float]] = defaultdict(list)

# Configurable rate limits by operation type
RATE_LIMITS = {
    # Raw SQL runner - restricted for security
    "sql_execute": {"limit": 20, "window": 60},     # 20 queries/min

    # Read-only dashboard endpoints
    "stats": {"limit": 50, "window": 60},
    "tables": {"limit": 100, "window": 60},

    # Default fallback
    "default": {"limit": 100, "window": 60},
}


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded_for = request.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _rate_limit_headers(limit: int, remaining: int, reset_at: float) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(math.ceil(reset_at)),
    }


def check_ip_rate_limit(request: Request, operation: str) -> None:
    """
    Check rate limit for an IP address.
    Raises HTTPException 429 if rate limit exceeded.

    Args:
        request: The FastAPI request object
        operation: The operation key (e.g., "sql_execute")
    """
    config = RATE_LIMITS.get(operation, RATE_LIMITS["default"])
    limit = config["limit"]
    window = config["window"]

    client_ip = get_client_ip(request)
    key = f"{client_ip}:{operation}"
    now = time.time()

    # Clean old entries outside the window
    _ip_request_counts[key] = [
        t for t in _ip_request_counts[key] if now - t < window
    ]

    timestamps = _ip_request_counts[key]
    reset_at = (timestamps[0] if timestamps else now) + window

    if len(timestamps) >= limit:
        request.state.rate_limit_headers = _rate_limit_headers(limit, 0, reset_at)
        retry_after = max(1, int(window - (now - timestamps[0])))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many requests. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)}
        )

    timestamps.append(now)
    request.state.rate_limit_headers = _rate_limit_headers(limit, limit - len(timestamps), reset_at)


def clear_rate_limits() -> None:
    """Clear all rate limit data. Useful for testing."""
    _ip_request_counts.clear()

class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """
    Copy the X-RateLimit-* headers recorded by check_ip_rate_limit onto the
    response, including error responses raised after the check.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.update(getattr(request.state, "rate_limit_headers", {}))
        return response
