"""
Shared utility functions for the backend.
"""
from .rate_limiter import check_ip_rate_limit, RATE_LIMITS, clear_rate_limits, get_client_ip
from .sql_validator import (
    Accepted,
    Rejected,
    ValidationVerdict,
    MAX_ROWS,
    validate_query,
)

__all__ = [
    "check_ip_rate_limit",
    "RATE_LIMITS",
    "clear_rate_limits",
    "get_client_ip",
    "Accepted",
    "Rejected",
    "ValidationVerdict",
    "MAX_ROWS",
    "validate_query",
]
