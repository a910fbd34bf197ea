"""
Admin SQL Runner Router

Lets the dashboard administrator run ad-hoc read-only SQL:
- The text is checked by utils.sql_validator (SELECT/WITH only, blocked
  keywords, single statement, row cap)
- Accepted queries run inside a time-boxed READ ONLY transaction through the
  exec_sql() database function
- Successful runs are written to the audit trail

Security: Requires the designated admin. Disabled in production unless
ENABLE_RAW_SQL_EXECUTION=true.
"""

import logging
import os
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from auth.dependencies import AdminIdentity, require_admin
from services.audit_log import log_action
from services.sql_executor import ExecSqlChannel, ExecutionError, execute_read_query
from utils.rate_limiter import check_ip_rate_limit
from utils.sql_validator import Rejected, validate_query

logger = logging.getLogger(__name__)

router = APIRouter(tags=["SQL Runner"])

# Anything longer is rejected before validation
MAX_QUERY_LENGTH = 10000

# Environment flag to enable/disable raw SQL execution endpoint
# Default: disabled in production, enabled elsewhere
_ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
ENABLE_RAW_SQL_EXECUTION = os.getenv("ENABLE_RAW_SQL_EXECUTION", "false").lower() == "true"
if _ENVIRONMENT == "production" and not ENABLE_RAW_SQL_EXECUTION:
    logger.warning(
        "Raw SQL execution endpoint is DISABLED in production. "
        "Set ENABLE_RAW_SQL_EXECUTION=true to enable."
    )


def get_query_text(body: Any) -> Any:
    """Pull `query` out of the request body; any other body shape yields None."""
    if isinstance(body, dict):
        return body.get("query")
    return None


def get_sql_channel(db: Session = Depends(get_db)) -> ExecSqlChannel:
    """Dependency providing the exec_sql() channel bound to the request session."""
    return ExecSqlChannel(db)


def limit_sql_requests(request: Request) -> None:
    """Rate limit before authentication so token guessing is throttled too."""
    check_ip_rate_limit(request, "sql_execute")


@router.post("/sql", dependencies=[Depends(limit_sql_requests)])
def run_sql_query(
    request: Request,
    # Any JSON value; its shape is checked below
    body: Any = Body(None),
    admin: AdminIdentity = Depends(require_admin),
    channel: ExecSqlChannel = Depends(get_sql_channel),
    db: Session = Depends(get_db),
):
    """
    Execute a read-only SQL query and return the raw result rows.

    400 with the rejection reason if the query is not allowed, 500 with the
    database message if execution fails.
    """
    if _ENVIRONMENT == "production" and not ENABLE_RAW_SQL_EXECUTION:
        logger.warning(f"SQL execution blocked in production. Admin: {admin.email}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Raw SQL execution is disabled in production.",
        )

    query = get_query_text(body)

    # Empty strings are left to the validator ("Empty query")
    if not isinstance(query, str):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Query string required",
        )

    if len(query) > MAX_QUERY_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Query too long (max {MAX_QUERY_LENGTH} characters)",
        )

    # Security audit log - always log SQL execution attempts
    logger.warning(
        f"SQL_EXECUTION_AUDIT: Admin={admin.email} ({admin.user_id}), "
        f"Query length={len(query)}, First 200 chars: {query[:200]}"
    )

    verdict = validate_query(query)
    if isinstance(verdict, Rejected):
        logger.info(f"SQL query rejected for {admin.email}: {verdict.reason}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=verdict.reason,
        )

    try:
        result = execute_read_query(verdict, channel)
    except ExecutionError as e:
        logger.warning(f"SQL query error for admin {admin.email}: {str(e)[:200]}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    log_action(
        db, request, admin.email, "SQL_QUERY", "sql_runner",
        new_data={"query": query},
    )

    return result
