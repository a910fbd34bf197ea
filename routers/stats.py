"""
Dashboard Stats Router

Row counts for the dashboard home page. Requires the designated admin.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from auth.dependencies import AdminIdentity, require_admin
from services.sql_executor import ExecutionError
from services.table_catalog import fetch_table_row_counts
from utils.rate_limiter import check_ip_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Stats"])


def limit_stats_requests(request: Request) -> None:
    check_ip_rate_limit(request, "stats")


@router.get("/stats", dependencies=[Depends(limit_stats_requests)])
def get_stats(
    admin: AdminIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Row count per table.

    `recent` is reserved for recent activity and is always empty.
    """
    try:
        counts = fetch_table_row_counts(db)
    except ExecutionError as e:
        logger.warning(f"Table row counts failed for {admin.email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    return {"tables": counts, "recent": []}
