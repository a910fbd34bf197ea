"""
Table List Router

Lists the tables the admin can browse. Requires the designated admin.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from auth.dependencies import AdminIdentity, require_admin
from services.sql_executor import ExecutionError
from services.table_catalog import fetch_table_info
from utils.rate_limiter import check_ip_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tables"])


def limit_table_requests(request: Request) -> None:
    check_ip_rate_limit(request, "tables")


@router.get("/tables", dependencies=[Depends(limit_table_requests)])
def list_tables(
    admin: AdminIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """List all tables available to the dashboard."""
    try:
        return fetch_table_info(db)
    except ExecutionError as e:
        logger.warning(f"Table list failed for {admin.email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )
