"""
Best-effort audit logging for admin actions.

A failed audit write is logged and dropped; it must never fail the request
that triggered it.
"""
import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import AdminLog
from utils.rate_limiter import get_client_ip

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    request: Request,
    admin_email: str,
    action: str,
    table_name: str,
    row_id: Optional[str] = None,
    old_data: Optional[dict] = None,
    new_data: Optional[dict] = None,
) -> Optional[AdminLog]:
    """
    Record an admin action in admin_logs and commit.

    Returns the stored entry, or None if the write failed.
    """
    entry = AdminLog(
        admin_email=admin_email,
        action=action,
        table_name=table_name,
        row_id=row_id,
        old_data=old_data or None,
        new_data=new_data or None,
        ip_address=get_client_ip(request),
    )

    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Audit log error ({action} on {table_name} by {admin_email}): {e}")
        return None

    return entry
