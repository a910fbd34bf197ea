"""
SQLAlchemy models for the admin dashboard backend.
Only the audit trail is owned here; application tables are browsed, not modelled.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from database import Base


class AdminLog(Base):
    """
    Audit trail of admin actions.
    One row per write or SQL runner execution, written best-effort after the action.
    """
    __tablename__ = "admin_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_email = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False, comment='INSERT, UPDATE, DELETE or SQL_QUERY')
    table_name = Column(String(255), nullable=False)
    row_id = Column(String(255))
    old_data = Column(JSON)
    new_data = Column(JSON)
    ip_address = Column(String(45))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
