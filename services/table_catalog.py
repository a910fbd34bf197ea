"""
Read-only catalog lookups behind the dashboard's home page and table list.

Both go through database functions maintained alongside exec_sql():
get_table_row_counts() returns {table_name: row_count} and get_table_info()
returns one object per table.
"""
import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from services.sql_executor import ExecutionError, run_scalar

logger = logging.getLogger(__name__)


TABLE_ROW_COUNTS_STATEMENT = text("SELECT get_table_row_counts() AS result")
TABLE_INFO_STATEMENT = text("SELECT get_table_info() AS result")

# Used when get_table_info() is missing or fails
PUBLIC_TABLE_NAMES_STATEMENT = text(
    "SELECT coalesce(json_agg(json_build_object('table_name', table_name) ORDER BY table_name), '[]'::json) "
    "FROM information_schema.tables "
    "WHERE table_schema = 'public' AND table_type = 'BASE TABLE'"
)


def fetch_table_row_counts(db: Session) -> dict[str, Any]:
    """Row count per table. Raises ExecutionError on a database error."""
    return run_scalar(db, TABLE_ROW_COUNTS_STATEMENT) or {}


def fetch_table_info(db: Session) -> list[dict[str, Any]]:
    """
    Describe the tables the dashboard can browse.

    Falls back to bare table names from information_schema if get_table_info()
    fails. If the fallback fails too, the original error is raised.
    """
    try:
        return run_scalar(db, TABLE_INFO_STATEMENT) or []
    except ExecutionError as e:
        logger.warning(f"get_table_info() failed, listing table names instead: {e}")
        try:
            return run_scalar(db, PUBLIC_TABLE_NAMES_STATEMENT) or []
        except ExecutionError:
            raise e
