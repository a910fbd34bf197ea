"""
Execution envelope for validated admin SQL.

An accepted query is never sent to the database as-is. It is wrapped in a
session statement timeout and a READ ONLY transaction, then handed to the
exec_sql() database function in a single round trip. The database enforces
READ ONLY on its own, independently of the text checks in utils.sql_validator.
"""
import logging
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from utils.sql_validator import Accepted, ends_in_line_comment

logger = logging.getLogger(__name__)


# Server-side upper bound on a single admin query
STATEMENT_TIMEOUT_SECONDS = 10

# The one entry point that runs arbitrary read SQL; maintained in the database
EXEC_SQL_STATEMENT = text("SELECT exec_sql(:query_text) AS result")


class ExecutionError(Exception):
    """Database-side failure while running an accepted query (syntax, timeout, permissions)."""


def build_execution_envelope(query: str) -> str:
    """
    Build the exact SQL text sent to the execution channel.

    Order: statement timeout, BEGIN READ ONLY, the query (one terminating
    semicolon), COMMIT.
    """
    body = query.rstrip()
    if body.endswith(";"):
        body = body[:-1].rstrip()

    # A trailing -- comment would swallow a terminator on the same line
    terminator = "\n;" if ends_in_line_comment(body) else ";"

    return "\n".join([
        f"SET statement_timeout = '{STATEMENT_TIMEOUT_SECONDS}s';",
        "BEGIN READ ONLY;",
        f"{body}{terminator}",
        "COMMIT;",
    ])


def run_scalar(db: Session, statement, params: Optional[dict] = None) -> Any:
    """
    Run a single-value statement and return its scalar result.

    Raises:
        ExecutionError: With the driver's message, after rolling the session back
    """
    try:
        return db.execute(statement, params or {}).scalar()
    except SQLAlchemyError as e:
        db.rollback()
        # Prefer the driver's own message over SQLAlchemy's wrapper text
        message = str(getattr(e, "orig", None) or e).strip()
        raise ExecutionError(message) from e


class ExecSqlChannel:
    """
    Runs a complete SQL string through the exec_sql() database function.

    Returns the function result untouched (normally a JSON array of row
    objects). Database errors become ExecutionError with the driver message.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, sql: str) -> Any:
        return run_scalar(self.db, EXEC_SQL_STATEMENT, {"query_text": sql})


def execute_read_query(verdict: Accepted, channel: ExecSqlChannel) -> Any:
    """
    Run an accepted query once and return the channel result verbatim.

    Raises:
        ValueError: If `verdict` is not an Accepted verdict
        ExecutionError: If the database reports an error (never retried)
    """
    if not isinstance(verdict, Accepted):
        raise ValueError("Only accepted queries can be executed")

    envelope = build_execution_envelope(verdict.query)
    logger.debug(f"Dispatching envelope ({len(envelope)} chars) to exec_sql")
    return channel.execute(envelope)
