"""Services package for backend application."""

from .sql_executor import (
    ExecSqlChannel,
    ExecutionError,
    build_execution_envelope,
    execute_read_query,
    run_scalar,
)
from .table_catalog import fetch_table_info, fetch_table_row_counts
from .audit_log import log_action

__all__ = [
    'ExecSqlChannel',
    'ExecutionError',
    'build_execution_envelope',
    'execute_read_query',
    'run_scalar',
    'fetch_table_info',
    'fetch_table_row_counts',
    'log_action',
]
