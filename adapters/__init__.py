"""Database adapter layer for multi-engine execution and introspection."""

from adapters.base import DatabaseAdapter, EngineCapabilities
from adapters.config import ConnectionConfig, normalize_engine
from adapters.constants import ConnectionState, EngineType, StatementType
from adapters.errors import (
    AdapterError,
    EngineConnectionError,
    IntrospectionPartialFailure,
    NoActiveConnectionError,
    SqlExecutionError,
    SqlSyntaxError,
    UnsupportedOperationError,
)
from adapters.factory import get_adapter
from adapters.results import Pagination, QueryMessage, QueryResult, QueryResultEntry

__all__ = [
    "AdapterError",
    "ConnectionConfig",
    "ConnectionState",
    "DatabaseAdapter",
    "EngineCapabilities",
    "EngineConnectionError",
    "EngineType",
    "IntrospectionPartialFailure",
    "NoActiveConnectionError",
    "Pagination",
    "QueryMessage",
    "QueryResult",
    "QueryResultEntry",
    "SqlExecutionError",
    "SqlSyntaxError",
    "StatementType",
    "UnsupportedOperationError",
    "get_adapter",
    "normalize_engine",
]
