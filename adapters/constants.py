from __future__ import annotations

from enum import Enum
from typing import Dict


class EngineType(str, Enum):
    MYSQL = "mysql"
    POSTGRES = "postgres"
    MSSQL = "mssql"
    ORACLE = "oracle"
    SQLITE = "sqlite"


ENGINE_ALIASES: Dict[str, EngineType] = {
    "mysql": EngineType.MYSQL,
    "mysql2": EngineType.MYSQL,
    "mariadb": EngineType.MYSQL,
    "postgres": EngineType.POSTGRES,
    "postgresql": EngineType.POSTGRES,
    "pg": EngineType.POSTGRES,
    "mssql": EngineType.MSSQL,
    "sqlserver": EngineType.MSSQL,
    "oracle": EngineType.ORACLE,
    "oracledb": EngineType.ORACLE,
    "sqlite": EngineType.SQLITE,
    "sqlite3": EngineType.SQLITE,
}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SWITCHING = "switching"
    ERROR = "error"


class StatementType(str, Enum):
    SELECT = "select"
    SCHEMA = "schema"
    MUTATION = "mutation"
    DDL = "ddl"
    PERMISSION = "permission"
    TRANSACTION = "transaction"
    UNKNOWN = "unknown"


class SwitchMode(str, Enum):
    USE_STATEMENT = "use_statement"
    RECONNECT = "reconnect"
    SESSION_SCHEMA = "session_schema"
    UNSUPPORTED = "unsupported"


class PaginationStyle(str, Enum):
    LIMIT_OFFSET = "limit_offset"
    OFFSET_FETCH = "offset_fetch"


DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 1000
DEFAULT_CONNECTION_TIMEOUT_MS = 60_000
DEFAULT_QUERY_TIMEOUT_MS = 30_000
DEFAULT_POOL_SIZE = 10
DEFAULT_POOL_MIN = 2
DEFAULT_IDLE_TIMEOUT_MS = 30_000

DEFAULT_PORTS: Dict[EngineType, int] = {
    EngineType.MYSQL: 3306,
    EngineType.POSTGRES: 5432,
    EngineType.MSSQL: 1433,
    EngineType.ORACLE: 1521,
}

MASKED_SECRET = "***"

NO_ACTIVE_CONNECTION = "No active database connection. Call connect first."
CONNECTION_NOT_INITIALIZED = "{engine} connection not initialized"
DATABASE_SWITCH_FAILED = "Failed to switch to database: {name}"
SQLITE_NO_SWITCH = "SQLite does not support switching databases"
SQLITE_NO_PERMISSIONS = "GRANT/REVOKE not supported in SQLite"
UNSUPPORTED_ENGINE = "Unsupported database type: {engine}. Supported types: {supported}"
COUNT_UNAVAILABLE = "Total row count unavailable, pagination omitted: {reason}"

SUCCESS_MESSAGES: Dict[StatementType, str] = {
    StatementType.SELECT: "Query executed successfully",
    StatementType.SCHEMA: "Schema command executed successfully",
    StatementType.MUTATION: "{count} row(s) affected",
    StatementType.DDL: "DDL executed successfully",
    StatementType.PERMISSION: "Permission command executed successfully",
    StatementType.TRANSACTION: "Transaction command executed successfully",
    StatementType.UNKNOWN: "Command executed successfully",
}
