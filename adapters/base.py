from __future__ import annotations

import functools
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from adapters.config import ConnectionConfig
from adapters.constants import (
    CONNECTION_NOT_INITIALIZED,
    COUNT_UNAVAILABLE,
    DATABASE_SWITCH_FAILED,
    DEFAULT_PAGE_SIZE,
    SUCCESS_MESSAGES,
    ConnectionState,
    EngineType,
    StatementType,
    SwitchMode,
)
from adapters.errors import (
    AdapterError,
    EngineConnectionError,
    IntrospectionPartialFailure,
    NoActiveConnectionError,
    UnsupportedOperationError,
    classify_engine_error,
    native_error_code,
)
from adapters.pool import ConnectionPool, PooledConnection, PoolTimeoutError
from adapters.results import Pagination, QueryMessage, QueryResult, QueryResultEntry, StatementStats
from adapters.sql_renderer import SQLDialect, get_sql_dialect
from adapters.statements import (
    classify_statement,
    describe_target,
    has_row_limit,
    is_show_tables,
    sanitize_identifier,
    split_statements,
    total_pages,
)
from schema.descriptors import DatabaseDescriptor, TableDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineCapabilities:
    switch_mode: SwitchMode
    native_show: bool = False
    supports_permissions: bool = True
    max_pool_size: Optional[int] = None


@dataclass
class StatementOutcome:
    rows: List[Dict[str, Any]]
    has_result_set: bool
    affected_rows: Optional[int] = None
    last_insert_id: Optional[Any] = None


def _close_quietly(cursor: Any) -> None:
    close = getattr(cursor, "close", None)
    if close is not None:
        close()


def _rows_as_dicts(cursor: Any, lowercase: bool = False) -> List[Dict[str, Any]]:
    columns = [desc[0] for desc in cursor.description]
    if lowercase:
        columns = [str(column).lower() for column in columns]
    return [{columns[i]: row[i] for i in range(len(columns))} for row in cursor.fetchall()]


def execute_only(raw: Any, sql: str, params: Optional[Sequence[Any]] = None) -> None:
    cursor = raw.cursor()
    try:
        if params is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, params)
    finally:
        _close_quietly(cursor)


def fetch_dicts(
    raw: Any, sql: str, params: Optional[Sequence[Any]] = None, lowercase: bool = False
) -> List[Dict[str, Any]]:
    cursor = raw.cursor()
    try:
        if params is None:
            cursor.execute(sql)
        else:
            cursor.execute(sql, params)
        if cursor.description is None:
            return []
        return _rows_as_dicts(cursor, lowercase=lowercase)
    finally:
        _close_quietly(cursor)


def run_statement(raw: Any, sql: str) -> StatementOutcome:
    cursor = raw.cursor()
    try:
        cursor.execute(sql)
        if cursor.description is not None:
            return StatementOutcome(rows=_rows_as_dicts(cursor), has_result_set=True)
        rowcount = getattr(cursor, "rowcount", None)
        return StatementOutcome(
            rows=[],
            has_result_set=False,
            affected_rows=rowcount if isinstance(rowcount, int) and rowcount >= 0 else None,
            last_insert_id=getattr(cursor, "lastrowid", None) or None,
        )
    finally:
        _close_quietly(cursor)


class DatabaseAdapter(ABC):
    """Engine adapter contract plus the statement pipeline shared by every engine.

    Subclasses supply the driver connection, target switching and the catalog
    queries; everything else (pooling, pagination, counting, error capture)
    lives here.
    """

    engine: EngineType
    capabilities: EngineCapabilities
    ping_sql: str = "SELECT 1"
    no_switch_message: str = "Switching databases is not supported"
    # templates used when the engine has no native SHOW TABLES / DESCRIBE
    show_tables_sql: Optional[str] = None
    describe_sql: Optional[str] = None

    def __init__(self) -> None:
        self.config: Optional[ConnectionConfig] = None
        self.pool: Optional[ConnectionPool] = None
        self.state = ConnectionState.DISCONNECTED
        self.current_database: Optional[str] = None
        self.last_error: Optional[str] = None
        self.dialect: SQLDialect = get_sql_dialect(self.engine.value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(state={self.state.value}, target={self.current_database!r})"

    # -- engine hooks -------------------------------------------------------

    @abstractmethod
    def _open_connection(self, config: ConnectionConfig) -> Any:
        """Open one blocking driver connection. Runs in a worker thread."""

    @abstractmethod
    async def get_databases(self) -> List[DatabaseDescriptor]:
        raise NotImplementedError

    @abstractmethod
    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        raise NotImplementedError

    @abstractmethod
    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        raise NotImplementedError

    @abstractmethod
    async def get_connection_stats(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _initial_target(self, config: ConnectionConfig) -> Optional[str]:
        return config.database

    def _target_statement(self, target: str) -> Optional[str]:
        """Session statement that points a connection at ``target``; ``None`` if targets are per-pool."""
        mode = self.capabilities.switch_mode
        if mode == SwitchMode.USE_STATEMENT:
            return f"USE {self.dialect.quote_identifier(target)}"
        if mode == SwitchMode.SESSION_SCHEMA:
            return f"ALTER SESSION SET CURRENT_SCHEMA = {self.dialect.quote_identifier(target)}"
        return None

    def _prepare_statement(self, statement: str, statement_type: StatementType) -> str:
        return statement

    def _cancel_statement(self, raw: Any) -> None:
        """Stop the statement running on ``raw``. Called from another thread."""
        cancel = getattr(raw, "cancel", None)
        if cancel is not None:
            cancel()

    def _keeps_interrupted_session(self, config: ConnectionConfig) -> bool:
        return False

    # -- lifecycle ----------------------------------------------------------

    def _pool_size(self, config: ConnectionConfig) -> int:
        limit = self.capabilities.max_pool_size
        return min(config.pool_size, limit) if limit else config.pool_size

    def _build_pool(self, config: ConnectionConfig) -> ConnectionPool:
        target = self._initial_target(config) or "default"
        return ConnectionPool(
            connect=functools.partial(self._open_connection, config),
            size=self._pool_size(config),
            timeout=config.connection_timeout_s,
            name=f"{self.engine.value}:{target}",
            on_checkout=self._prepare_session,
            ping=functools.partial(execute_only, sql=self.ping_sql),
            cancel=self._cancel_statement,
            keep_interrupted=self._keeps_interrupted_session(config),
        )

    async def _open_pool(self, config: ConnectionConfig) -> ConnectionPool:
        pool = self._build_pool(config)
        try:
            await pool.warm_up(max(1, min(config.pool_min, pool.size)))
            await pool.execute(execute_only, self.ping_sql, timeout=config.request_timeout_s)
        except BaseException:
            await pool.close()
            raise
        return pool

    async def connect(self, config: ConnectionConfig) -> None:
        if config.engine != self.engine:
            raise ValueError(f"{type(self).__name__} cannot use a {config.engine.value} configuration")
        if self.pool is not None:
            await self.disconnect()

        self.config = config
        self.current_database = self._initial_target(config)
        self.state = ConnectionState.CONNECTING
        try:
            self.pool = await self._open_pool(config)
        except Exception as exc:
            self.state = ConnectionState.ERROR
            self.last_error = str(exc)
            logger.warning("Connection to %s failed: %s", self.engine.value, exc)
            raise EngineConnectionError(
                f"Failed to connect to {self.engine.value}: {exc}",
                code=native_error_code(exc),
                engine=self.engine.value,
            ) from exc

        self.state = ConnectionState.CONNECTED
        self.last_error = None
        logger.info(
            "Connected to %s",
            self.engine.value,
            extra={"engine": self.engine.value, "target": self.current_database, "pool_id": self.pool.pool_id},
        )

    async def disconnect(self) -> None:
        pool, self.pool = self.pool, None
        self.state = ConnectionState.DISCONNECTED
        if pool is None:
            return
        await pool.close()
        logger.info("Disconnected from %s", self.engine.value, extra={"pool_id": pool.pool_id})

    async def _ping(self) -> None:
        pool = self._require_pool()
        await pool.execute(execute_only, self.ping_sql, timeout=self._request_timeout())

    async def validate_connection(self) -> bool:
        if self.pool is None:
            return False
        try:
            await self._ping()
        except Exception as exc:
            self.last_error = str(exc)
            self.state = ConnectionState.DISCONNECTED
            logger.warning("Validation failed for %s: %s", self.engine.value, exc)
            return False
        self.state = ConnectionState.CONNECTED
        return True

    async def get_connection_health(self) -> Dict[str, Any]:
        health: Dict[str, Any] = {
            "status": "healthy",
            "engine": self.engine.value,
            "target": self.current_database,
            "last_check": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._ping()
        except Exception as exc:
            health["status"] = "unhealthy"
            health["error"] = str(exc)
        return health

    def _require_pool(self) -> ConnectionPool:
        if self.pool is None or self.pool.closed:
            raise NoActiveConnectionError(
                CONNECTION_NOT_INITIALIZED.format(engine=self.engine.value),
                engine=self.engine.value,
            )
        return self.pool

    def _request_timeout(self) -> Optional[float]:
        return self.config.request_timeout_s if self.config is not None else None

    def _pool_stats(self) -> Dict[str, Any]:
        stats = self._require_pool().stats()
        stats.update(engine=self.engine.value, target=self.current_database, state=self.state.value)
        return stats

    # -- target switching ---------------------------------------------------

    def _prepare_session(self, pooled: PooledConnection) -> None:
        target = self.current_database
        if not target or pooled.session.get("target") == target:
            return
        statement = self._target_statement(target)
        if statement is None:
            return
        execute_only(pooled.raw, statement)
        pooled.session["target"] = target

    async def _apply_session_target(self, name: str) -> None:
        statement = self._target_statement(name)
        if statement is None:
            raise UnsupportedOperationError(
                f"{self.engine.value} has no session-level target", engine=self.engine.value
            )
        pool = self._require_pool()
        async with pool.acquire() as pooled:
            await pool.run(pooled, execute_only, statement, timeout=self._request_timeout())
            pooled.session["target"] = name

    async def _rebuild_pool(self, name: str) -> None:
        if self.config is None:
            raise AdapterError(f"{self.engine.value} adapter has no configuration", engine=self.engine.value)
        config = self.config.with_database(name)
        replacement = await self._open_pool(config)
        previous, self.pool = self.pool, replacement
        self.config = config
        if previous is not None:
            await previous.close()
        logger.debug("Replaced pool %s with %s", previous, replacement)

    async def switch_database(self, name: str) -> None:
        mode = self.capabilities.switch_mode
        if mode == SwitchMode.UNSUPPORTED:
            raise UnsupportedOperationError(self.no_switch_message, engine=self.engine.value)
        apply = self._rebuild_pool if mode == SwitchMode.RECONNECT else self._apply_session_target
        await self._switch_target(name, apply)

    async def _switch_target(self, name: str, apply: Callable[[str], Awaitable[None]]) -> None:
        self._require_pool()
        previous = self.state
        self.state = ConnectionState.SWITCHING
        try:
            await apply(name)
        except UnsupportedOperationError:
            self.state = previous
            raise
        except Exception as exc:
            self.state = ConnectionState.ERROR
            self.last_error = str(exc)
            raise EngineConnectionError(
                DATABASE_SWITCH_FAILED.format(name=name),
                code=native_error_code(exc),
                engine=self.engine.value,
            ) from exc
        self.current_database = name
        self.state = ConnectionState.CONNECTED
        logger.info("Switched %s target to %s", self.engine.value, name)

    # -- introspection helpers ----------------------------------------------

    async def _fetch(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        pool = self._require_pool()
        return await pool.execute(fetch_dicts, sql, params, timeout=self._request_timeout())

    async def get_multiple_tables_info(self, db_name: Optional[str], tables: Sequence[str]) -> List[TableDescriptor]:
        self._require_pool()
        results: List[TableDescriptor] = []
        for table in tables:
            try:
                results.append(await self.get_table_info(db_name, table))
            except NoActiveConnectionError:
                raise
            except Exception as exc:
                failure = IntrospectionPartialFailure(str(exc), item=table, engine=self.engine.value)
                logger.warning("Table info failed for %s.%s: %s", db_name, table, failure.message)
                results.append(TableDescriptor(db_name=db_name, table_name=table, error=failure.message))
        return results

    # -- statement pipeline -------------------------------------------------

    async def execute_query(self, text: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> QueryResult:
        pool = self._require_pool()
        statements = split_statements(text)
        entries: List[QueryResultEntry] = []
        index = 0
        # a timed-out session is unusable; the rest of the batch moves to a fresh one
        while index < len(statements):
            async with pool.acquire() as session:
                while index < len(statements) and not session.broken:
                    entries.append(await self._execute_statement(session, statements[index], page, page_size))
                    index += 1
        return QueryResult(queries=entries, total_queries=len(entries))

    def _resolve_schema_command(self, statement: str) -> str:
        if self.capabilities.native_show:
            return statement
        target = sanitize_identifier(self.current_database or "")
        if self.show_tables_sql and is_show_tables(statement):
            return self.show_tables_sql.format(target=target)
        table = describe_target(statement)
        if self.describe_sql and table:
            return self.describe_sql.format(target=target, table=sanitize_identifier(table))
        return statement

    async def _run(self, session: PooledConnection, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await self._require_pool().run(session, fn, *args, timeout=self._request_timeout())
        except PoolTimeoutError:
            self.state = ConnectionState.ERROR
            raise

    async def _execute_statement(
        self, session: PooledConnection, statement: str, page: int, page_size: int
    ) -> QueryResultEntry:
        statement_type = classify_statement(statement)
        entry = QueryResultEntry(query=statement, type=statement_type)
        started = time.perf_counter()
        outcome: Optional[StatementOutcome] = None
        try:
            if statement_type == StatementType.PERMISSION and not self.capabilities.supports_permissions:
                entry.messages.append(self._unsupported_permission_message())
            elif statement_type == StatementType.SELECT:
                outcome = await self._execute_read(session, statement, page, page_size, entry)
            else:
                sql = self._prepare_statement(statement, statement_type)
                if statement_type == StatementType.SCHEMA:
                    sql = self._resolve_schema_command(sql)
                outcome = await self._run(session, run_statement, sql)
                entry.rows = outcome.rows
                entry.total_rows = len(outcome.rows) if outcome.has_result_set else None
                entry.messages.append(self._success_message(statement_type, outcome))
        except Exception as exc:
            error = classify_engine_error(exc, engine=self.engine.value, query=statement)
            logger.warning("Statement failed on %s: %s", self.engine.value, error.message)
            entry.messages.append(
                QueryMessage(message=error.message, error=True, category=error.category, code=error.code)
            )

        entry.stats = StatementStats(
            elapsed_ms=round((time.perf_counter() - started) * 1000.0, 3),
            affected_rows=outcome.affected_rows if outcome else None,
            last_insert_id=outcome.last_insert_id if outcome else None,
        )
        return entry

    async def _execute_read(
        self, session: PooledConnection, statement: str, page: int, page_size: int, entry: QueryResultEntry
    ) -> StatementOutcome:
        sql = self._prepare_statement(statement, StatementType.SELECT)
        if has_row_limit(sql):
            outcome = await self._run(session, run_statement, sql)
            entry.rows = outcome.rows
            entry.total_rows = len(outcome.rows)
            entry.messages.append(self._success_message(StatementType.SELECT, outcome))
            return outcome

        outcome = await self._run(session, run_statement, self.dialect.render_pagination(sql, page, page_size))
        entry.rows = outcome.rows
        entry.messages.append(self._success_message(StatementType.SELECT, outcome))
        total, reason = await self._count_rows(session, sql)
        if total is None:
            entry.total_rows = len(outcome.rows)
            entry.messages.append(QueryMessage(message=COUNT_UNAVAILABLE.format(reason=reason), category="warning"))
            return outcome

        entry.total_rows = total
        pages = total_pages(total, page_size)
        entry.pagination = Pagination(page=page, page_size=page_size, total_pages=pages, has_more=page < pages)
        return outcome

    async def _count_rows(self, session: PooledConnection, sql: str) -> Tuple[Optional[int], Optional[str]]:
        try:
            rows = await self._run(session, fetch_dicts, self.dialect.render_count(sql))
        except PoolTimeoutError:
            raise
        except Exception as exc:
            logger.debug("Count query rejected by %s: %s", self.engine.value, exc)
            return None, classify_engine_error(exc, engine=self.engine.value).message
        if not rows:
            return 0, None
        value = next(iter(rows[0].values()))
        return int(value or 0), None

    def _success_message(self, statement_type: StatementType, outcome: StatementOutcome) -> QueryMessage:
        template = SUCCESS_MESSAGES[statement_type]
        if statement_type == StatementType.MUTATION:
            template = template.format(count=outcome.affected_rows or 0)
        return QueryMessage(
            message=template,
            affected_rows=outcome.affected_rows,
            last_insert_id=outcome.last_insert_id,
        )

    def _unsupported_permission_message(self) -> QueryMessage:
        error = UnsupportedOperationError(
            f"GRANT/REVOKE not supported by {self.engine.value}", engine=self.engine.value
        )
        return QueryMessage(message=error.message, error=True, category="unsupported")


def ensure_connected(adapter: DatabaseAdapter) -> DatabaseAdapter:
    if adapter.state != ConnectionState.CONNECTED:
        raise NoActiveConnectionError(
            CONNECTION_NOT_INITIALIZED.format(engine=adapter.engine.value), engine=adapter.engine.value
        )
    return adapter


__all__ = [
    "AdapterError",
    "DatabaseAdapter",
    "EngineCapabilities",
    "StatementOutcome",
    "ensure_connected",
    "execute_only",
    "fetch_dicts",
    "run_statement",
]
