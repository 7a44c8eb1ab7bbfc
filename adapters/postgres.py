from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import psycopg

from adapters.base import DatabaseAdapter, EngineCapabilities, fetch_dicts
from adapters.config import ConnectionConfig
from adapters.constants import EngineType, StatementType, SwitchMode
from adapters.errors import AdapterError, NoActiveConnectionError
from adapters.statements import strip_qualifier
from schema.descriptors import DatabaseDescriptor, TableDescriptor
from schema.introspector.normalizer import (
    build_column,
    build_foreign_key,
    group_indexes,
    group_triggers,
    table_refs,
)

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"

_DATABASES_SQL = """
    SELECT datname AS name
    FROM pg_database
    WHERE datistemplate = false
    ORDER BY datname
"""
_SIZE_SQL = "SELECT pg_database_size(%s) AS size_on_disk"
_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = %s
      AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""
_VIEWS_SQL = """
    SELECT table_name AS view_name
    FROM information_schema.views
    WHERE table_schema = %s
    ORDER BY table_name
"""
_COLUMNS_SQL = """
    SELECT
        column_name,
        data_type,
        is_nullable,
        column_default AS default_value,
        character_maximum_length AS length,
        numeric_precision AS precision,
        numeric_scale AS scale,
        ordinal_position
    FROM information_schema.columns
    WHERE table_schema = %s AND table_name = %s
    ORDER BY ordinal_position
"""
_PRIMARY_KEY_SQL = """
    SELECT kcu.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    WHERE tc.table_schema = %s
      AND tc.table_name = %s
      AND tc.constraint_type = 'PRIMARY KEY'
"""
_INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        a.attname AS column_name,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        am.amname AS index_type,
        pg_get_indexdef(ix.indexrelid) AS definition
    FROM pg_index ix
    JOIN pg_class t ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_am am ON am.oid = i.relam
    LEFT JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord) ON TRUE
    LEFT JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
    WHERE n.nspname = %s AND t.relname = %s
    ORDER BY i.relname, k.ord
"""
_FOREIGN_KEYS_SQL = """
    SELECT
        tc.constraint_name AS fk_name,
        kcu.column_name,
        ccu.table_schema AS referenced_schema,
        ccu.table_name AS referenced_table,
        ccu.column_name AS referenced_column,
        rc.delete_rule,
        rc.update_rule
    FROM information_schema.table_constraints tc
    JOIN information_schema.key_column_usage kcu
      ON tc.constraint_name = kcu.constraint_name
     AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage ccu
      ON ccu.constraint_name = tc.constraint_name
     AND ccu.constraint_schema = tc.table_schema
    LEFT JOIN information_schema.referential_constraints rc
      ON rc.constraint_name = tc.constraint_name
     AND rc.constraint_schema = tc.table_schema
    WHERE tc.table_schema = %s
      AND tc.table_name = %s
      AND tc.constraint_type = 'FOREIGN KEY'
"""
_TRIGGERS_SQL = """
    SELECT
        trigger_name,
        event_manipulation AS event,
        action_timing AS timing,
        action_statement AS statement
    FROM information_schema.triggers
    WHERE event_object_schema = %s AND event_object_table = %s
    ORDER BY trigger_name, event_manipulation
"""
_ACTIVITY_SQL = """
    SELECT
        count(*) AS total_connections,
        count(*) FILTER (WHERE state = 'active') AS active_connections,
        count(*) FILTER (WHERE state = 'idle') AS idle_connections
    FROM pg_stat_activity
    WHERE datname = current_database()
"""


class PostgresAdapter(DatabaseAdapter):
    engine = EngineType.POSTGRES
    # sessions cannot see other databases, so a switch rebuilds the pool
    capabilities = EngineCapabilities(
        switch_mode=SwitchMode.RECONNECT,
    )
    show_tables_sql = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = current_schema()
          AND table_type = 'BASE TABLE'
        ORDER BY table_name
    """
    describe_sql = """
        SELECT column_name, data_type, is_nullable, column_default
        FROM information_schema.columns
        WHERE table_schema = current_schema()
          AND table_name = '{table}'
        ORDER BY ordinal_position
    """

    def __init__(self) -> None:
        super().__init__()
        self.current_schema = DEFAULT_SCHEMA

    def _initial_target(self, config: ConnectionConfig) -> Optional[str]:
        return config.database or "postgres"

    def _connect_params(self, config: ConnectionConfig) -> Dict[str, Any]:
        options = [f"-c statement_timeout={int(config.request_timeout_ms)}"]
        if config.schema_name and config.schema_name != DEFAULT_SCHEMA:
            options.append(f"-c search_path={config.schema_name}")
        if config.timezone:
            options.append(f"-c timezone={config.timezone}")
        params: Dict[str, Any] = {
            "host": config.resolved_host,
            "port": config.resolved_port,
            "dbname": config.database or "postgres",
            "user": config.username,
            "password": config.password_value,
            "connect_timeout": max(1, int(config.connection_timeout_s)),
            "options": " ".join(options),
            "autocommit": True,
        }
        if config.application_name:
            params["application_name"] = config.application_name
        if config.ssl:
            params["sslmode"] = "require"
        return params

    def _open_connection(self, config: ConnectionConfig) -> Any:
        return psycopg.connect(**self._connect_params(config))

    async def connect(self, config: ConnectionConfig) -> None:
        await super().connect(config)
        self.current_schema = config.schema_name or DEFAULT_SCHEMA

    def _prepare_statement(self, statement: str, statement_type: StatementType) -> str:
        return strip_qualifier(statement, self.current_database)

    async def switch_database(self, name: str) -> None:
        await super().switch_database(name)
        self.current_schema = DEFAULT_SCHEMA

    async def _ensure_target(self, db_name: Optional[str]) -> None:
        if db_name and db_name != self.current_database:
            await self.switch_database(db_name)

    async def _fetch_other_database(self, name: str, sql: str, params: Any) -> List[Dict[str, Any]]:
        config = self.config.with_database(name)
        conn = await asyncio.wait_for(
            asyncio.to_thread(self._open_connection, config), timeout=config.connection_timeout_s
        )
        try:
            return await asyncio.to_thread(fetch_dicts, conn, sql, params)
        finally:
            await asyncio.to_thread(conn.close)

    async def get_databases(self) -> List[DatabaseDescriptor]:
        databases = []
        for row in await self._fetch(_DATABASES_SQL):
            name = row["name"]
            descriptor = DatabaseDescriptor(name=name)
            try:
                size = await self._fetch(_SIZE_SQL, (name,))
                descriptor.size_on_disk = int(size[0]["size_on_disk"] or 0) if size else None
                if name == self.current_database:
                    tables = await self._fetch(_TABLES_SQL, (self.current_schema,))
                    views = await self._fetch(_VIEWS_SQL, (self.current_schema,))
                else:
                    tables = await self._fetch_other_database(name, _TABLES_SQL, (DEFAULT_SCHEMA,))
                    views = await self._fetch_other_database(name, _VIEWS_SQL, (DEFAULT_SCHEMA,))
                descriptor.tables = table_refs(r["table_name"] for r in tables)
                descriptor.views = table_refs(r["view_name"] for r in views)
            except NoActiveConnectionError:
                raise
            except (psycopg.Error, AdapterError, asyncio.TimeoutError) as exc:
                logger.warning("Skipping details for database %s: %s", name, exc)
                descriptor.error = str(exc) or type(exc).__name__
            databases.append(descriptor)
        return databases

    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        await self._ensure_target(db_name)
        rows = await self._fetch(_TABLES_SQL, (self.current_schema,))
        return [row["table_name"] for row in rows]

    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        await self._ensure_target(db_name)
        params = (self.current_schema, table)

        primary_keys = {row["column_name"] for row in await self._fetch(_PRIMARY_KEY_SQL, params)}
        columns = [build_column(row, primary_keys) for row in await self._fetch(_COLUMNS_SQL, params)]
        indexes = group_indexes(await self._fetch(_INDEXES_SQL, params))
        foreign_keys = [build_foreign_key(row) for row in await self._fetch(_FOREIGN_KEYS_SQL, params)]
        triggers = group_triggers(await self._fetch(_TRIGGERS_SQL, params))

        return TableDescriptor(
            db_name=self.current_database,
            table_name=table,
            columns=columns,
            indexes=indexes,
            foreign_keys=foreign_keys,
            triggers=triggers,
        )

    async def get_connection_stats(self) -> Optional[Dict[str, Any]]:
        try:
            stats = self._pool_stats()
            rows = await self._fetch(_ACTIVITY_SQL)
        except Exception as exc:
            logger.warning("Could not read postgres activity: %s", exc)
            return None
        if rows:
            stats.update({key: int(value or 0) for key, value in rows[0].items()})
        stats["schema"] = self.current_schema
        return stats
