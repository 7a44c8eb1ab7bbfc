from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pymysql

from adapters.base import DatabaseAdapter, EngineCapabilities, execute_only
from adapters.config import ConnectionConfig
from adapters.constants import EngineType, SwitchMode
from adapters.errors import AdapterError, NoActiveConnectionError, native_error_code
from schema.descriptors import DatabaseDescriptor, TableDescriptor
from schema.introspector.normalizer import (
    build_column,
    build_foreign_key,
    group_indexes,
    group_triggers,
    table_refs,
)

logger = logging.getLogger(__name__)

ER_BAD_FIELD_ERROR = 1054

_SCHEMATA_SQL = "SELECT SCHEMA_NAME AS name FROM INFORMATION_SCHEMA.SCHEMATA ORDER BY SCHEMA_NAME"
_SIZE_SQL = """
    SELECT SUM(DATA_LENGTH + INDEX_LENGTH) AS size_on_disk
    FROM INFORMATION_SCHEMA.TABLES
    WHERE TABLE_SCHEMA = %s
"""
_TABLES_SQL = """
    SELECT TABLE_NAME AS table_name
    FROM INFORMATION_SCHEMA.TABLES
    WHERE TABLE_SCHEMA = %s
      AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""
_VIEWS_SQL = """
    SELECT TABLE_NAME AS view_name
    FROM INFORMATION_SCHEMA.VIEWS
    WHERE TABLE_SCHEMA = %s
    ORDER BY TABLE_NAME
"""
_COLUMNS_SQL = """
    SELECT
        COLUMN_NAME AS column_name,
        DATA_TYPE AS data_type,
        IS_NULLABLE AS is_nullable,
        COLUMN_DEFAULT AS default_value,
        CHARACTER_MAXIMUM_LENGTH AS length,
        NUMERIC_PRECISION AS `precision`,
        NUMERIC_SCALE AS scale,
        COLUMN_KEY AS column_key,
        EXTRA AS extra,
        ORDINAL_POSITION AS ordinal_position
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
"""
_INDEXES_SQL = """
    SELECT
        INDEX_NAME AS index_name,
        NON_UNIQUE AS non_unique,
        COLUMN_NAME AS column_name,
        INDEX_TYPE AS index_type
    FROM INFORMATION_SCHEMA.STATISTICS
    WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
    ORDER BY INDEX_NAME, SEQ_IN_INDEX
"""
_FOREIGN_KEYS_SQL = """
    SELECT
        kcu.CONSTRAINT_NAME AS fk_name,
        kcu.COLUMN_NAME AS column_name,
        kcu.REFERENCED_TABLE_SCHEMA AS referenced_schema,
        kcu.REFERENCED_TABLE_NAME AS referenced_table,
        kcu.REFERENCED_COLUMN_NAME AS referenced_column,
        rc.DELETE_RULE AS delete_rule,
        rc.UPDATE_RULE AS update_rule
    FROM INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
    LEFT JOIN INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS rc
      ON rc.CONSTRAINT_SCHEMA = kcu.CONSTRAINT_SCHEMA
     AND rc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
    WHERE kcu.TABLE_SCHEMA = %s AND kcu.TABLE_NAME = %s
      AND kcu.REFERENCED_TABLE_NAME IS NOT NULL
    ORDER BY kcu.CONSTRAINT_NAME, kcu.ORDINAL_POSITION
"""
_TRIGGERS_SQL = """
    SELECT
        TRIGGER_NAME AS trigger_name,
        EVENT_MANIPULATION AS event,
        ACTION_TIMING AS timing,
        ACTION_STATEMENT AS statement
    FROM INFORMATION_SCHEMA.TRIGGERS
    WHERE EVENT_OBJECT_SCHEMA = %s AND EVENT_OBJECT_TABLE = %s
"""
# servers whose TRIGGERS view predates ACTION_TIMING
_TRIGGERS_LEGACY_SQL = """
    SELECT
        TRIGGER_NAME AS trigger_name,
        EVENT_MANIPULATION AS event,
        ACTION_STATEMENT AS statement
    FROM INFORMATION_SCHEMA.TRIGGERS
    WHERE EVENT_OBJECT_SCHEMA = %s AND EVENT_OBJECT_TABLE = %s
"""
_STATUS_SQL = """
    SHOW STATUS WHERE Variable_name IN (
        'Connections', 'Max_used_connections', 'Threads_connected', 'Threads_running', 'Uptime'
    )
"""


class MySQLAdapter(DatabaseAdapter):
    engine = EngineType.MYSQL
    capabilities = EngineCapabilities(
        switch_mode=SwitchMode.USE_STATEMENT,
        native_show=True,
    )

    def _connect_params(self, config: ConnectionConfig) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "host": config.resolved_host,
            "port": config.resolved_port,
            "user": config.username,
            "password": config.password_value or "",
            "connect_timeout": max(1, int(config.connection_timeout_s)),
            "autocommit": True,
            "charset": config.charset or "utf8mb4",
        }
        if config.database:
            params["database"] = config.database
        if config.socket_path and config.resolved_host == "localhost":
            params["unix_socket"] = config.socket_path
        if isinstance(config.ssl, dict):
            params["ssl"] = config.ssl
        elif config.ssl:
            params["ssl"] = {"check_hostname": False}
        if config.timezone:
            params["init_command"] = f"SET time_zone = '{config.timezone}'"
        return params

    def _open_connection(self, config: ConnectionConfig) -> Any:
        return pymysql.connect(**self._connect_params(config))

    def _cancel_statement(self, raw: Any) -> None:
        # pymysql has no cancel call; kill the running query from a side connection
        if self.config is None:
            return
        killer = self._open_connection(self.config)
        try:
            execute_only(killer, f"KILL QUERY {int(raw.thread_id())}")
        finally:
            killer.close()

    def _schema(self, db_name: Optional[str]) -> Optional[str]:
        return db_name or self.current_database

    async def get_databases(self) -> List[DatabaseDescriptor]:
        databases = []
        for row in await self._fetch(_SCHEMATA_SQL):
            name = row["name"]
            descriptor = DatabaseDescriptor(name=name)
            try:
                size = await self._fetch(_SIZE_SQL, (name,))
                descriptor.size_on_disk = int(size[0]["size_on_disk"] or 0) if size else 0
                descriptor.tables = table_refs(r["table_name"] for r in await self._fetch(_TABLES_SQL, (name,)))
                descriptor.views = table_refs(r["view_name"] for r in await self._fetch(_VIEWS_SQL, (name,)))
            except NoActiveConnectionError:
                raise
            except (pymysql.MySQLError, AdapterError) as exc:
                logger.warning("Skipping details for database %s: %s", name, exc)
                descriptor.error = str(exc)
            databases.append(descriptor)
        return databases

    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        rows = await self._fetch(_TABLES_SQL, (self._schema(db_name),))
        return [row["table_name"] for row in rows]

    async def _triggers(self, schema: str, table: str) -> List[Dict[str, Any]]:
        try:
            return await self._fetch(_TRIGGERS_SQL, (schema, table))
        except pymysql.MySQLError as exc:
            if native_error_code(exc) != ER_BAD_FIELD_ERROR:
                raise
        rows = await self._fetch(_TRIGGERS_LEGACY_SQL, (schema, table))
        return [dict(row, timing="UNKNOWN") for row in rows]

    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        schema = self._schema(db_name)
        params = (schema, table)

        columns = []
        for row in await self._fetch(_COLUMNS_SQL, params):
            row["is_primary_key"] = row.pop("column_key", None) == "PRI"
            columns.append(build_column(row))

        index_rows = [
            dict(
                row,
                is_unique=int(row["non_unique"] or 0) == 0,
                is_primary=row["index_name"] == "PRIMARY",
            )
            for row in await self._fetch(_INDEXES_SQL, params)
        ]

        foreign_keys = [build_foreign_key(row) for row in await self._fetch(_FOREIGN_KEYS_SQL, params)]
        triggers = [dict(row, enabled=True) for row in await self._triggers(schema, table)]

        return TableDescriptor(
            db_name=schema,
            table_name=table,
            columns=columns,
            indexes=group_indexes(index_rows),
            foreign_keys=foreign_keys,
            triggers=group_triggers(triggers),
        )

    async def get_connection_stats(self) -> Optional[Dict[str, Any]]:
        try:
            stats = self._pool_stats()
            rows = await self._fetch(_STATUS_SQL)
        except Exception as exc:
            logger.warning("Could not read mysql status: %s", exc)
            return None
        for row in rows:
            stats[str(row["Variable_name"]).lower()] = row["Value"]
        return stats
