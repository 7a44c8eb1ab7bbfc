from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from adapters.base import DatabaseAdapter, EngineCapabilities
from adapters.config import ConnectionConfig
from adapters.constants import EngineType, SwitchMode
from adapters.errors import NoActiveConnectionError
from schema.descriptors import DatabaseDescriptor, TableDescriptor
from schema.introspector.normalizer import (
    build_column,
    build_foreign_key,
    group_indexes,
    group_triggers,
    table_refs,
)

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"
DEFAULT_SCHEMA = "dbo"
ACCESS_DENIED = "Access denied"

_DATABASES_SQL = "SELECT name FROM sys.databases ORDER BY name"
_SIZE_SQL = """
    SELECT SUM(CAST(size AS BIGINT)) * 8 * 1024 AS size_on_disk
    FROM sys.master_files
    WHERE database_id = DB_ID(?)
"""
_TABLES_SQL = "SELECT name AS table_name FROM {db}.sys.tables ORDER BY name"
_VIEWS_SQL = "SELECT name AS view_name FROM {db}.sys.views ORDER BY name"
_COLUMNS_SQL = """
    SELECT
        COLUMN_NAME AS column_name,
        DATA_TYPE AS data_type,
        IS_NULLABLE AS is_nullable,
        COLUMN_DEFAULT AS default_value,
        CHARACTER_MAXIMUM_LENGTH AS length,
        NUMERIC_PRECISION AS precision,
        NUMERIC_SCALE AS scale,
        ORDINAL_POSITION AS ordinal_position
    FROM {db}.INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ?
    ORDER BY ORDINAL_POSITION
"""
_PRIMARY_KEY_SQL = """
    SELECT kcu.COLUMN_NAME AS column_name
    FROM {db}.INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
    JOIN {db}.INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
      ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
     AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
    WHERE tc.TABLE_SCHEMA = ? AND tc.TABLE_NAME = ?
      AND tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
"""
_INDEXES_SQL = """
    SELECT
        i.name AS index_name,
        c.name AS column_name,
        i.is_unique AS is_unique,
        i.is_primary_key AS is_primary,
        i.type_desc AS index_type
    FROM {db}.sys.indexes i
    JOIN {db}.sys.index_columns ic
      ON ic.object_id = i.object_id AND ic.index_id = i.index_id
    JOIN {db}.sys.columns c
      ON c.object_id = ic.object_id AND c.column_id = ic.column_id
    WHERE i.object_id = OBJECT_ID(?) AND i.name IS NOT NULL
    ORDER BY i.name, ic.key_ordinal
"""
_FOREIGN_KEYS_SQL = """
    SELECT
        fk.name AS fk_name,
        pc.name AS column_name,
        rs.name AS referenced_schema,
        rt.name AS referenced_table,
        rc.name AS referenced_column,
        fk.delete_referential_action_desc AS delete_rule,
        fk.update_referential_action_desc AS update_rule
    FROM {db}.sys.foreign_keys fk
    JOIN {db}.sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
    JOIN {db}.sys.columns pc
      ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
    JOIN {db}.sys.tables rt ON rt.object_id = fkc.referenced_object_id
    JOIN {db}.sys.schemas rs ON rs.schema_id = rt.schema_id
    JOIN {db}.sys.columns rc
      ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
    WHERE fk.parent_object_id = OBJECT_ID(?)
    ORDER BY fk.name, fkc.constraint_column_id
"""
_TRIGGERS_SQL = """
    SELECT
        t.name AS trigger_name,
        te.type_desc AS event,
        CASE WHEN t.is_instead_of_trigger = 1 THEN 'INSTEAD OF' ELSE 'AFTER' END AS timing,
        m.definition AS statement,
        CASE WHEN t.is_disabled = 1 THEN 0 ELSE 1 END AS enabled
    FROM {db}.sys.triggers t
    LEFT JOIN {db}.sys.trigger_events te ON te.object_id = t.object_id
    LEFT JOIN {db}.sys.sql_modules m ON m.object_id = t.object_id
    WHERE t.parent_id = OBJECT_ID(?)
    ORDER BY t.name
"""
_SESSIONS_SQL = """
    SELECT
        COUNT(*) AS total_connections,
        SUM(CASE WHEN status = 'running' THEN 1 ELSE 0 END) AS active_connections
    FROM sys.dm_exec_sessions
    WHERE is_user_process = 1
"""


def _yes_no(value: Optional[bool], default: bool) -> str:
    return "yes" if (default if value is None else value) else "no"


class MSSQLAdapter(DatabaseAdapter):
    engine = EngineType.MSSQL
    capabilities = EngineCapabilities(
        switch_mode=SwitchMode.USE_STATEMENT,
    )
    show_tables_sql = "SELECT name AS table_name FROM sys.tables ORDER BY name"
    describe_sql = """
        SELECT COLUMN_NAME AS column_name, DATA_TYPE AS data_type, IS_NULLABLE AS is_nullable,
               COLUMN_DEFAULT AS column_default
        FROM INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_NAME = '{table}'
        ORDER BY ORDINAL_POSITION
    """

    def _initial_target(self, config: ConnectionConfig) -> Optional[str]:
        return config.database or "master"

    def connection_string(self, config: ConnectionConfig) -> str:
        server = config.resolved_host
        if config.instance_name:
            server = f"{server}\\{config.instance_name}"
        else:
            server = f"{server},{config.resolved_port}"
        encrypt = config.encrypt
        if encrypt is None and config.ssl is not None:
            encrypt = bool(config.ssl)
        parts = [
            f"DRIVER={{{config.odbc_driver or DEFAULT_ODBC_DRIVER}}}",
            f"SERVER={server}",
            f"DATABASE={config.database or 'master'}",
            f"UID={config.username}",
            f"PWD={{{(config.password_value or '').replace('}', '}}')}}}",
            f"Encrypt={_yes_no(encrypt, True)}",
            f"TrustServerCertificate={_yes_no(config.trust_server_certificate, True)}",
            f"APP={config.application_name or 'polyquery'}",
        ]
        return ";".join(parts)

    def _open_connection(self, config: ConnectionConfig) -> Any:
        # needs the unixODBC runtime, so only imported when a connection is opened
        import pyodbc  # type: ignore

        conn = pyodbc.connect(
            self.connection_string(config),
            timeout=max(1, int(config.connection_timeout_s)),
            autocommit=True,
        )
        conn.timeout = max(1, int(config.request_timeout_s))
        return conn

    def _scope(self, db_name: Optional[str], table: str) -> Tuple[str, Tuple[str, str], str]:
        database = db_name or self.current_database or "master"
        schema = (self.config.schema_name if self.config else None) or DEFAULT_SCHEMA
        quote = self.dialect.quote_identifier
        object_name = f"{quote(database)}.{quote(schema)}.{quote(table)}"
        return quote(database), (schema, table), object_name

    async def get_databases(self) -> List[DatabaseDescriptor]:
        databases = []
        for row in await self._fetch(_DATABASES_SQL):
            name = row["name"]
            quoted = self.dialect.quote_identifier(name)
            descriptor = DatabaseDescriptor(name=name)
            try:
                size = await self._fetch(_SIZE_SQL, (name,))
                descriptor.size_on_disk = int(size[0]["size_on_disk"] or 0) if size else 0
                tables = await self._fetch(_TABLES_SQL.format(db=quoted))
                views = await self._fetch(_VIEWS_SQL.format(db=quoted))
                descriptor.tables = table_refs(r["table_name"] for r in tables)
                descriptor.views = table_refs(r["view_name"] for r in views)
            except NoActiveConnectionError:
                raise
            except Exception as exc:
                logger.warning("Cannot access database %s: %s", name, exc)
                descriptor.error = ACCESS_DENIED
            databases.append(descriptor)
        return databases

    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        database = self.dialect.quote_identifier(db_name or self.current_database or "master")
        return [row["table_name"] for row in await self._fetch(_TABLES_SQL.format(db=database))]

    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        database, params, object_name = self._scope(db_name, table)

        primary_keys = {
            row["column_name"] for row in await self._fetch(_PRIMARY_KEY_SQL.format(db=database), params)
        }
        columns = [
            build_column(row, primary_keys) for row in await self._fetch(_COLUMNS_SQL.format(db=database), params)
        ]
        indexes = group_indexes(await self._fetch(_INDEXES_SQL.format(db=database), (object_name,)))
        foreign_keys = [
            build_foreign_key(row)
            for row in await self._fetch(_FOREIGN_KEYS_SQL.format(db=database), (object_name,))
        ]
        triggers = group_triggers(await self._fetch(_TRIGGERS_SQL.format(db=database), (object_name,)))

        return TableDescriptor(
            db_name=db_name or self.current_database,
            table_name=table,
            columns=columns,
            indexes=indexes,
            foreign_keys=foreign_keys,
            triggers=triggers,
        )

    async def get_connection_stats(self) -> Optional[Dict[str, Any]]:
        try:
            stats = self._pool_stats()
            rows = await self._fetch(_SESSIONS_SQL)
        except Exception as exc:
            logger.warning("Could not read mssql sessions: %s", exc)
            return None
        if rows:
            stats.update({key: int(value or 0) for key, value in rows[0].items()})
        return stats
