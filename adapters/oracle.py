from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

import oracledb

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

DEFAULT_SERVICE = "XE"
ACCESS_DENIED = "Access denied"

SYSTEM_SCHEMAS = (
    "SYS", "SYSTEM", "DBSNMP", "SYSMAN", "OUTLN", "MDSYS", "ORDSYS", "EXFSYS", "DMSYS", "WMSYS",
    "CTXSYS", "ANONYMOUS", "XDB", "XS$NULL", "ORACLE_OCM", "APPQOSSYS", "GGSYS", "OJVMSYS", "DVF", "DVSYS",
)

_SCHEMAS_SQL = (
    "SELECT username AS name FROM all_users WHERE username NOT IN ("
    + ", ".join(f"'{name}'" for name in SYSTEM_SCHEMAS)
    + ") ORDER BY username"
)
_SIZE_SQL = "SELECT NVL(SUM(bytes), 0) AS size_on_disk FROM dba_segments WHERE owner = :1"
_TABLES_SQL = "SELECT table_name FROM all_tables WHERE owner = :1 ORDER BY table_name"
_VIEWS_SQL = "SELECT view_name FROM all_views WHERE owner = :1 ORDER BY view_name"
_COLUMNS_SQL = """
    SELECT
        column_name,
        data_type,
        CASE WHEN nullable = 'Y' THEN 1 ELSE 0 END AS is_nullable,
        data_default AS default_value,
        char_length AS length,
        data_precision AS precision,
        data_scale AS scale,
        column_id AS ordinal_position
    FROM all_tab_columns
    WHERE owner = :1 AND table_name = :2
    ORDER BY column_id
"""
_PRIMARY_KEY_SQL = """
    SELECT cc.column_name
    FROM all_constraints c
    JOIN all_cons_columns cc
      ON cc.owner = c.owner AND cc.constraint_name = c.constraint_name
    WHERE c.constraint_type = 'P' AND c.owner = :1 AND c.table_name = :2
"""
_INDEXES_SQL = """
    SELECT
        i.index_name,
        ic.column_name,
        CASE WHEN i.uniqueness = 'UNIQUE' THEN 1 ELSE 0 END AS is_unique,
        CASE WHEN c.constraint_name IS NOT NULL THEN 1 ELSE 0 END AS is_primary,
        i.index_type
    FROM all_indexes i
    JOIN all_ind_columns ic
      ON ic.index_owner = i.owner AND ic.index_name = i.index_name
    LEFT JOIN all_constraints c
      ON c.owner = i.table_owner AND c.index_name = i.index_name AND c.constraint_type = 'P'
    WHERE i.table_owner = :1 AND i.table_name = :2
    ORDER BY i.index_name, ic.column_position
"""
_FOREIGN_KEYS_SQL = """
    SELECT
        c.constraint_name AS fk_name,
        cc.column_name,
        r.owner AS referenced_schema,
        r.table_name AS referenced_table,
        rc.column_name AS referenced_column,
        c.delete_rule
    FROM all_constraints c
    JOIN all_cons_columns cc
      ON cc.owner = c.owner AND cc.constraint_name = c.constraint_name
    JOIN all_constraints r
      ON r.owner = c.r_owner AND r.constraint_name = c.r_constraint_name
    JOIN all_cons_columns rc
      ON rc.owner = r.owner AND rc.constraint_name = r.constraint_name AND rc.position = cc.position
    WHERE c.constraint_type = 'R' AND c.owner = :1 AND c.table_name = :2
    ORDER BY c.constraint_name, cc.position
"""
_TRIGGERS_SQL = """
    SELECT trigger_name, trigger_type, triggering_event, status, trigger_body
    FROM all_triggers
    WHERE owner = :1 AND table_name = :2
    ORDER BY trigger_name
"""
_SESSIONS_SQL = """
    SELECT
        COUNT(*) AS total_sessions,
        SUM(CASE WHEN status = 'ACTIVE' THEN 1 ELSE 0 END) AS active_sessions,
        SUM(CASE WHEN status = 'INACTIVE' THEN 1 ELSE 0 END) AS inactive_sessions
    FROM v$session
    WHERE type = 'USER'
"""


def build_connect_string(config: ConnectionConfig) -> str:
    host = config.resolved_host
    port = config.resolved_port
    if config.service_name:
        return f"{host}:{port}/{config.service_name}"
    if config.sid:
        return (
            f"(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)(HOST={host})(PORT={port}))"
            f"(CONNECT_DATA=(SID={config.sid})))"
        )
    return f"{host}:{port}/{config.database or DEFAULT_SERVICE}"


def _trigger_timing(trigger_type: Optional[str]) -> Optional[str]:
    """``BEFORE EACH ROW`` -> ``BEFORE``; ``INSTEAD OF`` stays whole."""
    if not trigger_type:
        return None
    upper = trigger_type.upper()
    if upper.startswith("INSTEAD OF"):
        return "INSTEAD OF"
    return upper.split()[0]


class OracleAdapter(DatabaseAdapter):
    engine = EngineType.ORACLE
    capabilities = EngineCapabilities(
        switch_mode=SwitchMode.SESSION_SCHEMA,
    )
    ping_sql = "SELECT 1 FROM DUAL"
    show_tables_sql = "SELECT table_name FROM all_tables WHERE owner = '{target}' ORDER BY table_name"
    describe_sql = """
        SELECT column_name, data_type, nullable, data_default
        FROM all_tab_columns
        WHERE owner = '{target}' AND table_name = UPPER('{table}')
        ORDER BY column_id
    """

    def _initial_target(self, config: ConnectionConfig) -> Optional[str]:
        # unquoted user names resolve to upper case schemas
        return config.schema_name or (config.username or "").upper() or None

    def _open_connection(self, config: ConnectionConfig) -> Any:
        conn = oracledb.connect(
            user=config.username,
            password=config.password_value,
            dsn=build_connect_string(config),
            tcp_connect_timeout=config.connection_timeout_s,
        )
        conn.autocommit = True
        conn.call_timeout = int(config.request_timeout_ms)
        return conn

    def _prepare_statement(self, statement: str, statement_type: StatementType) -> str:
        return strip_qualifier(statement, self.current_database)

    async def _fetch(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        pool = self._require_pool()
        return await pool.execute(fetch_dicts, sql, params, True, timeout=self._request_timeout())

    def _owner(self, db_name: Optional[str]) -> Optional[str]:
        return db_name or self.current_database

    async def _schema_size(self, owner: str) -> Optional[int]:
        # dba_segments needs DBA privileges
        try:
            rows = await self._fetch(_SIZE_SQL, (owner,))
        except oracledb.Error as exc:
            logger.debug("Schema size unavailable for %s: %s", owner, exc)
            return None
        return int(rows[0]["size_on_disk"] or 0) if rows else 0

    async def get_databases(self) -> List[DatabaseDescriptor]:
        databases = []
        for row in await self._fetch(_SCHEMAS_SQL):
            owner = row["name"]
            descriptor = DatabaseDescriptor(name=owner)
            try:
                descriptor.size_on_disk = await self._schema_size(owner)
                tables = await self._fetch(_TABLES_SQL, (owner,))
                views = await self._fetch(_VIEWS_SQL, (owner,))
                descriptor.tables = table_refs(r["table_name"] for r in tables)
                descriptor.views = table_refs(r["view_name"] for r in views)
            except NoActiveConnectionError:
                raise
            except oracledb.Error as exc:
                logger.warning("Cannot access schema %s: %s", owner, exc)
                descriptor.error = ACCESS_DENIED
            except AdapterError as exc:
                logger.warning("Skipping details for schema %s: %s", owner, exc)
                descriptor.error = exc.message
            databases.append(descriptor)
        return databases

    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        return [row["table_name"] for row in await self._fetch(_TABLES_SQL, (self._owner(db_name),))]

    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        owner = self._owner(db_name)
        params = (owner, table.upper() if table.islower() else table)

        primary_keys = {row["column_name"] for row in await self._fetch(_PRIMARY_KEY_SQL, params)}
        columns = [build_column(row, primary_keys) for row in await self._fetch(_COLUMNS_SQL, params)]
        indexes = group_indexes(await self._fetch(_INDEXES_SQL, params))
        foreign_keys = [build_foreign_key(row) for row in await self._fetch(_FOREIGN_KEYS_SQL, params)]
        triggers = group_triggers(
            {
                "trigger_name": row["trigger_name"],
                "event": row["triggering_event"],
                "timing": _trigger_timing(row["trigger_type"]),
                "statement": row["trigger_body"],
                "enabled": row["status"] == "ENABLED",
            }
            for row in await self._fetch(_TRIGGERS_SQL, params)
        )

        return TableDescriptor(
            db_name=owner,
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
            logger.warning("Could not read oracle sessions: %s", exc)
            return None
        if rows:
            stats.update({key: int(value or 0) for key, value in rows[0].items()})
        return stats
