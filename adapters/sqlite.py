from __future__ import annotations

import logging
import os
import re
import sqlite3
from typing import Any, Dict, List, Optional

from adapters.base import DatabaseAdapter, EngineCapabilities
from adapters.config import ConnectionConfig
from adapters.constants import (
    SQLITE_NO_PERMISSIONS,
    SQLITE_NO_SWITCH,
    EngineType,
    StatementType,
    SwitchMode,
)
from adapters.errors import AdapterError, NoActiveConnectionError, UnsupportedOperationError
from adapters.results import QueryMessage
from schema.descriptors import DatabaseDescriptor, TableDescriptor
from schema.introspector.normalizer import (
    build_column,
    build_foreign_key,
    group_indexes,
    group_triggers,
    table_refs,
)

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

_TABLES_SQL = "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
_VIEWS_SQL = "SELECT name FROM sqlite_master WHERE type = 'view' ORDER BY name"
_TRIGGERS_SQL = "SELECT name, sql FROM sqlite_master WHERE type = 'trigger' AND tbl_name = ? ORDER BY name"
_STATS_SQL = """
    SELECT
        (SELECT COUNT(*) FROM sqlite_master WHERE type = 'table') AS table_count,
        (SELECT COUNT(*) FROM sqlite_master WHERE type = 'index') AS index_count,
        (SELECT COUNT(*) FROM sqlite_master WHERE type = 'view') AS view_count
"""

_TYPE_ARGS = re.compile(r"\(\s*(\d+)\s*(?:,\s*(\d+)\s*)?\)")
_TRIGGER_HEAD = re.compile(
    r"CREATE\s+(?:TEMP\w*\s+)?TRIGGER\s+(?:IF\s+NOT\s+EXISTS\s+)?\S+\s+"
    r"(BEFORE|AFTER|INSTEAD\s+OF)?\s*(INSERT|UPDATE|DELETE)",
    re.IGNORECASE,
)
_TRANSACTION_START = re.compile(r"^\s*(START\s+TRANSACTION|BEGIN\s+WORK)\s*$", re.IGNORECASE)


def _type_arguments(declared: str) -> Dict[str, Optional[int]]:
    """Split ``VARCHAR(20)`` / ``DECIMAL(10,2)`` into length or precision/scale."""
    match = _TYPE_ARGS.search(declared or "")
    if not match:
        return {"length": None, "precision": None, "scale": None}
    first = int(match.group(1))
    second = int(match.group(2)) if match.group(2) is not None else None
    lowered = declared.lower()
    if any(tok in lowered for tok in ("char", "clob", "text")):
        return {"length": first, "precision": None, "scale": None}
    return {"length": None, "precision": first, "scale": second}


def normalize_transaction(statement: str) -> str:
    if _TRANSACTION_START.match(statement):
        return "BEGIN TRANSACTION"
    return statement


class SQLiteAdapter(DatabaseAdapter):
    engine = EngineType.SQLITE
    # one shared connection: ":memory:" databases are private to a connection
    capabilities = EngineCapabilities(
        switch_mode=SwitchMode.UNSUPPORTED,
        supports_permissions=False,
        max_pool_size=1,
    )
    show_tables_sql = _TABLES_SQL
    describe_sql = "PRAGMA table_info(\"{table}\")"
    no_switch_message = SQLITE_NO_SWITCH

    def _initial_target(self, config: ConnectionConfig) -> Optional[str]:
        return config.sqlite_path

    def _open_connection(self, config: ConnectionConfig) -> sqlite3.Connection:
        path = config.sqlite_path
        if config.read_only and path != MEMORY_PATH:
            conn = sqlite3.connect(
                f"file:{path}?mode=ro", uri=True, isolation_level=None, check_same_thread=False
            )
        else:
            conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        try:
            for pragma in self._pragmas(config):
                conn.execute(pragma)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _cancel_statement(self, raw: sqlite3.Connection) -> None:
        raw.interrupt()

    def _keeps_interrupted_session(self, config: ConnectionConfig) -> bool:
        # the only copy of an in-memory database lives on that one connection
        return config.sqlite_path == MEMORY_PATH

    def _pragmas(self, config: ConnectionConfig) -> List[str]:
        pragmas = []
        if config.busy_timeout_ms is not None:
            pragmas.append(f"PRAGMA busy_timeout = {int(config.busy_timeout_ms)}")
        if config.cache_size is not None:
            pragmas.append(f"PRAGMA cache_size = {int(config.cache_size)}")
        if config.journal_mode:
            pragmas.append(f"PRAGMA journal_mode = {config.journal_mode}")
        if config.synchronous is not None:
            if isinstance(config.synchronous, bool):
                value = "FULL" if config.synchronous else "OFF"
            else:
                value = re.sub(r"[^A-Za-z0-9]", "", config.synchronous).upper()
            pragmas.append(f"PRAGMA synchronous = {value}")
        if config.foreign_keys is not None:
            pragmas.append(f"PRAGMA foreign_keys = {'ON' if config.foreign_keys else 'OFF'}")
        return pragmas

    def _prepare_statement(self, statement: str, statement_type: StatementType) -> str:
        if statement_type == StatementType.TRANSACTION:
            return normalize_transaction(statement)
        return statement

    def _unsupported_permission_message(self) -> QueryMessage:
        return QueryMessage(message=SQLITE_NO_PERMISSIONS, error=True, category="unsupported")

    def _check_db_name(self, db_name: Optional[str]) -> str:
        current = self.current_database or MEMORY_PATH
        if db_name and db_name not in (current, MEMORY_PATH):
            raise UnsupportedOperationError(SQLITE_NO_SWITCH, engine=self.engine.value)
        return current

    async def get_databases(self) -> List[DatabaseDescriptor]:
        path = self.current_database or MEMORY_PATH
        descriptor = DatabaseDescriptor(name=path, size_on_disk=self._size_on_disk(path))
        try:
            descriptor.tables = table_refs(row["name"] for row in await self._fetch(_TABLES_SQL))
            descriptor.views = table_refs(row["name"] for row in await self._fetch(_VIEWS_SQL))
        except NoActiveConnectionError:
            raise
        except (sqlite3.Error, AdapterError) as exc:
            descriptor.error = str(exc)
        return [descriptor]

    @staticmethod
    def _size_on_disk(path: str) -> Optional[int]:
        if path == MEMORY_PATH or not os.path.exists(path):
            return None
        return os.path.getsize(path)

    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        self._check_db_name(db_name)
        return [row["name"] for row in await self._fetch(_TABLES_SQL)]

    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        current = self._check_db_name(db_name)
        quoted = self.dialect.quote_identifier(table)

        column_rows = await self._fetch(f"PRAGMA table_info({quoted})")
        columns = []
        for row in column_rows:
            declared = str(row["type"] or "")
            columns.append(
                build_column(
                    {
                        "column_name": row["name"],
                        "data_type": declared,
                        "is_nullable": not row["notnull"],
                        "default_value": row["dflt_value"],
                        "is_primary_key": bool(row["pk"]),
                        "ordinal_position": int(row["cid"]) + 1,
                        **_type_arguments(declared),
                    }
                )
            )

        index_rows: List[Dict[str, Any]] = []
        for index in await self._fetch(f"PRAGMA index_list({quoted})"):
            index_name = index["name"]
            members = await self._fetch(f"PRAGMA index_info({self.dialect.quote_identifier(index_name)})")
            for member in sorted(members, key=lambda m: m["seqno"]) or [{"name": None}]:
                index_rows.append(
                    {
                        "index_name": index_name,
                        "column_name": member["name"],
                        "is_unique": index["unique"],
                        "is_primary": index.get("origin") == "pk",
                        "index_type": index.get("origin"),
                    }
                )

        foreign_keys = [
            build_foreign_key(
                {
                    "fk_name": f"fk_{row['id']}_{row['table']}",
                    "column_name": row["from"],
                    "referenced_table": row["table"],
                    "referenced_column": row["to"],
                    "delete_rule": row.get("on_delete"),
                    "update_rule": row.get("on_update"),
                }
            )
            for row in await self._fetch(f"PRAGMA foreign_key_list({quoted})")
        ]

        trigger_rows = []
        for row in await self._fetch(_TRIGGERS_SQL, (table,)):
            head = _TRIGGER_HEAD.search(row["sql"] or "")
            trigger_rows.append(
                {
                    "trigger_name": row["name"],
                    "event": head.group(2).upper() if head else None,
                    "timing": " ".join((head.group(1) or "BEFORE").upper().split()) if head else None,
                    "statement": row["sql"],
                    "enabled": True,
                }
            )

        return TableDescriptor(
            db_name=current,
            table_name=table,
            columns=columns,
            indexes=group_indexes(index_rows),
            foreign_keys=foreign_keys,
            triggers=group_triggers(trigger_rows),
        )

    async def get_connection_stats(self) -> Optional[Dict[str, Any]]:
        try:
            stats = self._pool_stats()
            rows = await self._fetch(_STATS_SQL)
        except Exception as exc:
            logger.warning("Could not read sqlite stats: %s", exc)
            return None
        counts = rows[0] if rows else {}
        stats.update(
            database_name=self.current_database,
            table_count=counts.get("table_count", 0),
            index_count=counts.get("index_count", 0),
            view_count=counts.get("view_count", 0),
            is_memory_db=self.current_database == MEMORY_PATH,
        )
        return stats
