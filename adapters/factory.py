from __future__ import annotations

from typing import Dict, Optional, Type, Union

from adapters.base import DatabaseAdapter
from adapters.config import normalize_engine
from adapters.constants import EngineType
from adapters.mssql import MSSQLAdapter
from adapters.mysql import MySQLAdapter
from adapters.oracle import OracleAdapter
from adapters.postgres import PostgresAdapter
from adapters.sqlite import SQLiteAdapter
from utils.env_loader import env_str

ADAPTERS: Dict[EngineType, Type[DatabaseAdapter]] = {
    EngineType.MYSQL: MySQLAdapter,
    EngineType.POSTGRES: PostgresAdapter,
    EngineType.MSSQL: MSSQLAdapter,
    EngineType.ORACLE: OracleAdapter,
    EngineType.SQLITE: SQLiteAdapter,
}


def get_adapter(db_engine: Union[str, EngineType, None] = None) -> DatabaseAdapter:
    engine = normalize_engine(db_engine or env_str("DB_ENGINE", "postgres"))
    return ADAPTERS[engine]()
