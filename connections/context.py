from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from adapters.base import DatabaseAdapter
from adapters.config import ConnectionConfig
from adapters.constants import DEFAULT_PAGE_SIZE, NO_ACTIVE_CONNECTION, EngineType
from adapters.errors import NoActiveConnectionError
from adapters.results import QueryResult
from connections.registry import ConfigInput, ConnectionRegistry, coerce_config
from schema.descriptors import DatabaseDescriptor, TableDescriptor

logger = logging.getLogger(__name__)


class ActiveContext:
    """One "current" connection for call sites that carry no connection id.

    Everything is delegated to the wrapped registry; this object only
    remembers which connection id is current.
    """

    def __init__(self, registry: Optional[ConnectionRegistry] = None):
        self.registry = registry or ConnectionRegistry()
        self.connection_id: Optional[str] = None
        self.current_engine: Optional[EngineType] = None
        self._config: Optional[ConnectionConfig] = None

    async def connect(self, config: ConfigInput) -> str:
        config = coerce_config(config)
        if self.connection_id is not None:
            same_target = config == self._config and self.registry.is_connection_active(self.connection_id)
            if same_target:
                return self.connection_id
            if config.engine != self.current_engine:
                logger.info(
                    "Engine changed from %s to %s, closing previous connection",
                    self.current_engine.value if self.current_engine else None,
                    config.engine.value,
                )
            await self.disconnect()

        self.connection_id = await self.registry.create_connection(config)
        self.current_engine = config.engine
        self._config = config
        return self.connection_id

    async def disconnect(self) -> None:
        connection_id, self.connection_id = self.connection_id, None
        self.current_engine = None
        self._config = None
        if connection_id is not None:
            await self.registry.close_connection(connection_id)

    def _current_id(self) -> str:
        if self.connection_id is None:
            raise NoActiveConnectionError(NO_ACTIVE_CONNECTION)
        return self.connection_id

    def get_adapter(self) -> DatabaseAdapter:
        return self.registry.get_connection(self._current_id())

    def is_connection_active(self) -> bool:
        return self.connection_id is not None and self.registry.is_connection_active(self.connection_id)

    async def validate_connection(self) -> bool:
        if self.connection_id is None:
            return False
        return await self.registry.validate_connection(self.connection_id)

    async def switch_database(self, name: str) -> None:
        await self.registry.switch_database(self._current_id(), name)

    async def execute_query(self, text: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> QueryResult:
        return await self.registry.execute_query(self._current_id(), text, page=page, page_size=page_size)

    async def get_databases(self) -> List[DatabaseDescriptor]:
        return await self.registry.get_databases(self._current_id())

    async def get_tables(self, db_name: Optional[str] = None) -> List[str]:
        return await self.registry.get_tables(self._current_id(), db_name)

    async def get_table_info(self, db_name: Optional[str], table: str) -> TableDescriptor:
        return await self.registry.get_table_info(self._current_id(), db_name, table)

    async def get_multiple_tables_info(self, db_name: Optional[str], tables: Sequence[str]) -> List[TableDescriptor]:
        return await self.registry.get_multiple_tables_info(self._current_id(), db_name, tables)

    async def get_connection_health(self) -> Dict[str, Any]:
        return await self.registry.get_connection_health(self._current_id())


_default_context: Optional[ActiveContext] = None


def get_active_context() -> ActiveContext:
    global _default_context
    if _default_context is None:
        _default_context = ActiveContext()
    return _default_context
