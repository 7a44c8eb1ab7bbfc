"""
Connection registry: owns every live connection id -> adapter binding.

Writes (create, close, eviction) are serialized with an ``asyncio.Lock``;
reads go straight to the dict. The clock is injectable so idle eviction can
be tested without sleeping.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field

from adapters.base import DatabaseAdapter
from adapters.config import ConnectionConfig
from adapters.constants import (
    DEFAULT_PAGE_SIZE,
    NO_ACTIVE_CONNECTION,
    ConnectionState,
)
from adapters.errors import NoActiveConnectionError
from adapters.factory import get_adapter
from adapters.results import QueryResult
from adapters.statements import clamp_page
from schema.descriptors import DatabaseDescriptor, TableDescriptor

logger = logging.getLogger(__name__)

ConfigInput = Union[ConnectionConfig, Mapping[str, Any]]


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConnectionEntry:
    connection_id: str
    config: ConnectionConfig
    adapter: DatabaseAdapter
    last_activity: float
    created_at: str = field(default_factory=_utc_now)
    last_used: str = field(default_factory=_utc_now)

    @property
    def state(self) -> ConnectionState:
        return self.adapter.state

    @property
    def current_config(self) -> ConnectionConfig:
        """Settings in force now; a reconnecting switch replaces the adapter's copy."""
        return self.adapter.config or self.config

    def touch(self, now: float) -> None:
        self.last_activity = now
        self.last_used = _utc_now()

    def info(self) -> Dict[str, Any]:
        return {
            "id": self.connection_id,
            "engine": self.config.engine.value,
            "config": self.current_config.public_dict(),
            "state": self.state.value,
            "current_database": self.adapter.current_database,
            "created_at": self.created_at,
            "last_used": self.last_used,
        }


class SavedConnection(BaseModel):
    """Persisted connection descriptor. Never carries a password."""

    id: str
    engine: str
    config: Dict[str, Any] = Field(default_factory=dict)
    state: str = ConnectionState.DISCONNECTED.value
    current_database: Optional[str] = None
    created_at: Optional[str] = None
    last_used: Optional[str] = None


def coerce_config(config: ConfigInput) -> ConnectionConfig:
    if isinstance(config, ConnectionConfig):
        return config
    return ConnectionConfig.model_validate(dict(config))


def generate_connection_id(config: ConnectionConfig) -> str:
    if config.file_path or not config.username:
        location = f"local/{config.sqlite_path}"
    else:
        location = f"{config.resolved_host}:{config.resolved_port}/{config.database or 'default'}"
    user = config.username or "local"
    return f"{config.engine.value}_{user}@{location}_{uuid.uuid4().hex[:12]}"


class ConnectionRegistry:
    def __init__(
        self,
        adapter_factory: Callable[[Any], DatabaseAdapter] = get_adapter,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._adapter_factory = adapter_factory
        self._clock = clock
        self._entries: Dict[str, ConnectionEntry] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def generate_connection_id(self, config: ConfigInput) -> str:
        return generate_connection_id(coerce_config(config))

    # -- lifecycle ----------------------------------------------------------

    async def create_connection(self, config: ConfigInput, connection_id: Optional[str] = None) -> str:
        config = coerce_config(config)
        connection_id = connection_id or generate_connection_id(config)
        if connection_id in self._entries:
            await self.close_connection(connection_id)

        adapter = self._adapter_factory(config.engine)
        await adapter.connect(config)

        async with self._lock:
            displaced = self._entries.get(connection_id)
            self._entries[connection_id] = ConnectionEntry(
                connection_id=connection_id,
                config=config,
                adapter=adapter,
                last_activity=self._clock(),
            )
        # a concurrent create with the same id registered first
        if displaced is not None and displaced.adapter is not adapter:
            logger.info("Replacing connection %s", connection_id)
            await self._disconnect(connection_id, displaced)
        logger.info("Registered connection %s", connection_id, extra={"engine": config.engine.value})
        return connection_id

    connect = create_connection

    def _entry(self, connection_id: str) -> ConnectionEntry:
        entry = self._entries.get(connection_id)
        if entry is None:
            raise NoActiveConnectionError(NO_ACTIVE_CONNECTION, code=connection_id)
        return entry

    def get_connection(self, connection_id: str) -> DatabaseAdapter:
        entry = self._entry(connection_id)
        if entry.state != ConnectionState.CONNECTED:
            raise NoActiveConnectionError(NO_ACTIVE_CONNECTION, code=connection_id, engine=entry.config.engine.value)
        entry.touch(self._clock())
        return entry.adapter

    async def close_connection(self, connection_id: str) -> bool:
        async with self._lock:
            entry = self._entries.pop(connection_id, None)
        if entry is None:
            return False
        await self._disconnect(connection_id, entry)
        logger.info("Closed connection %s", connection_id)
        return True

    async def _disconnect(self, connection_id: str, entry: ConnectionEntry) -> None:
        try:
            await entry.adapter.disconnect()
        except Exception as exc:
            logger.warning("Error closing connection %s: %s", connection_id, exc)

    async def close_all_connections(self) -> None:
        await asyncio.gather(*(self.close_connection(cid) for cid in list(self._entries)))

    async def switch_database(self, connection_id: str, name: str) -> None:
        entry = self._entry(connection_id)
        await entry.adapter.switch_database(name)
        entry.touch(self._clock())

    async def validate_connection(self, connection_id: str) -> bool:
        entry = self._entries.get(connection_id)
        if entry is None:
            return False
        return await entry.adapter.validate_connection()

    # -- monitoring ---------------------------------------------------------

    async def health_check(self) -> Dict[str, Dict[str, Any]]:
        results: Dict[str, Dict[str, Any]] = {}
        for connection_id, entry in list(self._entries.items()):
            try:
                results[connection_id] = await entry.adapter.get_connection_health()
            except Exception as exc:
                results[connection_id] = {"status": "unhealthy", "error": str(exc), "last_check": _utc_now()}
        return results

    async def cleanup_idle_connections(self, max_idle_ms: Optional[int] = None) -> int:
        """Close connections idle longer than ``max_idle_ms``, or each one's own ``idle_timeout_ms``."""
        now = self._clock()
        idle = [
            connection_id
            for connection_id, entry in list(self._entries.items())
            if (now - entry.last_activity) * 1000.0
            > (max_idle_ms if max_idle_ms is not None else entry.config.idle_timeout_ms)
        ]
        for connection_id in idle:
            logger.info("Closing idle connection %s", connection_id)
            await self.close_connection(connection_id)
        return len(idle)

    def get_connection_info(self, connection_id: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(connection_id)
        if entry is None:
            return None
        info = entry.info()
        info["idle_ms"] = round((self._clock() - entry.last_activity) * 1000.0, 3)
        return info

    def get_all_connections_info(self) -> List[Dict[str, Any]]:
        return [info for info in (self.get_connection_info(cid) for cid in list(self._entries)) if info]

    def get_active_connection_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.state == ConnectionState.CONNECTED)

    def is_connection_active(self, connection_id: str) -> bool:
        entry = self._entries.get(connection_id)
        return entry is not None and entry.state == ConnectionState.CONNECTED

    # -- persistence --------------------------------------------------------

    def _snapshot(self) -> List[SavedConnection]:
        saved = []
        for entry in list(self._entries.values()):
            config = entry.current_config.public_dict()
            config.pop("password", None)
            saved.append(
                SavedConnection(
                    id=entry.connection_id,
                    engine=entry.config.engine.value,
                    config=config,
                    state=entry.state.value,
                    current_database=entry.adapter.current_database,
                    created_at=entry.created_at,
                    last_used=entry.last_used,
                )
            )
        return saved

    async def save_connections(self, path: Union[str, Path]) -> int:
        snapshot = self._snapshot()
        payload = json.dumps([item.model_dump() for item in snapshot], indent=2)
        target = Path(path)
        await asyncio.to_thread(target.write_text, payload, encoding="utf-8")
        return len(snapshot)

    async def load_connections(self, path: Union[str, Path]) -> List[SavedConnection]:
        """Read saved descriptors back. Nothing is reconnected; a missing file is an empty list."""
        source = Path(path)
        if not source.exists():
            return []
        raw = await asyncio.to_thread(source.read_text, encoding="utf-8")
        return [SavedConnection.model_validate(item) for item in json.loads(raw or "[]")]

    # -- pass-throughs ------------------------------------------------------

    async def execute_query(
        self, connection_id: str, text: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE
    ) -> QueryResult:
        page, page_size = clamp_page(page, page_size)
        return await self.get_connection(connection_id).execute_query(text, page=page, page_size=page_size)

    async def get_databases(self, connection_id: str) -> List[DatabaseDescriptor]:
        return await self.get_connection(connection_id).get_databases()

    async def get_tables(self, connection_id: str, db_name: Optional[str] = None) -> List[str]:
        return await self.get_connection(connection_id).get_tables(db_name)

    async def get_table_info(self, connection_id: str, db_name: Optional[str], table: str) -> TableDescriptor:
        return await self.get_connection(connection_id).get_table_info(db_name, table)

    async def get_multiple_tables_info(
        self, connection_id: str, db_name: Optional[str], tables: Sequence[str]
    ) -> List[TableDescriptor]:
        return await self.get_connection(connection_id).get_multiple_tables_info(db_name, tables)

    async def get_connection_health(self, connection_id: str) -> Dict[str, Any]:
        return await self._entry(connection_id).adapter.get_connection_health()

    async def get_connection_stats(self, connection_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_connection(connection_id).get_connection_stats()
