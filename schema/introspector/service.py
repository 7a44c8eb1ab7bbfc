from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from adapters.base import DatabaseAdapter, ensure_connected


async def describe_database(
    adapter: DatabaseAdapter,
    db_name: Optional[str] = None,
    tables: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Table list plus per-table descriptors for one database of a connected adapter.

    A table that cannot be described keeps its slot with ``error`` set.
    """
    ensure_connected(adapter)
    names = list(tables) if tables is not None else await adapter.get_tables(db_name)
    described = await adapter.get_multiple_tables_info(db_name, names)
    return {
        "engine": adapter.engine.value,
        "database": db_name or adapter.current_database,
        "table_count": len(described),
        "failed_tables": [table.table_name for table in described if table.error],
        "tables": [table.to_payload() for table in described],
    }
