from __future__ import annotations

from collections import OrderedDict
from typing import Any, Dict, Iterable, List, Mapping, Optional

from schema.descriptors import (
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableRef,
    TriggerDescriptor,
)

_TRUE_TOKENS = {"yes", "y", "true", "t", "1", "enabled", "on"}


def to_bool(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, bytes):
        value = value.decode("utf-8", "ignore")
    return str(value).strip().lower() in _TRUE_TOKENS


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def positive_or_none(value: Any) -> Optional[int]:
    """Lengths: ``-1`` (MAX types) and ``0`` (non-character columns) mean unknown."""
    number = _to_int(value)
    if number is None or number <= 0:
        return None
    return number


def non_negative_or_none(value: Any) -> Optional[int]:
    number = _to_int(value)
    if number is None or number < 0:
        return None
    return number


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", "ignore")
    text = str(value).strip()
    return text or None


def build_column(row: Mapping[str, Any], primary_keys: Iterable[str] = ()) -> ColumnDescriptor:
    """Map a catalog row keyed by descriptor field names to a ``ColumnDescriptor``.

    ``is_primary_key`` from the row wins; otherwise membership in
    ``primary_keys`` decides.
    """
    name = row["column_name"]
    primary = row.get("is_primary_key")
    if primary is None:
        primary = name in set(primary_keys)
    return ColumnDescriptor(
        column_name=name,
        data_type=clean_text(row.get("data_type")),
        is_nullable=to_bool(row.get("is_nullable", True)),
        default_value=row.get("default_value"),
        length=positive_or_none(row.get("length")),
        precision=non_negative_or_none(row.get("precision")),
        scale=non_negative_or_none(row.get("scale")),
        is_primary_key=to_bool(primary),
        extra=clean_text(row.get("extra")),
        ordinal_position=_to_int(row.get("ordinal_position")),
    )


def group_indexes(rows: Iterable[Mapping[str, Any]]) -> List[IndexDescriptor]:
    """Fold one-row-per-column index listings into one descriptor per index.

    Rows must already be ordered by index name then column position.
    """
    grouped: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for row in rows:
        name = row["index_name"]
        entry = grouped.get(name)
        if entry is None:
            entry = {
                "index_name": name,
                "columns": [],
                "is_unique": to_bool(row.get("is_unique")),
                "is_primary": to_bool(row.get("is_primary")),
                "index_type": clean_text(row.get("index_type")),
                "definition": clean_text(row.get("definition")),
            }
            grouped[name] = entry
        column = row.get("column_name")
        if column and column not in entry["columns"]:
            entry["columns"].append(column)
    return [IndexDescriptor(**entry) for entry in grouped.values()]


def build_foreign_key(row: Mapping[str, Any]) -> ForeignKeyDescriptor:
    return ForeignKeyDescriptor(
        fk_name=clean_text(row.get("fk_name")),
        column_name=row["column_name"],
        referenced_schema=clean_text(row.get("referenced_schema")),
        referenced_table=row["referenced_table"],
        referenced_column=clean_text(row.get("referenced_column")),
        delete_rule=clean_text(row.get("delete_rule")),
        update_rule=clean_text(row.get("update_rule")),
    )


def group_triggers(rows: Iterable[Mapping[str, Any]]) -> List[TriggerDescriptor]:
    """One descriptor per trigger; multi-event triggers get ``INSERT OR UPDATE`` style events."""
    grouped: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
    for row in rows:
        name = row["trigger_name"]
        event = clean_text(row.get("event"))
        entry = grouped.get(name)
        if entry is None:
            enabled = row.get("enabled")
            grouped[name] = {
                "trigger_name": name,
                "events": [event] if event else [],
                "timing": clean_text(row.get("timing")),
                "statement": clean_text(row.get("statement")),
                "enabled": None if enabled is None else to_bool(enabled),
            }
        elif event and event not in entry["events"]:
            entry["events"].append(event)
    return [
        TriggerDescriptor(
            trigger_name=entry["trigger_name"],
            event=" OR ".join(entry["events"]) or None,
            timing=entry["timing"],
            statement=entry["statement"],
            enabled=entry["enabled"],
        )
        for entry in grouped.values()
    ]


def table_refs(names: Iterable[Any]) -> List[TableRef]:
    return [TableRef(name=str(name)) for name in names if name is not None]
