"""
Engine-neutral catalog shapes.

Every key is always present. Values the engine cannot report are ``None`` and
list fields default to an empty list, so a caller never has to branch on the
engine that produced a descriptor.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Descriptor(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ColumnDescriptor(_Descriptor):
    column_name: str
    data_type: Optional[str] = None
    is_nullable: bool = True
    default_value: Optional[Any] = None
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_primary_key: bool = False
    extra: Optional[str] = None
    ordinal_position: Optional[int] = None


class IndexDescriptor(_Descriptor):
    index_name: str
    columns: List[str] = Field(default_factory=list)
    is_unique: bool = False
    is_primary: bool = False
    index_type: Optional[str] = None
    definition: Optional[str] = None


class ForeignKeyDescriptor(_Descriptor):
    fk_name: Optional[str] = None
    column_name: str
    referenced_schema: Optional[str] = None
    referenced_table: str
    referenced_column: Optional[str] = None
    delete_rule: Optional[str] = None
    update_rule: Optional[str] = None


class TriggerDescriptor(_Descriptor):
    trigger_name: str
    event: Optional[str] = None
    timing: Optional[str] = None
    statement: Optional[str] = None
    enabled: Optional[bool] = None


class TableRef(_Descriptor):
    name: str


class TableDescriptor(_Descriptor):
    db_name: Optional[str] = None
    table_name: str
    columns: List[ColumnDescriptor] = Field(default_factory=list)
    indexes: List[IndexDescriptor] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyDescriptor] = Field(default_factory=list)
    triggers: List[TriggerDescriptor] = Field(default_factory=list)
    error: Optional[str] = None


class DatabaseDescriptor(_Descriptor):
    name: str
    size_on_disk: Optional[int] = None
    tables: List[TableRef] = Field(default_factory=list)
    views: List[TableRef] = Field(default_factory=list)
    error: Optional[str] = None
