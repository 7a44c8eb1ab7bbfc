from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from adapters.constants import StatementType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class QueryMessage(_CamelModel):
    message: str
    error: bool = False
    category: Optional[str] = None
    code: Optional[Any] = None
    affected_rows: Optional[int] = None
    last_insert_id: Optional[Any] = None


class Pagination(_CamelModel):
    page: int
    page_size: int
    total_pages: int
    has_more: bool


class StatementStats(_CamelModel):
    elapsed_ms: float
    affected_rows: Optional[int] = None
    last_insert_id: Optional[Any] = None


class QueryResultEntry(_CamelModel):
    query: str
    type: StatementType
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total_rows: Optional[int] = None
    messages: List[QueryMessage] = Field(default_factory=list)
    pagination: Optional[Pagination] = None
    stats: Optional[StatementStats] = None

    @property
    def failed(self) -> bool:
        return any(message.error for message in self.messages)


class QueryResult(_CamelModel):
    queries: List[QueryResultEntry] = Field(default_factory=list)
    total_queries: int = 0
    executed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
