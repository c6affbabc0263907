# app/schemas/counter.py
from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional
from app.utils.time_utils import as_utc


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class CounterReadingOut(CamelModel):
    in_count: int
    out_count: int
    aforo: int
    timestamp: datetime
    device_id: str


class IngestedReadingOut(CamelModel):
    in_count: int
    out_count: int
    aforo: int
    timestamp: datetime


class IngestResponse(BaseModel):
    success: bool = True
    data: IngestedReadingOut


class CounterLogOut(CamelModel):
    id: int
    in_count: int
    out_count: int
    aforo: int
    timestamp: datetime
    device_id: Optional[str]
    created_at: Optional[datetime]

    @field_validator("timestamp", "created_at")
    @classmethod
    def _stored_as_utc(cls, value):
        return as_utc(value)


class CurrentStateOut(BaseModel):
    current: CounterReadingOut
    history: list[CounterLogOut]
    source: str                      # database | memory


class HistoryStatsOut(CamelModel):
    total_records: int
    max_entries: Optional[int] = None
    max_exits: Optional[int] = None
    max_aforo: Optional[int] = None
    first_record: Optional[datetime] = None
    last_record: Optional[datetime] = None


class PaginationOut(BaseModel):
    limit: int
    offset: int
    total: int


class HistoryOut(BaseModel):
    history: list[CounterLogOut]
    stats: HistoryStatsOut
    pagination: PaginationOut
    message: Optional[str] = None
