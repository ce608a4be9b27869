"""Normalized query descriptor for expense listings"""
from enum import Enum
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class SortField(str, Enum):
    """Closed set of sortable fields, mapped to their stored document field."""
    DATE = "date"
    CATEGORY = "category"
    AMOUNT = "amount"
    DESCRIPTION = "description"
    CREATED_AT = "createdAt"

    @property
    def storage_field(self) -> str:
        return _STORAGE_FIELDS[self]


_STORAGE_FIELDS = {
    SortField.DATE: "date",
    SortField.CATEGORY: "category",
    SortField.AMOUNT: "amount",
    SortField.DESCRIPTION: "description",
    SortField.CREATED_AT: "created_at",
}


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"

    @property
    def direction(self) -> int:
        """pymongo sort direction: 1 ascending, -1 descending."""
        return 1 if self is SortOrder.ASC else -1


class QueryDescriptor(BaseModel):
    """
    Everything that determines the result of one expense listing query.

    Two descriptors that compare equal always produce the same result for the
    same stored data, which is what makes them usable as cache keys.
    """
    owner_id: str = Field(..., min_length=1)
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1)
    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sort_by: SortField = SortField.DATE
    order: SortOrder = SortOrder.DESC

    class Config:
        frozen = True

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit
