"""Pydantic models for Expense data"""
from pydantic import BaseModel, Field, field_validator
import datetime as _dt
from datetime import date, datetime
from typing import List, Optional

class Expense(BaseModel):
    """
    Represents a single stored expense belonging to one owner.
    """
    id: Optional[str] = None
    amount: float
    category: str
    description: str
    date: date
    owner_id: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
        from_attributes = True


class ExpenseCreate(BaseModel):
    """Request body for creating an expense. Every field is required."""
    amount: float
    category: str = Field(..., min_length=1, max_length=64)
    description: str = Field(..., min_length=1, max_length=500)
    date: date

    @field_validator("category", "description")
    @classmethod
    def strip_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class ExpenseUpdate(BaseModel):
    """Partial update; only the fields provided are changed."""
    amount: Optional[float] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=64)
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    date: Optional[_dt.date] = None

    @field_validator("category", "description")
    @classmethod
    def strip_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class ExpensePage(BaseModel):
    data: List[Expense]
    pagination: Pagination


class CategoryTotal(BaseModel):
    category: str
    total: float
    count: int


class ExpenseSummary(BaseModel):
    total_amount: float
    count: int
    average: float
    by_category: List[CategoryTotal]
