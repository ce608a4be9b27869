"""Turns raw listing query parameters into a normalized QueryDescriptor."""
import logging
from datetime import date
from typing import Optional

from config import MAX_PAGE_LIMIT
from models.query import QueryDescriptor, SortField, SortOrder

logger = logging.getLogger(__name__)

# MongoDB takes skip as a signed 64-bit integer
MAX_SKIP = 2**63 - 1


class QueryValidationError(ValueError):
    """Raised when a request parameter cannot be interpreted. `field` names the parameter."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Invalid '{field}': {message}")
        self.field = field


def _parse_positive_int(field: str, raw: Optional[str], default: int) -> int:
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise QueryValidationError(field, f"expected a positive integer, got {raw!r}")
    if value < 1:
        raise QueryValidationError(field, f"must be at least 1, got {value}")
    return value


def _parse_date(field: str, raw: Optional[str]) -> Optional[date]:
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError:
        raise QueryValidationError(field, f"expected a date in YYYY-MM-DD format, got {raw!r}")


def parse_sort_field(raw: Optional[str]) -> SortField:
    """Maps a requested sort field onto SortField; unknown values fall back to date."""
    if raw:
        for field in SortField:
            if field.value.lower() == raw.strip().lower():
                return field
        logger.debug(f"Unknown sortBy value {raw!r}, falling back to '{SortField.DATE.value}'.")
    return SortField.DATE


def parse_sort_order(raw: Optional[str]) -> SortOrder:
    if raw and raw.strip().lower() == SortOrder.ASC.value:
        return SortOrder.ASC
    return SortOrder.DESC


def build_query_descriptor(
    owner_id: Optional[str],
    *,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    category: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    sort_by: Optional[str] = None,
    order: Optional[str] = None,
    default_limit: int = 50,
) -> QueryDescriptor:
    """
    Builds the descriptor for one listing request.

    page and limit must be positive integers; limit is clamped to MAX_PAGE_LIMIT
    and a page whose offset exceeds MAX_SKIP is rejected.
    An empty category means all categories. Dates are inclusive bounds.
    Unknown sort fields and orders fall back to the defaults (date, desc).

    Raises:
        QueryValidationError: for a missing owner, malformed numbers or dates,
            or a start date after the end date.
    """
    if not owner_id:
        raise QueryValidationError("owner_id", "an authenticated owner is required")

    parsed_page = _parse_positive_int("page", page, 1)
    parsed_limit = min(_parse_positive_int("limit", limit, default_limit), MAX_PAGE_LIMIT)
    if (parsed_page - 1) * parsed_limit > MAX_SKIP:
        raise QueryValidationError("page", f"is too large, got {parsed_page}")

    # Stored categories are stripped by ExpenseCreate/ExpenseUpdate; keep the two in step
    parsed_category = category.strip() if category and category.strip() else None

    parsed_start = _parse_date("startDate", start_date)
    parsed_end = _parse_date("endDate", end_date)
    if parsed_start and parsed_end and parsed_start > parsed_end:
        raise QueryValidationError("startDate", "must not be after endDate")

    return QueryDescriptor(
        owner_id=owner_id,
        page=parsed_page,
        limit=parsed_limit,
        category=parsed_category,
        start_date=parsed_start,
        end_date=parsed_end,
        sort_by=parse_sort_field(sort_by),
        order=parse_sort_order(order),
    )
