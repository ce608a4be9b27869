"""Service layer for handling expense-related logic."""
import logging
import math
from typing import Any, Dict, List, Optional
from datetime import date, datetime, time, timezone

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection # Type hint for collection
from pydantic import ValidationError

from models.expense import (
    CategoryTotal,
    Expense,
    ExpenseCreate,
    ExpensePage,
    ExpenseSummary,
    ExpenseUpdate,
    Pagination,
)
from models.query import QueryDescriptor
from services.result_cache import ResultCache, cache_key

logger = logging.getLogger(__name__)

LIST_SCOPE = "list"
SUMMARY_SCOPE = "summary"


class ExpenseQueryError(RuntimeError):
    """The storage layer failed; the caller gets a generic error, details are logged."""


class ExpenseNotFoundError(LookupError):
    """No expense with that id exists for the requesting owner."""


# --- Document conversion helpers ---

def _to_storage_date(value: date) -> datetime:
    # BSON has no date type; dates are stored as midnight datetimes
    return datetime.combine(value, time.min)


def _doc_to_expense(doc: Dict[str, Any]) -> Expense:
    doc = dict(doc)
    if '_id' in doc: doc['id'] = str(doc.pop('_id'))
    if 'date' in doc and isinstance(doc['date'], datetime):
        doc['date'] = doc['date'].date()
    return Expense(**doc)


def _parse_object_id(expense_id: str) -> ObjectId:
    try:
        return ObjectId(expense_id)
    except (InvalidId, TypeError):
        raise ExpenseNotFoundError(expense_id)


def build_mongo_filter(descriptor: QueryDescriptor) -> Dict[str, Any]:
    """Owner scope plus the optional category and inclusive date-range predicates."""
    if not descriptor.owner_id:
        raise ValueError("Refusing to query expenses without an owner.")
    query: Dict[str, Any] = {"owner_id": descriptor.owner_id}
    if descriptor.category is not None:
        query["category"] = descriptor.category
    date_range: Dict[str, datetime] = {}
    if descriptor.start_date:
        date_range["$gte"] = _to_storage_date(descriptor.start_date)
    if descriptor.end_date:
        date_range["$lte"] = _to_storage_date(descriptor.end_date)
    if date_range:
        query["date"] = date_range
    return query


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


# --- Cache helpers (cache failures never reach the caller) ---

def _cache_get(cache: Optional[ResultCache], key: str) -> Optional[Any]:
    if cache is None:
        return None
    try:
        entry = cache.get(key)
    except Exception as e:
        logger.warning(f"Cache read failed for key {key!r}, querying storage directly: {e}")
        return None
    return entry.value if entry is not None else None


def _cache_generation(cache: Optional[ResultCache], owner_id: str) -> Optional[int]:
    if cache is None:
        return None
    try:
        return cache.generation(owner_id)
    except Exception as e:
        logger.warning(f"Cache generation read failed for owner {owner_id}: {e}")
        return None


def _cache_put(
    cache: Optional[ResultCache], key: str, owner_id: str, value: Any,
    ttl: Optional[float], generation: Optional[int],
) -> None:
    if cache is None:
        return
    if generation is None:
        # Without a generation a page computed before a mutation could be stored
        return
    try:
        if cache.put(key, owner_id, value, ttl=ttl, generation=generation) is None:
            logger.debug(f"Not caching {key!r}: owner {owner_id} was invalidated during the query.")
    except Exception as e:
        logger.warning(f"Cache write failed for key {key!r}: {e}")


def invalidate_owner_cache(cache: Optional[ResultCache], owner_id: str) -> int:
    """Drops every cached listing of `owner_id`. Called after each successful mutation."""
    if cache is None:
        return 0
    try:
        removed = cache.invalidate_by_owner(owner_id)
    except Exception as e:
        logger.error(f"Cache invalidation failed for owner {owner_id}: {e}")
        return 0
    if removed:
        logger.info(f"Invalidated {removed} cached result(s) for owner {owner_id}.")
    return removed


# --- Queries ---

async def fetch_expense_page(collection: AsyncIOMotorCollection, descriptor: QueryDescriptor) -> ExpensePage:
    """Counts the matching expenses, then fetches one page of them in the requested order."""
    query = build_mongo_filter(descriptor)
    direction = descriptor.order.direction
    logger.debug(f"Querying expenses {query} sort={descriptor.sort_by.value}/{descriptor.order.value} "
                 f"page={descriptor.page} limit={descriptor.limit}")
    expenses: List[Expense] = []
    try:
        total = await collection.count_documents(query)
        cursor = (
            collection.find(query)
            .sort([(descriptor.sort_by.storage_field, direction), ("_id", direction)])
            .skip(descriptor.skip)
            .limit(descriptor.limit)
        )
        async for doc in cursor:
            try:
                expenses.append(_doc_to_expense(doc))
            except ValidationError as e:
                logger.error(f"Data validation error for document ID {doc.get('_id', 'N/A')}: {e}")
                # Skip invalid documents
                continue
    except Exception as e:
        logger.exception(f"Database error fetching expenses for owner {descriptor.owner_id}: {e}")
        raise ExpenseQueryError("Failed to fetch expenses") from e

    return ExpensePage(
        data=expenses,
        pagination=Pagination(
            total=total,
            page=descriptor.page,
            limit=descriptor.limit,
            pages=page_count(total, descriptor.limit),
        ),
    )


async def get_expense_page(
    collection: AsyncIOMotorCollection,
    cache: Optional[ResultCache],
    descriptor: QueryDescriptor,
    ttl: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Returns the serialized page for `descriptor`, from the cache when a live
    entry exists, otherwise from storage (and then cached).
    """
    key = cache_key(descriptor, LIST_SCOPE)
    cached = _cache_get(cache, key)
    if cached is not None:
        logger.debug(f"Cache hit for {key!r}")
        return cached

    logger.debug(f"Cache miss for {key!r}")
    # Read before querying so a mutation landing mid-query keeps this page out of the cache
    generation = _cache_generation(cache, descriptor.owner_id)
    page = await fetch_expense_page(collection, descriptor)
    payload = page.model_dump(mode='json')
    _cache_put(cache, key, descriptor.owner_id, payload, ttl, generation)
    return payload


async def fetch_expense_summary(collection: AsyncIOMotorCollection, descriptor: QueryDescriptor) -> ExpenseSummary:
    """Totals per category over every expense matching the filters (pagination is ignored)."""
    pipeline = [
        {"$match": build_mongo_filter(descriptor)},
        {"$group": {"_id": "$category", "total": {"$sum": "$amount"}, "count": {"$sum": 1}}},
        {"$sort": {"total": -1, "_id": 1}},
    ]
    try:
        groups = await collection.aggregate(pipeline).to_list(length=None)
    except Exception as e:
        logger.exception(f"Database error summarizing expenses for owner {descriptor.owner_id}: {e}")
        raise ExpenseQueryError("Failed to summarize expenses") from e

    by_category = [
        CategoryTotal(category=g["_id"], total=round(g["total"], 2), count=g["count"]) for g in groups
    ]
    total_amount = round(sum(g["total"] for g in groups), 2)
    count = sum(g["count"] for g in groups)
    return ExpenseSummary(
        total_amount=total_amount,
        count=count,
        average=round(total_amount / count, 2) if count else 0.0,
        by_category=by_category,
    )


async def get_expense_summary(
    collection: AsyncIOMotorCollection,
    cache: Optional[ResultCache],
    descriptor: QueryDescriptor,
    ttl: Optional[float] = None,
) -> Dict[str, Any]:
    key = cache_key(descriptor, SUMMARY_SCOPE)
    cached = _cache_get(cache, key)
    if cached is not None:
        return cached
    generation = _cache_generation(cache, descriptor.owner_id)
    summary = await fetch_expense_summary(collection, descriptor)
    payload = summary.model_dump(mode='json')
    _cache_put(cache, key, descriptor.owner_id, payload, ttl, generation)
    return payload


async def get_expense(collection: AsyncIOMotorCollection, owner_id: str, expense_id: str) -> Expense:
    oid = _parse_object_id(expense_id)
    try:
        doc = await collection.find_one({"_id": oid, "owner_id": owner_id})
    except Exception as e:
        logger.exception(f"Database error fetching expense {expense_id}: {e}")
        raise ExpenseQueryError("Failed to fetch expense") from e
    if doc is None:
        raise ExpenseNotFoundError(expense_id)
    return _doc_to_expense(doc)


# --- Mutations (each one invalidates the owner's cached listings) ---

async def create_expense(
    collection: AsyncIOMotorCollection,
    cache: Optional[ResultCache],
    owner_id: str,
    data: ExpenseCreate,
) -> Expense:
    now = datetime.now(timezone.utc)
    doc = {
        "amount": data.amount,
        "category": data.category,
        "description": data.description,
        "date": _to_storage_date(data.date),
        "owner_id": owner_id,
        "created_at": now,
        "updated_at": now,
    }
    try:
        result = await collection.insert_one(doc)
    except Exception as e:
        logger.exception(f"Database error creating expense for owner {owner_id}: {e}")
        raise ExpenseQueryError("Failed to create expense") from e

    invalidate_owner_cache(cache, owner_id)
    doc["_id"] = result.inserted_id
    logger.info(f"Created expense {result.inserted_id} for owner {owner_id}.")
    return _doc_to_expense(doc)


async def update_expense(
    collection: AsyncIOMotorCollection,
    cache: Optional[ResultCache],
    owner_id: str,
    expense_id: str,
    data: ExpenseUpdate,
) -> Expense:
    oid = _parse_object_id(expense_id)
    changes = data.model_dump(exclude_none=True)
    if "date" in changes:
        changes["date"] = _to_storage_date(changes["date"])
    changes["updated_at"] = datetime.now(timezone.utc)
    try:
        result = await collection.update_one({"_id": oid, "owner_id": owner_id}, {"$set": changes})
    except Exception as e:
        logger.exception(f"Database error updating expense {expense_id}: {e}")
        # The write may still have been applied
        invalidate_owner_cache(cache, owner_id)
        raise ExpenseQueryError("Failed to update expense") from e
    if result.matched_count == 0:
        raise ExpenseNotFoundError(expense_id)

    # The row has changed; drop cached listings before anything else can fail
    invalidate_owner_cache(cache, owner_id)
    try:
        doc = await collection.find_one({"_id": oid, "owner_id": owner_id})
    except Exception as e:
        logger.exception(f"Database error reading back updated expense {expense_id}: {e}")
        raise ExpenseQueryError("Failed to update expense") from e
    if doc is None:
        # Deleted concurrently after the update matched
        raise ExpenseNotFoundError(expense_id)
    logger.info(f"Updated expense {expense_id} for owner {owner_id}.")
    return _doc_to_expense(doc)


async def delete_expense(
    collection: AsyncIOMotorCollection,
    cache: Optional[ResultCache],
    owner_id: str,
    expense_id: str,
) -> None:
    oid = _parse_object_id(expense_id)
    try:
        result = await collection.delete_one({"_id": oid, "owner_id": owner_id})
    except Exception as e:
        logger.exception(f"Database error deleting expense {expense_id}: {e}")
        raise ExpenseQueryError("Failed to delete expense") from e
    if result.deleted_count == 0:
        raise ExpenseNotFoundError(expense_id)

    invalidate_owner_cache(cache, owner_id)
    logger.info(f"Deleted expense {expense_id} for owner {owner_id}.")


async def ensure_indexes(collection: AsyncIOMotorCollection) -> None:
    """Indexes backing the owner-scoped listing filters and sorts."""
    await collection.create_index([("owner_id", 1), ("date", -1)])
    await collection.create_index([("owner_id", 1), ("category", 1), ("date", -1)])
