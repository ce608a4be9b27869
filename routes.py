"""API Routes for expenses"""
from fastapi import APIRouter, HTTPException, Query, Response
from typing import Any, Dict, Optional
import logging

from config import DASHBOARD_DEFAULT_LIMIT, LIST_CACHE_TTL, LIST_DEFAULT_LIMIT
from dependencies import CurrentUserDep, ExpensesCollectionDep, ResultCacheDep
from models.expense import Expense, ExpenseCreate, ExpensePage, ExpenseSummary, ExpenseUpdate
from services import expenses_service
from services.expenses_service import ExpenseNotFoundError, ExpenseQueryError
from services.query_builder import QueryValidationError, build_query_descriptor

router = APIRouter()
logger = logging.getLogger(__name__)


async def _list_expenses(
    collection, cache, owner_id: str, default_limit: int,
    page, limit, category, start_date, end_date, sort_by, order,
) -> Dict[str, Any]:
    try:
        descriptor = build_query_descriptor(
            owner_id,
            page=page, limit=limit, category=category,
            start_date=start_date, end_date=end_date,
            sort_by=sort_by, order=order,
            default_limit=default_limit,
        )
        return await expenses_service.get_expense_page(collection, cache, descriptor, ttl=LIST_CACHE_TTL)
    except QueryValidationError as ve:
        logger.info(f"Rejected expense listing parameters: {ve}")
        raise HTTPException(status_code=400, detail=str(ve))
    except ExpenseQueryError:
        raise HTTPException(status_code=500, detail="Failed to fetch expenses")
    except Exception as e:
        logger.exception(f"Unexpected error fetching expenses: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch expenses")


# --- API Routes ---

@router.get("/expenses", response_model=ExpensePage, summary="List Expenses", description="Paginated, filtered and sorted expenses of the authenticated user.")
async def list_expenses(
    collection: ExpensesCollectionDep,
    cache: ResultCacheDep,
    owner_id: CurrentUserDep,
    page: Optional[str] = Query(None, description="Page number, starting at 1."),
    limit: Optional[str] = Query(None, description=f"Page size (default {LIST_DEFAULT_LIMIT})."),
    category: Optional[str] = Query(None, description="Only this category."),
    start_date: Optional[str] = Query(None, alias="startDate", description="Inclusive lower date bound (YYYY-MM-DD)."),
    end_date: Optional[str] = Query(None, alias="endDate", description="Inclusive upper date bound (YYYY-MM-DD)."),
    sort_by: Optional[str] = Query(None, alias="sortBy", description="date, category, amount, description or createdAt."),
    order: Optional[str] = Query(None, description="asc or desc (default desc)."),
):
    logger.info(f"GET /expenses called by owner {owner_id}.")
    return await _list_expenses(
        collection, cache, owner_id, LIST_DEFAULT_LIMIT,
        page, limit, category, start_date, end_date, sort_by, order,
    )


@router.get("/expenses/dashboard", response_model=ExpensePage, summary="Dashboard Expenses", description="Same as List Expenses with the dashboard's smaller default page size.")
async def list_dashboard_expenses(
    collection: ExpensesCollectionDep,
    cache: ResultCacheDep,
    owner_id: CurrentUserDep,
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None, description=f"Page size (default {DASHBOARD_DEFAULT_LIMIT})."),
    category: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    order: Optional[str] = Query(None),
):
    return await _list_expenses(
        collection, cache, owner_id, DASHBOARD_DEFAULT_LIMIT,
        page, limit, category, start_date, end_date, sort_by, order,
    )


@router.get("/expenses/summary", response_model=ExpenseSummary, summary="Expense Summary", description="Total, average and per-category totals over the filtered expenses.")
async def expense_summary(
    collection: ExpensesCollectionDep,
    cache: ResultCacheDep,
    owner_id: CurrentUserDep,
    category: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
):
    try:
        descriptor = build_query_descriptor(owner_id, category=category, start_date=start_date, end_date=end_date)
        return await expenses_service.get_expense_summary(collection, cache, descriptor, ttl=LIST_CACHE_TTL)
    except QueryValidationError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ExpenseQueryError:
        raise HTTPException(status_code=500, detail="Failed to summarize expenses")
    except Exception as e:
        logger.exception(f"Unexpected error summarizing expenses: {e}")
        raise HTTPException(status_code=500, detail="Failed to summarize expenses")


@router.post("/expenses", response_model=Expense, status_code=201, summary="Create Expense")
async def create_expense(
    expense: ExpenseCreate,
    collection: ExpensesCollectionDep,
    cache: ResultCacheDep,
    owner_id: CurrentUserDep,
) -> Expense:
    logger.info(f"POST /expenses called by owner {owner_id}.")
    try:
        return await expenses_service.create_expense(collection, cache, owner_id, expense)
    except ExpenseQueryError:
        raise HTTPException(status_code=500, detail="Failed to create expense")
    except Exception as e:
        logger.exception(f"Unexpected error creating expense: {e}")
        raise HTTPException(status_code=500, detail="Failed to create expense")


@router.get("/expenses/{expense_id}", response_model=Expense, summary="Get Expense")
async def get_expense(expense_id: str, collection: ExpensesCollectionDep, owner_id: CurrentUserDep) -> Expense:
    try:
        return await expenses_service.get_expense(collection, owner_id, expense_id)
    except ExpenseNotFoundError:
        raise HTTPException(status_code=404, detail="Expense not found")
    except ExpenseQueryError:
        raise HTTPException(status_code=500, detail="Failed to fetch expense")
    except Exception as e:
        logger.exception(f"Unexpected error fetching expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch expense")


@router.put("/expenses/{expense_id}", response_model=Expense, summary="Update Expense")
async def update_expense(
    expense_id: str,
    changes: ExpenseUpdate,
    collection: ExpensesCollectionDep,
    cache: ResultCacheDep,
    owner_id: CurrentUserDep,
) -> Expense:
    logger.info(f"PUT /expenses/{expense_id} called by owner {owner_id}.")
    try:
        return await expenses_service.update_expense(collection, cache, owner_id, expense_id, changes)
    except ExpenseNotFoundError:
        raise HTTPException(status_code=404, detail="Expense not found")
    except ExpenseQueryError:
        raise HTTPException(status_code=500, detail="Failed to update expense")
    except Exception as e:
        logger.exception(f"Unexpected error updating expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update expense")


@router.delete("/expenses/{expense_id}", status_code=204, summary="Delete Expense")
async def delete_expense(
    expense_id: str,
    collection: ExpensesCollectionDep,
    cache: ResultCacheDep,
    owner_id: CurrentUserDep,
) -> Response:
    logger.info(f"DELETE /expenses/{expense_id} called by owner {owner_id}.")
    try:
        await expenses_service.delete_expense(collection, cache, owner_id, expense_id)
    except ExpenseNotFoundError:
        raise HTTPException(status_code=404, detail="Expense not found")
    except ExpenseQueryError:
        raise HTTPException(status_code=500, detail="Failed to delete expense")
    except Exception as e:
        logger.exception(f"Unexpected error deleting expense {expense_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete expense")
    return Response(status_code=204)
