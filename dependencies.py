"""FastAPI dependencies shared by the routers"""
import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorCollection

from services.result_cache import ResultCache
from utils.security import decode_access_token

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_expenses_collection(request: Request) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB expenses collection from the request state."""
    collection = getattr(request.state, "expenses_collection", None)
    if collection is None:
        logger.error("Expenses collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_users_collection(request: Request) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB users collection from the request state."""
    collection = getattr(request.state, "users_collection", None)
    if collection is None:
        logger.error("Users collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection


def get_result_cache(request: Request) -> Optional[ResultCache]:
    """The process-wide result cache, or None if it was never created (queries still work)."""
    cache = getattr(request.state, "result_cache", None)
    if cache is None:
        logger.warning("Result cache not found in application state. Serving uncached.")
    return cache


def get_current_user_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> str:
    """Resolves the authenticated owner from the bearer token; anything else is a 401."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})
    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized", headers={"WWW-Authenticate": "Bearer"})
    return user_id


# Type hints for the dependencies
ExpensesCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_expenses_collection)]
UsersCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_users_collection)]
ResultCacheDep = Annotated[Optional[ResultCache], Depends(get_result_cache)]
CurrentUserDep = Annotated[str, Depends(get_current_user_id)]
