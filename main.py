"""Main FastAPI application"""
import asyncio
import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from config import (
    CACHE_SWEEP_INTERVAL,
    DB_NAME,
    LIST_CACHE_TTL,
    LOG_LEVEL,
    MONGODB_URI,
    QUERY_TIMEOUT_MS,
)
from routes import router as expenses_router
from auth_routes import router as auth_router
from services import auth_service, expenses_service
from services.result_cache import ResultCache, run_sweeper
from utils.rate_limit import limiter

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            "markup": True
        },
    },
    "loggers": {
        "uvicorn": {
             "handlers": ["default"],
             "level": "INFO",
             "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": { # Root logger for our application
            "handlers": ["default"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)

logger = logging.getLogger(__name__)

if not MONGODB_URI:
    logger.error("MONGODB_URI environment variable not set! Database connection will fail.")

# Application state: database handles, the result cache and its sweeper task
app_state = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The cache is created first so listings keep working even without a sweeper
    app_state["result_cache"] = ResultCache(default_ttl=LIST_CACHE_TTL)
    app_state["sweeper_task"] = asyncio.create_task(run_sweeper(app_state["result_cache"], CACHE_SWEEP_INTERVAL))
    logger.info(f"Result cache ready (ttl {LIST_CACHE_TTL}s, sweep every {CACHE_SWEEP_INTERVAL}s).")

    logger.info(f"Connecting to MongoDB database {DB_NAME}...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(MONGODB_URI, timeoutMS=QUERY_TIMEOUT_MS, tz_aware=False)
        app_state["db"] = app_state["db_client"][DB_NAME]
        app_state["expenses_collection"] = app_state["db"].get_collection("expenses")
        app_state["users_collection"] = app_state["db"].get_collection("users")
        await app_state["db_client"].admin.command('ping')
        logger.info("MongoDB ping successful.")
        await expenses_service.ensure_indexes(app_state["expenses_collection"])
        await auth_service.ensure_indexes(app_state["users_collection"])
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}")
        app_state["db_client"] = None
        app_state["db"] = None
        app_state["expenses_collection"] = None
        app_state["users_collection"] = None

    yield # Application runs here

    app_state["sweeper_task"].cancel()
    try:
        await app_state["sweeper_task"]
    except asyncio.CancelledError:
        pass
    app_state["result_cache"].clear()

    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")

app = FastAPI(
    title="Expense Tracker API",
    description="API for recording expenses and browsing them with filters, pagination and summaries.",
    version="0.1.0",
    lifespan=lifespan
)

# --- Rate Limiter State and Handler ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Reports request validation failures as 400 with the offending field names."""
    errors = exc.errors()
    fields = [".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")) for err in errors]
    message = "; ".join(f"{field or 'body'}: {err.get('msg')}" for field, err in zip(fields, errors))
    logger.info(f"Request validation failed on {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"detail": message or "Invalid request"})


# --- Middleware (Order Matters) ---
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # Adjust in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(expenses_router, prefix="/api", tags=["expenses"])
app.include_router(auth_router, prefix="/api", tags=["auth"])


@app.get("/health", summary="Health Check")
async def health():
    return {"status": "ok", "database": "connected" if app_state.get("db_client") else "unavailable"}


# Make app state accessible via middleware
@app.middleware("http")
async def add_app_state_to_request(request: Request, call_next):
    """Adds database collections and the result cache to the request state."""
    request.state.db_client = app_state.get("db_client")
    request.state.expenses_collection = app_state.get("expenses_collection")
    request.state.users_collection = app_state.get("users_collection")
    request.state.result_cache = app_state.get("result_cache")
    response = await call_next(request)
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
