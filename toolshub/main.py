import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from toolshub.config import settings
from toolshub.core.database import close_db, init_db
from toolshub.core.errors.middleware import register_error_handlers
from toolshub.core.errors.registry import error_registry
from toolshub.core.log_middleware import CorrelationMiddleware
from toolshub.core.structured_logging import setup_logging
from toolshub.routers import account, api_keys, billing, favorites, health, tools, webhooks
from toolshub.services.rate_limiter import close_rate_limiter, get_rate_limiter

# Initialize structured logging before any logger calls
setup_logging()

logger = logging.getLogger(__name__)

API_TITLE = "ToolsHub API"
BLOCKING_WORKERS = 32

API_DESCRIPTION = """
## ToolsHub - Developer Utility API

Small text and data tools (word counter, JSON formatter, case converter,
colour converter, ...) behind one API key.

### Authentication

Tool endpoints: `Authorization: Bearer pk_your_key_here`.
The public sandbox key is limited to a shared daily allowance and never billed.

Account endpoints: `Authorization: Bearer <session JWT>`.

### Billing

Calls are billed per use in fractional cents from a prepaid balance.
Top up via checkout or enable auto-recharge.
"""

TAGS_METADATA = [
    {"name": "health", "description": "Liveness check. No authentication required."},
    {"name": "tools", "description": "Tool catalogue and invocation. **Requires API Key.**"},
    {"name": "account", "description": "Profile, API keys and billing settings. **Requires session JWT.**"},
    {"name": "favorites", "description": "Favorite tools. **Requires session JWT.**"},
    {"name": "stripe", "description": "Add funds and the Stripe webhook."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the error registry, size the worker pool, open the store and limiter."""
    logger.info("%s %s starting", API_TITLE, settings.app_version)
    error_registry.load()

    # run_sync() work (store and Stripe calls) lands on this pool
    executor = ThreadPoolExecutor(max_workers=BLOCKING_WORKERS, thread_name_prefix="toolshub-io")
    asyncio.get_running_loop().set_default_executor(executor)

    init_db()
    get_rate_limiter()
    logger.info("Ready: workers=%d rate_limit_backend=%s", BLOCKING_WORKERS, settings.rate_limit_backend)

    try:
        yield
    finally:
        logger.info("%s shutting down", API_TITLE)
        await close_rate_limiter()
        close_db()
        executor.shutdown(wait=False)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=settings.app_version,
        openapi_tags=TAGS_METADATA,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # request_id + correlation_id in every log line
    app.add_middleware(CorrelationMiddleware)

    register_error_handlers(app)

    app.include_router(health.router, tags=["health"])
    app.include_router(tools.router, prefix="/api/tools", tags=["tools"])
    app.include_router(account.router, prefix="/api/account", tags=["account"])
    app.include_router(api_keys.router, prefix="/api/account/api-keys", tags=["account"])
    app.include_router(favorites.router, prefix="/api/favorites", tags=["favorites"])
    app.include_router(billing.router, prefix="/api/stripe", tags=["stripe"])
    app.include_router(webhooks.router, prefix="/api/stripe", tags=["stripe"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("toolshub.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
