# stockledger/main.py

import logging
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stockledger.core.config import get_settings
from stockledger.core.exceptions import (
    AmbiguousMatchError,
    BaseServiceError,
    InvalidTransitionError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from stockledger.core.logging_config import configure_logging
from stockledger.routes import health, orders, stock

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    # Run migrations on startup
    if settings.RUN_MIGRATIONS:
        logger.info("Running database migrations...")
        result = subprocess.run(['alembic', 'upgrade', 'head'], capture_output=True, text=True)
        if result.returncode == 0:
            logger.info("Migrations completed successfully")
        else:
            logger.error("Migration failed: %s", result.stderr)
    yield


app = FastAPI(
    title="Back Office Stock Ledger",
    lifespan=lifespan
)


def _error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": error})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        messages.append(f"{location}: {err.get('msg')}" if location else err.get("msg", "invalid request"))
    return _error(400, "; ".join(messages))


@app.exception_handler(BaseServiceError)
async def service_error_handler(request: Request, exc: BaseServiceError):
    if isinstance(exc, (ProductNotFoundError, OrderNotFoundError)):
        return _error(404, str(exc))
    if isinstance(exc, (ValidationError, InvalidTransitionError, AmbiguousMatchError)):
        return _error(400, str(exc))
    logger.error("Unhandled service error on %s: %s", request.url.path, exc, exc_info=True)
    return _error(500, str(exc))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unexpected error on %s", request.url.path, exc_info=exc)
    return _error(500, str(exc) or exc.__class__.__name__)


app.include_router(stock.router, tags=["stock"])
app.include_router(orders.router, tags=["orders"])
app.include_router(health.router)  # Health check should be accessible without auth
