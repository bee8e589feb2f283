"""FastAPI server for the Banking API.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import (
    health,
    config,
    consents,
    connections,
    accounts,
    transactions,
    category_rules,
    dashboard,
)
from banking.services import BankingServices
from core.config import BankingSettings
from core.errors import BankingError, RateLimitedError
from core.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _error_response(status_code: int, body: dict, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": body}, headers=headers)


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        seconds = int((exc.retry_after - datetime.now(timezone.utc)).total_seconds())
        headers = {"Retry-After": str(max(seconds, 0))}
    if exc.http_status >= 500:
        logger.warning(
            "Request failed",
            extra_fields={"path": request.url.path, "error_code": exc.code, "error": exc.message},
        )
    return _error_response(exc.http_status, exc.to_dict(), headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    return _error_response(422, {"code": "VALIDATION_ERROR", "message": details})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    if getattr(app.state, "services", None) is None:
        settings = BankingSettings.from_env()
        configure_logging(level=settings.log_level, json_format=settings.log_json, include_temporal=False)
        app.state.services = BankingServices.build(settings)
    logger.info("Banking API starting up", extra_fields={"db_path": str(app.state.services.settings.db_path)})

    yield

    # Shutdown
    await app.state.services.aclose()
    logger.info("Banking API shutting down")


def create_app(services: Optional[BankingServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Prebuilt services container. When omitted, one is built
            from environment settings at startup.
    """
    app = FastAPI(
        title="Banking API",
        description="PSD2 open banking: consents, account sync, categorization and reporting",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(config.router, prefix="/api/banking", tags=["Configuration"])
    app.include_router(consents.router, prefix="/api/banking", tags=["Consents"])
    app.include_router(connections.router, prefix="/api/banking", tags=["Connections"])
    app.include_router(accounts.router, prefix="/api/banking", tags=["Accounts"])
    app.include_router(transactions.router, prefix="/api/banking", tags=["Transactions"])
    app.include_router(category_rules.router, prefix="/api/banking", tags=["Category Rules"])
    app.include_router(dashboard.router, prefix="/api/banking", tags=["Dashboard"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
