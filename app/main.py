"""
FastAPI application factory
"""
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import Response

from app.config import get_settings
from app.application.errors import LedgerError, http_status_for
from app.infrastructure.db.session import check_db_connection
from app.api.v1 import income_events, payments, budget, reports, transactions

logging.basicConfig(level=get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Catches everything the ledger error handler did not, including sync routes."""

    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            tb_str = traceback.format_exc()
            logger.error("\n%s\nERROR on %s %s\n%s%s", "=" * 60, request.method, request.url.path, tb_str, "=" * 60)
            return Response(content=f"Internal Server Error: {exc}", status_code=500)


def create_app() -> FastAPI:
    """
    Application factory - builds and configures the FastAPI app

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()

    app = FastAPI(
        title="Family Ledger",
        debug=settings.DEBUG,
    )

    app.add_middleware(ErrorLoggingMiddleware)

    # Middleware
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY,
        max_age=settings.SESSION_MAX_AGE,
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = http_status_for(exc)
        logger.info("%s %s -> %d %s: %s", request.method, request.url.path, status_code, exc.code, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": exc.code})

    # Routers
    app.include_router(income_events.router)
    app.include_router(payments.router)
    app.include_router(budget.router)
    app.include_router(transactions.router)
    app.include_router(reports.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (checks the database)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
