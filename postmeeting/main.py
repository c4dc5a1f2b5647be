"""
PostMeeting application.

Serves the API and owns the background ticker that reconciles meetings
independently of any connected client.
"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from postmeeting.api import Services, router
from postmeeting.config import settings
from postmeeting.db import async_session_maker, close_db, create_tables
from postmeeting.exceptions import (
    APIError,
    ConfigurationError,
    DatabaseError,
    NotConnectedError,
    NotFoundError,
)
from postmeeting.logging_config import get_logger, setup_logging
from postmeeting.monitoring import record_error
from postmeeting.services.store import MeetingStore

logger = get_logger(__name__)


def create_app(services: Optional[Services] = None, run_ticker: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        services: Pre-built collaborators; when omitted they are created against
            the configured database during startup
        run_ticker: Start the background reconciliation ticker on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.debug)
        owned = getattr(app.state, "services", None) is None
        if owned:
            await create_tables()
            app.state.services = Services(MeetingStore(async_session_maker))
        if run_ticker:
            app.state.services.ticker.start()
        logger.info(
            "app_started",
            debug=settings.debug,
            cors_origins=settings.cors_origins_list,
            recall_region=settings.recall_region,
        )

        yield

        await app.state.services.ticker.stop()
        if owned:
            await close_db()
        logger.info("app_stopped")

    app = FastAPI(
        title="PostMeeting",
        description="Meeting notetaker scheduling, reconciliation and follow-up content",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    # OAuth state round-trips through the signed session cookie
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        session_cookie="postmeeting_session",
        max_age=3600,
        same_site="lax",
        https_only=not settings.debug,
    )

    app.include_router(router)
    _register_error_handlers(app)
    return app


# ============================================
# ERROR HANDLERS
# ============================================

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _error(exc.status_code, exc.detail)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(NotConnectedError)
    async def not_connected_handler(request: Request, exc: NotConnectedError):
        return _error(status.HTTP_401_UNAUTHORIZED, str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))

    @app.exception_handler(DatabaseError)
    async def database_handler(request: Request, exc: DatabaseError):
        record_error("DatabaseError", "api")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Database unavailable")

    @app.exception_handler(APIError)
    async def upstream_handler(request: Request, exc: APIError):
        record_error(type(exc).__name__, "api")
        logger.warning("upstream_error", platform=exc.platform, status_code=exc.status_code, error=str(exc))
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("unhandled_error", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "details": str(exc) if settings.debug else "An error occurred"
            }
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "postmeeting.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
