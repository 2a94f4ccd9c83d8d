import logging

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from app.config import settings
from app.database import Base, engine
from app.exception_handlers import register_exception_handlers
from app.middleware.attribution import AttributionMiddleware
from app.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from app.middleware.visitor import VisitorMiddleware
from app.routes import consent, monitoring, tracking
from app.scheduler import shutdown_scheduler, start_scheduler
from app.services.conversion_service import build_dispatcher
from app.utils.metrics import PrometheusMiddleware
from app.utils.storage import create_durable_backend

setup_structured_logging(log_level=settings.log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Consent-gated attribution capture and conversion dispatch",
        debug=settings.debug,
        version=settings.app_version,
    )

    # Middleware (Starlette LIFO: the last one added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(AttributionMiddleware)
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(VisitorMiddleware)
    # Browser-session cookie: rejected consent must not outlive the session
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.secret_key,
        max_age=None,
        same_site="lax",
        https_only=settings.environment == "production",
    )

    register_exception_handlers(app)

    # Include routers
    app.include_router(consent.router, prefix="/api/v1")
    app.include_router(tracking.router, prefix="/api/v1")
    app.include_router(monitoring.router)

    @app.on_event("startup")
    async def startup_event():
        """Tasks to run at application startup."""
        logger.info(f"Starting {settings.app_name} ({settings.environment})")
        if settings.debug:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created (if not existing).")

        app.state.consent_backend = await create_durable_backend()
        app.state.http_client = httpx.AsyncClient(timeout=settings.dispatch_timeout_seconds)
        app.state.dispatcher = build_dispatcher(client=app.state.http_client)
        logger.info(f"Conversion platforms enabled: {app.state.dispatcher.platforms or 'none'}")
        start_scheduler()

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Shutting down the application...")
        shutdown_scheduler()
        http_client = getattr(app.state, "http_client", None)
        if http_client is not None:
            await http_client.aclose()
        backend = getattr(app.state, "consent_backend", None)
        if hasattr(backend, "close"):
            await backend.close()
        await engine.dispose()

    @app.get("/", tags=["Root"])
    async def root():
        return {"message": f"Welcome to the {settings.app_name}"}

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
