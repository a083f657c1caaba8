"""
FastAPI application entry point.

Configures middleware, routers, and lifecycle events.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from spine.core.config import get_settings
from spine.core.logging import configure_logging, get_logger
from spine.core.middleware import SecurityHeadersMiddleware
from spine.db.session import close_db, get_db_session, init_db
from spine.modules.eid.router import router as eid_router
from spine.modules.gesign.router import router as gesign_router
from spine.modules.identities.router import router as identities_router
from spine.modules.mfa.router import router as mfa_router
from spine.modules.organizations.router import router as organizations_router
from spine.modules.provisioning.router import router as provisioning_router

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialize and dispose of the database engine."""
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
        native_rls=settings.native_rls_enabled,
    )

    await init_db()
    logger.info("database_initialized")

    yield

    await close_db()
    logger.info("application_shutdown_complete")


def create_application() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all middleware,
    routers, and settings applied.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware Configuration
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(SecurityHeadersMiddleware)

    # ==========================================================================
    # Router Registration
    # ==========================================================================

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        checks: dict[str, str] = {}
        try:
            async for session in get_db_session():
                await session.execute(text("SELECT 1"))
            checks["db"] = "ok"
        except (SQLAlchemyError, OSError, RuntimeError) as exc:
            logger.warning("health_db_unavailable", error_type=type(exc).__name__)
            checks["db"] = "unavailable"

        overall = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"
        return {"status": overall, "version": settings.version, "checks": checks}

    # Called by the authentication boundary, authenticated by shared secret
    app.include_router(
        provisioning_router,
        prefix=f"{settings.api_v1_prefix}/internal/hooks",
        tags=["Provisioning Hooks"],
    )

    # API v1 routers (authenticated principal required)
    app.include_router(
        identities_router,
        prefix=settings.api_v1_prefix,
        tags=["Identities"],
    )
    app.include_router(
        organizations_router,
        prefix=f"{settings.api_v1_prefix}/organizations",
        tags=["Organizations"],
    )
    app.include_router(
        mfa_router,
        prefix=f"{settings.api_v1_prefix}/mfa",
        tags=["MFA"],
    )
    app.include_router(
        gesign_router,
        prefix=f"{settings.api_v1_prefix}/gesign",
        tags=["Digital Signatures"],
    )
    app.include_router(
        eid_router,
        prefix=f"{settings.api_v1_prefix}/eid",
        tags=["Electronic ID"],
    )

    return app


app = create_application()
