"""
FastAPI application entry point.
Builds the collaborators selected by configuration and mounts the routers.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from veritasor.core.config import Settings, get_settings
from veritasor.core.idempotency import IDEMPOTENCY_KEY_HEADER, build_idempotency_store
from veritasor.core.logging import configure_logging, get_logger
from veritasor.db.session import close_db, get_db_session, init_db
from veritasor.modules.attestations.repository import InMemoryAttestationRepository
from veritasor.modules.attestations.router import router as attestations_router
from veritasor.modules.ledger.client import build_ledger_client
from veritasor.modules.revenue.sources import build_revenue_source

logger = get_logger(__name__)


async def _startup(app: FastAPI, settings: Settings) -> None:
    app.state.ledger_client = build_ledger_client(settings)
    app.state.revenue_source = build_revenue_source(settings)
    app.state.idempotency_store = build_idempotency_store(settings)

    if settings.attestation_store == "memory":
        app.state.attestation_repository = InMemoryAttestationRepository()
    else:
        app.state.attestation_repository = None
        await init_db(settings)
        logger.info("database_initialized")


async def _shutdown(app: FastAPI) -> None:
    await app.state.ledger_client.close()
    await app.state.revenue_source.close()
    await app.state.idempotency_store.close()
    await close_db()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Collaborators live on ``app.state`` for the life of the process and are
    closed explicitly at shutdown.
    """
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
        ledger_backend=settings.ledger_backend,
        revenue_source=settings.revenue_source,
        attestation_store=settings.attestation_store,
    )

    await _startup(app, settings)
    yield
    await _shutdown(app)
    logger.info("application_shutdown_complete")


def create_application() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", IDEMPOTENCY_KEY_HEADER],
    )

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        checks: dict[str, str] = {}

        if settings.attestation_store == "sql":
            try:
                async for session in get_db_session():
                    await session.execute(text("SELECT 1"))
                checks["db"] = "ok"
            except Exception:
                checks["db"] = "unavailable"
        else:
            checks["db"] = "memory"

        checks["ledger"] = settings.ledger_backend
        checks["revenue_source"] = settings.revenue_source

        healthy = checks["db"] != "unavailable"
        return {"status": "ok" if healthy else "degraded", "checks": checks}

    app.include_router(
        attestations_router,
        prefix=f"{settings.api_v1_prefix}/attestations",
        tags=["Attestations"],
    )

    return app


app = create_application()
