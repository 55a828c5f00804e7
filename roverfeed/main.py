from pathlib import Path
from contextlib import asynccontextmanager
from typing import Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI, Request

from roverfeed.api.deps import RateLimitExceeded, get_rate_limiter, rate_limit_exceeded_response
from roverfeed.api.routes import health, photos, scraper
from roverfeed.core.config import settings
from roverfeed.core.logging import get_logger
from roverfeed.services.runner import BackgroundRunner


log = get_logger("roverfeed")

# Background runner handle
_runner: Optional[BackgroundRunner] = None


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _runner

    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    limiter = get_rate_limiter()
    if not limiter.store.shared_across_instances:
        log.warning(
            "Rate limiter uses in-memory counters: quotas are enforced per process only. "
            "Set RATE_LIMIT_BACKEND=database when running more than one instance."
        )

    if settings.SCRAPER_ENABLED:
        log.info("Starting scheduled scraper background task...")
        _runner = BackgroundRunner()
        _runner.start()
    else:
        log.info("Scheduled scraping is disabled (SCRAPER_ENABLED=false)")

    yield

    # Shutdown
    log.info("Shutting down services...")
    if _runner:
        await _runner.stop()
        _runner = None

    log.info("Application shutdown complete")


app = FastAPI(
    title="Roverfeed",
    description="Incremental Mars rover imagery ingestion with a rate-limited read API",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    debug=settings.debug_enabled,
)


@app.exception_handler(RateLimitExceeded)
async def handle_rate_limit_exceeded(request: Request, exc: RateLimitExceeded):
    return rate_limit_exceeded_response(exc)


app.include_router(photos.router)
app.include_router(scraper.router)
app.include_router(health.router)
