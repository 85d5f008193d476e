"""FastAPI application entry point"""

from contextlib import asynccontextmanager
from typing import Optional
import logging
import uuid

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from linkshelf.config.settings import settings
from linkshelf.crawlers.log_utils import sanitize_log_extra
from linkshelf.errors import AppError, UnauthorizedError
from linkshelf.jobs.refresh_scheduler import RefreshScheduler
from linkshelf.repositories.links import SQLAlchemyLinkRepository
from linkshelf.services.enrichment import LinkEnricher

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    repository = SQLAlchemyLinkRepository()
    enricher = LinkEnricher(repository)
    scheduler = RefreshScheduler(repository, enricher)

    app.state.repository = repository
    app.state.enricher = enricher
    app.state.scheduler = scheduler

    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Background scheduler disabled by configuration")
        scheduler.shutdown_handle().set()

    try:
        yield
    finally:
        await scheduler.stop(timeout=30)
        await enricher.aclose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Link metadata enrichment service",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ScrapeRequest(BaseModel):
    url: str


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    extra = sanitize_log_extra(path=request.url.path, code=exc.error_code, error=str(exc))
    if exc.status_code >= 500:
        logger.error("Request failed", extra=extra)
    else:
        logger.warning("Request rejected", extra=extra)
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


def get_repository(request: Request) -> SQLAlchemyLinkRepository:
    return request.app.state.repository


def get_enricher(request: Request) -> LinkEnricher:
    return request.app.state.enricher


def get_scheduler(request: Request) -> RefreshScheduler:
    return request.app.state.scheduler


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> uuid.UUID:
    """Caller identity forwarded by the authenticating gateway"""
    if not x_user_id:
        raise UnauthorizedError()
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise UnauthorizedError("Invalid user identity.")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "health": "/api/health",
            "scheduler_health": "/api/health/scheduler",
            "database_health": "/api/health/database",
            "scrape": "POST /api/scrape",
            "refresh_link": "POST /api/links/{link_id}/refresh",
            "refresh_run": "POST /api/refresh/run",
        }
    }


@app.get("/api/health")
async def health_check():
    """General health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
    }


@app.get("/api/health/scheduler")
async def scheduler_health(scheduler: RefreshScheduler = Depends(get_scheduler)):
    """Scheduler run-state for monitoring; stopped once shutdown is signalled"""
    running = scheduler.running
    return {
        "status": "healthy" if running else "stopped",
        "running": running,
    }


@app.get("/api/health/database")
async def database_health(repository: SQLAlchemyLinkRepository = Depends(get_repository)):
    """Database connectivity check"""
    connected = repository.ping()
    content = {
        "status": "healthy" if connected else "unhealthy",
        "connected": connected,
    }
    return JSONResponse(status_code=200 if connected else 503, content=content)


@app.post("/api/scrape")
async def scrape_url(
    payload: ScrapeRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    enricher: LinkEnricher = Depends(get_enricher),
):
    """Preview metadata for a URL before saving it"""
    logger.info("Scraping URL for metadata", extra=sanitize_log_extra(url=payload.url, user_id=str(user_id)))

    metadata = await enricher.scraper.scrape(payload.url)

    logger.info(
        "URL scraped successfully",
        extra=sanitize_log_extra(
            url=payload.url,
            has_title=metadata.title is not None,
            has_description=metadata.description is not None,
            has_favicon=metadata.favicon is not None,
        ),
    )
    return metadata.to_dict()


@app.post("/api/links/{link_id}/refresh")
async def refresh_link(
    link_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    repository: SQLAlchemyLinkRepository = Depends(get_repository),
    enricher: LinkEnricher = Depends(get_enricher),
):
    """Re-run enrichment for one of the caller's links"""
    link = repository.get_by_id(link_id, user_id)
    updated = await enricher.refresh_link(link)
    return updated.to_dict()


@app.post("/api/refresh/run")
async def trigger_refresh(
    background_tasks: BackgroundTasks,
    scheduler: RefreshScheduler = Depends(get_scheduler),
):
    """Trigger one refresh batch in the background"""
    logger.info("Refresh batch triggered")

    async def run_batch():
        stats = await scheduler.run_batch()
        logger.info(f"Manual refresh batch completed: {stats.get('refreshed', 0)} links refreshed")

    background_tasks.add_task(run_batch)
    return {
        "status": "started",
        "message": "Refresh batch started in background"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "linkshelf.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
