"""
Helpdesk Knowledge & Assist - Main Application
==============================================

Knowledge ingestion, retrieval and AI ticket assist for a multi-tenant
helpdesk.

Modules:
- Knowledge: Source ingestion, indexing jobs and similarity search
- Assist: KB-grounded suggestions, draft replies and cited AI replies

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, model service, vector index, queue
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration and Core
from src.config import settings
from src.core import ApplicationException

# Infrastructure
from src.bootstrap import build_container
from src.infrastructure.database import close_database, create_tables, init_database

# Module Routers
from src.knowledge.interfaces import knowledge_router, jobs_router
from src.assist.interfaces import assist_router

# Middleware
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)

# Logging
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables (development)
    3. Wire services and load assist rules
    4. Ensure the vector collection exists

    SHUTDOWN:
    1. Stop the rules watcher, drain background effects
    2. Close model, queue and vector clients
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting helpdesk service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    if settings.environment == "development":
        logger.info("Creating database tables")
        try:
            await create_tables()
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    container = build_container(watch_rules=True)
    app.state.container = container

    try:
        await container.vector_index.initialize()
    except ApplicationException as e:
        logger.warning("Vector index not available", extra={"error": e.message})

    logger.info("Helpdesk service started")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down helpdesk service")
    await container.close()
    await close_database()
    logger.info("Helpdesk service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk Knowledge & Assist API",
    description="""
    ## Knowledge base ingestion, retrieval and AI ticket assist

    ### Knowledge Base

    - `POST /kb/sources` - Upload a text, markdown or PDF source
    - `POST /kb/sources/text` - Create a source from raw text
    - `GET /kb/sources` - List sources (page or cursor)
    - `GET /kb/sources/{id}` - Source detail with latest job
    - `POST /kb/sources/{id}/retry` / `repair` - Re-index
    - `POST /kb/query` - Similarity search
    - `GET /jobs/{id}` - Indexing job status

    ### Ticket Assist

    - `POST /tickets/{id}/suggest` - Relevant KB chunks
    - `POST /tickets/{id}/draft-reply` - Draft reply with citations
    - `POST /tickets/{id}/assist` - Structured, cited reply saved as an AI comment

    Every request carries `X-Tenant-ID` (and optionally `X-User-ID`,
    `X-User-Role`) set by the upstream auth gateway.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(knowledge_router)
app.include_router(jobs_router)
app.include_router(assist_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports queue depth when Redis is reachable; the service stays
    "healthy" as long as the process is serving requests.
    """
    container = getattr(request.app.state, "container", None)
    checks = {
        "services": "wired" if container else "not_initialized",
        "assist_rules": "loaded" if container else "unknown",
        "queue": "unknown",
    }

    if container is not None:
        try:
            checks["queue"] = await container.queue.stats()
        except ApplicationException as e:
            checks["queue"] = f"error: {e.message}"

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "knowledge": {"prefix": "/kb", "jobs": "/jobs"},
            "assist": {"prefix": "/tickets"},
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
