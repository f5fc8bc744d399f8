import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from signdoc.common.errors import register_error_handlers
from signdoc.common.log_config import configure_logging
from signdoc.config import settings
from signdoc.documents.router import router as documents_router
from signdoc.middleware import CorrelationIDMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings)
    # Development convenience; deployments run alembic instead.
    if settings.auto_create_schema:
        from signdoc.database import init_models

        await init_models()
        logger.info("Database schema created")
    logger.info("%s %s started (%s)", settings.app_name, settings.app_version, settings.environment)
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Middleware
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Routers
app.include_router(documents_router, prefix="/api/documents", tags=["Documents"])


@app.get("/api/health")
async def health_check():
    return {"status": "healthy", "version": settings.app_version}
