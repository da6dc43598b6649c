"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.dashboard import router as dashboard_router
from app.api.records import router as records_router
from app.api.upload import router as upload_router
from app.config import get_settings
from app.database import Base, engine
from app.models import Employee, UploadChunk, UploadError, UploadJob  # noqa: F401 - Import to register models
from app.services.record_cache import RecordCache, create_redis_client
from app.tasks.celery_app import create_celery_app
from app.tasks.job_queue import JobQueue

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(),  # Console output
        logging.FileHandler("app.log"),  # File output
    ],
)

# Set specific log levels for noisy libraries
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and the job queue and cache clients the routes depend on."""
    settings = get_settings()
    Base.metadata.create_all(bind=engine)

    app.state.job_queue = JobQueue(create_celery_app(settings), settings)
    app.state.record_cache = RecordCache(create_redis_client(settings.redis_url), settings)
    logger.info(f"🚀 API started: env={settings.app_env}")

    yield

    app.state.record_cache.redis.close()
    logger.info("👋 API stopped")


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    application = FastAPI(
        title="Employee Importer",
        description="Import employee spreadsheets into a SQL database and browse the records",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Configure CORS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, specify exact origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    application.include_router(upload_router)
    application.include_router(records_router)
    application.include_router(dashboard_router)

    @application.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return application


app = create_app()
