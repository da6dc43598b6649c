"""
Celery worker entry point for the upload pipeline.

Run one worker per topic so each gets its own concurrency::

    python -m app.worker excel-parse-validate
    python -m app.worker data-insert
    python -m app.worker error-logging

``celery -A app.worker worker -Q <topic>`` works as well.
"""
import logging
import sys

from app.config import get_settings
from app.database import SessionLocal
from app.services.record_cache import RecordCache, create_redis_client
from app.tasks.celery_app import create_celery_app
from app.tasks.job_queue import JobQueue
from app.tasks.pipeline import TOPICS, PipelineOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

settings = get_settings()
celery_app = create_celery_app(settings)
job_queue = JobQueue(celery_app, settings)
orchestrator = PipelineOrchestrator(
    job_queue,
    SessionLocal,
    record_cache=RecordCache(create_redis_client(settings.redis_url), settings),
    settings=settings,
)
orchestrator.start()


def main(argv: list[str] | None = None) -> int:
    """Run a worker for the topic named on the command line."""
    args = sys.argv[1:] if argv is None else argv
    if len(args) != 1 or args[0] not in TOPICS:
        print(f"Usage: python -m app.worker <{'|'.join(TOPICS)}>")
        return 1

    topic = args[0]
    logger.info(f"👷 Starting worker for {topic}")
    job_queue.run_worker(topic)
    return 0


if __name__ == "__main__":
    sys.exit(main())
