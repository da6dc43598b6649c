"""Request dependencies for collaborators built at application startup."""
from fastapi import Request

from app.services.record_cache import RecordCache
from app.tasks.job_queue import JobQueue


def get_job_queue(request: Request) -> JobQueue:
    """Job queue created in the application lifespan."""
    return request.app.state.job_queue


def get_record_cache(request: Request) -> RecordCache:
    """Record cache created in the application lifespan."""
    return request.app.state.record_cache
